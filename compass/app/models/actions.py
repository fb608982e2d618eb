"""Action protocol models - one structured edit per conversational turn.

The envelope arrives with free-form ``item_data``. ``resolve_payload`` turns it
into one concrete payload type keyed by ``(action, target_view)`` so nothing
past this boundary handles untyped dicts.
"""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from compass.app.errors import ItineraryValidationError
from compass.app.models.common import PinType, Priority


class ActionType(str, Enum):
    """Kind of edit requested by the assistant."""

    ADD_ITEM = "ADD_ITEM"
    UPDATE_ITEM = "UPDATE_ITEM"
    REMOVE_ITEM = "REMOVE_ITEM"
    ADD_PREFERENCE = "ADD_PREFERENCE"
    REMOVE_PREFERENCE = "REMOVE_PREFERENCE"
    REQUEST_CLARIFICATION = "REQUEST_CLARIFICATION"
    UPDATE_METADATA = "UPDATE_METADATA"
    GENERATE_ITINERARY = "GENERATE_ITINERARY"


class TargetView(str, Enum):
    """Canvas view the action is aimed at."""

    schedule = "schedule"
    checklist = "checklist"
    map = "map"
    preferences = "preferences"


class Action(BaseModel):
    """Conversational edit envelope as emitted by the model."""

    model_config = ConfigDict(extra="ignore")

    action: ActionType
    target_view: TargetView = TargetView.schedule
    item_data: dict[str, Any] | None = None
    itinerary_data: dict[str, Any] | None = None
    conversational_text: str = Field(..., min_length=1)
    preference_tags: list[str] = Field(default_factory=list)
    clarification_prompt: str | None = None

    @field_validator("target_view", mode="before")
    @classmethod
    def lowercase_target_view(cls, v: Any) -> Any:
        """Accept 'Schedule', 'MAP' and similar casing from the model; null means schedule."""
        if v is None:
            return TargetView.schedule
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("preference_tags", mode="before")
    @classmethod
    def null_tags_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def clarification(cls, text: str, target_view: TargetView = TargetView.schedule) -> "Action":
        """Build a REQUEST_CLARIFICATION action carrying only a message."""
        return cls(
            action=ActionType.REQUEST_CLARIFICATION,
            target_view=target_view,
            conversational_text=text,
        )


# Concrete payloads


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ScheduleItemData(_Payload):
    """ADD_ITEM on the schedule view."""

    day: int = Field(..., ge=1)
    title: str = Field(..., min_length=1, validation_alias=AliasChoices("title", "activity", "name"))
    time: str | None = None
    description: str | None = None
    location: str | None = None
    lat: float | None = None
    lng: float | None = None
    coordinates: dict[str, Any] | None = None
    estimated_cost: str | None = Field(
        default=None, validation_alias=AliasChoices("estimatedCost", "estimated_cost", "cost")
    )
    date: str | None = None

    @field_validator("time", "estimated_cost", "date", mode="before")
    @classmethod
    def stringify_scalars(cls, v: Any) -> Any:
        """Models sometimes send costs or times as bare numbers."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class ChecklistItemData(_Payload):
    """ADD_ITEM on the checklist view."""

    task: str = Field(..., min_length=1, validation_alias=AliasChoices("task", "title", "name"))
    category: str = "General"
    priority: Priority = Priority.medium
    notes: str | None = None
    completed: bool = False

    @field_validator("priority", mode="before")
    @classmethod
    def default_unknown_priority(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() in Priority.__members__:
            return v.strip().lower()
        return Priority.medium


class MapPinData(_Payload):
    """ADD_ITEM on the map view."""

    name: str = Field(..., min_length=1, validation_alias=AliasChoices("name", "title"))
    address: str = ""
    lat: Any = None
    lng: Any = None
    type: PinType = PinType.attraction
    day: int | None = Field(default=None, ge=1)
    description: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def default_unknown_type(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() in PinType.__members__:
            return v.strip().lower()
        return PinType.attraction


class ItemUpdateData(_Payload):
    """UPDATE_ITEM on any item-bearing view: id plus the fields to merge."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "item_id", "itemId"))

    def changes(self) -> dict[str, Any]:
        """Fields to merge, excluding the id."""
        return dict(self.model_extra or {})


class ItemRemovalData(_Payload):
    """REMOVE_ITEM on any item-bearing view."""

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "item_id", "itemId"))


class MetadataUpdateData(_Payload):
    """UPDATE_METADATA: top-level scalar fields only."""

    title: str | None = Field(default=None, validation_alias=AliasChoices("title", "tripTitle"))
    summary: str | None = None
    destination: str | None = None
    duration: str | None = None
    number_of_travelers: Any = Field(
        default=None,
        validation_alias=AliasChoices("numberOfTravelers", "number_of_travelers", "travelers"),
    )

    def scalar_updates(self) -> dict[str, Any]:
        return {key: value for key, value in self.model_dump().items() if value is not None}


class PreferenceData(_Payload):
    """ADD_PREFERENCE / REMOVE_PREFERENCE."""

    tags: list[str] = Field(..., min_length=1)
    category: str | None = None


ActionPayload = (
    ScheduleItemData
    | ChecklistItemData
    | MapPinData
    | ItemUpdateData
    | ItemRemovalData
    | MetadataUpdateData
    | PreferenceData
)

_ADD_PAYLOADS: dict[TargetView, type[_Payload]] = {
    TargetView.schedule: ScheduleItemData,
    TargetView.checklist: ChecklistItemData,
    TargetView.map: MapPinData,
    TargetView.preferences: PreferenceData,
}


def _preference_source(action: Action) -> dict[str, Any]:
    data = dict(action.item_data or {})
    tags = list(action.preference_tags)
    for key in ("tags", "preference_tags"):
        value = data.get(key)
        if isinstance(value, list):
            tags.extend(str(tag) for tag in value)
    for key in ("label", "tag", "preference"):
        value = data.get(key)
        if isinstance(value, str):
            tags.append(value)
    cleaned = [tag.strip() for tag in tags if tag and tag.strip()]
    return {"tags": cleaned, "category": data.get("category")}


def resolve_payload(action: Action) -> ActionPayload | None:
    """Resolve an action's free-form payload into its concrete type.

    Args:
        action: Parsed action envelope

    Returns:
        The typed payload, or None for actions that carry none
        (REQUEST_CLARIFICATION, GENERATE_ITINERARY)

    Raises:
        ItineraryValidationError: Payload missing or malformed for its action
    """
    kind = action.action
    if kind in (ActionType.REQUEST_CLARIFICATION, ActionType.GENERATE_ITINERARY):
        return None

    payload_type: type[_Payload]
    source: dict[str, Any] | None
    if kind in (ActionType.ADD_PREFERENCE, ActionType.REMOVE_PREFERENCE) or (
        kind == ActionType.ADD_ITEM and action.target_view == TargetView.preferences
    ):
        payload_type, source = PreferenceData, _preference_source(action)
    elif kind == ActionType.ADD_ITEM:
        payload_type, source = _ADD_PAYLOADS[action.target_view], action.item_data
    elif kind == ActionType.UPDATE_ITEM:
        payload_type, source = ItemUpdateData, action.item_data
    elif kind == ActionType.REMOVE_ITEM:
        payload_type, source = ItemRemovalData, action.item_data
    else:
        payload_type, source = MetadataUpdateData, action.item_data or action.itinerary_data

    if not source:
        raise ItineraryValidationError(
            f"{kind.value} on {action.target_view.value} requires item_data",
            field="item_data",
        )
    try:
        payload = payload_type.model_validate(source)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ItineraryValidationError(
            f"Malformed item_data for {kind.value}: {first.get('msg', str(e))}",
            field=field,
            details={"item_data": source},
        ) from e

    if isinstance(payload, MetadataUpdateData) and not payload.scalar_updates():
        raise ItineraryValidationError("UPDATE_METADATA carries no metadata fields", field="item_data")
    return payload
