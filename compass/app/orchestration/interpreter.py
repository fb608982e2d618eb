"""Action protocol interpreter.

Applies exactly one Action to a session's document. Inputs are never mutated;
every outcome carries fresh copies. Anything malformed, or an id that does not
exist, degrades to a clarification-style outcome instead of raising, so a
conversation never stalls on a bad model reply.

Document states:
- Empty (no itinerary): GENERATE_ITINERARY populates it; preference actions
  and clarifications are allowed; item edits degrade to clarification.
- Populated: every action applies.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from pydantic import ValidationError

from compass.app.errors import (
    CompassError,
    ItemNotFoundError,
    ItineraryValidationError,
    ParsingError,
)
from compass.app.models.actions import (
    Action,
    ActionType,
    ChecklistItemData,
    ItemRemovalData,
    ItemUpdateData,
    MapPinData,
    MetadataUpdateData,
    PreferenceData,
    ScheduleItemData,
    resolve_payload,
)
from compass.app.models.common import DayPeriod, ItemKind, ItemStatus, period_for_time
from compass.app.models.itinerary import (
    ChecklistCategory,
    ChecklistItem,
    DaySchedule,
    MapPin,
    ScheduleActivity,
    StructuredItinerary,
)
from compass.app.models.session import PreferenceCategory, PreferenceTag
from compass.app.parsing.json_extract import extract_json_object
from compass.app.utils.metrics import record_action
from compass.app.validation.ids import (
    PIN_PREFIX,
    activity_prefix,
    checklist_prefix,
    collect_ids,
    next_free_id,
)
from compass.app.validation.normalizer import (
    DEFAULT_CATEGORY,
    DEFAULT_TIME,
    normalize_time,
    parse_bool,
    parse_coordinates,
    parse_date,
    parse_int,
    validate_itinerary,
)

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = (
    "I couldn't find that item in your itinerary. Could you tell me which one you mean?"
)
MALFORMED_MESSAGE = (
    "I wasn't able to apply that change. Could you rephrase it with a bit more detail?"
)
NO_ITINERARY_MESSAGE = (
    "There's no itinerary to change yet. Tell me about your trip and I'll put one together."
)
PREFERENCE_PREFIX = "pref_"


def truncate_fallback(text: str, limit: int = 200) -> str:
    """First ``limit`` characters of text followed by '...'."""
    return text[:limit] + "..."


def parse_action(raw_text: str, fallback_chars: int = 200) -> Action:
    """Turn a raw model reply into an Action.

    Unparseable replies become a REQUEST_CLARIFICATION built from the first
    ``fallback_chars`` characters of the raw text, so the user always sees
    something.
    """
    try:
        data = extract_json_object(raw_text)
        return Action.model_validate(data)
    except (ParsingError, ValidationError) as e:
        logger.warning(f"Falling back to clarification, could not parse action: {e}")
        text = (raw_text or "").strip()
        if not text:
            return Action.clarification(MALFORMED_MESSAGE)
        return Action.clarification(truncate_fallback(text, fallback_chars))


@dataclass
class ActionOutcome:
    """Result of applying one action.

    ``applied`` is False when the action degraded to a clarification;
    ``fallback`` marks such degraded outcomes. ``item_id`` names the item the
    action touched, when it touched one.
    """

    itinerary: StructuredItinerary | None
    preferences: list[PreferenceTag]
    message: str
    action: Action
    applied: bool = True
    fallback: bool = False
    item_id: str | None = None
    item_status: ItemStatus | None = None
    error: CompassError | None = None


# Item location


@dataclass
class ItemLocation:
    """Where an item lives inside a document."""

    kind: ItemKind
    item: ScheduleActivity | ChecklistItem | MapPin
    day: DaySchedule | None = None
    period: DayPeriod | None = None
    category: ChecklistCategory | None = None

    def container(self, itinerary: StructuredItinerary) -> list[Any]:
        if self.kind == ItemKind.activity:
            assert self.day is not None and self.period is not None
            return self.day.bucket(self.period)
        if self.kind == ItemKind.checklist_item:
            assert self.category is not None
            return self.category.items
        return itinerary.map_pins


def locate_item(itinerary: StructuredItinerary, item_id: str) -> ItemLocation:
    """Find an item by id across schedule, checklist and map.

    Raises:
        ItemNotFoundError: No item has this id
    """
    for day in itinerary.schedule:
        for period, activity in day.activities():
            if activity.id == item_id:
                return ItemLocation(ItemKind.activity, activity, day=day, period=period)
    for category in itinerary.checklist:
        for item in category.items:
            if item.id == item_id:
                return ItemLocation(ItemKind.checklist_item, item, category=category)
    for pin in itinerary.map_pins:
        if pin.id == item_id:
            return ItemLocation(ItemKind.map_pin, pin)
    raise ItemNotFoundError(item_id)


def _replace(container: list[Any], old: Any, new: Any) -> None:
    container[next(i for i, x in enumerate(container) if x is old)] = new


# Lifecycle transitions (explicit, headless; the scheduler drives timing)


def set_item_status(
    itinerary: StructuredItinerary, item_id: str, status: ItemStatus
) -> StructuredItinerary:
    """Return a copy with one item's status changed.

    Raises:
        ItemNotFoundError: No item has this id
    """
    doc = itinerary.model_copy(deep=True)
    location = locate_item(doc, item_id)
    location.item.status = status
    return doc


def confirm_item(itinerary: StructuredItinerary, item_id: str) -> StructuredItinerary:
    """Promote a suggested item to confirmed (also cancels a pending removal)."""
    return set_item_status(itinerary, item_id, ItemStatus.confirmed)


def mark_for_removal(itinerary: StructuredItinerary, item_id: str) -> StructuredItinerary:
    return set_item_status(itinerary, item_id, ItemStatus.pending_removal)


def remove_item(itinerary: StructuredItinerary, item_id: str) -> StructuredItinerary:
    """Delete an item outright. Emptied days stay so numbering remains contiguous."""
    doc = itinerary.model_copy(deep=True)
    location = locate_item(doc, item_id)
    location.container(doc).remove(location.item)
    return doc


def finalize_removal(itinerary: StructuredItinerary, item_id: str) -> StructuredItinerary:
    """Delete an item previously marked for removal.

    Raises:
        ItemNotFoundError: No item has this id
        ItineraryValidationError: The item is not pending removal
    """
    location = locate_item(itinerary, item_id)
    if location.item.status != ItemStatus.pending_removal:
        raise ItineraryValidationError(
            f"Item '{item_id}' is {location.item.status.value}, not pending removal",
            field="status",
        )
    return remove_item(itinerary, item_id)


# Field merging for UPDATE_ITEM

_ACTIVITY_KEYS = {
    "title": "title",
    "activity": "title",
    "name": "title",
    "description": "description",
    "location": "location",
    "estimatedCost": "estimated_cost",
    "estimated_cost": "estimated_cost",
    "cost": "estimated_cost",
}
_CHECKLIST_KEYS = {"task": "task", "title": "task", "notes": "notes", "priority": "priority"}
_PIN_KEYS = {
    "name": "name",
    "title": "name",
    "address": "address",
    "type": "type",
    "description": "description",
}
_UPDATABLE_KEYS: dict[ItemKind, set[str]] = {
    ItemKind.activity: {*_ACTIVITY_KEYS, "time", "coordinates", "lat", "lng", "day"},
    ItemKind.checklist_item: {*_CHECKLIST_KEYS, "completed"},
    ItemKind.map_pin: {*_PIN_KEYS, "coordinates", "lat", "lng", "day"},
}


def _mapped(changes: dict[str, Any], key_map: dict[str, str]) -> dict[str, Any]:
    mapped = {}
    for key, value in changes.items():
        if key not in key_map or value is None:
            continue
        # All mapped fields are strings; models send costs as bare numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        mapped[key_map[key]] = value
    return mapped


def _update_activity(
    doc: StructuredItinerary, location: ItemLocation, changes: dict[str, Any], today: date
) -> None:
    assert location.day is not None and location.period is not None
    fields = location.item.model_dump()
    fields.update(_mapped(changes, _ACTIVITY_KEYS))

    if "time" in changes:
        time = normalize_time(changes["time"])
        if time is None:
            raise ItineraryValidationError(f"Unrecognised time {changes['time']!r}", field="time")
        fields["time"] = time
    if any(key in changes for key in ("coordinates", "lat", "lng")):
        coords = parse_coordinates(changes.get("coordinates"), changes.get("lat"), changes.get("lng"))
        fields["coordinates"] = coords.model_dump() if coords else None

    updated = ScheduleActivity.model_validate(fields)
    target_day = location.day
    if "day" in changes:
        day_number = parse_int(changes["day"])
        if day_number is None or day_number < 1:
            raise ItineraryValidationError(f"Invalid day {changes['day']!r}", field="day")
        target_day = _get_or_create_day(doc, day_number, today)

    target_period = period_for_time(updated.time)
    if target_day is location.day and target_period == location.period:
        _replace(location.day.bucket(location.period), location.item, updated)
    else:
        location.day.bucket(location.period).remove(location.item)
        target_day.bucket(target_period).append(updated)


def _update_checklist_item(location: ItemLocation, changes: dict[str, Any]) -> None:
    assert location.category is not None
    fields = location.item.model_dump()
    fields.update(_mapped(changes, _CHECKLIST_KEYS))
    if "completed" in changes:
        fields["completed"] = parse_bool(changes["completed"])
    if "priority" in fields and isinstance(fields["priority"], str):
        fields["priority"] = fields["priority"].strip().lower()
    _replace(location.category.items, location.item, ChecklistItem.model_validate(fields))


def _update_pin(doc: StructuredItinerary, location: ItemLocation, changes: dict[str, Any]) -> None:
    fields = location.item.model_dump()
    fields.update(_mapped(changes, _PIN_KEYS))
    if isinstance(fields.get("type"), str):
        fields["type"] = fields["type"].strip().lower()
    if any(key in changes for key in ("coordinates", "lat", "lng")):
        coords = parse_coordinates(changes.get("coordinates"), changes.get("lat"), changes.get("lng"))
        fields["lat"] = coords.lat if coords else None
        fields["lng"] = coords.lng if coords else None
    if "day" in changes:
        fields["day"] = parse_int(changes["day"])
    _replace(doc.map_pins, location.item, MapPin.model_validate(fields))


def _get_or_create_day(doc: StructuredItinerary, day_number: int, today: date, raw_date: Any = None) -> DaySchedule:
    existing = doc.find_day(day_number)
    if existing is not None:
        return existing
    new_day = DaySchedule(day=day_number, date=parse_date(raw_date, today))
    doc.schedule.append(new_day)
    doc.schedule.sort(key=lambda d: d.day)
    return new_day


class ActionInterpreter:
    """Applies Actions to (itinerary, preferences) pairs."""

    def __init__(self, today_fn: Callable[[], date] | None = None) -> None:
        self._today = today_fn or date.today

    def apply(
        self,
        itinerary: StructuredItinerary | None,
        preferences: Sequence[PreferenceTag],
        action: Action,
        *,
        immediate_removal: bool = False,
    ) -> ActionOutcome:
        """Apply one action.

        Args:
            itinerary: Current document, or None when Empty
            preferences: Current preference tags
            action: Parsed action envelope
            immediate_removal: Delete on REMOVE_ITEM instead of marking pending

        Returns:
            ActionOutcome; never raises for malformed payloads or unknown ids
        """
        prefs = [tag.model_copy() for tag in preferences]
        try:
            payload = resolve_payload(action)
            outcome = self._dispatch(itinerary, prefs, action, payload, immediate_removal)
        except ItemNotFoundError as e:
            logger.info(f"{action.action.value} referenced unknown item: {e.item_id}")
            outcome = self._fallback(itinerary, prefs, action, NOT_FOUND_MESSAGE, e)
        except (ItineraryValidationError, ValidationError) as e:
            logger.warning(f"Malformed {action.action.value} payload: {e}")
            error = e if isinstance(e, CompassError) else ItineraryValidationError(str(e))
            outcome = self._fallback(itinerary, prefs, action, MALFORMED_MESSAGE, error)

        record_action(action.action.value, "fallback" if outcome.fallback else "applied")
        return outcome

    def _fallback(
        self,
        itinerary: StructuredItinerary | None,
        prefs: list[PreferenceTag],
        action: Action,
        message: str,
        error: CompassError | None = None,
    ) -> ActionOutcome:
        return ActionOutcome(
            itinerary=itinerary.model_copy(deep=True) if itinerary else None,
            preferences=prefs,
            message=message,
            action=action,
            applied=False,
            fallback=True,
            error=error,
        )

    def _dispatch(
        self,
        itinerary: StructuredItinerary | None,
        prefs: list[PreferenceTag],
        action: Action,
        payload: Any,
        immediate_removal: bool,
    ) -> ActionOutcome:
        kind = action.action
        message = action.conversational_text

        if kind == ActionType.REQUEST_CLARIFICATION:
            if action.clarification_prompt and action.clarification_prompt not in message:
                message = f"{message}\n\n{action.clarification_prompt}"
            return ActionOutcome(
                itinerary=itinerary.model_copy(deep=True) if itinerary else None,
                preferences=prefs,
                message=message,
                action=action,
            )

        if kind == ActionType.GENERATE_ITINERARY:
            if not action.itinerary_data:
                raise ItineraryValidationError(
                    "GENERATE_ITINERARY requires itinerary_data", field="itinerary_data"
                )
            doc = validate_itinerary(action.itinerary_data, today=self._today())
            return ActionOutcome(itinerary=doc, preferences=prefs, message=message, action=action)

        if isinstance(payload, PreferenceData):
            if kind == ActionType.REMOVE_PREFERENCE:
                prefs = self._remove_preferences(prefs, payload)
            else:
                prefs = self._add_preferences(prefs, payload)
            return ActionOutcome(
                itinerary=itinerary.model_copy(deep=True) if itinerary else None,
                preferences=prefs,
                message=message,
                action=action,
            )

        if itinerary is None:
            return self._fallback(None, prefs, action, NO_ITINERARY_MESSAGE)

        doc = itinerary.model_copy(deep=True)
        item_id: str | None = None
        status: ItemStatus | None = None

        if kind == ActionType.ADD_ITEM:
            item_id = self._add_item(doc, payload)
            status = ItemStatus.suggested
        elif isinstance(payload, ItemUpdateData):
            self._update_item(doc, payload)
            item_id = payload.id
        elif isinstance(payload, ItemRemovalData):
            if immediate_removal:
                doc = remove_item(doc, payload.id)
            else:
                doc = mark_for_removal(doc, payload.id)
                status = ItemStatus.pending_removal
            item_id = payload.id
        elif isinstance(payload, MetadataUpdateData):
            doc = self._update_metadata(doc, payload)

        return ActionOutcome(
            itinerary=doc,
            preferences=prefs,
            message=message,
            action=action,
            item_id=item_id,
            item_status=status,
        )

    # ADD_ITEM

    def _add_item(self, doc: StructuredItinerary, payload: Any) -> str:
        taken = collect_ids(doc)
        if isinstance(payload, ScheduleItemData):
            return self._add_activity(doc, payload, taken)
        if isinstance(payload, ChecklistItemData):
            return self._add_checklist_item(doc, payload, taken)
        if isinstance(payload, MapPinData):
            return self._add_pin(doc, payload, taken)
        raise ItineraryValidationError("ADD_ITEM payload not supported for this view", field="target_view")

    def _add_activity(self, doc: StructuredItinerary, data: ScheduleItemData, taken: set[str]) -> str:
        time = normalize_time(data.time) if data.time else DEFAULT_TIME
        if time is None:
            raise ItineraryValidationError(f"Unrecognised time {data.time!r}", field="time")
        period = period_for_time(time)
        day = _get_or_create_day(doc, data.day, self._today(), data.date)
        bucket = day.bucket(period)
        item_id = next_free_id(activity_prefix(data.day, period), taken, len(bucket) + 1)
        bucket.append(
            ScheduleActivity(
                id=item_id,
                time=time,
                title=data.title,
                description=data.description or data.title,
                location=data.location,
                coordinates=parse_coordinates(data.coordinates, data.lat, data.lng),
                estimated_cost=data.estimated_cost,
                status=ItemStatus.suggested,
            )
        )
        logger.info(f"Added activity {item_id} to day {data.day} {period.value}")
        return item_id

    def _add_checklist_item(
        self, doc: StructuredItinerary, data: ChecklistItemData, taken: set[str]
    ) -> str:
        name = data.category.strip() or DEFAULT_CATEGORY
        index = next(
            (i for i, c in enumerate(doc.checklist) if c.category.lower() == name.lower()), None
        )
        if index is None:
            doc.checklist.append(ChecklistCategory(category=name))
            index = len(doc.checklist) - 1
        category = doc.checklist[index]
        item_id = next_free_id(checklist_prefix(index + 1), taken, len(category.items) + 1)
        category.items.append(
            ChecklistItem(
                id=item_id,
                task=data.task,
                completed=data.completed,
                priority=data.priority,
                notes=data.notes,
                status=ItemStatus.suggested,
            )
        )
        return item_id

    def _add_pin(self, doc: StructuredItinerary, data: MapPinData, taken: set[str]) -> str:
        item_id = next_free_id(PIN_PREFIX, taken, len(doc.map_pins) + 1)
        coords = parse_coordinates(None, data.lat, data.lng)
        doc.map_pins.append(
            MapPin(
                id=item_id,
                name=data.name,
                address=data.address,
                lat=coords.lat if coords else None,
                lng=coords.lng if coords else None,
                type=data.type,
                day=data.day,
                description=data.description,
                status=ItemStatus.suggested,
            )
        )
        return item_id

    # UPDATE_ITEM / UPDATE_METADATA

    def _update_item(self, doc: StructuredItinerary, data: ItemUpdateData) -> None:
        changes = data.changes()
        if not changes:
            raise ItineraryValidationError("UPDATE_ITEM carries no fields to change", field="item_data")
        location = locate_item(doc, data.id)
        known = _UPDATABLE_KEYS[location.kind]
        if not any(key in known and value is not None for key, value in changes.items()):
            raise ItineraryValidationError(
                f"UPDATE_ITEM has no recognised fields for {location.kind.value}: {sorted(changes)}",
                field="item_data",
            )
        if location.kind == ItemKind.activity:
            _update_activity(doc, location, changes, self._today())
        elif location.kind == ItemKind.checklist_item:
            _update_checklist_item(location, changes)
        else:
            _update_pin(doc, location, changes)

    def _update_metadata(self, doc: StructuredItinerary, data: MetadataUpdateData) -> StructuredItinerary:
        updates: dict[str, Any] = {}
        for key, value in data.scalar_updates().items():
            if key == "number_of_travelers":
                travelers = parse_int(value)
                if travelers is None:
                    raise ItineraryValidationError(
                        "numberOfTravelers must be an integer", field="numberOfTravelers"
                    )
                updates[key] = max(travelers, 1)
            elif isinstance(value, str) and value.strip():
                updates[key] = value.strip()
        if not updates:
            raise ItineraryValidationError(
                "UPDATE_METADATA carries no usable fields", field="item_data"
            )
        # Scalars only: nested arrays are never replaced by a metadata update
        return StructuredItinerary.model_validate({**doc.model_dump(), **updates})

    # Preferences

    def _add_preferences(self, prefs: list[PreferenceTag], data: PreferenceData) -> list[PreferenceTag]:
        category = PreferenceCategory.general
        if data.category and data.category.strip().lower() in PreferenceCategory.__members__:
            category = PreferenceCategory(data.category.strip().lower())
        labels = {tag.label.lower() for tag in prefs}
        taken = {tag.id for tag in prefs}
        for label in data.tags:
            if label.lower() in labels:
                continue
            tag_id = next_free_id(PREFERENCE_PREFIX, taken, len(prefs) + 1)
            taken.add(tag_id)
            labels.add(label.lower())
            prefs.append(PreferenceTag(id=tag_id, label=label, category=category))
        return prefs

    def _remove_preferences(
        self, prefs: list[PreferenceTag], data: PreferenceData
    ) -> list[PreferenceTag]:
        targets = {tag.lower() for tag in data.tags}
        return [
            tag
            for tag in prefs
            if not (tag.removable and (tag.label.lower() in targets or tag.id.lower() in targets))
        ]

