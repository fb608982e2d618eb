"""Schema validation and normalisation for model-produced itinerary JSON.

Takes parsed-but-untrusted JSON and returns a canonical StructuredItinerary
(or a weekly ItineraryFragment). Pure: no I/O, no clock access beyond the
injectable ``today`` used for missing dates.

Accepted input shapes:
- canonical documents (days with morning/afternoon/evening buckets)
- flat schedule rows, one activity per row, grouped here by day
- ``daily_schedule`` days carrying a single ``activities`` list
- checklist items as objects or bare strings
- ``map_locations`` / ``number_of_travelers`` / ``tripTitle`` spellings
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from pydantic import ValidationError

from compass.app.errors import ItineraryValidationError
from compass.app.models.common import DayPeriod, ItemStatus, PinType, Priority, period_for_time
from compass.app.models.itinerary import (
    ChecklistCategory,
    ChecklistItem,
    Coordinates,
    DaySchedule,
    ItineraryFragment,
    MapPin,
    ScheduleActivity,
    StructuredItinerary,
)
from compass.app.validation.ids import (
    PIN_PREFIX,
    activity_prefix,
    checklist_prefix,
    next_free_id,
)

logger = logging.getLogger(__name__)

DEFAULT_TIME = "09:00"
DEFAULT_CATEGORY = "General"

# (canonical field, accepted input keys)
METADATA_FIELDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("title", ("tripTitle", "title", "trip_title")),
    ("summary", ("summary",)),
    ("destination", ("destination",)),
    ("duration", ("duration",)),
)
TRAVELER_KEYS = ("numberOfTravelers", "number_of_travelers")
SCHEDULE_KEYS = ("schedule", "daily_schedule", "dailySchedule")
PIN_KEYS = ("mapPins", "map_pins", "map_locations", "mapLocations")

_TIME_RE = re.compile(
    r"^\s*(?P<hour>\d{1,2})(?:\s*[:.h]\s*(?P<minute>\d{2}))?\s*(?P<ampm>[ap]\.?\s*m\.?)?\s*$",
    re.IGNORECASE,
)
_COMPACT_TIME_RE = re.compile(r"^\s*(?P<hour>[01]\d|2[0-3])(?P<minute>[0-5]\d)\s*$")


# Scalar coercion helpers


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _text(value: Any) -> str | None:
    """Non-empty string form of a scalar, or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def parse_int(value: Any) -> int | None:
    """Integer parse in the lenient style of parseInt ("2 people" -> 2)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = re.match(r"\s*(-?\d+)", value)
        return int(match.group(1)) if match else None
    return None


def parse_float(value: Any) -> float | None:
    """Float parse; anything unparsable or non-finite is None, never 0."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return result if math.isfinite(result) else None


def parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "done", "completed")
    return bool(value)


def normalize_time(value: Any) -> str | None:
    """Normalise '9am', '9:30 pm', '14h30', '1400' or '14:00' to HH:MM."""
    text = _text(value)
    if text is None:
        return None
    match = _TIME_RE.match(text) or _COMPACT_TIME_RE.match(text)
    if not match:
        return None
    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    ampm = match.groupdict().get("ampm")
    if ampm:
        if hour < 1 or hour > 12:
            return None
        is_pm = ampm.lower().startswith("p")
        hour = hour % 12 + (12 if is_pm else 0)
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def parse_date(value: Any, fallback: date) -> date:
    if isinstance(value, date):
        return value
    text = _text(value)
    if text:
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            logger.debug(f"Unparsable date {text!r}, using {fallback.isoformat()}")
    return fallback


def parse_coordinates(raw: Any, lat: Any = None, lng: Any = None) -> Coordinates | None:
    """Parse coordinates; unparsable or out-of-range values mean absent."""
    if isinstance(raw, dict):
        lat = raw.get("lat", raw.get("latitude"))
        lng = raw.get("lng", raw.get("lon", raw.get("longitude")))
    lat_f, lng_f = parse_float(lat), parse_float(lng)
    if lat_f is None or lng_f is None:
        return None
    if not (-90 <= lat_f <= 90 and -180 <= lng_f <= 180):
        return None
    return Coordinates(lat=lat_f, lng=lng_f)


def _status(value: Any) -> ItemStatus:
    text = _text(value)
    if text and text in ItemStatus.__members__:
        return ItemStatus(text)
    return ItemStatus.confirmed


def _priority(value: Any) -> Priority:
    text = _text(value)
    if text and text.lower() in Priority.__members__:
        return Priority(text.lower())
    return Priority.medium


def _pin_type(value: Any) -> PinType:
    text = _text(value)
    if text and text.lower() in PinType.__members__:
        return PinType(text.lower())
    return PinType.attraction


# Schedule


@dataclass
class _DayBuilder:
    day: int
    date: date
    buckets: dict[DayPeriod, list[dict[str, Any]]] = field(
        default_factory=lambda: {period: [] for period in DayPeriod}
    )


def _is_day_entry(entry: dict[str, Any]) -> bool:
    return any(key in entry for key in ("morning", "afternoon", "evening", "activities"))


def _activity_fields(raw: dict[str, Any]) -> dict[str, Any]:
    title = _text(_first(raw, ("title", "activity", "name"))) or "Activity"
    return {
        "id": _text(raw.get("id")),
        "time": normalize_time(raw.get("time")) or DEFAULT_TIME,
        "title": title,
        "description": _text(raw.get("description")) or title,
        "location": _text(raw.get("location")),
        "coordinates": parse_coordinates(raw.get("coordinates"), raw.get("lat"), raw.get("lng")),
        "estimated_cost": _text(_first(raw, ("estimatedCost", "estimated_cost", "cost"))),
        "status": _status(raw.get("status")),
    }


def normalize_schedule(raw_schedule: Any, today: date) -> list[DaySchedule]:
    """Normalise any accepted schedule shape into sorted DaySchedule entries."""
    if not isinstance(raw_schedule, list):
        return []

    days: dict[int, _DayBuilder] = {}
    for index, entry in enumerate(raw_schedule):
        if not isinstance(entry, dict):
            logger.debug(f"Skipping non-object schedule entry at index {index}")
            continue
        day_number = parse_int(entry.get("day"))
        if day_number is None or day_number < 1:
            day_number = index + 1
        builder = days.get(day_number)
        if builder is None:
            builder = _DayBuilder(day=day_number, date=parse_date(entry.get("date"), today))
            days[day_number] = builder

        if _is_day_entry(entry):
            for period in DayPeriod:
                for raw in entry.get(period.value) or []:
                    if isinstance(raw, dict):
                        builder.buckets[period].append(_activity_fields(raw))
            for raw in entry.get("activities") or []:
                if isinstance(raw, dict):
                    fields = _activity_fields(raw)
                    builder.buckets[period_for_time(fields["time"])].append(fields)
        else:
            fields = _activity_fields(entry)
            builder.buckets[period_for_time(fields["time"])].append(fields)

    taken: set[str] = set()
    schedule: list[DaySchedule] = []
    for day_number in sorted(days):
        builder = days[day_number]
        buckets: dict[str, list[ScheduleActivity]] = {}
        for period in DayPeriod:
            activities = []
            for position, fields in enumerate(builder.buckets[period], start=1):
                item_id = fields.pop("id")
                if not item_id or item_id in taken:
                    item_id = next_free_id(activity_prefix(day_number, period), taken, position)
                taken.add(item_id)
                activities.append(ScheduleActivity(id=item_id, **fields))
            buckets[period.value] = activities
        schedule.append(DaySchedule(day=day_number, date=builder.date, **buckets))
    return schedule


# Checklist

# A raw checklist item is either a bare task string (legacy shape) or an object.
RawChecklistItem = str | dict[str, Any]


def normalize_checklist_item(
    raw: RawChecklistItem, category_index: int, position: int, taken: set[str]
) -> ChecklistItem | None:
    """Normalise one checklist item of either shape."""
    if isinstance(raw, str):
        fields: dict[str, Any] = {"task": raw}
    elif isinstance(raw, dict):
        fields = raw
    else:
        return None

    task = _text(_first(fields, ("task", "title", "name")))
    if task is None:
        logger.debug(f"Dropping checklist item without task: {raw!r}")
        return None

    item_id = _text(fields.get("id"))
    if not item_id or item_id in taken:
        item_id = next_free_id(checklist_prefix(category_index), taken, position)
    taken.add(item_id)
    return ChecklistItem(
        id=item_id,
        task=task,
        completed=parse_bool(fields.get("completed", False)),
        priority=_priority(fields.get("priority")),
        notes=_text(fields.get("notes")),
        status=_status(fields.get("status")),
    )


def normalize_checklist(raw_checklist: Any) -> list[ChecklistCategory]:
    if not isinstance(raw_checklist, list):
        return []

    # Loose items (strings or task objects at the top level) collect under General
    grouped: list[tuple[str, list[RawChecklistItem]]] = []
    loose: list[RawChecklistItem] = []
    for entry in raw_checklist:
        if isinstance(entry, dict) and "items" in entry:
            items = entry.get("items")
            grouped.append(
                (_text(entry.get("category")) or DEFAULT_CATEGORY, items if isinstance(items, list) else [])
            )
        elif isinstance(entry, dict) and "category" in entry and "task" not in entry:
            grouped.append((_text(entry.get("category")) or DEFAULT_CATEGORY, []))
        elif isinstance(entry, (str, dict)):
            loose.append(entry)
    if loose:
        grouped.append((DEFAULT_CATEGORY, loose))

    taken: set[str] = set()
    categories: list[ChecklistCategory] = []
    for category_index, (name, raw_items) in enumerate(grouped, start=1):
        items = []
        for position, raw in enumerate(raw_items, start=1):
            item = normalize_checklist_item(raw, category_index, position, taken)
            if item is not None:
                items.append(item)
        categories.append(ChecklistCategory(category=name, items=items))
    return categories


# Map pins


def normalize_map_pins(raw_pins: Any) -> list[MapPin]:
    if not isinstance(raw_pins, list):
        return []

    taken: set[str] = set()
    pins: list[MapPin] = []
    for index, raw in enumerate(raw_pins):
        if not isinstance(raw, dict):
            continue
        pin_id = _text(raw.get("id"))
        if not pin_id or pin_id in taken:
            pin_id = next_free_id(PIN_PREFIX, taken, index + 1)
        taken.add(pin_id)

        coords = parse_coordinates(raw.get("coordinates"), raw.get("lat"), raw.get("lng"))
        day = parse_int(raw.get("day"))
        pins.append(
            MapPin(
                id=pin_id,
                name=_text(_first(raw, ("name", "title"))) or "Location",
                address=_text(raw.get("address")) or "",
                lat=coords.lat if coords else None,
                lng=coords.lng if coords else None,
                type=_pin_type(raw.get("type")),
                day=day if day is not None and day >= 1 else None,
                description=_text(raw.get("description")),
                status=_status(raw.get("status")),
            )
        )
    return pins


# Metadata


def _metadata(data: dict[str, Any], required: bool) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    for name, keys in METADATA_FIELDS:
        value = _text(_first(data, keys))
        if value is None and required:
            raise ItineraryValidationError(f"Missing required field: {keys[0]}", field=keys[0])
        if value is not None:
            metadata[name] = value

    present = any(key in data for key in TRAVELER_KEYS)
    if not present and required:
        raise ItineraryValidationError(
            "Missing required field: numberOfTravelers", field="numberOfTravelers"
        )
    if present:
        travelers = parse_int(_first(data, TRAVELER_KEYS))
        metadata["number_of_travelers"] = travelers if travelers is not None and travelers >= 1 else 1
    return metadata


def _require_object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ItineraryValidationError(
            f"Itinerary data must be an object, got {type(data).__name__}", field=None
        )
    return data


def validate_itinerary(data: Any, today: date | None = None) -> StructuredItinerary:
    """Validate untrusted JSON into a canonical StructuredItinerary.

    Args:
        data: Parsed JSON value from the model
        today: Date used for schedule entries without one (default: today)

    Returns:
        Canonical StructuredItinerary; validating its own dump returns an
        equal document

    Raises:
        ItineraryValidationError: Required field missing or data unusable
    """
    data = _require_object(data)
    today = today or date.today()
    metadata = _metadata(data, required=True)
    try:
        return StructuredItinerary(
            **metadata,
            schedule=normalize_schedule(_first(data, SCHEDULE_KEYS), today),
            checklist=normalize_checklist(data.get("checklist")),
            map_pins=normalize_map_pins(_first(data, PIN_KEYS)),
        )
    except ValidationError as e:
        raise ItineraryValidationError(
            f"Itinerary failed schema validation: {e.errors()[0].get('msg')}",
            details={
                "errors": e.errors(include_url=False, include_context=False, include_input=False)
            },
        ) from e


def validate_fragment(
    data: Any, require_metadata: bool, today: date | None = None
) -> ItineraryFragment:
    """Validate one week's fragment of a chunked conversion.

    Metadata is enforced only when ``require_metadata`` is set (week 1).
    """
    data = _require_object(data)
    today = today or date.today()
    metadata = _metadata(data, required=require_metadata)
    try:
        return ItineraryFragment(
            **metadata,
            schedule=normalize_schedule(_first(data, SCHEDULE_KEYS), today),
            checklist=normalize_checklist(data.get("checklist")),
            map_pins=normalize_map_pins(_first(data, PIN_KEYS)),
        )
    except ValidationError as e:
        raise ItineraryValidationError(
            f"Fragment failed schema validation: {e.errors()[0].get('msg')}",
            details={
                "errors": e.errors(include_url=False, include_context=False, include_input=False)
            },
        ) from e


def itinerary_to_json(itinerary: StructuredItinerary) -> dict[str, Any]:
    """Wire form (camelCase, ISO dates) of a document."""
    return itinerary.model_dump(mode="json", by_alias=True)
