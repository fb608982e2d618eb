"""Common types and enums shared across all models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys (the wire shape the UI consumes)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DayPeriod(str, Enum):
    """Time-of-day bucket within a DaySchedule."""

    morning = "morning"
    afternoon = "afternoon"
    evening = "evening"


class Priority(str, Enum):
    """Checklist item priority."""

    low = "low"
    medium = "medium"
    high = "high"


class PinType(str, Enum):
    """Map pin category."""

    accommodation = "accommodation"
    restaurant = "restaurant"
    attraction = "attraction"
    transport = "transport"
    activity = "activity"


class ItemStatus(str, Enum):
    """Lifecycle status of an editable itinerary item."""

    confirmed = "confirmed"
    suggested = "suggested"
    pending_removal = "pending_removal"


class ItemKind(str, Enum):
    """Kind of editable item, used when locating items by id."""

    activity = "activity"
    checklist_item = "checklist_item"
    map_pin = "map_pin"


def period_for_time(hhmm: str) -> DayPeriod:
    """Map an HH:MM time onto its bucket.

    Before 12:00 is morning, 12:00-17:59 afternoon, 18:00 onwards evening.
    """
    hour = int(hhmm.split(":", 1)[0])
    if hour < 12:
        return DayPeriod.morning
    if hour < 18:
        return DayPeriod.afternoon
    return DayPeriod.evening
