"""Deterministic item ids.

Ids are derived from position so that validating the same input twice, or the
same JSON with and without surrounding prose, yields identical documents.
"""

from compass.app.models.common import DayPeriod
from compass.app.models.itinerary import (
    ChecklistCategory,
    DaySchedule,
    MapPin,
    StructuredItinerary,
)


def next_free_id(prefix: str, taken: set[str], start: int = 1) -> str:
    """Return ``f"{prefix}{n}"`` for the smallest n >= start not in ``taken``."""
    n = start
    while f"{prefix}{n}" in taken:
        n += 1
    return f"{prefix}{n}"


def activity_prefix(day: int, period: DayPeriod) -> str:
    return f"d{day}-{period.value}-"


def checklist_prefix(category_index: int) -> str:
    return f"chk-{category_index}-"


PIN_PREFIX = "pin_"


def collect_ids(itinerary: StructuredItinerary) -> set[str]:
    """All item ids currently used in a document."""
    ids: set[str] = set()
    for day in itinerary.schedule:
        ids.update(activity.id for _, activity in day.activities())
    for category in itinerary.checklist:
        ids.update(item.id for item in category.items)
    ids.update(pin.id for pin in itinerary.map_pins)
    return ids


def dedupe_schedule_ids(schedule: list[DaySchedule], taken: set[str]) -> None:
    """Re-issue activity ids that collide with ids already in ``taken``."""
    for day in schedule:
        for period in DayPeriod:
            for position, activity in enumerate(day.bucket(period), start=1):
                if activity.id in taken:
                    activity.id = next_free_id(activity_prefix(day.day, period), taken, position)
                taken.add(activity.id)


def dedupe_checklist_ids(checklist: list[ChecklistCategory], taken: set[str]) -> None:
    """Re-issue checklist item ids that collide, numbering by merged position."""
    for category_index, category in enumerate(checklist, start=1):
        for position, item in enumerate(category.items, start=1):
            if item.id in taken:
                item.id = next_free_id(checklist_prefix(category_index), taken, position)
            taken.add(item.id)


def dedupe_pin_ids(pins: list[MapPin], taken: set[str]) -> None:
    """Re-issue map pin ids that collide."""
    for position, pin in enumerate(pins, start=1):
        if pin.id in taken:
            pin.id = next_free_id(PIN_PREFIX, taken, position)
        taken.add(pin.id)
