"""Itinerary models - the canonical structured document and its weekly fragments."""

from collections.abc import Iterator
from datetime import date

from pydantic import Field, model_validator

from compass.app.models.common import CamelModel, DayPeriod, ItemStatus, PinType, Priority

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class Coordinates(CamelModel):
    """Geographic coordinates (WGS84)."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class ScheduleActivity(CamelModel):
    """Single activity inside a day bucket."""

    id: str
    time: str = Field(..., pattern=TIME_PATTERN)
    title: str
    description: str
    location: str | None = None
    coordinates: Coordinates | None = None
    estimated_cost: str | None = None
    status: ItemStatus = ItemStatus.confirmed


class DaySchedule(CamelModel):
    """Schedule for a single day, split into morning/afternoon/evening."""

    day: int = Field(..., ge=1)
    date: date
    morning: list[ScheduleActivity] = Field(default_factory=list)
    afternoon: list[ScheduleActivity] = Field(default_factory=list)
    evening: list[ScheduleActivity] = Field(default_factory=list)

    def bucket(self, period: DayPeriod) -> list[ScheduleActivity]:
        """Return the mutable list for a period."""
        return getattr(self, period.value)

    def activities(self) -> Iterator[tuple[DayPeriod, ScheduleActivity]]:
        """Iterate activities in bucket order."""
        for period in DayPeriod:
            for activity in self.bucket(period):
                yield period, activity

    def activity_count(self) -> int:
        return len(self.morning) + len(self.afternoon) + len(self.evening)


class ChecklistItem(CamelModel):
    """Single checklist task."""

    id: str
    task: str
    completed: bool = False
    priority: Priority = Priority.medium
    notes: str | None = None
    status: ItemStatus = ItemStatus.confirmed


class ChecklistCategory(CamelModel):
    """Named group of checklist items."""

    category: str
    items: list[ChecklistItem] = Field(default_factory=list)


class MapPin(CamelModel):
    """Location pinned on the map view.

    Coordinates are optional: a pin whose coordinates could not be parsed is
    kept but left unplaced rather than faked at (0, 0).
    """

    id: str
    name: str
    address: str = ""
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    type: PinType = PinType.attraction
    day: int | None = Field(default=None, ge=1)
    description: str | None = None
    status: ItemStatus = ItemStatus.confirmed


class ItineraryFragment(CamelModel):
    """One week's worth of extracted itinerary.

    Metadata is only present on the first week of a chunked conversion.
    """

    title: str | None = None
    summary: str | None = None
    destination: str | None = None
    duration: str | None = None
    number_of_travelers: int | None = Field(default=None, ge=1)
    schedule: list[DaySchedule] = Field(default_factory=list)
    checklist: list[ChecklistCategory] = Field(default_factory=list)
    map_pins: list[MapPin] = Field(default_factory=list)

    def day_numbers(self) -> list[int]:
        return [day.day for day in self.schedule]


class StructuredItinerary(CamelModel):
    """Canonical validated trip document."""

    title: str
    summary: str
    destination: str
    duration: str
    number_of_travelers: int = Field(default=1, ge=1)
    schedule: list[DaySchedule] = Field(default_factory=list)
    checklist: list[ChecklistCategory] = Field(default_factory=list)
    map_pins: list[MapPin] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "StructuredItinerary":
        """Ensure day numbers are strictly increasing and pin ids unique."""
        days = [day.day for day in self.schedule]
        for prev, curr in zip(days, days[1:]):
            if curr <= prev:
                raise ValueError(f"Schedule days must be strictly increasing, got {days}")

        pin_ids = [pin.id for pin in self.map_pins]
        if len(pin_ids) != len(set(pin_ids)):
            raise ValueError("Map pin ids must be unique")
        return self

    def find_day(self, day: int) -> DaySchedule | None:
        for entry in self.schedule:
            if entry.day == day:
                return entry
        return None

    def day_numbers(self) -> list[int]:
        return [day.day for day in self.schedule]
