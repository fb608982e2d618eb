"""Unit tests for itinerary validation and normalisation."""

import json
from datetime import date
from typing import Any

import pytest

from compass.app.errors import ItineraryValidationError
from compass.app.models.common import ItemStatus, PinType, Priority
from compass.app.models.itinerary import StructuredItinerary
from compass.app.parsing.json_extract import extract_json_object
from compass.app.validation.normalizer import (
    itinerary_to_json,
    normalize_checklist,
    normalize_map_pins,
    normalize_schedule,
    normalize_time,
    parse_coordinates,
    parse_int,
    validate_fragment,
    validate_itinerary,
)


class TestNormalizeTime:
    """Time strings from model output."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("09:00", "09:00"),
            ("9:00", "09:00"),
            ("9am", "09:00"),
            ("9 AM", "09:00"),
            ("9:30 pm", "21:30"),
            ("12pm", "12:00"),
            ("12am", "00:00"),
            ("14h30", "14:30"),
            ("1400", "14:00"),
            ("9.15", "09:15"),
        ],
    )
    def test_accepted_formats(self, raw: str, expected: str) -> None:
        assert normalize_time(raw) == expected

    @pytest.mark.parametrize("raw", ["25:00", "13pm", "noon-ish", "", None, "10:75"])
    def test_rejected_formats(self, raw: Any) -> None:
        assert normalize_time(raw) is None


class TestScalarParsing:
    """Lenient numeric and coordinate parsing."""

    def test_parse_int_leading_digits(self) -> None:
        assert parse_int("2 people") == 2
        assert parse_int("two") is None
        assert parse_int(True) is None

    def test_coordinates_from_object(self) -> None:
        coords = parse_coordinates({"lat": "48.85", "lng": 2.35})
        assert coords is not None
        assert coords.lat == 48.85
        assert coords.lng == 2.35

    def test_unparsable_coordinates_are_absent_not_zero(self) -> None:
        assert parse_coordinates({"lat": "north", "lng": 2.35}) is None
        assert parse_coordinates(None) is None
        assert parse_coordinates(None, lat="nan", lng="1.0") is None

    def test_out_of_range_coordinates_are_absent(self) -> None:
        assert parse_coordinates({"lat": 91, "lng": 0}) is None
        assert parse_coordinates({"lat": 0, "lng": -181}) is None


class TestValidateItinerary:
    """validate_itinerary on the sample Paris document."""

    def test_canonical_shape(self, raw_itinerary: dict[str, Any], today: date) -> None:
        itinerary = validate_itinerary(raw_itinerary, today=today)

        assert itinerary.title == "Paris Weekend"
        assert itinerary.number_of_travelers == 2
        assert itinerary.day_numbers() == [1, 2]

        day1 = itinerary.schedule[0]
        assert day1.date == date(2025, 3, 15)
        assert [a.id for a in day1.morning] == ["d1-morning-1"]
        assert day1.afternoon == []
        assert [a.id for a in day1.evening] == ["d1-evening-1"]
        assert day1.morning[0].coordinates is not None
        assert day1.morning[0].estimated_cost == "€26"
        assert day1.evening[0].coordinates is None
        assert itinerary.schedule[1].morning[0].id == "d2-morning-1"

    def test_checklist_ids_and_defaults(self, itinerary: StructuredItinerary) -> None:
        documents, packing = itinerary.checklist
        assert documents.items[0].id == "chk-1-1"
        assert documents.items[0].priority == Priority.high
        # Bare string item takes default fields
        shoes = packing.items[0]
        assert shoes.id == "chk-2-1"
        assert shoes.task == "Walking shoes"
        assert shoes.completed is False
        assert shoes.priority == Priority.medium
        assert shoes.status == ItemStatus.confirmed

    def test_map_pins(self, itinerary: StructuredItinerary) -> None:
        pin = itinerary.map_pins[0]
        assert pin.id == "pin_1"
        assert pin.type == PinType.attraction
        assert pin.day == 1

    def test_idempotent(self, itinerary: StructuredItinerary, today: date) -> None:
        again = validate_itinerary(itinerary_to_json(itinerary), today=today)
        assert again == itinerary

    def test_prose_and_fences_yield_same_document(
        self, raw_itinerary: dict[str, Any], today: date
    ) -> None:
        body = json.dumps(raw_itinerary)
        plain = validate_itinerary(extract_json_object(body), today=today)
        wrapped = validate_itinerary(
            extract_json_object(f"Here is your trip!\n```json\n{body}\n```\nHave fun."),
            today=today,
        )
        assert plain == wrapped

    def test_wire_form_uses_camel_case(self, itinerary: StructuredItinerary) -> None:
        wire = itinerary_to_json(itinerary)
        assert "numberOfTravelers" in wire
        assert "mapPins" in wire
        assert wire["schedule"][0]["date"] == "2025-03-15"
        assert "estimatedCost" in wire["schedule"][0]["morning"][0]

    @pytest.mark.parametrize(
        "key,field", [("tripTitle", "tripTitle"), ("destination", "destination"), ("summary", "summary")]
    )
    def test_missing_required_field(
        self, raw_itinerary: dict[str, Any], today: date, key: str, field: str
    ) -> None:
        del raw_itinerary[key]
        with pytest.raises(ItineraryValidationError) as exc_info:
            validate_itinerary(raw_itinerary, today=today)
        assert exc_info.value.field == field

    def test_missing_travelers_is_an_error(
        self, raw_itinerary: dict[str, Any], today: date
    ) -> None:
        del raw_itinerary["numberOfTravelers"]
        with pytest.raises(ItineraryValidationError) as exc_info:
            validate_itinerary(raw_itinerary, today=today)
        assert exc_info.value.field == "numberOfTravelers"

    @pytest.mark.parametrize("raw", [0, -3, "none"])
    def test_invalid_travelers_default_to_one(
        self, raw_itinerary: dict[str, Any], today: date, raw: Any
    ) -> None:
        raw_itinerary["numberOfTravelers"] = raw
        assert validate_itinerary(raw_itinerary, today=today).number_of_travelers == 1

    def test_alternate_spellings(self, today: date) -> None:
        data = {
            "title": "Lisbon",
            "summary": "Trams and tiles",
            "destination": "Lisbon",
            "duration": "1 day",
            "number_of_travelers": "3 adults",
            "daily_schedule": [
                {
                    "day": 1,
                    "activities": [
                        {"time": "8pm", "title": "Fado show", "description": "Alfama"},
                        {"time": "10am", "title": "Tram 28", "description": "Ride"},
                    ],
                }
            ],
            "map_locations": [{"name": "Alfama", "lat": "38.71", "lng": "-9.13"}],
        }
        itinerary = validate_itinerary(data, today=today)

        assert itinerary.number_of_travelers == 3
        day = itinerary.schedule[0]
        assert day.date == today
        assert [a.title for a in day.morning] == ["Tram 28"]
        assert [a.time for a in day.evening] == ["20:00"]
        assert itinerary.map_pins[0].lat == 38.71

    def test_not_an_object(self) -> None:
        with pytest.raises(ItineraryValidationError):
            validate_itinerary(["not", "an", "object"])

    def test_non_increasing_days_after_grouping_are_sorted(self, today: date) -> None:
        rows = [
            {"day": 2, "time": "10:00", "activity": "B"},
            {"day": 1, "time": "10:00", "activity": "A"},
        ]
        schedule = normalize_schedule(rows, today)
        assert [d.day for d in schedule] == [1, 2]


class TestIdAssignment:
    """Deterministic and unique ids."""

    def test_supplied_unique_ids_are_kept(self, today: date) -> None:
        rows = [{"day": 1, "time": "09:00", "activity": "A", "id": "custom-1"}]
        assert normalize_schedule(rows, today)[0].morning[0].id == "custom-1"

    def test_duplicate_ids_are_reissued(self, today: date) -> None:
        rows = [
            {"day": 1, "time": "09:00", "activity": "A", "id": "x"},
            {"day": 1, "time": "10:00", "activity": "B", "id": "x"},
        ]
        morning = normalize_schedule(rows, today)[0].morning
        assert [a.id for a in morning] == ["x", "d1-morning-2"]

    def test_missing_time_defaults_to_morning(self, today: date) -> None:
        schedule = normalize_schedule([{"day": 1, "activity": "Walk"}], today)
        assert schedule[0].morning[0].time == "09:00"

    def test_missing_day_uses_position(self, today: date) -> None:
        rows = [{"time": "09:00", "activity": "A"}, {"time": "09:00", "activity": "B"}]
        assert [d.day for d in normalize_schedule(rows, today)] == [1, 2]


class TestChecklistAndPins:
    """Checklist and pin normalisation."""

    def test_loose_strings_go_to_general(self) -> None:
        categories = normalize_checklist(["Buy adapter", {"task": "Print tickets"}])
        assert len(categories) == 1
        assert categories[0].category == "General"
        assert [i.id for i in categories[0].items] == ["chk-1-1", "chk-1-2"]

    def test_items_without_task_are_dropped(self) -> None:
        categories = normalize_checklist([{"category": "Misc", "items": [{"notes": "?"}, "Ok"]}])
        assert [i.task for i in categories[0].items] == ["Ok"]

    def test_pin_with_bad_coordinates_is_kept_unplaced(self) -> None:
        pins = normalize_map_pins([{"name": "Somewhere", "lat": "??", "lng": 1, "day": 0}])
        assert pins[0].lat is None
        assert pins[0].lng is None
        assert pins[0].day is None

    def test_unknown_pin_type_defaults_to_attraction(self) -> None:
        pins = normalize_map_pins([{"name": "X", "type": "spaceport"}, {"name": "Y", "type": "Restaurant"}])
        assert pins[0].type == PinType.attraction
        assert pins[1].type == PinType.restaurant
        assert [p.id for p in pins] == ["pin_1", "pin_2"]


class TestValidateFragment:
    """Weekly fragments."""

    def test_later_week_needs_no_metadata(self, today: date) -> None:
        fragment = validate_fragment(
            {"schedule": [{"day": 8, "time": "09:00", "activity": "A"}]},
            require_metadata=False,
            today=today,
        )
        assert fragment.title is None
        assert fragment.day_numbers() == [8]

    def test_first_week_requires_metadata(self, today: date) -> None:
        with pytest.raises(ItineraryValidationError):
            validate_fragment({"schedule": []}, require_metadata=True, today=today)
