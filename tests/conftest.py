"""Shared pytest fixtures for all test suites."""

import copy
from datetime import date
from typing import Any

import pytest

from compass.app.config import Settings
from compass.app.llm.client import ScriptedGateway
from compass.app.llm.executor import LLMCallExecutor
from compass.app.models.itinerary import StructuredItinerary
from compass.app.validation.normalizer import validate_itinerary

TODAY = date(2025, 3, 1)

RAW_ITINERARY: dict[str, Any] = {
    "tripTitle": "Paris Weekend",
    "summary": "Two days of museums and food",
    "destination": "Paris, France",
    "duration": "2 days",
    "numberOfTravelers": 2,
    "schedule": [
        {
            "day": 1,
            "date": "2025-03-15",
            "time": "09:00",
            "activity": "Eiffel Tower",
            "description": "Morning visit to the summit",
            "location": "Champ de Mars",
            "coordinates": {"lat": 48.8584, "lng": 2.2945},
            "estimatedCost": "€26",
        },
        {
            "day": 1,
            "date": "2025-03-15",
            "time": "19:30",
            "activity": "Seine dinner cruise",
            "description": "Dinner on the river",
        },
        {
            "day": 2,
            "date": "2025-03-16",
            "time": "10:00",
            "activity": "Louvre",
            "description": "Museum visit",
        },
    ],
    "checklist": [
        {"category": "Documents", "items": [{"task": "Passport", "priority": "high"}]},
        {"category": "Packing", "items": ["Walking shoes"]},
    ],
    "mapPins": [
        {
            "name": "Eiffel Tower",
            "address": "Champ de Mars, Paris",
            "lat": 48.8584,
            "lng": 2.2945,
            "type": "attraction",
            "day": 1,
        }
    ],
}


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        llm_provider="stub",
        gemini_api_key=None,
        openai_api_key=None,
        llm_timeout_seconds=5.0,
        single_shot_max_retries=2,
        retry_backoff_base_seconds=1.0,
        single_shot_max_chars=6000,
        max_weeks=12,
        session_backend="memory",
    )


@pytest.fixture
def today() -> date:
    """Fixed date used for schedule entries without one."""
    return TODAY


@pytest.fixture
def raw_itinerary() -> dict[str, Any]:
    """Fresh copy of the sample model output."""
    return copy.deepcopy(RAW_ITINERARY)


@pytest.fixture
def itinerary() -> StructuredItinerary:
    """Canonical two-day Paris itinerary."""
    return validate_itinerary(copy.deepcopy(RAW_ITINERARY), today=TODAY)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def executor(gateway: ScriptedGateway, sleep: RecordingSleep) -> LLMCallExecutor:
    """Executor over the scripted gateway with a non-blocking sleep."""
    return LLMCallExecutor(gateway, sleep_fn=sleep)
