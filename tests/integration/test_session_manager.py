"""Integration tests for SessionManager over the in-memory store."""

import asyncio
import json
from datetime import date
from typing import Any

import pytest
import pytest_asyncio

from compass.app.config import Settings
from compass.app.db.inmemory import InMemorySessionStore
from compass.app.errors import (
    ConversionAbortedError,
    ItemNotFoundError,
    LLMNetworkError,
    QuotaExceededError,
    SessionNotFoundError,
)
from compass.app.llm.client import ScriptedGateway
from compass.app.llm.executor import LLMCallExecutor
from compass.app.models.common import ItemStatus
from compass.app.models.itinerary import StructuredItinerary
from compass.app.models.session import ChatSender, PlanningSession
from compass.app.orchestration.converter import ItineraryConverter
from compass.app.orchestration.interpreter import ActionInterpreter, locate_item
from compass.app.orchestration.scheduler import ManualClock, StatusScheduler
from compass.app.orchestration.session import UNAVAILABLE_MESSAGE, SessionManager


def _reply(action: str, view: str = "schedule", text: str = "Done!", **kwargs: Any) -> str:
    return json.dumps({"action": action, "target_view": view, "conversational_text": text, **kwargs})


ADD_LUNCH = _reply(
    "ADD_ITEM", text="Added lunch.", item_data={"day": 1, "time": "13:00", "title": "Lunch"}
)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def manager(
    store: InMemorySessionStore,
    executor: LLMCallExecutor,
    settings: Settings,
    clock: ManualClock,
    today: date,
) -> SessionManager:
    return SessionManager(
        store=store,
        executor=executor,
        converter=ItineraryConverter(executor, settings, today_fn=lambda: today),
        interpreter=ActionInterpreter(today_fn=lambda: today),
        scheduler=StatusScheduler(clock=clock, suggested_grace_seconds=3, removal_grace_seconds=1),
        settings=settings,
    )


@pytest_asyncio.fixture
async def seeded(store: InMemorySessionStore, itinerary: StructuredItinerary) -> PlanningSession:
    session = PlanningSession(session_id="s1", itinerary=itinerary)
    await store.save(session)
    return session


class TestHandleTurn:
    """Action turns."""

    @pytest.mark.asyncio
    async def test_add_item_is_applied_and_saved(
        self,
        manager: SessionManager,
        store: InMemorySessionStore,
        gateway: ScriptedGateway,
        seeded: PlanningSession,
    ) -> None:
        gateway.enqueue(ADD_LUNCH)

        result = await manager.handle_turn("s1", "Add lunch on day 1")

        assert result.applied is True
        assert result.message == "Added lunch."
        stored = await store.load("s1")
        assert stored is not None and stored.itinerary is not None
        lunch = stored.itinerary.schedule[0].afternoon[0]
        assert (lunch.id, lunch.status) == ("d1-afternoon-1", ItemStatus.suggested)
        assert [(t.sender, t.content) for t in stored.transcript] == [
            (ChatSender.user, "Add lunch on day 1"),
            (ChatSender.assistant, "Added lunch."),
        ]
        assert '"d1-morning-1"' in gateway.prompts[0]

    @pytest.mark.asyncio
    async def test_quota_leaves_document_unchanged(
        self,
        manager: SessionManager,
        store: InMemorySessionStore,
        gateway: ScriptedGateway,
        seeded: PlanningSession,
    ) -> None:
        gateway.enqueue(QuotaExceededError(QuotaExceededError.user_message), ADD_LUNCH)

        result = await manager.handle_turn("s1", "Add lunch on day 1")

        assert result.quota_exceeded is True
        assert result.message == QuotaExceededError.user_message
        assert gateway.call_count == 1
        stored = await store.load("s1")
        assert stored is not None
        assert stored.itinerary == seeded.itinerary
        assert stored.transcript[-1].content == QuotaExceededError.user_message

    @pytest.mark.asyncio
    async def test_network_failure_degrades_to_message(
        self, manager: SessionManager, gateway: ScriptedGateway, seeded: PlanningSession
    ) -> None:
        gateway.enqueue(LLMNetworkError("down"))

        result = await manager.handle_turn("s1", "Add lunch on day 1")

        assert result.fallback is True
        assert result.quota_exceeded is False
        assert result.message == UNAVAILABLE_MESSAGE
        assert result.session.itinerary == seeded.itinerary

    @pytest.mark.asyncio
    async def test_concurrent_turns_are_serialised(
        self,
        manager: SessionManager,
        store: InMemorySessionStore,
        gateway: ScriptedGateway,
        seeded: PlanningSession,
    ) -> None:
        gateway.enqueue(ADD_LUNCH, ADD_LUNCH)

        await asyncio.gather(
            manager.handle_turn("s1", "Add lunch"),
            manager.handle_turn("s1", "Add lunch"),
        )

        stored = await store.load("s1")
        assert stored is not None and stored.itinerary is not None
        ids = [a.id for a in stored.itinerary.schedule[0].afternoon]
        assert ids == ["d1-afternoon-1", "d1-afternoon-2"]
        assert len(stored.transcript) == 4

    @pytest.mark.asyncio
    async def test_unparseable_reply_becomes_clarification(
        self, manager: SessionManager, gateway: ScriptedGateway, seeded: PlanningSession
    ) -> None:
        gateway.enqueue("Which day did you mean?")

        result = await manager.handle_turn("s1", "Add lunch")

        assert result.message == "Which day did you mean?..."
        assert result.session.itinerary == seeded.itinerary

    @pytest.mark.asyncio
    async def test_new_session_generates_itinerary(
        self,
        manager: SessionManager,
        gateway: ScriptedGateway,
        raw_itinerary: dict[str, Any],
    ) -> None:
        gateway.enqueue(_reply("GENERATE_ITINERARY", itinerary_data=raw_itinerary))

        result = await manager.handle_turn("fresh", "Plan Paris for two")

        assert result.session.itinerary is not None
        assert result.session.itinerary.title == "Paris Weekend"
        assert "No existing itinerary" in gateway.prompts[0]


class TestLifecycle:
    """Lazy lifecycle transitions and explicit confirmation."""

    @pytest.mark.asyncio
    async def test_suggested_item_confirms_after_grace(
        self,
        manager: SessionManager,
        gateway: ScriptedGateway,
        clock: ManualClock,
        seeded: PlanningSession,
    ) -> None:
        gateway.enqueue(ADD_LUNCH)
        await manager.handle_turn("s1", "Add lunch")

        clock.advance(3)
        session = await manager.get_session("s1")

        assert session.itinerary is not None
        assert locate_item(session.itinerary, "d1-afternoon-1").item.status == ItemStatus.confirmed

    @pytest.mark.asyncio
    async def test_removal_finalises_after_grace(
        self,
        manager: SessionManager,
        gateway: ScriptedGateway,
        clock: ManualClock,
        seeded: PlanningSession,
    ) -> None:
        gateway.enqueue(_reply("REMOVE_ITEM", "map", item_data={"id": "pin_1"}))
        result = await manager.handle_turn("s1", "Drop the tower pin")
        assert result.session.itinerary is not None
        assert result.session.itinerary.map_pins[0].status == ItemStatus.pending_removal

        clock.advance(1)
        session = await manager.get_session("s1")

        assert session.itinerary is not None
        assert session.itinerary.map_pins == []

    @pytest.mark.asyncio
    async def test_explicit_confirm_and_finalize(
        self, manager: SessionManager, gateway: ScriptedGateway, seeded: PlanningSession
    ) -> None:
        gateway.enqueue(ADD_LUNCH, _reply("REMOVE_ITEM", item_data={"id": "d1-evening-1"}))
        await manager.handle_turn("s1", "Add lunch")
        await manager.handle_turn("s1", "Skip the cruise")

        confirmed = await manager.confirm_item("s1", "d1-afternoon-1")
        assert locate_item(confirmed, "d1-afternoon-1").item.status == ItemStatus.confirmed
        assert manager.scheduler.pending("s1")[0].item_id == "d1-evening-1"

        finalized = await manager.finalize_removal("s1", "d1-evening-1")
        assert finalized.schedule[0].evening == []
        assert manager.scheduler.pending("s1") == []

    @pytest.mark.asyncio
    async def test_unknown_session_and_item(
        self, manager: SessionManager, seeded: PlanningSession
    ) -> None:
        with pytest.raises(SessionNotFoundError):
            await manager.get_session("missing")
        with pytest.raises(ItemNotFoundError):
            await manager.confirm_item("s1", "nope")

    @pytest.mark.asyncio
    async def test_delete(self, manager: SessionManager, seeded: PlanningSession) -> None:
        assert await manager.delete("s1") is True
        assert await manager.delete("s1") is False
        assert "s1" not in manager._locks

    @pytest.mark.asyncio
    async def test_finished_turns_release_their_lock(
        self, manager: SessionManager, gateway: ScriptedGateway, seeded: PlanningSession
    ) -> None:
        gateway.enqueue(ADD_LUNCH, ADD_LUNCH)

        await asyncio.gather(
            manager.handle_turn("s1", "Add lunch"),
            manager.handle_turn("s1", "Add lunch"),
        )
        await manager.get_session("s1")

        assert len(manager._locks) == 0


class TestGatherAndConvert:
    """Gathering turns and session conversion."""

    @pytest.mark.asyncio
    async def test_gather_never_touches_itinerary(
        self, manager: SessionManager, gateway: ScriptedGateway, seeded: PlanningSession
    ) -> None:
        gateway.enqueue("  What's your budget?  ")

        result = await manager.gather("s1", "We want Paris")

        assert result.message == "What's your budget?"
        assert result.session.itinerary == seeded.itinerary
        assert gateway.prompts[0].endswith("Traveler: We want Paris\nTravel Agent:")

    @pytest.mark.asyncio
    async def test_convert_commits_result(
        self,
        manager: SessionManager,
        store: InMemorySessionStore,
        gateway: ScriptedGateway,
        raw_itinerary: dict[str, Any],
    ) -> None:
        gateway.enqueue(json.dumps(raw_itinerary))

        result = await manager.convert_for_session("s2", "Day 1: Eiffel Tower. Day 2: Louvre.")

        stored = await store.load("s2")
        assert stored is not None
        assert stored.itinerary == result.itinerary

    @pytest.mark.asyncio
    async def test_failed_conversion_leaves_session_untouched(
        self,
        manager: SessionManager,
        store: InMemorySessionStore,
        gateway: ScriptedGateway,
        settings: Settings,
        seeded: PlanningSession,
        executor: LLMCallExecutor,
        today: date,
    ) -> None:
        # Force chunking: week 1 fine, week 2 restarts numbering
        small = settings.model_copy(update={"single_shot_max_chars": 5})
        chunked_manager = SessionManager(
            store=store,
            executor=executor,
            converter=ItineraryConverter(executor, small, today_fn=lambda: today),
            settings=small,
        )
        week = {
            "tripTitle": "T",
            "summary": "S",
            "destination": "D",
            "duration": "2 weeks",
            "numberOfTravelers": 1,
            "schedule": [{"day": 1, "time": "09:00", "activity": "A"}],
        }
        gateway.enqueue("2", json.dumps(week), json.dumps(week))

        with pytest.raises(ConversionAbortedError):
            await chunked_manager.convert_for_session("s1", "A long itinerary text")

        stored = await store.load("s1")
        assert stored is not None
        assert stored.itinerary == seeded.itinerary
