"""Per-session turn handling.

Every mutation of a session's document goes through SessionManager, which
holds one asyncio.Lock per session id so concurrent turns (a double-submit)
are applied one after another instead of overwriting each other.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass

from compass.app.config import Settings, get_settings
from compass.app.db.repositories import SessionStore
from compass.app.errors import LLMError, QuotaExceededError, SessionNotFoundError
from compass.app.llm.client import ACTION, GATHERING
from compass.app.llm.executor import CancelToken, LLMCallContext, LLMCallExecutor, RetryPolicy
from compass.app.llm.prompts import build_action_prompt, build_gathering_prompt
from compass.app.models.actions import Action
from compass.app.models.itinerary import StructuredItinerary
from compass.app.models.session import ChatSender, ChatTurn, PlanningSession
from compass.app.orchestration.converter import ConversionResult, ItineraryConverter
from compass.app.orchestration.interpreter import (
    ActionInterpreter,
    confirm_item,
    finalize_removal,
    parse_action,
)
from compass.app.orchestration.scheduler import StatusScheduler

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = (
    "I'm having trouble reaching the planning service right now. "
    "Please try sending that again in a moment."
)


@dataclass
class TurnResult:
    """What a caller shows after one conversational turn."""

    session: PlanningSession
    message: str
    action: Action | None = None
    applied: bool = False
    fallback: bool = False
    quota_exceeded: bool = False


class SessionManager:
    """Serialises turns per session and persists the results."""

    def __init__(
        self,
        store: SessionStore,
        executor: LLMCallExecutor,
        converter: ItineraryConverter | None = None,
        interpreter: ActionInterpreter | None = None,
        scheduler: StatusScheduler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._executor = executor
        self._converter = converter or ItineraryConverter(executor, self._settings)
        self._interpreter = interpreter or ActionInterpreter()
        self._scheduler = scheduler or StatusScheduler(
            suggested_grace_seconds=self._settings.suggested_grace_seconds,
            removal_grace_seconds=self._settings.removal_grace_seconds,
        )
        # Entries vanish once no turn holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def scheduler(self) -> StatusScheduler:
        return self._scheduler

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _policy(self) -> RetryPolicy:
        # Conversational turns are not retried; the user can resend
        return RetryPolicy(timeout_seconds=self._settings.llm_timeout_seconds)

    async def _load_or_new(self, session_id: str) -> PlanningSession:
        session = await self._store.load(session_id)
        if session is None:
            session = PlanningSession(session_id=session_id)
        return self._scheduler.advance(session)

    async def _require(self, session_id: str) -> PlanningSession:
        session = await self._store.load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return self._scheduler.advance(session)

    async def get_session(self, session_id: str) -> PlanningSession:
        """Load a session with due lifecycle transitions applied.

        Raises:
            SessionNotFoundError: Unknown session id
        """
        async with self._lock(session_id):
            session = await self._require(session_id)
            await self._store.save(session)
            return session

    async def handle_turn(
        self,
        session_id: str,
        message: str,
        *,
        immediate_removal: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> TurnResult:
        """Run one action turn: prompt, model, parse, apply, save.

        Gateway failures never mutate the document; quota exhaustion returns
        the temporary-unavailability message with ``quota_exceeded`` set.
        """
        async with self._lock(session_id):
            session = await self._load_or_new(session_id)
            prompt = build_action_prompt(
                session.itinerary, message, session.recent_turns(), session.preferences
            )

            result: TurnResult
            try:
                raw = await self._executor.generate(
                    LLMCallContext(task="action", session_id=session_id),
                    prompt,
                    ACTION,
                    self._policy(),
                    cancel_token,
                )
            except QuotaExceededError as e:
                logger.warning(f"Quota exhausted during turn for session {session_id}")
                result = TurnResult(session, e.user_message, quota_exceeded=True, fallback=True)
            except LLMError as e:
                logger.error(f"Model call failed during turn for session {session_id}: {e}")
                result = TurnResult(session, UNAVAILABLE_MESSAGE, fallback=True)
            else:
                action = parse_action(raw, self._settings.fallback_text_chars)
                outcome = self._interpreter.apply(
                    session.itinerary,
                    session.preferences,
                    action,
                    immediate_removal=immediate_removal,
                )
                session = session.model_copy(
                    update={"itinerary": outcome.itinerary, "preferences": outcome.preferences}
                )
                if outcome.item_id and outcome.item_status:
                    self._scheduler.track(session_id, outcome.item_id, outcome.item_status)
                result = TurnResult(
                    session,
                    outcome.message,
                    action=action,
                    applied=outcome.applied,
                    fallback=outcome.fallback,
                )

            session.transcript.extend(
                [
                    ChatTurn(sender=ChatSender.user, content=message),
                    ChatTurn(sender=ChatSender.assistant, content=result.message),
                ]
            )
            await self._store.save(session)
            result.session = session
            return result

    async def gather(self, session_id: str, message: str) -> TurnResult:
        """Requirement-gathering prose turn; never touches the itinerary."""
        async with self._lock(session_id):
            session = await self._load_or_new(session_id)
            prompt = build_gathering_prompt(message, session.recent_turns())
            try:
                reply = await self._executor.generate(
                    LLMCallContext(task="gather", session_id=session_id),
                    prompt,
                    GATHERING,
                    self._policy(),
                )
                result = TurnResult(session, reply.strip(), applied=True)
            except QuotaExceededError as e:
                result = TurnResult(session, e.user_message, quota_exceeded=True, fallback=True)
            except LLMError as e:
                logger.error(f"Model call failed during gathering for session {session_id}: {e}")
                result = TurnResult(session, UNAVAILABLE_MESSAGE, fallback=True)

            session.transcript.extend(
                [
                    ChatTurn(sender=ChatSender.user, content=message),
                    ChatTurn(sender=ChatSender.assistant, content=result.message),
                ]
            )
            await self._store.save(session)
            return result

    async def convert_for_session(
        self, session_id: str, text: str, cancel_token: CancelToken | None = None
    ) -> ConversionResult:
        """Convert text and commit it as the session's document.

        The conversion runs outside the session lock; only a fully merged
        result is committed. Errors propagate and leave the session untouched.
        """
        result = await self._converter.convert(text, cancel_token, session_id=session_id)
        if cancel_token is not None:
            cancel_token.throw_if_cancelled()

        async with self._lock(session_id):
            session = await self._load_or_new(session_id)
            session = session.model_copy(update={"itinerary": result.itinerary})
            self._scheduler.forget(session_id)
            await self._store.save(session)
        logger.info(f"Committed {result.mode.value} conversion to session {session_id}")
        return result

    async def confirm_item(self, session_id: str, item_id: str) -> StructuredItinerary:
        """Explicitly confirm a suggested item.

        Raises:
            SessionNotFoundError: Unknown session or session without itinerary
            ItemNotFoundError: Unknown item id
        """
        async with self._lock(session_id):
            session = await self._require(session_id)
            if session.itinerary is None:
                raise SessionNotFoundError(session_id)
            itinerary = confirm_item(session.itinerary, item_id)
            self._scheduler.forget(session_id, item_id)
            await self._store.save(session.model_copy(update={"itinerary": itinerary}))
            return itinerary

    async def finalize_removal(self, session_id: str, item_id: str) -> StructuredItinerary:
        """Explicitly delete an item pending removal."""
        async with self._lock(session_id):
            session = await self._require(session_id)
            if session.itinerary is None:
                raise SessionNotFoundError(session_id)
            itinerary = finalize_removal(session.itinerary, item_id)
            self._scheduler.forget(session_id, item_id)
            await self._store.save(session.model_copy(update={"itinerary": itinerary}))
            return itinerary

    async def delete(self, session_id: str) -> bool:
        async with self._lock(session_id):
            self._scheduler.forget(session_id)
            return await self._store.delete(session_id)
