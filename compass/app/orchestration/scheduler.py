"""Deadline bookkeeping for item lifecycle transitions.

Suggested items are confirmed, and pending removals finalised, once their
grace period has passed. There are no background timers: deadlines are
recorded when an action lands and applied when ``advance`` is called with the
current time, so tests drive time through a ManualClock.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from compass.app.errors import ItemNotFoundError
from compass.app.models.common import ItemStatus
from compass.app.models.session import PlanningSession
from compass.app.orchestration.interpreter import confirm_item, finalize_removal, locate_item

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Time source in seconds."""

    def now(self) -> float:
        ...


class MonotonicClock:
    """Wall-independent clock for production use."""

    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock advanced explicitly (for tests)."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


class Transition(str, Enum):
    """Deferred lifecycle transition."""

    confirm = "confirm"
    finalize_removal = "finalize_removal"


@dataclass(frozen=True)
class PendingTransition:
    item_id: str
    transition: Transition
    due_at: float


class StatusScheduler:
    """Tracks per-session transition deadlines."""

    def __init__(
        self,
        clock: Clock | None = None,
        suggested_grace_seconds: float = 3.0,
        removal_grace_seconds: float = 1.0,
    ) -> None:
        self.clock = clock or MonotonicClock()
        self._suggested_grace = suggested_grace_seconds
        self._removal_grace = removal_grace_seconds
        self._pending: dict[str, dict[str, PendingTransition]] = {}

    def track(self, session_id: str, item_id: str, status: ItemStatus) -> None:
        """Record the deadline for an item that just entered a transient status."""
        now = self.clock.now()
        if status == ItemStatus.suggested:
            pending = PendingTransition(item_id, Transition.confirm, now + self._suggested_grace)
        elif status == ItemStatus.pending_removal:
            pending = PendingTransition(
                item_id, Transition.finalize_removal, now + self._removal_grace
            )
        else:
            self.forget(session_id, item_id)
            return
        self._pending.setdefault(session_id, {})[item_id] = pending

    def forget(self, session_id: str, item_id: str | None = None) -> None:
        """Drop one item's deadline, or all of a session's when item_id is None."""
        if item_id is None:
            self._pending.pop(session_id, None)
        else:
            queue = self._pending.get(session_id)
            if queue is not None:
                queue.pop(item_id, None)
                if not queue:
                    del self._pending[session_id]

    def pending(self, session_id: str) -> list[PendingTransition]:
        return sorted(self._pending.get(session_id, {}).values(), key=lambda p: p.due_at)

    def advance(self, session: PlanningSession, now: float | None = None) -> PlanningSession:
        """Apply every transition due at ``now`` (default: clock time).

        Items changed or deleted since their deadline was recorded are skipped.
        Returns the session, with a new itinerary object if anything changed.
        """
        now = self.clock.now() if now is None else now
        queue = self._pending.get(session.session_id)
        if not queue or session.itinerary is None:
            return session

        itinerary = session.itinerary
        for pending in self.pending(session.session_id):
            if pending.due_at > now:
                break
            del queue[pending.item_id]
            try:
                status = locate_item(itinerary, pending.item_id).item.status
            except ItemNotFoundError:
                continue
            if pending.transition == Transition.confirm and status == ItemStatus.suggested:
                itinerary = confirm_item(itinerary, pending.item_id)
            elif (
                pending.transition == Transition.finalize_removal
                and status == ItemStatus.pending_removal
            ):
                itinerary = finalize_removal(itinerary, pending.item_id)
            else:
                continue
            logger.debug(f"Applied {pending.transition.value} to {pending.item_id}")

        if not queue:
            del self._pending[session.session_id]

        if itinerary is session.itinerary:
            return session
        return session.model_copy(update={"itinerary": itinerary})
