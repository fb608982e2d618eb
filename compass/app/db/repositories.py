"""Repository protocol interfaces for session persistence."""

from typing import Protocol

from compass.app.models.session import PlanningSession


class SessionStore(Protocol):
    """Store for planning sessions keyed by an opaque session id."""

    async def load(self, session_id: str) -> PlanningSession | None:
        """Load a session.

        Args:
            session_id: Session identifier

        Returns:
            The stored session, or None if absent
        """
        ...

    async def save(self, session: PlanningSession) -> None:
        """Create or replace a session."""
        ...

    async def delete(self, session_id: str) -> bool:
        """Delete a session.

        Returns:
            True if a session was deleted
        """
        ...
