"""In-memory implementation of the session store."""

from compass.app.models.session import PlanningSession


class InMemorySessionStore:
    """In-memory implementation of SessionStore.

    Sessions are stored as JSON so callers never share mutable state with the
    store, matching the copy semantics of the redis store.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, str] = {}

    async def load(self, session_id: str) -> PlanningSession | None:
        """Load a session."""
        raw = self._sessions.get(session_id)
        if raw is None:
            return None
        return PlanningSession.model_validate_json(raw)

    async def save(self, session: PlanningSession) -> None:
        """Create or replace a session."""
        self._sessions[session.session_id] = session.model_dump_json()

    async def delete(self, session_id: str) -> bool:
        """Delete a session."""
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        """Clear all sessions (useful for testing)."""
        self._sessions.clear()
