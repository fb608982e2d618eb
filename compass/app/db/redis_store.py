"""Redis-backed session store.

Each session is one JSON document under ``compass:session:<id>`` with a
sliding TTL refreshed on save.
"""

import logging

import redis.asyncio as redis

from compass.app.models.session import PlanningSession

logger = logging.getLogger(__name__)

KEY_PREFIX = "compass:session:"


class RedisSessionStore:
    """Redis implementation of SessionStore."""

    def __init__(self, client: redis.Redis, ttl_seconds: int | None = None) -> None:
        """Initialize store.

        Args:
            client: redis.asyncio client (decode_responses=True)
            ttl_seconds: Expiry applied on every save (None = no expiry)
        """
        self._client = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int | None = None) -> "RedisSessionStore":
        return cls(redis.from_url(url, decode_responses=True), ttl_seconds)

    @staticmethod
    def key(session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"

    async def load(self, session_id: str) -> PlanningSession | None:
        """Load a session."""
        raw = await self._client.get(self.key(session_id))
        if raw is None:
            return None
        return PlanningSession.model_validate_json(raw)

    async def save(self, session: PlanningSession) -> None:
        """Create or replace a session."""
        await self._client.set(self.key(session.session_id), session.model_dump_json(), ex=self._ttl)

    async def delete(self, session_id: str) -> bool:
        """Delete a session."""
        deleted = await self._client.delete(self.key(session_id))
        return bool(deleted)

    async def ping(self) -> bool:
        return bool(await self._client.ping())
