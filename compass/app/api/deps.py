"""FastAPI dependencies: one shared gateway, store and session manager per process.

Tests replace these through ``app.dependency_overrides``.
"""

import logging
from functools import lru_cache

from compass.app.config import get_settings
from compass.app.db.inmemory import InMemorySessionStore
from compass.app.db.redis_store import RedisSessionStore
from compass.app.db.repositories import SessionStore
from compass.app.llm.client import get_llm_gateway
from compass.app.llm.executor import LLMCallExecutor
from compass.app.orchestration.converter import ItineraryConverter
from compass.app.orchestration.session import SessionManager
from compass.app.utils.logging import StructuredLLMLogger
from compass.app.utils.metrics import PrometheusLLMMetrics

logger = logging.getLogger(__name__)


@lru_cache
def get_executor() -> LLMCallExecutor:
    return LLMCallExecutor(
        get_llm_gateway(get_settings()),
        metrics=PrometheusLLMMetrics(),
        call_logger=StructuredLLMLogger(),
    )


@lru_cache
def get_session_store() -> SessionStore:
    """Redis store when configured, in-memory otherwise."""
    settings = get_settings()
    if settings.session_backend == "redis":
        if settings.redis_url:
            return RedisSessionStore.from_url(settings.redis_url, settings.session_ttl_seconds)
        logger.warning("session_backend=redis but no REDIS_URL set, using in-memory store")
    return InMemorySessionStore()


@lru_cache
def get_converter() -> ItineraryConverter:
    return ItineraryConverter(get_executor(), get_settings())


@lru_cache
def get_session_manager() -> SessionManager:
    return SessionManager(
        store=get_session_store(),
        executor=get_executor(),
        converter=get_converter(),
        settings=get_settings(),
    )
