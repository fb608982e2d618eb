"""Health check endpoints.

- /health: liveness, always 200 while the process runs
- /healthz: component status (session store, generative backend)
"""

import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response

from compass.app.api.deps import get_executor, get_session_store
from compass.app.db.redis_store import RedisSessionStore
from compass.app.db.repositories import SessionStore
from compass.app.llm.client import ScriptedGateway
from compass.app.llm.executor import LLMCallExecutor

router = APIRouter()


async def check_store(store: SessionStore) -> tuple[bool, str]:
    """Check session store connectivity.

    Returns:
        (is_ok, status_message)
    """
    if not isinstance(store, RedisSessionStore):
        return (True, "memory")

    try:
        await store.ping()
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


def check_llm(executor: LLMCallExecutor) -> tuple[bool, str]:
    """Report which generative backend is wired (no outbound call)."""
    if isinstance(executor.gateway, ScriptedGateway):
        return (True, "stub")
    return (True, type(executor.gateway).__name__)


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(
    store: Annotated[SessionStore, Depends(get_session_store)],
    executor: Annotated[LLMCallExecutor, Depends(get_executor)],
) -> dict[str, Any] | Response:
    """Component health.

    Returns:
        200 with component status if the session store is reachable
        503 otherwise
    """
    store_ok, store_status = await check_store(store)
    _, llm_status = check_llm(executor)

    response_body = {
        "status": "ok" if store_ok else "degraded",
        "components": {"session_store": store_status, "llm": llm_status},
    }

    if not store_ok:
        return Response(
            content=json.dumps(response_body),
            status_code=503,
            media_type="application/json",
        )

    return response_body
