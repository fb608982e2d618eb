"""Planning session endpoints - conversational turns and item lifecycle."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from compass.app.api.deps import get_session_manager
from compass.app.errors import SessionNotFoundError
from compass.app.models.api import SessionView, TurnRequest, TurnResponse
from compass.app.models.itinerary import StructuredItinerary
from compass.app.orchestration.session import SessionManager, TurnResult

router = APIRouter(prefix="/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)

Manager = Annotated[SessionManager, Depends(get_session_manager)]


def _turn_response(result: TurnResult) -> TurnResponse:
    return TurnResponse(
        message=result.message,
        action=result.action,
        applied=result.applied,
        fallback=result.fallback,
        quota_exceeded=result.quota_exceeded,
        itinerary=result.session.itinerary,
        preferences=result.session.preferences,
    )


@router.post("/{session_id}/turns", response_model=TurnResponse, response_model_by_alias=True)
async def post_turn(session_id: str, request: TurnRequest, manager: Manager) -> TurnResponse:
    """Apply one conversational turn to the session's itinerary.

    Always 200: model failures degrade to a clarification-style message and
    quota exhaustion sets ``quotaExceeded``.
    """
    result = await manager.handle_turn(
        session_id, request.message, immediate_removal=request.immediate_removal
    )
    return _turn_response(result)


@router.post("/{session_id}/gather", response_model=TurnResponse, response_model_by_alias=True)
async def post_gather(session_id: str, request: TurnRequest, manager: Manager) -> TurnResponse:
    """Requirement-gathering chat turn (free prose, itinerary untouched)."""
    result = await manager.gather(session_id, request.message)
    return _turn_response(result)


@router.get("/{session_id}/itinerary", response_model=SessionView, response_model_by_alias=True)
async def get_itinerary(session_id: str, manager: Manager) -> SessionView:
    """Current document and preferences, with due lifecycle transitions applied."""
    session = await manager.get_session(session_id)
    return SessionView(
        session_id=session.session_id,
        itinerary=session.itinerary,
        preferences=session.preferences,
    )


@router.post(
    "/{session_id}/items/{item_id}/confirm",
    response_model=StructuredItinerary,
    response_model_by_alias=True,
)
async def confirm(session_id: str, item_id: str, manager: Manager) -> StructuredItinerary:
    """Promote a suggested item to confirmed."""
    return await manager.confirm_item(session_id, item_id)


@router.post(
    "/{session_id}/items/{item_id}/finalize-removal",
    response_model=StructuredItinerary,
    response_model_by_alias=True,
)
async def finalize(session_id: str, item_id: str, manager: Manager) -> StructuredItinerary:
    """Delete an item that is pending removal."""
    return await manager.finalize_removal(session_id, item_id)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, manager: Manager) -> Response:
    if not await manager.delete(session_id):
        raise SessionNotFoundError(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
