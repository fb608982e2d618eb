"""Itinerary conversion endpoint - POST /itineraries/convert."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from compass.app.api.deps import get_converter, get_session_manager
from compass.app.models.api import ConvertRequest, ConvertResponse
from compass.app.orchestration.converter import ItineraryConverter
from compass.app.orchestration.session import SessionManager

router = APIRouter(prefix="/itineraries", tags=["itineraries"])
logger = logging.getLogger(__name__)


@router.post("/convert", response_model=ConvertResponse, response_model_by_alias=True)
async def convert_itinerary(
    request: ConvertRequest,
    converter: Annotated[ItineraryConverter, Depends(get_converter)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> ConvertResponse:
    """Convert free-form itinerary text into a StructuredItinerary.

    Short texts use one model call; long texts are converted week by week.
    With a session id, the result also becomes that session's document.

    Raises:
        CompassError: Rendered by the application error handler
            (422 validation, 502 upstream/parsing, 503 quota, 504 timeout)
    """
    logger.info(f"Converting itinerary text ({len(request.text)} chars)")
    if request.session_id:
        result = await manager.convert_for_session(request.session_id, request.text)
    else:
        result = await converter.convert(request.text)
    return ConvertResponse(
        itinerary=result.itinerary, total_weeks=result.total_weeks, mode=result.mode.value
    )
