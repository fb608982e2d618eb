"""Request and response bodies for the HTTP surface."""

from pydantic import AliasChoices, Field

from compass.app.models.actions import Action
from compass.app.models.common import CamelModel
from compass.app.models.itinerary import StructuredItinerary
from compass.app.models.session import PreferenceTag


class ConvertRequest(CamelModel):
    """POST /itineraries/convert body."""

    text: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("text", "itineraryText", "itinerary_text")
    )
    session_id: str | None = Field(
        default=None, validation_alias=AliasChoices("sessionId", "session_id")
    )


class ConvertResponse(CamelModel):
    itinerary: StructuredItinerary
    total_weeks: int | None = None
    mode: str


class TurnRequest(CamelModel):
    """POST /sessions/{id}/turns and /gather body."""

    message: str = Field(..., min_length=1)
    immediate_removal: bool = False


class TurnResponse(CamelModel):
    """Outcome of one conversational turn.

    ``quota_exceeded`` marks the temporary-unavailability reply; the document
    is unchanged in that case.
    """

    message: str
    action: Action | None = None
    applied: bool = False
    fallback: bool = False
    quota_exceeded: bool = False
    itinerary: StructuredItinerary | None = None
    preferences: list[PreferenceTag] = Field(default_factory=list)


class SessionView(CamelModel):
    session_id: str
    itinerary: StructuredItinerary | None = None
    preferences: list[PreferenceTag] = Field(default_factory=list)


class ErrorResponse(CamelModel):
    """Error payload for every CompassError."""

    error: str
    message: str
    details: dict = Field(default_factory=dict)
