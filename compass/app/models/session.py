"""Planning session models - the per-conversation document holder."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from compass.app.models.itinerary import StructuredItinerary


class ChatSender(str, Enum):
    """Author of a transcript turn."""

    user = "user"
    assistant = "assistant"


class ChatTurn(BaseModel):
    """One prior turn of the chat transcript."""

    sender: ChatSender
    content: str

    @field_validator("sender", mode="before")
    @classmethod
    def map_legacy_sender(cls, v: Any) -> Any:
        """Stored transcripts use 'ai' for assistant turns."""
        if v == "ai":
            return ChatSender.assistant
        return v


class PreferenceCategory(str, Enum):
    """Preference tag grouping shown above the canvas."""

    budget = "budget"
    cuisine = "cuisine"
    pace = "pace"
    interests = "interests"
    accommodation = "accommodation"
    transport = "transport"
    general = "general"


class PreferenceTag(BaseModel):
    """Traveler preference captured during the conversation."""

    id: str
    label: str
    category: PreferenceCategory = PreferenceCategory.general
    removable: bool = True


class PlanningSession(BaseModel):
    """Everything the core owns for one planning conversation.

    The itinerary is None until the first successful conversion or
    GENERATE_ITINERARY action.
    """

    session_id: str
    itinerary: StructuredItinerary | None = None
    preferences: list[PreferenceTag] = Field(default_factory=list)
    transcript: list[ChatTurn] = Field(default_factory=list)

    def recent_turns(self, limit: int = 20) -> list[ChatTurn]:
        return self.transcript[-limit:]
