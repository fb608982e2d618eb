"""Models package - re-exports for convenience."""

from compass.app.models.actions import (
    Action,
    ActionPayload,
    ActionType,
    ChecklistItemData,
    ItemRemovalData,
    ItemUpdateData,
    MapPinData,
    MetadataUpdateData,
    PreferenceData,
    ScheduleItemData,
    TargetView,
    resolve_payload,
)
from compass.app.models.common import (
    DayPeriod,
    ItemKind,
    ItemStatus,
    PinType,
    Priority,
    period_for_time,
)
from compass.app.models.itinerary import (
    ChecklistCategory,
    ChecklistItem,
    Coordinates,
    DaySchedule,
    ItineraryFragment,
    MapPin,
    ScheduleActivity,
    StructuredItinerary,
)
from compass.app.models.session import (
    ChatSender,
    ChatTurn,
    PlanningSession,
    PreferenceCategory,
    PreferenceTag,
)

__all__ = [
    # Common
    "DayPeriod",
    "ItemKind",
    "ItemStatus",
    "PinType",
    "Priority",
    "period_for_time",
    # Itinerary
    "StructuredItinerary",
    "ItineraryFragment",
    "DaySchedule",
    "ScheduleActivity",
    "Coordinates",
    "ChecklistCategory",
    "ChecklistItem",
    "MapPin",
    # Actions
    "Action",
    "ActionType",
    "TargetView",
    "ActionPayload",
    "ScheduleItemData",
    "ChecklistItemData",
    "MapPinData",
    "ItemUpdateData",
    "ItemRemovalData",
    "MetadataUpdateData",
    "PreferenceData",
    "resolve_payload",
    # Session
    "PlanningSession",
    "ChatTurn",
    "ChatSender",
    "PreferenceTag",
    "PreferenceCategory",
]
