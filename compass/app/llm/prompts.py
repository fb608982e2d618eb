"""Prompt construction for every model task.

Pure text builders with no I/O. Each JSON-returning prompt embeds the
"Return ONLY valid JSON" contract; callers still run the reply through the
extractor because models do not always honour it.
"""

import json
from collections.abc import Sequence

from compass.app.models.itinerary import StructuredItinerary
from compass.app.models.session import ChatSender, ChatTurn, PreferenceTag

JSON_CONTRACT = (
    "CRITICAL: Return ONLY valid JSON, no additional text, explanations, or markdown formatting."
)
NO_ITINERARY_MARKER = "No existing itinerary - ready to create a new one!"


def _schedule_example(include_coordinates: bool, include_cost_estimates: bool) -> str:
    optional = []
    if include_coordinates:
        optional.append('      "coordinates": { "lat": 35.6762, "lng": 139.6503 }')
    if include_cost_estimates:
        optional.append('      "estimatedCost": "$50 per person"')
    extra = (",\n" + ",\n".join(optional)) if optional else ""
    return f"""  "schedule": [
    {{
      "day": 1,
      "date": "2024-03-15",
      "time": "09:00",
      "activity": "Activity name",
      "description": "Detailed activity description",
      "location": "Specific location name"{extra}
    }}
  ]"""


CHECKLIST_EXAMPLE = """  "checklist": [
    {
      "category": "Documents",
      "items": [
        {
          "task": "Obtain passport",
          "completed": false,
          "priority": "high",
          "notes": "Required 6 months validity"
        }
      ]
    },
    {
      "category": "Packing",
      "items": [
        { "task": "Pack comfortable walking shoes", "completed": false, "priority": "medium" }
      ]
    }
  ]"""

MAP_PINS_EXAMPLE = """  "mapPins": [
    {
      "id": "pin_1",
      "name": "Tokyo Station",
      "address": "1 Chome Marunouchi, Chiyoda City, Tokyo",
      "lat": 35.6812,
      "lng": 139.7671,
      "type": "transport",
      "day": 1,
      "description": "Main railway station"
    }
  ]"""

METADATA_EXAMPLE = """  "tripTitle": "Descriptive trip title",
  "summary": "2-3 sentence trip summary",
  "destination": "Primary destination/city",
  "duration": "Trip length (e.g., '7 days', '2 weeks')",
  "numberOfTravelers": 2,"""

EXTRACTION_GUIDELINES = """Guidelines:
- Extract dates in YYYY-MM-DD format
- Use 24-hour HH:MM times
- Categorize checklist items logically (Documents, Packing, Bookings, etc.)
- Set appropriate priorities (high/medium/low) for checklist items
- Use map pin types: accommodation, restaurant, attraction, transport, activity"""


def build_duration_prompt(text: str) -> str:
    """Ask how many weeks the itinerary spans.

    Args:
        text: Full raw itinerary text

    Returns:
        Prompt requesting ``{"totalWeeks": <1-12>}`` and nothing else
    """
    return f"""You are an expert travel data analyst. Read the travel itinerary below and determine how many calendar weeks it spans (a week is up to 7 consecutive days).

{JSON_CONTRACT}

Respond with exactly this structure:
{{ "totalWeeks": <integer between 1 and 12> }}

Travel Itinerary Text:
{text}

JSON Response:"""


def build_weekly_prompt(text: str, week: int, total_weeks: int, previous_last_day: int = 0) -> str:
    """Ask for one week's fragment of a multi-week itinerary.

    Args:
        text: Full raw itinerary text
        week: 1-based week index
        total_weeks: Number of weeks from duration analysis
        previous_last_day: Last day number produced by the previous week (0 for week 1)

    Returns:
        Prompt whose header line is ``WEEK <week> OF <total_weeks>``
    """
    first_day = previous_last_day + 1
    if week == 1:
        metadata_block = METADATA_EXAMPLE + "\n"
        metadata_rule = (
            "- This is the first week: include tripTitle, summary, destination, duration "
            "and numberOfTravelers for the WHOLE trip"
        )
    else:
        metadata_block = ""
        metadata_rule = "- Do NOT repeat trip metadata (tripTitle, summary, destination, duration)"

    return f"""WEEK {week} OF {total_weeks}

You are an expert travel data parser. The travel itinerary below is too long to convert at once, so it is being converted one week at a time. Convert ONLY the days that belong to this week.

{JSON_CONTRACT}

Required JSON Structure:
{{
{metadata_block}{_schedule_example(True, True)},
{CHECKLIST_EXAMPLE},
{MAP_PINS_EXAMPLE}
}}

Day numbering:
- Continue numbering from the previous week's last day: the first day of this week is day {first_day}
- For example, week 2 starts at day 8 if week 1 ended on day 7
- Day numbers must be consecutive with no gaps or repeats
{metadata_rule}
- Only include checklist items and map pins relevant to this week's days

{EXTRACTION_GUIDELINES}

Travel Itinerary Text:
{text}

JSON Response:"""


def build_conversion_prompt(
    text: str, include_coordinates: bool = True, include_cost_estimates: bool = True
) -> str:
    """Ask for a complete StructuredItinerary in one reply."""
    guidelines = EXTRACTION_GUIDELINES
    if include_coordinates:
        guidelines += "\n- Include realistic coordinates for major locations"
    if include_cost_estimates:
        guidelines += "\n- Include cost estimates where mentioned in the text"
    guidelines += "\n- Ensure all schedule items have day numbers starting from 1"

    return f"""You are an expert travel data parser. Convert the following travel itinerary text into a structured JSON format. Be precise and extract all relevant information.

{JSON_CONTRACT}

Required JSON Structure:
{{
{METADATA_EXAMPLE}
{_schedule_example(include_coordinates, include_cost_estimates)},
{CHECKLIST_EXAMPLE},
{MAP_PINS_EXAMPLE}
}}

{guidelines}

Travel Itinerary Text:
{text}

JSON Response:"""


ACTION_EXAMPLES = """EXAMPLES:

User: "I want to plan a trip to Europe"
Response:
{
  "action": "REQUEST_CLARIFICATION",
  "target_view": "schedule",
  "conversational_text": "Europe sounds amazing! Which specific countries or cities in Europe are you most interested in visiting?"
}

User: "Plan a 2-day trip to Tokyo for 2 people in March"
Response:
{
  "action": "GENERATE_ITINERARY",
  "target_view": "schedule",
  "itinerary_data": {
    "title": "2-Day Tokyo Adventure",
    "summary": "Explore the culture and cuisine of Japan's capital",
    "destination": "Tokyo, Japan",
    "duration": "2 days",
    "number_of_travelers": 2,
    "daily_schedule": [
      {
        "day": 1,
        "date": "2024-03-15",
        "activities": [
          { "time": "14:00", "title": "Explore Shibuya Crossing", "description": "Visit the world's busiest pedestrian crossing", "location": "Shibuya, Tokyo", "cost": "Free" }
        ]
      }
    ],
    "checklist": [
      { "category": "Before Travel", "items": [ { "task": "Check passport validity", "completed": false, "priority": "high" } ] }
    ],
    "map_locations": [
      { "name": "Shibuya Crossing", "address": "Shibuya City, Tokyo", "lat": 35.6598, "lng": 139.7006, "type": "attraction", "day": 1 }
    ]
  },
  "conversational_text": "I've created a 2-day Tokyo itinerary for you both. What would you like to adjust?"
}

User: "Add a visit to the Louvre on day 2"
Response:
{
  "action": "ADD_ITEM",
  "target_view": "schedule",
  "item_data": {
    "day": 2,
    "time": "14:00",
    "title": "Louvre Museum",
    "description": "Visit the world's largest art museum. Allow 3-4 hours.",
    "location": "Rue de Rivoli, 75001 Paris, France",
    "cost": "€17 per person"
  },
  "conversational_text": "Great choice! I've added the Louvre Museum to your afternoon on day 2."
}

User: "Move the Louvre visit to 10am"
Response:
{
  "action": "UPDATE_ITEM",
  "target_view": "schedule",
  "item_data": { "id": "d2-afternoon-1", "time": "10:00" },
  "conversational_text": "Done! The Louvre visit now starts at 10:00."
}

User: "Remove the packing reminder about shoes"
Response:
{
  "action": "REMOVE_ITEM",
  "target_view": "checklist",
  "item_data": { "id": "chk-2-1" },
  "conversational_text": "I've taken the walking shoes reminder off your checklist."
}

User: "We're vegetarian and prefer a relaxed pace"
Response:
{
  "action": "ADD_PREFERENCE",
  "target_view": "preferences",
  "item_data": { "category": "cuisine" },
  "preference_tags": ["Vegetarian", "Relaxed pace"],
  "conversational_text": "Noted! I'll keep meals vegetarian and the days unhurried."
}

User: "Actually there will be 4 of us"
Response:
{
  "action": "UPDATE_METADATA",
  "target_view": "schedule",
  "item_data": { "numberOfTravelers": 4 },
  "conversational_text": "Updated the trip for 4 travelers."
}"""


def _render_history(history: Sequence[ChatTurn], user_label: str, assistant_label: str) -> str:
    lines = []
    for turn in history:
        label = user_label if turn.sender == ChatSender.user else assistant_label
        lines.append(f"{label}: {turn.content}")
    return "\n".join(lines)


def build_action_prompt(
    current_itinerary: StructuredItinerary | None,
    message: str,
    history: Sequence[ChatTurn] = (),
    preferences: Sequence[PreferenceTag] = (),
) -> str:
    """Ask for exactly one Action envelope for the user's latest message.

    Args:
        current_itinerary: Document being edited, or None before the first one exists
        message: User's latest message
        history: Prior transcript turns, oldest first
        preferences: Preference tags captured so far

    Returns:
        Prompt embedding the current itinerary JSON (or the no-itinerary marker)
    """
    if current_itinerary is not None:
        context = json.dumps(
            current_itinerary.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False
        )
        mode_rule = (
            "An itinerary exists: use ADD_ITEM, UPDATE_ITEM, REMOVE_ITEM or UPDATE_METADATA "
            "to edit it. Refer to existing items by their \"id\"."
        )
    else:
        context = NO_ITINERARY_MARKER
        mode_rule = (
            "No itinerary exists yet: you are in REQUIREMENT GATHERING mode. Ask ONE focused "
            "question per reply with REQUEST_CLARIFICATION, and only use GENERATE_ITINERARY once "
            "destination, dates, duration and travelers are known."
        )

    prefs = ", ".join(f"{tag.label} ({tag.category.value})" for tag in preferences) or "None yet"
    transcript = _render_history(history, "User", "Assistant") or "(no previous messages)"

    return f"""You are Nomad's Compass, an expert AI travel planning assistant. You help users create and modify travel itineraries through direct manipulation of their itinerary interface.

{mode_rule}

You MUST respond with exactly ONE JSON action object. {JSON_CONTRACT}

RESPONSE FORMAT:
{{
  "action": "ADD_ITEM" | "UPDATE_ITEM" | "REMOVE_ITEM" | "ADD_PREFERENCE" | "REMOVE_PREFERENCE" | "REQUEST_CLARIFICATION" | "UPDATE_METADATA" | "GENERATE_ITINERARY",
  "target_view": "schedule" | "checklist" | "map" | "preferences",
  "item_data": {{ /* fields for single-item actions */ }},
  "itinerary_data": {{ /* complete itinerary for GENERATE_ITINERARY */ }},
  "preference_tags": ["tag"],
  "conversational_text": "Your friendly reply explaining what you did"
}}

ACTION TYPES:
- REQUEST_CLARIFICATION: ask ONE specific question
- GENERATE_ITINERARY: create a complete new itinerary in itinerary_data
- ADD_ITEM: add one activity (schedule), task (checklist) or location (map)
- UPDATE_ITEM: change fields of the item whose "id" is given in item_data
- REMOVE_ITEM: remove the item whose "id" is given in item_data
- ADD_PREFERENCE / REMOVE_PREFERENCE: add or remove traveler preference tags
- UPDATE_METADATA: change title, summary, destination, duration or numberOfTravelers

{ACTION_EXAMPLES}

Traveler Preferences: {prefs}

Conversation So Far:
{transcript}

Current Itinerary Context:
{context}

User Request: {message}

JSON Response:"""


def build_gathering_prompt(message: str, history: Sequence[ChatTurn] = ()) -> str:
    """Free-prose requirement-gathering conversation prompt."""
    transcript = _render_history(history, "Traveler", "Travel Agent")
    if transcript:
        transcript += "\n"

    return f"""You are Nomad's Compass, a friendly and experienced travel agent specializing in gathering travel requirements and preferences. You are currently in the REQUIREMENT GATHERING phase of travel planning.

YOUR ROLE IN THIS PHASE:
- Act as a knowledgeable travel consultant who asks thoughtful, engaging questions
- Understand the traveler's needs, preferences, budget, and expectations
- Once you have comprehensive information, write a detailed day-by-day itinerary in natural language

INFORMATION TO GATHER:
- Destination(s) and specific places to visit
- Travel dates, duration, and flexibility
- Number of travelers and their interests
- Budget range and travel style
- Accommodation and transportation preferences
- Dietary restrictions or special requirements

CONVERSATION STYLE:
- Ask 2-3 focused questions at a time
- Use a warm, professional tone and build on previous answers

Current conversation context:
{transcript}Traveler: {message}
Travel Agent:"""
