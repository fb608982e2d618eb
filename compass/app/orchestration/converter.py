"""Free-text itinerary conversion: single-shot and chunked (week by week).

Short texts are converted with one model call. Long texts are split by week:
duration analysis first, then one sequential extract/validate cycle per week,
merged into a single document. Any failing week aborts the whole conversion;
a partial document is never returned.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from enum import Enum

from pydantic import ValidationError

from compass.app.config import Settings, get_settings
from compass.app.errors import (
    CompassError,
    ConversionAbortedError,
    ConversionCancelledError,
    ItineraryValidationError,
)
from compass.app.llm.client import DURATION, EXTRACTION
from compass.app.llm.executor import CancelToken, LLMCallContext, LLMCallExecutor, RetryPolicy
from compass.app.llm.prompts import (
    build_conversion_prompt,
    build_duration_prompt,
    build_weekly_prompt,
)
from compass.app.models.itinerary import (
    ChecklistCategory,
    DaySchedule,
    ItineraryFragment,
    MapPin,
    StructuredItinerary,
)
from compass.app.parsing.json_extract import extract_json_object, extract_week_count
from compass.app.utils.metrics import record_week
from compass.app.validation.ids import dedupe_checklist_ids, dedupe_pin_ids, dedupe_schedule_ids
from compass.app.validation.normalizer import validate_fragment, validate_itinerary

logger = logging.getLogger(__name__)


class ConversionMode(str, Enum):
    """How a text was converted."""

    single_shot = "single_shot"
    chunked = "chunked"


@dataclass
class ConversionResult:
    """Fully merged conversion output.

    ``total_weeks`` is only known for chunked conversions.
    """

    itinerary: StructuredItinerary
    total_weeks: int | None
    mode: ConversionMode


def check_contiguity(fragment: ItineraryFragment, previous_last_day: int, week: int) -> None:
    """Ensure a week's days continue exactly from the previous week's last day.

    Raises:
        ItineraryValidationError: Days restart, skip or repeat
    """
    days = fragment.day_numbers()
    expected = list(range(previous_last_day + 1, previous_last_day + 1 + len(days)))
    if days != expected:
        logger.warning(
            f"Week {week} day numbering is not contiguous: "
            f"expected {expected}, got {days} (previous week ended on day {previous_last_day})"
        )
        raise ItineraryValidationError(
            f"Week {week} days {days} do not continue from day {previous_last_day}",
            field="schedule",
            details={"week": week, "expected_days": expected, "days": days},
        )


class ItineraryConverter:
    """Converts raw itinerary prose into a StructuredItinerary."""

    def __init__(
        self,
        executor: LLMCallExecutor,
        settings: Settings | None = None,
        today_fn: Callable[[], date] | None = None,
    ) -> None:
        """Initialize converter.

        Args:
            executor: Model-call executor (wraps the gateway)
            settings: Settings (default: cached application settings)
            today_fn: Date source for schedule entries without a date
        """
        self._executor = executor
        self._settings = settings or get_settings()
        self._today = today_fn or date.today

    def _policy(self, max_retries: int = 0) -> RetryPolicy:
        return RetryPolicy(
            timeout_seconds=self._settings.llm_timeout_seconds,
            max_retries=max_retries,
            backoff_base_seconds=self._settings.retry_backoff_base_seconds,
        )

    async def analyze_duration(
        self, text: str, cancel_token: CancelToken | None = None, session_id: str | None = None
    ) -> int:
        """Ask the model how many weeks the text spans.

        Returns:
            Week count in 1..max_weeks

        Raises:
            ItineraryValidationError: Answer not an integer in range
            ParsingError: No number in the answer
            LLMError: Gateway failure
        """
        raw = await self._executor.generate(
            LLMCallContext(task="duration", session_id=session_id),
            build_duration_prompt(text),
            DURATION,
            self._policy(),
            cancel_token,
        )
        weeks = extract_week_count(raw, max_weeks=self._settings.max_weeks)
        logger.info(f"Duration analysis: {weeks} week(s)")
        return weeks

    async def convert_single_shot(
        self,
        text: str,
        cancel_token: CancelToken | None = None,
        *,
        include_coordinates: bool = True,
        include_cost_estimates: bool = True,
        session_id: str | None = None,
    ) -> StructuredItinerary:
        """Convert a short text with one model call.

        Transport failures are retried with doubling backoff up to
        ``single_shot_max_retries`` times; quota errors are not.
        """
        raw = await self._executor.generate(
            LLMCallContext(task="convert", session_id=session_id),
            build_conversion_prompt(text, include_coordinates, include_cost_estimates),
            EXTRACTION,
            self._policy(self._settings.single_shot_max_retries),
            cancel_token,
        )
        itinerary = validate_itinerary(extract_json_object(raw), today=self._today())
        logger.info(
            f"Single-shot conversion produced {len(itinerary.schedule)} day(s) "
            f"for {itinerary.destination}"
        )
        return itinerary

    async def convert_chunked(
        self,
        text: str,
        cancel_token: CancelToken | None = None,
        session_id: str | None = None,
    ) -> ConversionResult:
        """Convert a long text one week at a time and merge the fragments.

        Raises:
            ItineraryValidationError: Duration analysis out of range
            ConversionAbortedError: A week failed; carries completed/total weeks
            ConversionCancelledError: Cancelled between weeks
        """
        if cancel_token is None:
            cancel_token = CancelToken()

        total_weeks = await self.analyze_duration(text, cancel_token, session_id)
        today = self._today()

        first: ItineraryFragment | None = None
        schedule: list[DaySchedule] = []
        checklist: list[ChecklistCategory] = []
        map_pins: list[MapPin] = []
        last_day = 0

        for week in range(1, total_weeks + 1):
            cancel_token.throw_if_cancelled()
            try:
                raw = await self._executor.generate(
                    LLMCallContext(task=f"week_{week}", session_id=session_id),
                    build_weekly_prompt(text, week, total_weeks, last_day),
                    EXTRACTION,
                    self._policy(),
                    cancel_token,
                )
                fragment = validate_fragment(
                    extract_json_object(raw), require_metadata=(week == 1), today=today
                )
                check_contiguity(fragment, last_day, week)
            except ConversionCancelledError:
                record_week("cancelled")
                raise
            except CompassError as e:
                record_week("failed")
                logger.error(f"Chunked conversion aborted at week {week}/{total_weeks}: {e}")
                raise ConversionAbortedError(week - 1, total_weeks, e) from e

            if not fragment.schedule:
                logger.warning(f"Week {week}/{total_weeks} produced no schedule days")

            if week == 1:
                first = fragment
            schedule.extend(fragment.schedule)
            checklist.extend(fragment.checklist)
            map_pins.extend(fragment.map_pins)
            if fragment.schedule:
                last_day = fragment.schedule[-1].day
            record_week("ok")

        assert first is not None
        itinerary = self._merge(first, schedule, checklist, map_pins, total_weeks)
        logger.info(
            f"Chunked conversion merged {total_weeks} week(s) into {len(itinerary.schedule)} day(s)"
        )
        return ConversionResult(itinerary=itinerary, total_weeks=total_weeks, mode=ConversionMode.chunked)

    def _merge(
        self,
        first: ItineraryFragment,
        schedule: list[DaySchedule],
        checklist: list[ChecklistCategory],
        map_pins: list[MapPin],
        total_weeks: int,
    ) -> StructuredItinerary:
        # Ids are unique per fragment only; re-issue collisions across weeks
        taken: set[str] = set()
        dedupe_schedule_ids(schedule, taken)
        dedupe_checklist_ids(checklist, taken)
        dedupe_pin_ids(map_pins, taken)

        try:
            return StructuredItinerary(
                title=first.title,
                summary=first.summary,
                destination=first.destination,
                duration=first.duration,
                number_of_travelers=first.number_of_travelers or 1,
                schedule=schedule,
                checklist=checklist,
                map_pins=map_pins,
            )
        except ValidationError as e:
            raise ConversionAbortedError(
                total_weeks,
                total_weeks,
                ItineraryValidationError(f"Merged itinerary is invalid: {e.errors()[0].get('msg')}"),
            ) from e

    async def convert(
        self,
        text: str,
        cancel_token: CancelToken | None = None,
        session_id: str | None = None,
    ) -> ConversionResult:
        """Convert text, picking single-shot or chunked by length."""
        if not text or not text.strip():
            raise ItineraryValidationError("No itinerary text provided", field="text")

        if len(text) <= self._settings.single_shot_max_chars:
            itinerary = await self.convert_single_shot(text, cancel_token, session_id=session_id)
            return ConversionResult(itinerary=itinerary, total_weeks=None, mode=ConversionMode.single_shot)
        return await self.convert_chunked(text, cancel_token, session_id)
