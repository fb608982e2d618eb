"""JSON extraction and repair for noisy model output.

The model is asked for JSON only, but replies routinely arrive wrapped in
prose or Markdown fences, and sometimes carry trailing commas. Extraction
scans for balanced ``{...}`` spans (string- and escape-aware, so nested
objects and braces inside strings are handled), then repairs and parses.
"""

import json
import logging
import re
from collections.abc import Iterator
from typing import Any

from compass.app.errors import ItineraryValidationError, ParsingError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

WEEK_COUNT_KEYS = ("totalWeeks", "total_weeks", "weeks", "weekCount")


def strip_code_fences(text: str) -> str:
    """Remove Markdown code-fence markers (```json ... ```)."""
    return _FENCE_RE.sub("", text)


def remove_trailing_commas(text: str) -> str:
    """Drop commas that sit directly before a closing '}' or ']'.

    Commas inside string literals are left alone.
    """
    out: list[str] = []
    in_string = False
    escaped = False
    length = len(text)
    for i, ch in enumerate(text):
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            continue

        if ch == ",":
            j = i + 1
            while j < length and text[j].isspace():
                j += 1
            if j < length and text[j] in "}]":
                continue
        out.append(ch)
    return "".join(out)


def iter_balanced_objects(text: str) -> Iterator[str]:
    """Yield each top-level balanced ``{...}`` span in order of appearance.

    Raises:
        ParsingError: A '{' opens a span that never closes
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]
                start = -1

    if depth > 0:
        raise ParsingError("Unbalanced JSON object in model output", raw_text=text)


def repair_json_text(span: str) -> str:
    """Apply the fixed repair pipeline: fences, trailing commas, whitespace."""
    repaired = strip_code_fences(span)
    repaired = remove_trailing_commas(repaired)
    return repaired.strip()


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Extract the first parseable JSON object from raw model text.

    Args:
        raw_text: Model completion, possibly wrapped in prose or fences

    Returns:
        The parsed JSON object

    Raises:
        ParsingError: No '{'-delimited span exists, the span is unbalanced,
            or no span parses as a JSON object after repair. The raw text is
            carried on the error.
    """
    if not raw_text or "{" not in raw_text:
        raise ParsingError("No JSON object found in model output", raw_text=raw_text or "")

    last_error: str | None = None
    try:
        for span in iter_balanced_objects(raw_text):
            candidate = repair_json_text(span)
            try:
                value = json.loads(candidate)
            except json.JSONDecodeError as e:
                last_error = f"{e.msg} at line {e.lineno} column {e.colno}"
                logger.debug(f"Skipping unparseable JSON span ({last_error})")
                continue
            if isinstance(value, dict):
                return value
            last_error = f"Expected JSON object, got {type(value).__name__}"
    except ParsingError:
        if last_error is None:
            raise

    raise ParsingError(
        f"JSON parsing failed: {last_error or 'no balanced object found'}",
        raw_text=raw_text,
        details={"reason": last_error},
    )


def _coerce_week_count(value: Any, raw_text: str, max_weeks: int) -> int:
    if isinstance(value, bool):
        raise ItineraryValidationError(
            "Week count must be an integer", field="totalWeeks", details={"raw_text": raw_text}
        )
    if isinstance(value, str):
        match = _NUMBER_RE.fullmatch(value.strip())
        if not match:
            raise ItineraryValidationError(
                f"Week count must be an integer, got {value!r}",
                field="totalWeeks",
                details={"raw_text": raw_text},
            )
        value = float(match.group(0)) if "." in match.group(0) else int(match.group(0))
    if isinstance(value, float):
        if not value.is_integer():
            raise ItineraryValidationError(
                f"Week count must be an integer, got {value}",
                field="totalWeeks",
                details={"raw_text": raw_text},
            )
        value = int(value)
    if not isinstance(value, int):
        raise ItineraryValidationError(
            "Week count must be an integer", field="totalWeeks", details={"raw_text": raw_text}
        )
    if value < 1 or value > max_weeks:
        raise ItineraryValidationError(
            f"Week count {value} outside allowed range 1-{max_weeks}",
            field="totalWeeks",
            details={"raw_text": raw_text, "value": value},
        )
    return value


def extract_week_count(raw_text: str, max_weeks: int = 12) -> int:
    """Extract the duration-analysis answer (number of weeks).

    Accepts ``{"totalWeeks": 3}`` style objects as well as a bare integer.

    Raises:
        ParsingError: No number present at all
        ItineraryValidationError: Not an integer, or outside 1..max_weeks
    """
    text = strip_code_fences(raw_text or "").strip()
    if "{" in text:
        try:
            data = extract_json_object(text)
        except ParsingError:
            data = {}
        for key in WEEK_COUNT_KEYS:
            if key in data:
                return _coerce_week_count(data[key], raw_text, max_weeks)

    if _NUMBER_RE.fullmatch(text):
        return _coerce_week_count(text, raw_text, max_weeks)

    match = _NUMBER_RE.search(text)
    if not match:
        raise ParsingError("No week count found in model output", raw_text=raw_text or "")
    return _coerce_week_count(match.group(0), raw_text, max_weeks)
