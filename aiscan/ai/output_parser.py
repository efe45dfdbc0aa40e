"""
Defensive extraction of the analysis JSON from free-form model text.

The model is asked for strict JSON but sometimes wraps it in prose or a
markdown fence. Candidates are tried in order, and the first one that both
decodes and matches a known result shape wins:

  1. the whole trimmed text
  2. the inside of the first ``` fence (optionally tagged json)
  3. the span from the first "{" to the last "}"
  4. the span from the first "[" to the last "]"  (per-frame arrays)
"""
import json
import re
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from aiscan.core.exceptions import ParseError
from aiscan.schemas import PerFrameResult, SummaryResult

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

PARSE_FAILURE_MESSAGE = "Failed to parse AI detection JSON from analysis output"


@dataclass(frozen=True)
class ParseOutcome:
    data: Optional[Union[SummaryResult, PerFrameResult]] = None
    error: Optional[ParseError] = None

    @property
    def ok(self) -> bool:
        return self.data is not None


def _span(text: str, open_char: str, close_char: str) -> Optional[str]:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start != -1 and end > start:
        return text[start:end + 1]
    return None


def _candidates(text: str) -> Iterator[str]:
    stripped = text.strip()
    yield stripped

    fence = _FENCE_RE.search(text)
    if fence and fence.group(1).strip():
        yield fence.group(1).strip()

    for open_char, close_char in (("{", "}"), ("[", "]")):
        span = _span(text, open_char, close_char)
        if span is not None:
            yield span


def match_shape(value) -> Optional[Union[SummaryResult, PerFrameResult]]:
    """Validate a decoded JSON value against the two known result shapes."""
    try:
        if isinstance(value, dict):
            return SummaryResult.model_validate(value)
        if isinstance(value, list):
            return PerFrameResult.model_validate({"frames": value})
    except PydanticValidationError:
        return None
    return None


def parse_analysis_output(raw_text: Optional[str]) -> ParseOutcome:
    """Never raises; returns either a validated result or a ParseError."""
    if not raw_text or not isinstance(raw_text, str) or not raw_text.strip():
        return ParseOutcome(error=ParseError("Empty analysis text", error_code="empty_output"))

    seen = set()
    for candidate in _candidates(raw_text):
        if candidate in seen:
            continue
        seen.add(candidate)
        try:
            value = json.loads(candidate)
        except (ValueError, RecursionError):
            continue
        result = match_shape(value)
        if result is not None:
            return ParseOutcome(data=result)

    return ParseOutcome(error=ParseError(PARSE_FAILURE_MESSAGE, error_code="unparseable_output"))
