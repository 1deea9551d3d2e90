"""
Recovery of JSON from completion-model responses.

Responses are frequently wrapped in prose or code fences, truncated at the
token ceiling, or degenerate into repeated garbage ("/6/6/6/6/..."). Parsing
escalates through three stages and never raises:

1. direct parse (after stripping fences and surrounding prose)
2. repair: truncate at degenerate repetition, close an unterminated string,
   complete dangling keys, append missing closers in nesting order, drop
   trailing commas
3. partial extraction: the longest element-aligned prefix that parses once
   auto-closed

When all stages fail the caller gets an empty, well-formed result.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```[a-zA-Z]*\s*(.*?)```", re.DOTALL)
_OPEN_FENCE = re.compile(r"```[a-zA-Z]*\s*")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_REPEATED_UNIT = re.compile(r'([^"\s]{1,3}?)\1{5,}')
_SAFE_BOUNDARY = re.compile(r"[,}\]:]")


class ParseStatus(str, Enum):
    PARSED = "parsed"
    REPAIRED = "repaired"
    PARTIAL = "partial"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ParseOutcome:
    """Parsed value plus how it was obtained."""

    status: ParseStatus
    value: Any
    error: Optional[str] = None

    @property
    def recovered(self) -> bool:
        return self.status != ParseStatus.FALLBACK


@dataclass
class _ScanState:
    in_string: bool = False
    escape: bool = False
    string_start: int = -1
    stack: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Return the content of the first fenced block, or the text unfenced."""
    m = _FENCED_BLOCK.search(text)
    if m:
        return m.group(1).strip()
    m = _OPEN_FENCE.search(text)
    if m:
        # Truncated response: the closing fence never arrived
        return text[m.end():].strip()
    return text.strip()


def _first_bracket(text: str) -> int:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    return min(starts) if starts else -1


def _json_region(text: str) -> str:
    """Trim prose before the first bracket and after the last closer."""
    start = _first_bracket(text)
    if start == -1:
        return text
    end = max(text.rfind("}"), text.rfind("]"))
    if end < start:
        return text[start:]
    return text[start : end + 1]


def _loads(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def find_corruption(text: str, *, min_repeats: int = 6, long_run: int = 24) -> Optional[int]:
    """
    Index of the first degenerate repetition, or None.

    A short unit containing punctuation ("/6", "-=") repeated min_repeats
    times is treated as corruption. Single characters and purely
    alphanumeric units need long_run repeats, so numbers such as 1000000
    are left alone.
    """
    for m in _REPEATED_UNIT.finditer(text):
        unit = m.group(1)
        count = len(m.group(0)) // len(unit)
        threshold = min_repeats if len(unit) > 1 and not unit.isalnum() else long_run
        if count >= threshold:
            return m.start()
    return None


def _scan(text: str) -> _ScanState:
    state = _ScanState()
    for i, ch in enumerate(text):
        if state.in_string:
            if state.escape:
                state.escape = False
            elif ch == "\\":
                state.escape = True
            elif ch == '"':
                state.in_string = False
            continue
        if ch == '"':
            state.in_string = True
            state.string_start = i
        elif ch == "{":
            state.stack.append("}")
        elif ch == "[":
            state.stack.append("]")
        elif ch in "}]" and state.stack and state.stack[-1] == ch:
            state.stack.pop()
    return state


def _previous_significant(text: str, index: int) -> str:
    i = index - 1
    while i >= 0 and text[i].isspace():
        i -= 1
    return text[i] if i >= 0 else ""


def auto_close(text: str) -> str:
    """Close an unterminated string and every open container, in order."""
    state = _scan(text)
    repaired = text
    if state.in_string:
        if state.escape:
            repaired = repaired[:-1]
        repaired += '"'

    repaired = repaired.rstrip()
    if repaired.endswith(":"):
        repaired += " null"
    elif repaired.endswith(","):
        repaired = repaired[:-1]
    elif (
        repaired.endswith('"')
        and state.stack
        and state.stack[-1] == "}"
        and _previous_significant(repaired, state.string_start) in ("{", ",")
    ):
        # A key with no value
        repaired += ": null"

    repaired += "".join(reversed(state.stack))
    return _TRAILING_COMMA.sub(r"\1", repaired)


def repair_candidates(text: str) -> List[str]:
    """
    Candidate repairs for a truncated or corrupted JSON document.

    The first candidate closes an unterminated string where it ends; the
    second closes it before the nearest delimiter inside it.
    """
    cut = find_corruption(text)
    if cut is not None:
        logger.debug(f"Truncating model response at degenerate repetition (index {cut})")
        text = text[:cut]

    candidates = [auto_close(text)]
    state = _scan(text)
    if state.in_string:
        tail_start = state.string_start + 1
        m = _SAFE_BOUNDARY.search(text, tail_start)
        if m:
            boundary = m.start()
            candidates.append(auto_close(text[:boundary] + '"' + text[boundary:]))
    return candidates


def repair_json(text: str) -> Optional[Any]:
    """Parse JSON directly or after repair; None when both fail."""
    cleaned = strip_code_fences(text or "")
    for candidate in (cleaned, _json_region(cleaned)):
        value = _loads(candidate)
        if value is not None:
            return value
    start = _first_bracket(cleaned)
    if start == -1:
        return None
    for candidate in repair_candidates(cleaned[start:]):
        value = _loads(candidate)
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------
# Shape handling
# ---------------------------------------------------------------------


def _shape(value: Any, key: str) -> Optional[dict]:
    """Coerce a parsed value into {key: [...]}, or None if implausible."""
    if isinstance(value, list):
        return {key: value}
    if not isinstance(value, dict):
        return None
    if key in value:
        items = value[key]
        if isinstance(items, dict):
            items = [items]
        return {**value, key: items if isinstance(items, list) else []}
    if "title" in value:
        return {key: [value]}
    for v in value.values():
        if isinstance(v, list) and all(isinstance(i, dict) for i in v):
            return {key: v}
    return {key: []}


def _element_boundaries(text: str) -> List[int]:
    """Prefix lengths that end on a completed element (outside strings)."""
    positions: List[int] = []
    in_string = escape = False
    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "}]":
            positions.append(i + 1)
        elif ch == ",":
            positions.append(i)
    return positions


def _parse_prefix(text: str, key: str) -> Optional[dict]:
    value = _loads(auto_close(text))
    return _shape(value, key) if value is not None else None


def extract_partial(text: str, *, key: str = "events") -> Optional[dict]:
    """
    Longest element-aligned prefix of text that parses once auto-closed.

    Bisects over element boundaries first (prefixes before the damage parse,
    prefixes after it do not), then walks down linearly if bisection found
    nothing.
    """
    positions = _element_boundaries(text)
    if not positions:
        return None

    lo, hi = 0, len(positions) - 1
    best: Optional[dict] = None
    while lo <= hi:
        mid = (lo + hi) // 2
        shaped = _parse_prefix(text[: positions[mid]], key)
        if shaped is not None:
            best = shaped
            lo = mid + 1
        else:
            hi = mid - 1
    if best is not None:
        return best

    for pos in reversed(positions):
        shaped = _parse_prefix(text[:pos], key)
        if shaped is not None:
            return shaped
    return None


# ---------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------


def parse_model_response(text: Optional[str], *, key: str = "events") -> ParseOutcome:
    """
    Parse a completion response into {key: [...]}.

    Never raises. The outcome's status says which stage succeeded; on
    FALLBACK the value is {key: []}.
    """
    if not text or not text.strip():
        return ParseOutcome(ParseStatus.FALLBACK, {key: []}, "empty response")

    cleaned = strip_code_fences(text)
    for candidate in (cleaned, _json_region(cleaned)):
        value = _loads(candidate)
        shaped = _shape(value, key) if value is not None else None
        if shaped is not None:
            return ParseOutcome(ParseStatus.PARSED, shaped)

    start = _first_bracket(cleaned)
    if start == -1:
        return ParseOutcome(ParseStatus.FALLBACK, {key: []}, "no JSON found in response")
    body = cleaned[start:]

    for candidate in repair_candidates(body):
        value = _loads(candidate)
        shaped = _shape(value, key) if value is not None else None
        if shaped is not None:
            return ParseOutcome(ParseStatus.REPAIRED, shaped)

    partial = extract_partial(body, key=key)
    if partial is not None:
        logger.info(f"Recovered {len(partial[key])} items from a damaged response")
        return ParseOutcome(ParseStatus.PARTIAL, partial)

    logger.warning(f"Unable to recover JSON from response ({len(text)} chars)")
    return ParseOutcome(ParseStatus.FALLBACK, {key: []}, "unrecoverable response")
