"""Default JSON response parsers.

Every function here is pure and never raises on malformed input: anything
that cannot be read degrades to an empty or partial ParsedDeltaResponse.

Accepted response shape::

    {"characters": [{"name": ..., "confidence": 0.0,
                     "delta": {"affection": 3, "<customId>": -2},
                     "value": {"<customId>": ...},
                     "mood": "...", "lastThought": "..."}]}

A mapping keyed by character name is accepted in place of the list.
"""

import json
import logging
import math
import re
from typing import Any, Iterable, Optional

from relstats.core.constants import NUMERIC_STAT_KEYS
from relstats.models.schemas import CustomStatDefinition, ParsedDeltaResponse
from relstats.services.base import BaseResponseParser
from relstats.services.delta_applier import (
    normalize_custom_value,
    normalize_last_thought,
    normalize_mood,
    round_half_away,
)
from relstats.services.scope_planner import RequestBatch


logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_GREEDY_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def _balanced_objects(text: str) -> list[str]:
    """Extract top-level brace-balanced substrings, ignoring braces in strings."""
    objects: list[str] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for idx, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                objects.append(text[start: idx + 1])
    return objects


def safe_json_parse(raw: str) -> Any:
    """Parse model output as JSON, tolerating fences and surrounding prose.

    Returns:
        The decoded value, or None when no JSON object can be recovered.
    """
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    candidates: list[str] = [match.strip() for match in _CODE_BLOCK.findall(text)]
    candidates.extend(_balanced_objects(text))
    candidates.extend(_GREEDY_OBJECT.findall(text))
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    logger.debug(f"Could not extract JSON from response: {text[:200]}")
    return None


# ---------------------------------------------------------------------------
# Character rows
# ---------------------------------------------------------------------------

def normalize_character_name(value: Any) -> str:
    return _WHITESPACE.sub(" ", str(value if value is not None else "").strip().lower())


def resolve_character_name(
    raw_name: Any,
    characters: list[str],
    aliases: Optional[dict[str, str]] = None,
) -> Optional[str]:
    """Match a reported name to a requested character: exact, normalized, then alias."""
    trimmed = str(raw_name if raw_name is not None else "").strip()
    if not trimmed:
        return None
    if trimmed in characters:
        return trimmed
    normalized = normalize_character_name(trimmed)
    for name in characters:
        if normalize_character_name(name) == normalized:
            return name
    for alias, canonical in (aliases or {}).items():
        if normalize_character_name(alias) != normalized:
            continue
        if canonical in characters:
            return canonical
        canonical_normalized = normalize_character_name(canonical)
        for name in characters:
            if normalize_character_name(name) == canonical_normalized:
                return name
    return None


def _rows_by_name(
    parsed: Any,
    characters: list[str],
    aliases: Optional[dict[str, str]],
) -> dict[str, dict[str, Any]]:
    if not isinstance(parsed, dict):
        return {}
    rows: dict[str, dict[str, Any]] = {}
    listed = parsed.get("characters")
    if isinstance(listed, list):
        for row in listed:
            if not isinstance(row, dict):
                continue
            resolved = resolve_character_name(row.get("name"), characters, aliases)
            if resolved is not None:
                rows[resolved] = row
        return rows
    for name in characters:
        row = parsed.get(name)
        if isinstance(row, dict):
            rows[name] = row
    return rows


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _coerce_delta(value: Any, max_delta: int) -> Optional[int]:
    number = _to_number(value)
    if number is None:
        return None
    limit = max(1, round_half_away(max_delta))
    return max(-limit, min(limit, round_half_away(number)))


def _coerce_confidence(value: Any) -> Optional[float]:
    number = _to_number(value)
    if number is None:
        return None
    return max(0.0, min(1.0, number))


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _read_confidence(result: ParsedDeltaResponse, rows: dict[str, dict[str, Any]]) -> None:
    for name, row in rows.items():
        confidence = _coerce_confidence(row.get("confidence"))
        if confidence is not None:
            result.confidence[name] = confidence


def _ordered(characters: list[str], rows: dict[str, dict[str, Any]]) -> Iterable[tuple[str, dict[str, Any]]]:
    for name in characters:
        if name in rows:
            yield name, rows[name]


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def parse_unified_delta_response(
    raw: str,
    characters: list[str],
    stats: Iterable[str],
    max_delta: int = 15,
    aliases: Optional[dict[str, str]] = None,
) -> ParsedDeltaResponse:
    """Parse built-in stat deltas, mood and lastThought for ``characters``."""
    result = ParsedDeltaResponse()
    rows = _rows_by_name(safe_json_parse(raw), characters, aliases)
    _read_confidence(result, rows)
    requested = set(stats)

    for name, row in _ordered(characters, rows):
        delta_obj = row.get("delta") if isinstance(row.get("delta"), dict) else {}
        for key in NUMERIC_STAT_KEYS:
            if key not in requested:
                continue
            delta = _coerce_delta(_first_present(delta_obj.get(key), row.get(f"delta_{key}")), max_delta)
            if delta is not None:
                result.deltas[key][name] = delta
        if "mood" in requested and isinstance(row.get("mood"), str):
            text = normalize_last_thought(row["mood"])
            if text is not None:
                result.mood[name] = normalize_mood(text)
        if "lastThought" in requested:
            text = normalize_last_thought(row.get("lastThought"))
            if text is not None:
                result.last_thought[name] = text
    return result


def parse_custom_delta_response(
    raw: str,
    characters: list[str],
    stat_id: str,
    max_delta: int = 15,
    aliases: Optional[dict[str, str]] = None,
) -> ParsedDeltaResponse:
    """Parse deltas for one numeric custom stat.

    Looks at ``delta.<statId>``, then ``<statId>``, then ``value``.
    """
    result = ParsedDeltaResponse()
    rows = _rows_by_name(safe_json_parse(raw), characters, aliases)
    _read_confidence(result, rows)
    deltas: dict[str, int] = {}
    for name, row in _ordered(characters, rows):
        delta_obj = row.get("delta") if isinstance(row.get("delta"), dict) else {}
        delta = _coerce_delta(
            _first_present(delta_obj.get(stat_id), row.get(stat_id), row.get("value")),
            max_delta,
        )
        if delta is not None:
            deltas[name] = delta
    result.custom_deltas[stat_id] = deltas
    return result


def parse_custom_value_response(
    raw: str,
    characters: list[str],
    definition: CustomStatDefinition,
    aliases: Optional[dict[str, str]] = None,
) -> ParsedDeltaResponse:
    """Parse values for one non-numeric custom stat, normalized by kind.

    Looks at ``value.<statId>``, then ``<statId>``, then a scalar ``value``.
    Values that fail normalization are dropped.
    """
    result = ParsedDeltaResponse()
    rows = _rows_by_name(safe_json_parse(raw), characters, aliases)
    _read_confidence(result, rows)
    values: dict[str, Any] = {}
    for name, row in _ordered(characters, rows):
        value_obj = row.get("value")
        if isinstance(value_obj, dict):
            candidate = _first_present(value_obj.get(definition.id), row.get(definition.id))
        else:
            candidate = _first_present(row.get(definition.id), value_obj)
        normalized = normalize_custom_value(definition, candidate)
        if normalized is not None:
            values[name] = normalized
    result.custom_values[definition.id] = values
    return result


class JsonResponseParser(BaseResponseParser):
    """Dispatches a whole request batch to the per-kind parsers."""

    def parse(
        self,
        raw: str,
        characters: list[str],
        batch: RequestBatch,
        max_delta: int,
        aliases: Optional[dict[str, str]] = None,
    ) -> ParsedDeltaResponse:
        result = parse_unified_delta_response(
            raw, characters, [stat.value for stat in batch.stats], max_delta, aliases
        )
        for definition in batch.custom_stats:
            if definition.is_numeric:
                limit = definition.max_delta_per_turn or max_delta
                part = parse_custom_delta_response(raw, characters, definition.id, limit, aliases)
                result.custom_deltas[definition.id] = part.custom_deltas[definition.id]
            else:
                part = parse_custom_value_response(raw, characters, definition, aliases)
                result.custom_values[definition.id] = part.custom_values[definition.id]
        return result
