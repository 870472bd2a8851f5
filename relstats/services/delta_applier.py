"""Merging parsed values into the running stat state.

Numeric stats (built-in and custom) use the confidence-weighted bounded
delta rule, mood uses a stickiness threshold, and lastThought plus every
non-numeric custom stat use direct replacement after normalization.
First-run pairs are seeded without a request.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from relstats.core.config import ExtractionSettings
from relstats.core.constants import (
    BUILT_IN_TEXT_MAX_LENGTH,
    DEFAULT_CONFIDENCE,
    GLOBAL_TRACKER_KEY,
    MAX_ARRAY_ITEMS,
    MOOD_ALIASES,
    MOOD_OPTIONS,
    STAT_VALUE_MAX,
    STAT_VALUE_MIN,
)
from relstats.models.schemas import (
    AppliedSnapshot,
    CustomNonNumericStatistics,
    CustomNonNumericValue,
    CustomStatDefinition,
    CustomStatistics,
    CustomStatKind,
    ExtractionRequestMeta,
    ParsedDeltaResponse,
    ParsedSnapshot,
    ScopeResolutionEntry,
    Statistics,
    StatKey,
)
from relstats.services.scope_planner import CustomStatPlan, RequestBatch


logger = logging.getLogger(__name__)

_SCRIPT_LIKE = re.compile(
    r"<\s*/?\s*script\b|javascript\s*:|data\s*:\s*text/html|on[a-z]+\s*=",
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")
_ARRAY_SEPARATORS = re.compile(r"\r?\n|[,;]+")
_MOOD_LOOKUP = {label.lower(): label for label in MOOD_OPTIONS}
_MOOD_LABELS_BY_LENGTH = sorted(MOOD_OPTIONS, key=len, reverse=True)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    magnitude = math.floor(abs(value) + 0.5)
    return int(magnitude if value >= 0 else -magnitude)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def apply_numeric_delta(
    previous: float,
    delta: float,
    confidence: Optional[float],
    dampening: float,
    max_delta: float,
) -> int:
    """Apply one confidence-weighted, bounded delta.

    Args:
        previous: Current value (0..100).
        delta: Raw delta proposed by the model.
        confidence: Model confidence; missing means DEFAULT_CONFIDENCE.
        dampening: How strongly confidence scales the delta (0..1).
        max_delta: Per-turn bound on the raw delta.

    Returns:
        Next value, an integer within 0..100.
    """
    conf = clamp(DEFAULT_CONFIDENCE if confidence is None else confidence, 0.0, 1.0)
    damp = clamp(dampening, 0.0, 1.0)
    scale = (1 - damp) + conf * damp
    limit = max(1, round_half_away(max_delta))
    bounded = clamp(delta, -limit, limit)
    next_value = round_half_away(previous + round_half_away(bounded * scale))
    return int(clamp(next_value, STAT_VALUE_MIN, STAT_VALUE_MAX))


def apply_mood(previous: str, parsed: str, confidence: Optional[float], stickiness: float) -> str:
    """Keep the previous mood unless confidence reaches the stickiness threshold."""
    conf = DEFAULT_CONFIDENCE if confidence is None else confidence
    if conf < clamp(stickiness, 0.0, 1.0):
        return previous
    return parsed


def coerce_stat_value(value: Any, fallback: float) -> int:
    """Clamp a stored numeric value into 0..100, using fallback for junk."""
    if isinstance(value, bool):
        value = fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = float(fallback)
    if not math.isfinite(number):
        number = float(fallback)
    return int(clamp(round_half_away(number), STAT_VALUE_MIN, STAT_VALUE_MAX))


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

def has_script_like_content(text: str) -> bool:
    return bool(_SCRIPT_LIKE.search(text))


def normalize_mood(value: str) -> str:
    """Map a free-form mood label onto the mood vocabulary."""
    cleaned = value.strip().lower()
    if not cleaned:
        return "Neutral"
    if cleaned in _MOOD_LOOKUP:
        return _MOOD_LOOKUP[cleaned]
    if cleaned in MOOD_ALIASES:
        return MOOD_ALIASES[cleaned]
    for needle, mapped in MOOD_ALIASES.items():
        if needle in cleaned:
            return mapped
    for label in _MOOD_LABELS_BY_LENGTH:
        if label.lower() in cleaned:
            return label
    return "Neutral"


def normalize_last_thought(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed[:BUILT_IN_TEXT_MAX_LENGTH]


def normalize_text_short(value: Any, max_length: int) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = _WHITESPACE.sub(" ", value).strip()
    if not text or has_script_like_content(text):
        return None
    return text[:max_length].rstrip()


def normalize_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def normalize_enum(options: list[str], value: Any) -> Optional[str]:
    """Resolve a candidate onto an allowed option: exact, trimmed, then case-insensitive."""
    if not options or not isinstance(value, str):
        return None
    if value in options:
        return value
    trimmed = value.strip()
    if trimmed and trimmed in options:
        return trimmed
    lowered = trimmed.lower()
    if not lowered:
        return None
    for option in options:
        if option.strip().lower() == lowered:
            return option
    return None


def normalize_array(value: Any, max_length: int) -> Optional[list[str]]:
    """Split, clean, deduplicate (case-insensitively) and cap a list value."""
    if isinstance(value, str):
        candidates: Iterable[Any] = _ARRAY_SEPARATORS.split(value)
    elif isinstance(value, (list, tuple)):
        candidates = value
    else:
        return None

    items: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        text = _WHITESPACE.sub(" ", candidate).strip()
        if not text or has_script_like_content(text):
            continue
        text = text[:max_length].rstrip()
        key = text.lower()
        if key in seen:
            continue
        seen.add(key)
        items.append(text)
        if len(items) >= MAX_ARRAY_ITEMS:
            break
    return items


def normalize_custom_value(definition: CustomStatDefinition, value: Any) -> Optional[CustomNonNumericValue]:
    """Normalize a non-numeric custom value by kind; None means drop it."""
    kind = definition.kind
    if kind == CustomStatKind.BOOLEAN:
        return normalize_boolean(value)
    if kind == CustomStatKind.ENUM_SINGLE:
        return normalize_enum(definition.enum_options, value)
    if kind == CustomStatKind.ARRAY:
        return normalize_array(value, definition.effective_text_max_length)
    if kind == CustomStatKind.TEXT_SHORT:
        return normalize_text_short(value, definition.effective_text_max_length)
    return None


def seed_value_for(definition: CustomStatDefinition, previous: Any) -> Optional[Any]:
    """Value a first-run pair is seeded with: the previous value, else the default."""
    if definition.is_numeric:
        default = definition.default_value
        fallback = default if isinstance(default, (int, float)) and not isinstance(default, bool) else 50
        source = previous if previous is not None else fallback
        return coerce_stat_value(source, fallback)
    if previous is not None:
        normalized = normalize_custom_value(definition, previous)
        if normalized is not None:
            return normalized
    return normalize_custom_value(definition, definition.default_value)


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------

@dataclass
class ExtractionState:
    """Mutable accumulators for one orchestrator call."""

    settings: ExtractionSettings
    active_characters: list[str]
    previous: Statistics = field(default_factory=Statistics)
    scope_resolution: dict[str, dict[str, ScopeResolutionEntry]] = field(default_factory=dict)

    output: Statistics = field(default_factory=Statistics)
    custom_output: CustomStatistics = field(default_factory=dict)
    custom_non_numeric_output: CustomNonNumericStatistics = field(default_factory=dict)
    parsed: ParsedSnapshot = field(default_factory=ParsedSnapshot)
    applied: AppliedSnapshot = field(default_factory=AppliedSnapshot)

    mood_fallback_applied: list[str] = field(default_factory=list)
    seeded: dict[str, list[str]] = field(default_factory=dict)
    requests: list[ExtractionRequestMeta] = field(default_factory=list)
    raw_outputs: list[tuple[str, str]] = field(default_factory=list)
    prompts: list[tuple[str, str]] = field(default_factory=list)

    attempts: int = 0
    request_seq: int = 0
    retry_used: bool = False
    first_parse_had_values: bool = True

    def next_attempt(self) -> int:
        self.request_seq += 1
        return self.request_seq

    def previous_custom(self, stat_id: str, owner: str) -> Any:
        entry = self.scope_resolution.get(stat_id, {}).get(owner)
        return entry.value if entry is not None else None

    def write_builtin(self, stat: StatKey, name: str, value: Any) -> None:
        self.output.for_stat(stat)[name] = value
        self.applied.statistics.for_stat(stat)[name] = value

    def write_custom(self, definition: CustomStatDefinition, owner: str, value: Any) -> None:
        if definition.is_numeric:
            self.custom_output.setdefault(definition.id, {})[owner] = value
            self.applied.custom_statistics.setdefault(definition.id, {})[owner] = value
        else:
            self.custom_non_numeric_output.setdefault(definition.id, {})[owner] = value
            self.applied.custom_non_numeric_statistics.setdefault(definition.id, {})[owner] = value


class DeltaApplier:
    """Folds parsed responses and seeds into an ExtractionState."""

    def __init__(self, settings: ExtractionSettings):
        self._settings = settings

    def apply_batch(self, state: ExtractionState, batch: RequestBatch, parsed: ParsedDeltaResponse) -> None:
        for name, value in parsed.confidence.items():
            state.parsed.confidence[name] = value
        for stat in batch.stats:
            self.apply_builtin(state, stat, parsed, batch.characters)
        for plan in batch.custom_plans:
            self.apply_custom(state, plan, parsed)

    def apply_builtin(
        self,
        state: ExtractionState,
        stat: StatKey,
        parsed: ParsedDeltaResponse,
        characters: list[str],
    ) -> None:
        settings = self._settings
        values = parsed.values_for_stat(stat)
        previous = state.previous.for_stat(stat)

        for name in characters:
            if name not in values:
                continue
            value = values[name]
            confidence = parsed.confidence_for(name)
            if stat.is_numeric:
                state.parsed.deltas.setdefault(stat.value, {})[name] = value
                prev = coerce_stat_value(previous.get(name, settings.default_for(stat)), settings.default_for(stat))
                state.write_builtin(
                    stat,
                    name,
                    apply_numeric_delta(
                        prev, value, confidence, settings.confidence_dampening, settings.max_delta_per_turn
                    ),
                )
            elif stat == StatKey.MOOD:
                state.parsed.mood[name] = value
                prev_mood = str(previous.get(name) or settings.default_mood)
                state.write_builtin(stat, name, apply_mood(prev_mood, value, confidence, settings.mood_stickiness))
            else:
                text = normalize_last_thought(value)
                if text is None:
                    continue
                state.parsed.last_thought[name] = text
                state.write_builtin(stat, name, text)

        if stat == StatKey.MOOD:
            for name in characters:
                if name in state.output.mood:
                    continue
                state.write_builtin(stat, name, str(previous.get(name) or settings.default_mood))
                if name not in state.mood_fallback_applied:
                    state.mood_fallback_applied.append(name)

    def apply_custom(self, state: ExtractionState, plan: CustomStatPlan, parsed: ParsedDeltaResponse) -> None:
        definition = plan.definition
        values = parsed.values_for_custom(definition)
        if not values:
            return

        parsed_target = state.parsed.custom if definition.is_numeric else state.parsed.custom_non_numeric
        recorded = parsed_target.setdefault(definition.id, {})
        for name in plan.request_characters:
            if name in values:
                recorded[name] = values[name]

        if definition.global_scope:
            source = next((name for name in plan.request_characters if name in values), None)
            if source is None:
                return
            self._merge_custom(state, definition, GLOBAL_TRACKER_KEY, values[source], parsed.confidence_for(source, definition.id))
            return

        for name in plan.existing:
            if name in values:
                self._merge_custom(state, definition, name, values[name], parsed.confidence_for(name, definition.id))

    def _merge_custom(
        self,
        state: ExtractionState,
        definition: CustomStatDefinition,
        owner: str,
        value: Any,
        confidence: Optional[float],
    ) -> None:
        if definition.is_numeric:
            previous = seed_value_for(definition, state.previous_custom(definition.id, owner))
            state.write_custom(
                definition,
                owner,
                apply_numeric_delta(
                    previous,
                    value,
                    confidence,
                    self._settings.confidence_dampening,
                    self._settings.max_delta_for(definition),
                ),
            )
            return
        normalized = normalize_custom_value(definition, value)
        if normalized is None:
            logger.debug(f"Dropped unnormalizable value for custom stat {definition.id} ({owner})")
            return
        state.write_custom(definition, owner, normalized)

    def seed(self, state: ExtractionState, plan: CustomStatPlan) -> None:
        """Write first-run values for a plan without issuing a request."""
        definition = plan.definition
        if not plan.first_run:
            return
        owners = [GLOBAL_TRACKER_KEY] if definition.global_scope else plan.first_run
        for owner in owners:
            value = seed_value_for(definition, state.previous_custom(definition.id, owner))
            if value is None:
                continue
            state.write_custom(definition, owner, value)
            seeded = state.seeded.setdefault(definition.id, [])
            if owner not in seeded:
                seeded.append(owner)

    def finalize(self, state: ExtractionState) -> None:
        if not self._settings.track_mood:
            mood = {name: self._settings.default_mood for name in state.active_characters}
            state.output.mood.clear()
            state.output.mood.update(mood)
