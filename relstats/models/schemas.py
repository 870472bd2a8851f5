"""Core data models for the stat extraction engine.

This module defines Pydantic models for:
- StatKey / CustomStatKind / RetryType: closed enumerations
- CustomStatDefinition: user-defined stat configuration
- Statistics: built-in stat maps per character
- ParsedDeltaResponse: structured parser output for one request
- GenerationResult / ExtractionRequestMeta: transport results and audit records
- DebugRecord: diagnostic snapshot of one extraction run
"""

from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relstats.core.constants import (
    CUSTOM_STAT_ID_PATTERN,
    NUMERIC_STAT_KEYS,
    RESERVED_CUSTOM_STAT_IDS,
    TEXT_MAX_LENGTH_BOUNDS,
    TEXT_MAX_LENGTH_DEFAULT,
)


class StatKey(str, Enum):
    """Built-in stat keys, valued by their wire names."""

    AFFECTION = "affection"
    TRUST = "trust"
    DESIRE = "desire"
    CONNECTION = "connection"
    MOOD = "mood"
    LAST_THOUGHT = "lastThought"

    @property
    def is_numeric(self) -> bool:
        return self.value in NUMERIC_STAT_KEYS


NUMERIC_STATS: tuple[StatKey, ...] = (
    StatKey.AFFECTION,
    StatKey.TRUST,
    StatKey.DESIRE,
    StatKey.CONNECTION,
)
TEXT_STATS: tuple[StatKey, ...] = (StatKey.MOOD, StatKey.LAST_THOUGHT)


class CustomStatKind(str, Enum):
    NUMERIC = "numeric"
    ENUM_SINGLE = "enum_single"
    BOOLEAN = "boolean"
    TEXT_SHORT = "text_short"
    ARRAY = "array"


class RetryType(str, Enum):
    """Why a generation request was issued."""

    INITIAL = "initial"
    STRICT = "strict"
    REPAIR = "repair"
    STRICT_LOOP = "strict_loop"


CustomNonNumericValue = Union[bool, str, list[str]]
CustomStatistics = dict[str, dict[str, float]]
CustomNonNumericStatistics = dict[str, dict[str, CustomNonNumericValue]]


class CustomStatDefinition(BaseModel):
    """A user-defined stat tracked alongside the built-ins."""

    id: str
    kind: CustomStatKind = CustomStatKind.NUMERIC
    label: str
    description: str = ""
    default_value: Union[bool, int, float, str, list[str]] = 50
    max_delta_per_turn: Optional[int] = Field(default=None, ge=1, le=30)
    enum_options: list[str] = Field(default_factory=list)
    text_max_length: Optional[int] = None
    boolean_true_label: str = "enabled"
    boolean_false_label: str = "disabled"
    track: bool = True
    global_scope: bool = False
    private_to_owner: bool = False

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        if not CUSTOM_STAT_ID_PATTERN.match(value):
            raise ValueError(
                f"Custom stat id '{value}' must be lowercase, start with a letter "
                f"and contain 2-32 of [a-z0-9_]"
            )
        if value in RESERVED_CUSTOM_STAT_IDS:
            raise ValueError(f"Custom stat id '{value}' is reserved")
        return value

    @property
    def is_numeric(self) -> bool:
        return self.kind == CustomStatKind.NUMERIC

    @property
    def effective_text_max_length(self) -> int:
        low, high = TEXT_MAX_LENGTH_BOUNDS
        raw = self.text_max_length or TEXT_MAX_LENGTH_DEFAULT
        return max(low, min(high, int(raw)))


class Statistics(BaseModel):
    """Built-in stat values keyed by stat, then by character name."""

    model_config = ConfigDict(populate_by_name=True)

    affection: dict[str, Union[int, float]] = Field(default_factory=dict)
    trust: dict[str, Union[int, float]] = Field(default_factory=dict)
    desire: dict[str, Union[int, float]] = Field(default_factory=dict)
    connection: dict[str, Union[int, float]] = Field(default_factory=dict)
    mood: dict[str, str] = Field(default_factory=dict)
    last_thought: dict[str, str] = Field(default_factory=dict, alias="lastThought")

    def for_stat(self, stat: StatKey) -> dict:
        """Return the mutable per-character map for a stat."""
        if stat == StatKey.LAST_THOUGHT:
            return self.last_thought
        return getattr(self, stat.value)


class TrackerSnapshot(BaseModel):
    """One earlier tracker state, used only as prompt history."""

    timestamp: float = 0.0
    active_characters: list[str] = Field(default_factory=list)
    statistics: Statistics = Field(default_factory=Statistics)
    custom_statistics: CustomStatistics = Field(default_factory=dict)
    custom_non_numeric_statistics: CustomNonNumericStatistics = Field(default_factory=dict)


def _empty_deltas() -> dict[str, dict[str, int]]:
    return {key: {} for key in NUMERIC_STAT_KEYS}


class ParsedDeltaResponse(BaseModel):
    """Structured result of parsing one generation response."""

    confidence: dict[str, float] = Field(default_factory=dict)
    deltas: dict[str, dict[str, int]] = Field(default_factory=_empty_deltas)
    mood: dict[str, str] = Field(default_factory=dict)
    last_thought: dict[str, str] = Field(default_factory=dict)
    custom_deltas: dict[str, dict[str, int]] = Field(default_factory=dict)
    custom_values: dict[str, dict[str, CustomNonNumericValue]] = Field(default_factory=dict)
    # Per custom stat confidence, set when a group was adopted from another response
    custom_confidence: dict[str, dict[str, float]] = Field(default_factory=dict)

    def confidence_for(self, name: str, custom_stat_id: Optional[str] = None) -> Optional[float]:
        if custom_stat_id is not None and custom_stat_id in self.custom_confidence:
            return self.custom_confidence[custom_stat_id].get(name)
        return self.confidence.get(name)

    def values_for_stat(self, stat: StatKey) -> dict:
        if stat == StatKey.MOOD:
            return self.mood
        if stat == StatKey.LAST_THOUGHT:
            return self.last_thought
        return self.deltas.get(stat.value, {})

    def values_for_custom(self, definition: CustomStatDefinition) -> dict:
        if definition.is_numeric:
            return self.custom_deltas.get(definition.id, {})
        return self.custom_values.get(definition.id, {})


class GenerationMeta(BaseModel):
    """Call metadata reported by the generation transport."""

    profile_id: str = ""
    prompt_chars: int = 0
    output_chars: int = 0
    duration_ms: int = 0
    max_tokens: Optional[int] = None
    request_id: Optional[str] = None
    extra: dict = Field(default_factory=dict)


class GenerationResult(BaseModel):
    """Text plus metadata returned by one generation call."""

    text: str
    meta: GenerationMeta = Field(default_factory=GenerationMeta)


class ExtractionRequestMeta(BaseModel):
    """Immutable audit record for one successful generation call."""

    model_config = ConfigDict(frozen=True)

    profile_id: str
    prompt_chars: int
    output_chars: int
    duration_ms: int
    stat_list: tuple[str, ...]
    attempt: int
    retry_type: RetryType
    transport_retry: int = 0
    timestamp: float

    @property
    def retry_label(self) -> str:
        if self.transport_retry:
            return f"{self.retry_type.value}#{self.transport_retry}"
        return self.retry_type.value


class ScopeResolutionEntry(BaseModel):
    """How the previous value of a custom stat was resolved for one owner."""

    global_scope: bool
    resolved_from: Literal["global", "owner", "legacy_fallback", "none"]
    value: Any = None
    legacy_fallback_owner: Optional[str] = None


class ParsedSnapshot(BaseModel):
    """Everything the parser returned across all requests of a run."""

    confidence: dict[str, float] = Field(default_factory=dict)
    deltas: dict[str, dict[str, int]] = Field(default_factory=_empty_deltas)
    mood: dict[str, str] = Field(default_factory=dict)
    last_thought: dict[str, str] = Field(default_factory=dict)
    custom: dict[str, dict[str, int]] = Field(default_factory=dict)
    custom_non_numeric: dict[str, dict[str, CustomNonNumericValue]] = Field(default_factory=dict)


class AppliedSnapshot(BaseModel):
    """Every value written to the output during a run."""

    statistics: Statistics = Field(default_factory=Statistics)
    custom_statistics: CustomStatistics = Field(default_factory=dict)
    custom_non_numeric_statistics: CustomNonNumericStatistics = Field(default_factory=dict)


class DebugMeta(BaseModel):
    prompt_chars: int = 0
    context_chars: int = 0
    history_snapshots: int = 0
    active_characters: list[str] = Field(default_factory=list)
    stats_requested: list[str] = Field(default_factory=list)
    custom_stats_requested: list[str] = Field(default_factory=list)
    attempts: int = 0
    extraction_mode: Literal["unified", "sequential"] = "unified"
    retry_used: bool = False
    first_parse_had_values: bool = True
    raw_length: int = 0
    parsed_counts: dict[str, int] = Field(default_factory=dict)
    applied_counts: dict[str, int] = Field(default_factory=dict)
    mood_fallback_applied: list[str] = Field(default_factory=list)
    seeded: dict[str, list[str]] = Field(default_factory=dict)
    requests: list[ExtractionRequestMeta] = Field(default_factory=list)
    scope_resolution: dict[str, dict[str, ScopeResolutionEntry]] = Field(default_factory=dict)


class DebugRecord(BaseModel):
    """Diagnostic snapshot of one extraction run, owned by the caller."""

    raw_model_output: str = ""
    prompt_text: Optional[str] = None
    context_text: Optional[str] = None
    parsed: ParsedSnapshot = Field(default_factory=ParsedSnapshot)
    applied: AppliedSnapshot = Field(default_factory=AppliedSnapshot)
    meta: DebugMeta = Field(default_factory=DebugMeta)
