# Data Models
#
# Entry-point models live in relstats.models.api, which depends on
# relstats.core.config; import them from there directly.

from relstats.models.schemas import (
    AppliedSnapshot,
    CustomNonNumericStatistics,
    CustomNonNumericValue,
    CustomStatDefinition,
    CustomStatistics,
    CustomStatKind,
    DebugMeta,
    DebugRecord,
    ExtractionRequestMeta,
    GenerationMeta,
    GenerationResult,
    ParsedDeltaResponse,
    ParsedSnapshot,
    RetryType,
    ScopeResolutionEntry,
    Statistics,
    StatKey,
    TrackerSnapshot,
)

__all__ = [
    "StatKey",
    "CustomStatKind",
    "RetryType",
    "CustomNonNumericValue",
    "CustomStatistics",
    "CustomNonNumericStatistics",
    "CustomStatDefinition",
    "Statistics",
    "TrackerSnapshot",
    "ParsedDeltaResponse",
    "GenerationMeta",
    "GenerationResult",
    "ExtractionRequestMeta",
    "ScopeResolutionEntry",
    "ParsedSnapshot",
    "AppliedSnapshot",
    "DebugMeta",
    "DebugRecord",
]
