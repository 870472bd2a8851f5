"""Entry-point request and result models for the extraction engine.

This module defines Pydantic models for:
- ExtractionRequest: Everything one orchestrator call needs as input
- ExtractionResult: Final statistics plus the nullable debug record
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from relstats.core.config import ExtractionSettings, settings as app_settings
from relstats.models.schemas import (
    CustomNonNumericStatistics,
    CustomStatistics,
    DebugRecord,
    Statistics,
    TrackerSnapshot,
)


class ExtractionRequest(BaseModel):
    """Input for one extraction run.

    ``raw_previous_custom_statistics`` and ``raw_previous_custom_non_numeric_statistics``
    hold the previous custom maps exactly as stored, including legacy
    per-character values for stats that are now global. They drive baseline
    detection; the plain ``previous_*`` maps drive the merge.
    """

    settings: ExtractionSettings = Field(
        default_factory=lambda: app_settings.extraction.model_copy(deep=True)
    )
    user_name: str = Field(default="User", description="Display name of the user")
    active_characters: list[str] = Field(default_factory=list)
    context_text: str = ""
    previous_statistics: Optional[Statistics] = None
    previous_custom_statistics: Optional[CustomStatistics] = None
    previous_custom_non_numeric_statistics: Optional[CustomNonNumericStatistics] = None
    raw_previous_custom_statistics: Optional[dict[str, dict[str, Any]]] = None
    raw_previous_custom_non_numeric_statistics: Optional[dict[str, dict[str, Any]]] = None
    has_prior_tracker_data: bool = False
    history: list[TrackerSnapshot] = Field(default_factory=list)
    preferred_character_name: Optional[str] = None


class ExtractionResult(BaseModel):
    """Output of one extraction run."""

    statistics: Statistics = Field(default_factory=Statistics)
    custom_statistics: CustomStatistics = Field(default_factory=dict)
    custom_non_numeric_statistics: CustomNonNumericStatistics = Field(default_factory=dict)
    debug: Optional[DebugRecord] = None
