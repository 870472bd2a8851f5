"""Abstract base classes for the engine's external collaborators.

This module defines the abstract interfaces for:
- BaseGenerator: Text generation transport
- BaseResponseParser: Raw response text to ParsedDeltaResponse
- BasePromptBuilder: RequestBatch plus context to prompt text
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from relstats.core.config import ExtractionSettings
from relstats.models.schemas import (
    CustomNonNumericStatistics,
    CustomStatistics,
    GenerationResult,
    ParsedDeltaResponse,
    Statistics,
    TrackerSnapshot,
)
from relstats.services.scope_planner import RequestBatch


@dataclass
class PromptContext:
    """Conversation state a prompt builder may draw on."""

    settings: ExtractionSettings
    user_name: str
    context_text: str
    previous_statistics: Statistics = field(default_factory=Statistics)
    previous_custom_statistics: CustomStatistics = field(default_factory=dict)
    previous_custom_non_numeric_statistics: CustomNonNumericStatistics = field(default_factory=dict)
    history: list[TrackerSnapshot] = field(default_factory=list)
    preferred_character_name: Optional[str] = None


class BaseGenerator(ABC):
    """Abstract base class for the generation transport.

    Implementations may raise any exception on failure. Errors whose name
    or message mention "abort" or "cancel" are treated as cancellations.
    """

    @abstractmethod
    async def generate(self, prompt: str, settings: ExtractionSettings) -> GenerationResult:
        """Send one prompt and return the response text with call metadata.

        Args:
            prompt: Fully-built prompt text.
            settings: Settings for the current run (profile, token override).

        Returns:
            GenerationResult with text and meta.
        """
        ...


class BaseResponseParser(ABC):
    """Abstract base class for response parsing. Must never raise."""

    @abstractmethod
    def parse(
        self,
        raw: str,
        characters: list[str],
        batch: RequestBatch,
        max_delta: int,
        aliases: Optional[dict[str, str]] = None,
    ) -> ParsedDeltaResponse:
        """Parse one response for the stats requested by ``batch``.

        Args:
            raw: Response text, possibly wrapped in prose or fences.
            characters: Names values may be reported for.
            batch: The request the response answers.
            max_delta: Global per-turn delta bound.
            aliases: Display name to canonical name map.

        Returns:
            ParsedDeltaResponse, empty when nothing usable was found.
        """
        ...


class BasePromptBuilder(ABC):
    """Abstract base class for prompt construction. Must be pure."""

    @abstractmethod
    def build(self, batch: RequestBatch, context: PromptContext) -> str:
        """Build the prompt text for one request batch."""
        ...
