# Service Layer

from relstats.services.base import (
    BaseGenerator,
    BasePromptBuilder,
    BaseResponseParser,
    PromptContext,
)
from relstats.services.mocks import MockGenerator
from relstats.services.orchestrator import (
    StatExtractionOrchestrator,
    extract_statistics_parallel,
)
from relstats.services.prompt_builder import TemplatePromptBuilder
from relstats.services.response_parser import JsonResponseParser
from relstats.core.exceptions import (
    ConfigurationError,
    ExtractionCancelledError,
    GenerationTransportError,
)

__all__ = [
    # Abstract base classes
    "BaseGenerator",
    "BasePromptBuilder",
    "BaseResponseParser",
    "PromptContext",
    # Default implementations
    "JsonResponseParser",
    "TemplatePromptBuilder",
    "MockGenerator",
    # Orchestration
    "StatExtractionOrchestrator",
    "extract_statistics_parallel",
    # Exceptions
    "ConfigurationError",
    "ExtractionCancelledError",
    "GenerationTransportError",
]
