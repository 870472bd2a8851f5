"""
Engine configuration using Pydantic Settings.
Supports loading from environment variables, .env files and YAML.
"""

import logging
import os
from typing import Any, Literal, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relstats.core.constants import MAX_CUSTOM_STATS, NUMERIC_STAT_KEYS, STAT_KEYS
from relstats.core.exceptions import ConfigurationError
from relstats.models.schemas import CustomStatDefinition, StatKey


class ExtractionSettings(BaseSettings):
    """Fully-resolved options for one extraction run.

    Validated once at construction; the engine never re-reads raw options.
    """

    model_config = SettingsConfigDict(env_prefix="TRACKER_", extra="ignore")

    # Mode and concurrency
    sequential_extraction: bool = False
    max_concurrent_calls: int = Field(default=2, ge=1, le=8)

    # Merge rules
    max_delta_per_turn: int = Field(default=15, ge=1, le=30)
    confidence_dampening: float = Field(default=0.65, ge=0.0, le=1.0)
    mood_stickiness: float = Field(default=0.6, ge=0.0, le=1.0)

    # Retry ladder
    strict_json_repair: bool = True
    max_retries_per_stat: int = Field(default=2, ge=0, le=4)

    # Built-in stat toggles
    track_affection: bool = True
    track_trust: bool = True
    track_desire: bool = True
    track_connection: bool = True
    track_mood: bool = True
    track_last_thought: bool = True
    last_thought_private: bool = False

    # User-side extraction
    user_track_mood: bool = True
    user_track_last_thought: bool = True

    # Defaults for first-run seeding
    default_affection: int = Field(default=50, ge=0, le=100)
    default_trust: int = Field(default=50, ge=0, le=100)
    default_desire: int = Field(default=50, ge=0, le=100)
    default_connection: int = Field(default=50, ge=0, le=100)
    default_mood: str = "Neutral"

    # Diagnostics and transport
    include_context_in_diagnostics: bool = False
    connection_profile: str = ""
    max_tokens_override: int = Field(default=0, ge=0)

    # Prompt template overrides (empty means built-in default)
    prompt_template_unified: str = ""
    prompt_templates_sequential: dict[str, str] = Field(default_factory=dict)
    prompt_template_custom_numeric: str = ""
    prompt_template_custom_non_numeric: str = ""

    custom_stats: list[CustomStatDefinition] = Field(default_factory=list)

    @field_validator("custom_stats")
    @classmethod
    def _validate_custom_stats(cls, value: list[CustomStatDefinition]) -> list[CustomStatDefinition]:
        if len(value) > MAX_CUSTOM_STATS:
            raise ValueError(f"At most {MAX_CUSTOM_STATS} custom stats are allowed, got {len(value)}")
        seen: set[str] = set()
        for definition in value:
            if definition.id in seen:
                raise ValueError(f"Duplicate custom stat id '{definition.id}'")
            seen.add(definition.id)
        return value

    @field_validator("prompt_templates_sequential")
    @classmethod
    def _validate_sequential_templates(cls, value: dict[str, str]) -> dict[str, str]:
        unknown = [key for key in value if key not in STAT_KEYS]
        if unknown:
            raise ValueError(f"Unknown stat keys in sequential templates: {unknown}")
        return value

    def tracks(self, stat: StatKey) -> bool:
        """Whether a built-in stat is enabled."""
        if stat == StatKey.LAST_THOUGHT:
            return self.track_last_thought
        return bool(getattr(self, f"track_{stat.value}"))

    def enabled_stats(self) -> list[StatKey]:
        return [stat for stat in StatKey if self.tracks(stat)]

    def enabled_custom_stats(self) -> list[CustomStatDefinition]:
        return [definition for definition in self.custom_stats if definition.track]

    def default_for(self, stat: StatKey) -> Any:
        if stat.value in NUMERIC_STAT_KEYS:
            return getattr(self, f"default_{stat.value}")
        if stat == StatKey.MOOD:
            return self.default_mood
        return ""

    def max_delta_for(self, definition: Optional[CustomStatDefinition] = None) -> int:
        if definition is not None and definition.max_delta_per_turn is not None:
            return definition.max_delta_per_turn
        return self.max_delta_per_turn

    def sequential_template_for(self, stat: StatKey) -> str:
        return self.prompt_templates_sequential.get(stat.value, "")

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "ExtractionSettings":
        """Build settings from a plain mapping.

        Args:
            data: Raw option values keyed by field name.

        Returns:
            Validated ExtractionSettings.

        Raises:
            ConfigurationError: If any option fails validation.
        """
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                message="Invalid extraction settings",
                errors=e.errors(include_url=False),
            ) from e

    @classmethod
    def from_yaml(cls, config_path: str = "tracker.yaml") -> "ExtractionSettings":
        """
        Load settings from a YAML file with environment variable overrides.

        Supports either a top-level ``tracker`` section or a flat mapping.
        A missing file yields the defaults.
        """
        config_data: dict[str, Any] = {}
        if os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            if not isinstance(yaml_data, dict):
                raise ConfigurationError(
                    message=f"Config file {config_path} must contain a mapping",
                )
            config_data = yaml_data.get("tracker", yaml_data)
        else:
            logging.getLogger(__name__).info(f"Config file {config_path} not found, using defaults")
        return cls.from_mapping(config_data)


def scope_settings_for_user(settings: ExtractionSettings) -> ExtractionSettings:
    """Return a copy of settings narrowed for user-side extraction.

    Numeric built-ins are disabled, mood and lastThought follow the
    ``user_track_*`` flags and untracked custom stats are removed.
    """
    return settings.model_copy(
        update={
            "track_affection": False,
            "track_trust": False,
            "track_desire": False,
            "track_connection": False,
            "track_mood": settings.track_mood and settings.user_track_mood,
            "track_last_thought": settings.track_last_thought and settings.user_track_last_thought,
            "custom_stats": [d for d in settings.custom_stats if d.track],
        }
    )


class TraceConfig(BaseSettings):
    """Trace logging configuration (step inputs/outputs + generation prompts)."""

    model_config = SettingsConfigDict(env_prefix="TRACE_")

    enabled: bool = False
    level: Literal["error", "info", "debug"] = "info"
    file_path: str = "logs/trace.jsonl"
    log_llm_prompt: bool = True


class LoggingConfig(BaseSettings):
    """Console logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(
        default="INFO",
        description="Main logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    use_json: bool = Field(
        default=False,
        description="Use JSON structured logging format",
    )

    def get_level(self) -> int:
        """Convert string level to logging constant."""
        return getattr(logging, self.level.upper(), logging.INFO)


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Relationship Stat Extraction Engine"
    app_version: str = "0.1.0"
    debug: bool = False

    # Sub-configurations
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    trace: TraceConfig = Field(default_factory=TraceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Global configuration instance
settings = AppConfig()
