"""Console logging setup: plain or structured JSON output."""

import json
import logging

from relstats.core.config import LoggingConfig, settings


logger = logging.getLogger(__name__)

# Extra attributes callers attach through ``logger.x(..., extra={...})``
_EXTRA_FIELDS = (
    "error_code",
    "details",
    "stat_list",
    "retry_type",
    "attempt",
    "duration_ms",
    "profile_id",
    "mode",
)


class StructuredLogFormatter(logging.Formatter):
    """
    Log formatter that outputs one JSON object per record.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as JSON.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted log string
        """
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        return json.dumps(log_entry, default=str)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """
    Set up console logging for the engine.

    Replaces any handlers already attached to the root logger.

    Args:
        config: Logging options; defaults to ``settings.logging``
    """
    config = config or settings.logging
    level = config.get_level()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    if config.use_json:
        formatter: logging.Formatter = StructuredLogFormatter()
    else:
        formatter = logging.Formatter(config.format)

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)

    logger.info(f"Logging configured: level={logging.getLevelName(level)}, json={config.use_json}")
