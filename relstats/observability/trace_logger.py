"""JSONL trace sink for extraction runs and generation calls.

One JSON object per line. Events are flat dicts built by the orchestrator
(``step_start``, ``step_end``, ``extraction_error``) and the request executor
(``llm_call_start``, ``llm_call_end``, ``llm_call_error``). Prompt text is
only written when ``TraceConfig.log_llm_prompt`` is on, and long strings are
cut to ``max_str_len``.
"""

import json
import threading
import time
from pathlib import Path
from typing import Any

from relstats.core.config import TraceConfig, settings

_LEVELS_BY_THRESHOLD = {
    "debug": {"debug", "info", "error"},
    "info": {"info", "error"},
    "error": {"error"},
}


class TraceLogger:
    """Append-only JSONL writer for extraction and generation events."""

    def __init__(
        self,
        file_path: str = "logs/trace.jsonl",
        config: TraceConfig | None = None,
        max_str_len: int = 4000,
        max_list_len: int = 50,
    ):
        self._file_path = Path(file_path)
        self._config = config
        self._lock = threading.Lock()
        self._max_str_len = max_str_len
        self._max_list_len = max_list_len

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def config(self) -> TraceConfig:
        return self._config if self._config is not None else settings.trace

    def enabled(self) -> bool:
        return bool(self.config.enabled)

    def should_log_prompt(self) -> bool:
        """Check if prompts should be logged based on trace settings."""
        return self.enabled() and self.config.log_llm_prompt

    def _should_log(self, level: str) -> bool:
        if not self.enabled():
            return False
        return level in _LEVELS_BY_THRESHOLD[self.config.level]

    def log_event(self, event: dict[str, Any]) -> None:
        if not self._should_log(event.get("level") or "info"):
            return
        payload = {key: self._trim(value) for key, value in event.items()}
        payload.setdefault("ts", time.time())
        line = json.dumps(payload, ensure_ascii=False, default=str)
        with self._lock:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with self._file_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def _trim(self, value: Any) -> Any:
        if isinstance(value, str) and len(value) > self._max_str_len:
            return value[: self._max_str_len] + "...<truncated>"
        if isinstance(value, (list, tuple)):
            items = [self._trim(item) for item in value[: self._max_list_len]]
            if len(value) > self._max_list_len:
                items.append(f"<truncated {len(value) - self._max_list_len} more items>")
            return items
        if isinstance(value, dict):
            return {str(key): self._trim(item) for key, item in value.items()}
        return value


trace_logger = TraceLogger(file_path=settings.trace.file_path)
