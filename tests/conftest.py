"""Shared fixtures for the extraction engine tests."""

import json

import pytest

from relstats.core.config import ExtractionSettings, TraceConfig
from relstats.observability.trace_logger import TraceLogger


def _character_response(rows: list[dict]) -> str:
    return json.dumps({"characters": rows})


class RecordingSleep:
    """Instant replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings() -> ExtractionSettings:
    return ExtractionSettings()


@pytest.fixture
def respond():
    """Serialize character rows into the response shape the parser accepts."""
    return _character_response


@pytest.fixture
def instant_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def quiet_tracer(tmp_path) -> TraceLogger:
    return TraceLogger(
        file_path=str(tmp_path / "trace.jsonl"),
        config=TraceConfig(enabled=False),
    )
