"""
Tests for the request executor.

Covers:
1. Transport retry with backoff delays and the audit log
2. Cancellation before, after and between calls
3. Abort-like transport errors classified as cancellation
4. GenerationTransportError after the last attempt
"""

import pytest

from relstats.core.config import ExtractionSettings
from relstats.core.exceptions import ExtractionCancelledError, GenerationTransportError
from relstats.models.schemas import GenerationMeta, GenerationResult, RetryType
from relstats.services.mocks import MockGenerator
from relstats.services.request_executor import RequestExecutor, is_cancellation_error


class AbortError(Exception):
    pass


class FlakyError(Exception):
    def __init__(self, message: str, meta: dict | None = None):
        super().__init__(message)
        self.meta = meta


class CancelAfter:
    """Cancellation predicate that starts returning True after N polls."""

    def __init__(self, polls: int):
        self.remaining = polls
        self.polls = 0

    def __call__(self) -> bool:
        self.polls += 1
        if self.remaining <= 0:
            return True
        self.remaining -= 1
        return False


def _executor(generator, audit_log, instant_sleep, quiet_tracer, is_cancelled=None):
    return RequestExecutor(
        generator,
        ExtractionSettings(connection_profile="profile-a"),
        audit_log,
        is_cancelled=is_cancelled,
        sleep=instant_sleep,
        tracer=quiet_tracer,
    )


class TestIsCancellationError:
    def test_type_name(self):
        assert is_cancellation_error(AbortError("boom"))

    def test_message(self):
        assert is_cancellation_error(RuntimeError("request was Cancelled by user"))

    def test_nested_meta_error(self):
        assert is_cancellation_error(FlakyError("failed", meta={"error": "AbortSignal fired"}))

    def test_plain_failure(self):
        assert not is_cancellation_error(RuntimeError("503 service unavailable"))


class TestTransportRetry:
    @pytest.mark.asyncio
    async def test_success_records_audit_entry(self, instant_sleep, quiet_tracer):
        generator = MockGenerator(["ok"])
        audit_log = []
        executor = _executor(generator, audit_log, instant_sleep, quiet_tracer)

        result = await executor.execute("prompt", ["affection"], RetryType.INITIAL, attempt=1)

        assert result.text == "ok"
        assert len(audit_log) == 1
        record = audit_log[0]
        assert record.stat_list == ("affection",)
        assert record.retry_type == RetryType.INITIAL
        assert record.transport_retry == 0
        assert record.retry_label == "initial"
        assert record.profile_id == "mock"
        assert instant_sleep.delays == []

    @pytest.mark.asyncio
    async def test_profile_falls_back_to_settings(self, instant_sleep, quiet_tracer):
        generator = MockGenerator([GenerationResult(text="ok", meta=GenerationMeta())])
        audit_log = []
        executor = _executor(generator, audit_log, instant_sleep, quiet_tracer)

        await executor.execute("prompt", ["trust"])

        assert audit_log[0].profile_id == "profile-a"
        assert audit_log[0].prompt_chars == len("prompt")
        assert audit_log[0].output_chars == 2

    @pytest.mark.asyncio
    async def test_retries_with_backoff_then_succeeds(self, instant_sleep, quiet_tracer):
        generator = MockGenerator([RuntimeError("503"), RuntimeError("timeout"), "ok"])
        audit_log = []
        executor = _executor(generator, audit_log, instant_sleep, quiet_tracer)

        result = await executor.execute("prompt", ["mood"], RetryType.STRICT, attempt=4)

        assert result.text == "ok"
        assert generator.calls == 3
        assert instant_sleep.delays == [0.35, 1.2]
        assert audit_log[0].transport_retry == 2
        assert audit_log[0].retry_label == "strict#2"
        assert audit_log[0].attempt == 4

    @pytest.mark.asyncio
    async def test_raises_transport_error_after_last_attempt(self, instant_sleep, quiet_tracer):
        last = RuntimeError("still down")
        generator = MockGenerator([RuntimeError("down"), RuntimeError("down"), last])
        audit_log = []
        executor = _executor(generator, audit_log, instant_sleep, quiet_tracer)

        with pytest.raises(GenerationTransportError) as exc_info:
            await executor.execute("prompt", ["affection", "trust"])

        error = exc_info.value
        assert error.error_code == "transport_error"
        assert error.original_error is last
        assert error.__cause__ is last
        assert error.attempts == 3
        assert error.stat_list == ["affection", "trust"]
        assert audit_log == []
        assert instant_sleep.delays == [0.35, 1.2]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_call(self, instant_sleep, quiet_tracer):
        generator = MockGenerator(["ok"])
        executor = _executor(generator, [], instant_sleep, quiet_tracer, is_cancelled=lambda: True)

        with pytest.raises(ExtractionCancelledError) as exc_info:
            await executor.execute("prompt", ["mood"])

        assert exc_info.value.stage == "before_call"
        assert generator.calls == 0

    @pytest.mark.asyncio
    async def test_cancelled_after_call_discards_result(self, instant_sleep, quiet_tracer):
        generator = MockGenerator(["ok"])
        audit_log = []
        executor = _executor(generator, audit_log, instant_sleep, quiet_tracer, is_cancelled=CancelAfter(1))

        with pytest.raises(ExtractionCancelledError) as exc_info:
            await executor.execute("prompt", ["mood"])

        assert exc_info.value.stage == "after_call"
        assert generator.calls == 1
        assert audit_log == []

    @pytest.mark.asyncio
    async def test_cancelled_before_backoff(self, instant_sleep, quiet_tracer):
        generator = MockGenerator([RuntimeError("503"), "ok"])
        executor = _executor(generator, [], instant_sleep, quiet_tracer, is_cancelled=CancelAfter(1))

        with pytest.raises(ExtractionCancelledError) as exc_info:
            await executor.execute("prompt", ["mood"])

        assert exc_info.value.stage == "before_backoff"
        assert instant_sleep.delays == []

    @pytest.mark.asyncio
    async def test_abort_error_is_not_retried(self, instant_sleep, quiet_tracer):
        generator = MockGenerator([AbortError("aborted"), "ok"])
        executor = _executor(generator, [], instant_sleep, quiet_tracer)

        with pytest.raises(ExtractionCancelledError) as exc_info:
            await executor.execute("prompt", ["mood"])

        assert exc_info.value.error_code == "aborted"
        assert generator.calls == 1
        assert instant_sleep.delays == []
