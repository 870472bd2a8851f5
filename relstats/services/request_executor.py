"""One generation call with transport retry, backoff and cancellation checks."""

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Optional, Sequence

from relstats.core.config import ExtractionSettings
from relstats.core.constants import TRANSPORT_MAX_ATTEMPTS, TRANSPORT_RETRY_DELAYS_SECONDS
from relstats.core.exceptions import ExtractionCancelledError, GenerationTransportError
from relstats.models.schemas import ExtractionRequestMeta, GenerationResult, RetryType
from relstats.observability.trace_logger import TraceLogger, trace_logger
from relstats.services.base import BaseGenerator


logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]
SleepFunc = Callable[[float], Awaitable[None]]

_CANCEL_MARKERS = ("abort", "cancel")


def is_cancellation_error(error: BaseException) -> bool:
    """Whether an error raised by the transport means the call was cancelled.

    Looks at the error type name, its message and a nested ``meta.error``
    (attribute or mapping key).
    """
    parts = [type(error).__name__, str(error)]
    meta = getattr(error, "meta", None)
    if isinstance(meta, dict):
        parts.append(str(meta.get("error", "")))
    elif meta is not None:
        parts.append(str(getattr(meta, "error", "")))
    text = " ".join(parts).lower()
    return any(marker in text for marker in _CANCEL_MARKERS)


class RequestExecutor:
    """Issues generation calls and records one audit entry per success."""

    def __init__(
        self,
        generator: BaseGenerator,
        settings: ExtractionSettings,
        audit_log: list[ExtractionRequestMeta],
        is_cancelled: Optional[CancelCheck] = None,
        sleep: SleepFunc = asyncio.sleep,
        retry_delays: Sequence[float] = TRANSPORT_RETRY_DELAYS_SECONDS,
        max_attempts: int = TRANSPORT_MAX_ATTEMPTS,
        tracer: TraceLogger = trace_logger,
    ):
        self._generator = generator
        self._settings = settings
        self._audit_log = audit_log
        self._is_cancelled = is_cancelled
        self._sleep = sleep
        self._retry_delays = tuple(retry_delays)
        self._max_attempts = max(1, max_attempts)
        self._tracer = tracer

    def check_cancelled(self, stage: str) -> None:
        """Raise ExtractionCancelledError if the caller asked to stop."""
        if self._is_cancelled is not None and self._is_cancelled():
            logger.info(f"Extraction cancelled at {stage}")
            raise ExtractionCancelledError(stage=stage)

    def _backoff_delay(self, transport_try: int) -> float:
        if not self._retry_delays:
            return 0.0
        return self._retry_delays[min(transport_try, len(self._retry_delays) - 1)]

    async def execute(
        self,
        prompt: str,
        stat_list: Sequence[str],
        retry_type: RetryType = RetryType.INITIAL,
        attempt: int = 1,
    ) -> GenerationResult:
        """Run one generation call.

        Args:
            prompt: Prompt text to send.
            stat_list: Stats the request covers (for the audit log).
            retry_type: Why this request is being issued.
            attempt: Run-wide request sequence number.

        Returns:
            GenerationResult from the first successful transport attempt.

        Raises:
            ExtractionCancelledError: If cancellation is signalled or the
                transport reports an abort.
            GenerationTransportError: If every transport attempt fails.
        """
        stats = tuple(stat_list)
        last_error: Optional[Exception] = None

        for transport_try in range(self._max_attempts):
            self.check_cancelled("before_call")

            call_id = uuid.uuid4().hex
            start = time.monotonic()
            self._tracer.log_event(
                {
                    "level": "debug",
                    "type": "llm_call_start",
                    "call_id": call_id,
                    "stat_list": list(stats),
                    "retry_type": retry_type.value,
                    "attempt": attempt,
                    "transport_retry": transport_try,
                    "prompt": prompt if self._tracer.should_log_prompt() else None,
                    "prompt_len": len(prompt),
                }
            )

            try:
                result = await self._generator.generate(prompt, self._settings)
            except ExtractionCancelledError:
                raise
            except Exception as e:
                duration_ms = int((time.monotonic() - start) * 1000)
                self._tracer.log_event(
                    {
                        "level": "error",
                        "type": "llm_call_error",
                        "call_id": call_id,
                        "stat_list": list(stats),
                        "retry_type": retry_type.value,
                        "transport_retry": transport_try,
                        "duration_ms": duration_ms,
                        "error": str(e),
                    }
                )
                if is_cancellation_error(e):
                    raise ExtractionCancelledError(
                        message=f"Generation aborted: {e}",
                        stage="generation",
                    ) from e

                last_error = e
                logger.warning(
                    f"Generation attempt {transport_try + 1}/{self._max_attempts} failed "
                    f"for {list(stats)} ({retry_type.value}): {e}"
                )
                if transport_try < self._max_attempts - 1:
                    self.check_cancelled("before_backoff")
                    await self._sleep(self._backoff_delay(transport_try))
                continue

            self.check_cancelled("after_call")

            duration_ms = int((time.monotonic() - start) * 1000)
            meta = result.meta
            record = ExtractionRequestMeta(
                profile_id=meta.profile_id or self._settings.connection_profile,
                prompt_chars=meta.prompt_chars or len(prompt),
                output_chars=meta.output_chars or len(result.text),
                duration_ms=meta.duration_ms or duration_ms,
                stat_list=stats,
                attempt=attempt,
                retry_type=retry_type,
                transport_retry=transport_try,
                timestamp=time.time(),
            )
            self._audit_log.append(record)

            self._tracer.log_event(
                {
                    "level": "debug",
                    "type": "llm_call_end",
                    "call_id": call_id,
                    "stat_list": list(stats),
                    "retry_type": record.retry_label,
                    "attempt": attempt,
                    "duration_ms": record.duration_ms,
                    "output_chars": record.output_chars,
                    "profile_id": record.profile_id,
                }
            )
            logger.debug(
                f"Generation succeeded for {list(stats)} ({record.retry_label}), "
                f"{record.output_chars} chars in {record.duration_ms}ms"
            )
            return result

        raise GenerationTransportError(
            message=f"Generation failed after {self._max_attempts} attempts",
            original_error=last_error,
            attempts=self._max_attempts,
            stat_list=list(stats),
        ) from last_error
