"""Orchestrator service for one stat extraction run.

This module implements the top-level flow that:
- Plans request scopes and seeds first-run custom stats
- Runs one unified request per scope, or per-stat worker pools in sequential mode
- Repairs uncovered responses through the retry ladder
- Folds parsed values into the output and builds the debug record
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from relstats.core.constants import PROGRESS_STEPS_PER_REQUEST, USER_TRACKER_KEY
from relstats.core.exceptions import AppException, log_exception
from relstats.models.api import ExtractionRequest, ExtractionResult
from relstats.models.schemas import ParsedDeltaResponse, RetryType, Statistics
from relstats.observability.trace_logger import TraceLogger, trace_logger
from relstats.services.base import (
    BaseGenerator,
    BasePromptBuilder,
    BaseResponseParser,
    PromptContext,
)
from relstats.services.concurrency import gather_or_cancel, run_worker_pool
from relstats.services.debug_record import build_debug_record
from relstats.services.delta_applier import DeltaApplier, ExtractionState
from relstats.services.prompt_builder import TemplatePromptBuilder
from relstats.services.request_executor import CancelCheck, RequestExecutor, SleepFunc
from relstats.services.response_parser import JsonResponseParser
from relstats.services.retry_controller import RetryController
from relstats.services.scope_planner import RequestBatch, ScopePlan, ScopePlanner


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class ProgressTracker:
    """Best-effort progress reporting; callback errors are logged, not raised."""

    def __init__(self, planned_requests: int, callback: Optional[ProgressCallback] = None):
        self.total = max(1, PROGRESS_STEPS_PER_REQUEST * planned_requests)
        self.done = 0
        self._callback = callback

    def tick(self, label: str) -> None:
        self.done = min(self.total, self.done + 1)
        self._emit(self.done, label)

    def finish(self) -> None:
        self.done = self.total
        self._emit(self.total, "Finalizing")

    def _emit(self, done: int, label: str) -> None:
        if self._callback is None:
            return
        try:
            self._callback(done, self.total, label)
        except Exception as e:
            logger.warning(f"Progress callback failed at '{label}': {e}")


@dataclass
class ExtractionRun:
    """Collaborators and state for one orchestrator call."""

    request: ExtractionRequest
    plan: ScopePlan
    state: ExtractionState
    executor: RequestExecutor
    retry: RetryController
    applier: DeltaApplier
    progress: ProgressTracker
    prompt_context: PromptContext
    aliases: dict[str, str]
    run_id: str


class StatExtractionOrchestrator:
    """Central orchestration service for relationship stat extraction.

    Flow: Scope_Planner → Seeding → Requests (unified or sequential)
    → Retry_Ladder → Delta_Applier → Debug_Record
    """

    def __init__(
        self,
        generator: BaseGenerator,
        response_parser: BaseResponseParser | None = None,
        prompt_builder: BasePromptBuilder | None = None,
        tracer: TraceLogger = trace_logger,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """Initialize the orchestrator with its collaborators.

        Args:
            generator: Generation transport.
            response_parser: Parser for responses (default JsonResponseParser).
            prompt_builder: Prompt builder (default TemplatePromptBuilder).
            tracer: Trace event sink.
            sleep: Awaitable used for transport backoff.
        """
        self.generator = generator
        self.response_parser = response_parser or JsonResponseParser()
        self.prompt_builder = prompt_builder or TemplatePromptBuilder()
        self.tracer = tracer
        self._sleep = sleep

    async def extract(
        self,
        request: ExtractionRequest,
        is_cancelled: Optional[CancelCheck] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExtractionResult:
        """Run one extraction.

        Args:
            request: Settings, characters, context and prior state.
            is_cancelled: Polled before and after each call and before each backoff.
            on_progress: Receives (done, total, label) at each checkpoint.

        Returns:
            ExtractionResult with statistics and the debug record. With no
            enabled stats or no active characters the result is empty and
            debug is None.

        Raises:
            ExtractionCancelledError: If cancellation was signalled.
            GenerationTransportError: If a request failed on every attempt.
        """
        settings = request.settings
        characters = list(request.active_characters)
        enabled_stats = settings.enabled_stats()
        enabled_custom = settings.enabled_custom_stats()
        if not characters or (not enabled_stats and not enabled_custom):
            logger.info("Nothing to extract: no enabled stats or no active characters")
            return ExtractionResult()

        run = self._prepare(request, is_cancelled, on_progress)
        mode = "sequential" if settings.sequential_extraction else "unified"
        self.tracer.log_event(
            {
                "level": "info",
                "type": "step_start",
                "step_id": run.run_id,
                "step_name": "extract_statistics",
                "mode": mode,
                "active_characters": characters,
                "stats": [stat.value for stat in enabled_stats],
                "custom_stats": [definition.id for definition in enabled_custom],
                "planned_requests": run.progress.total // PROGRESS_STEPS_PER_REQUEST,
            }
        )
        start_time = time.time()
        logger.info(
            f"Extracting {len(enabled_stats)} built-in and {len(enabled_custom)} custom stat(s) "
            f"for {len(characters)} character(s) in {mode} mode"
        )

        try:
            for custom_plan in run.plan.all_custom_plans():
                run.applier.seed(run.state, custom_plan)

            if settings.sequential_extraction:
                await self._run_sequential(run)
            else:
                await self._run_unified(run)

            run.applier.finalize(run.state)
            debug = build_debug_record(
                run.state,
                context_text=request.context_text,
                history_snapshots=len(request.history),
                stats_requested=[stat.value for stat in enabled_stats],
                custom_stats_requested=[definition.id for definition in enabled_custom],
            )
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            log_exception(e, "Stat extraction failed")
            self.tracer.log_event(
                {
                    "level": "error",
                    "type": "extraction_error",
                    "step_id": run.run_id,
                    "duration_ms": duration_ms,
                    "error_code": e.error_code if isinstance(e, AppException) else "internal_error",
                    "error": str(e),
                    "requests_logged": len(run.state.requests),
                }
            )
            raise
        finally:
            run.progress.finish()

        duration_ms = int((time.time() - start_time) * 1000)
        self.tracer.log_event(
            {
                "level": "info",
                "type": "step_end",
                "step_id": run.run_id,
                "step_name": "extract_statistics",
                "duration_ms": duration_ms,
                "attempts": run.state.attempts,
                "retry_used": run.state.retry_used,
                "applied_counts": debug.meta.applied_counts,
            }
        )
        logger.info(
            f"Extraction finished in {duration_ms}ms: {run.state.attempts} request(s), "
            f"retry_used={run.state.retry_used}"
        )
        return ExtractionResult(
            statistics=run.state.output,
            custom_statistics=run.state.custom_output,
            custom_non_numeric_statistics=run.state.custom_non_numeric_output,
            debug=debug,
        )

    def _prepare(
        self,
        request: ExtractionRequest,
        is_cancelled: Optional[CancelCheck],
        on_progress: Optional[ProgressCallback],
    ) -> ExtractionRun:
        settings = request.settings
        characters = list(request.active_characters)
        previous_custom = request.previous_custom_statistics
        previous_non_numeric = request.previous_custom_non_numeric_statistics

        raw_custom = request.raw_previous_custom_statistics
        if raw_custom is None:
            raw_custom = previous_custom
        raw_non_numeric = request.raw_previous_custom_non_numeric_statistics
        if raw_non_numeric is None:
            raw_non_numeric = previous_non_numeric

        plan = ScopePlanner(settings).plan(
            characters,
            raw_custom=raw_custom,
            raw_custom_non_numeric=raw_non_numeric,
            has_prior_tracker_data=request.has_prior_tracker_data,
            previous_custom=previous_custom,
            previous_custom_non_numeric=previous_non_numeric,
        )
        if settings.sequential_extraction:
            planned = sum(len(batches) for batches in plan.sequential_batches())
        else:
            planned = sum(len(batches) for batches in plan.unified_batches())

        state = ExtractionState(
            settings=settings,
            active_characters=characters,
            previous=request.previous_statistics or Statistics(),
            scope_resolution=plan.scope_resolution,
        )
        executor = RequestExecutor(
            self.generator,
            settings,
            state.requests,
            is_cancelled=is_cancelled,
            sleep=self._sleep,
            tracer=self.tracer,
        )
        aliases = {}
        if USER_TRACKER_KEY in characters and request.user_name:
            aliases[request.user_name] = USER_TRACKER_KEY

        return ExtractionRun(
            request=request,
            plan=plan,
            state=state,
            executor=executor,
            retry=RetryController(settings, executor),
            applier=DeltaApplier(settings),
            progress=ProgressTracker(planned, on_progress),
            prompt_context=PromptContext(
                settings=settings,
                user_name=request.user_name,
                context_text=request.context_text,
                previous_statistics=request.previous_statistics or Statistics(),
                previous_custom_statistics=previous_custom or {},
                previous_custom_non_numeric_statistics=previous_non_numeric or {},
                history=list(request.history),
                preferred_character_name=request.preferred_character_name,
            ),
            aliases=aliases,
            run_id=uuid.uuid4().hex,
        )

    async def _run_unified(self, run: ExtractionRun) -> None:
        public, private = run.plan.unified_batches()
        for batch in public:
            await self._run_batch(run, batch)
        for batch in private:
            await self._run_batch(run, batch)

    async def _run_sequential(self, run: ExtractionRun) -> None:
        public_builtin, public_custom, private_builtin, private_custom = run.plan.sequential_batches()
        concurrency = run.request.settings.max_concurrent_calls

        async def handle(batch: RequestBatch) -> None:
            await self._run_batch(run, batch)

        def before_item() -> None:
            run.executor.check_cancelled("worker")

        await gather_or_cancel(
            run_worker_pool(public_builtin, handle, concurrency, before_item, name="built-in pool"),
            run_worker_pool(public_custom, handle, concurrency, before_item, name="custom pool"),
        )
        for batch in private_builtin:
            await self._run_batch(run, batch)
        for batch in private_custom:
            await self._run_batch(run, batch)

    def _build_prompt(self, run: ExtractionRun, batch: RequestBatch) -> str:
        prompt = self.prompt_builder.build(batch, run.prompt_context)
        if USER_TRACKER_KEY in prompt and run.request.user_name:
            prompt = prompt.replace(USER_TRACKER_KEY, run.request.user_name)
        return prompt

    async def _run_batch(self, run: ExtractionRun, batch: RequestBatch) -> None:
        """Request, parse, repair and apply one batch."""
        settings = run.request.settings
        state = run.state
        label = batch.label

        def parse(text: str) -> ParsedDeltaResponse:
            return self.response_parser.parse(
                text, batch.characters, batch, settings.max_delta_per_turn, run.aliases
            )

        run.executor.check_cancelled("before_request")
        prompt = self._build_prompt(run, batch)

        run.progress.tick(f"Requesting {label}")
        result = await run.executor.execute(
            prompt, batch.stat_list, RetryType.INITIAL, state.next_attempt()
        )
        parsed = parse(result.text)
        run.progress.tick(f"Parsing {label}")

        outcome = await run.retry.recover(
            batch, prompt, result.text, parsed, parse, state.next_attempt
        )
        state.attempts += outcome.attempts
        state.retry_used = state.retry_used or outcome.retry_used
        state.first_parse_had_values = state.first_parse_had_values and outcome.first_parse_had_values
        state.raw_outputs.append((label, outcome.raw))
        state.prompts.append((label, prompt))

        run.applier.apply_batch(state, batch, outcome.parsed)
        run.progress.tick(f"Applying {label}")
        logger.debug(f"Applied {label}: attempts={outcome.attempts}, retry_used={outcome.retry_used}")


async def extract_statistics_parallel(
    request: ExtractionRequest,
    generator: BaseGenerator,
    is_cancelled: Optional[CancelCheck] = None,
    on_progress: Optional[ProgressCallback] = None,
    response_parser: BaseResponseParser | None = None,
    prompt_builder: BasePromptBuilder | None = None,
) -> ExtractionResult:
    """Run one extraction with the default (or given) collaborators."""
    orchestrator = StatExtractionOrchestrator(
        generator,
        response_parser=response_parser,
        prompt_builder=prompt_builder,
    )
    return await orchestrator.extract(request, is_cancelled=is_cancelled, on_progress=on_progress)
