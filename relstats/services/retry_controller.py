"""Retry/repair ladder for responses that miss requested stats.

The ladder runs only when strict JSON repair is enabled and the initial
parse lacks coverage. With budget ``clamp(max_retries_per_stat, 0, 4)``:

1. strict retry, once;
2. stat-specific repair, once, only for single-stat requests;
3. strict-loop retries until covered or out of budget.

The first covering response wins. For unified-all batches, a retry that
covers a group the best parse is missing has that group adopted into the
best parse. Exhausting the budget is not an error.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from relstats.core.config import ExtractionSettings
from relstats.core.constants import MAX_RETRY_BUDGET
from relstats.models.schemas import ParsedDeltaResponse, RetryType, StatKey
from relstats.services.coverage import coverage_groups, group_covered, has_any_values, has_coverage
from relstats.services.prompts import build_repair_prompt, build_strict_retry_prompt
from relstats.services.request_executor import RequestExecutor
from relstats.services.scope_planner import RequestBatch


logger = logging.getLogger(__name__)

ParseFunc = Callable[[str], ParsedDeltaResponse]


@dataclass
class RetryOutcome:
    """Best parse for one batch after the ladder ran (or was skipped)."""

    prompt: str
    raw: str
    parsed: ParsedDeltaResponse
    attempts: int
    retry_used: bool
    first_parse_had_values: bool


def adopt_groups(
    best: ParsedDeltaResponse,
    candidate: ParsedDeltaResponse,
    batch: RequestBatch,
) -> tuple[ParsedDeltaResponse, bool]:
    """Copy every group covered by ``candidate`` but not by ``best``.

    Returns:
        (merged parse, whether anything was adopted). ``best`` is not mutated.
    """
    merged = best.model_copy(deep=True)
    adopted = False
    custom_ids = [plan.stat_id for plan in batch.custom_plans]
    for group in coverage_groups(batch):
        if group_covered(best, batch, group) or not group_covered(candidate, batch, group):
            continue
        adopted = True
        builtins = [stat for stat in batch.stats if stat.value in group]
        if builtins:
            # Confidence moves with the built-ins, so pin the custom stats
            # still sourced from ``best`` to best's confidence first.
            for stat_id in custom_ids:
                if stat_id not in group:
                    merged.custom_confidence.setdefault(stat_id, dict(best.confidence))
            for stat in builtins:
                if stat == StatKey.MOOD:
                    merged.mood = dict(candidate.mood)
                elif stat == StatKey.LAST_THOUGHT:
                    merged.last_thought = dict(candidate.last_thought)
                else:
                    merged.deltas[stat.value] = dict(candidate.deltas.get(stat.value, {}))
            merged.confidence = dict(candidate.confidence)

        for stat_id in custom_ids:
            if stat_id not in group:
                continue
            if stat_id in candidate.custom_deltas:
                merged.custom_deltas[stat_id] = dict(candidate.custom_deltas[stat_id])
            if stat_id in candidate.custom_values:
                merged.custom_values[stat_id] = dict(candidate.custom_values[stat_id])
            merged.custom_confidence[stat_id] = dict(candidate.confidence)
    return merged, adopted


class RetryController:
    """Drives the retry ladder for one batch through a RequestExecutor."""

    def __init__(self, settings: ExtractionSettings, executor: RequestExecutor):
        self._settings = settings
        self._executor = executor

    @property
    def budget(self) -> int:
        return max(0, min(MAX_RETRY_BUDGET, self._settings.max_retries_per_stat))

    def ladder(self, batch: RequestBatch, prompt: str) -> list[tuple[RetryType, str]]:
        """Ordered retry steps for a batch, already cut to the budget."""
        strict_prompt = build_strict_retry_prompt(prompt)
        steps = [(RetryType.STRICT, strict_prompt)]
        if len(batch.stat_list) == 1:
            steps.append((RetryType.REPAIR, build_repair_prompt(prompt, batch.stat_list[0])))
        steps.extend([(RetryType.STRICT_LOOP, strict_prompt)] * self.budget)
        return steps[: self.budget]

    async def recover(
        self,
        batch: RequestBatch,
        prompt: str,
        raw: str,
        parsed: ParsedDeltaResponse,
        parse: ParseFunc,
        next_attempt: Callable[[], int],
    ) -> RetryOutcome:
        """Run the ladder from an initial response.

        Args:
            batch: The request being repaired.
            prompt: The original prompt, wrapped by each retry template.
            raw: Initial response text.
            parsed: Initial parse.
            parse: Parses a response text for this batch.
            next_attempt: Yields the run-wide request sequence number.

        Returns:
            RetryOutcome holding the best parse found.

        Raises:
            ExtractionCancelledError, GenerationTransportError: from the executor.
        """
        outcome = RetryOutcome(
            prompt=prompt,
            raw=raw,
            parsed=parsed,
            attempts=1,
            retry_used=False,
            first_parse_had_values=has_any_values(parsed),
        )
        if has_coverage(parsed, batch) or not self._settings.strict_json_repair:
            return outcome

        raw_parts = [raw]
        for retry_type, retry_prompt in self.ladder(batch, prompt):
            outcome.attempts += 1
            outcome.retry_used = True
            logger.info(f"Retrying {batch.label} ({retry_type.value}), missing coverage")

            result = await self._executor.execute(
                retry_prompt, batch.stat_list, retry_type, next_attempt()
            )
            candidate = parse(result.text)
            if has_coverage(candidate, batch):
                outcome.raw = result.text
                outcome.parsed = candidate
                return outcome

            if batch.unified_all:
                merged, adopted = adopt_groups(outcome.parsed, candidate, batch)
                if adopted:
                    raw_parts.append(result.text)
                    outcome.parsed = merged
                    outcome.raw = "\n\n".join(raw_parts)
                    if has_coverage(merged, batch):
                        return outcome

        logger.warning(f"Retry budget exhausted for {batch.label}, using best available parse")
        return outcome
