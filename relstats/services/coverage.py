"""Coverage checks: does a parsed response carry the stats it was asked for."""

from relstats.core.constants import STAT_KEYS
from relstats.models.schemas import ParsedDeltaResponse, StatKey
from relstats.services.scope_planner import RequestBatch


def _stat_has_values(parsed: ParsedDeltaResponse, batch: RequestBatch, key: str) -> bool:
    if key in STAT_KEYS:
        values = parsed.values_for_stat(StatKey(key))
        characters = batch.characters
    else:
        plan = next(plan for plan in batch.custom_plans if plan.stat_id == key)
        values = parsed.values_for_custom(plan.definition)
        characters = plan.request_characters
    return any(name in values for name in characters)


def coverage_groups(batch: RequestBatch) -> list[list[str]]:
    """Split a batch's stats into independently adoptable groups.

    A unified-all batch has one group for all built-ins plus one per custom
    stat. Any other batch is a single group.
    """
    if not batch.unified_all:
        return [batch.stat_list]
    groups: list[list[str]] = []
    if batch.stats:
        groups.append([stat.value for stat in batch.stats])
    groups.extend([plan.stat_id] for plan in batch.custom_plans)
    return groups


def group_covered(parsed: ParsedDeltaResponse, batch: RequestBatch, group: list[str]) -> bool:
    return all(_stat_has_values(parsed, batch, key) for key in group)


def missing_stats(parsed: ParsedDeltaResponse, batch: RequestBatch) -> list[str]:
    return [key for key in batch.stat_list if not _stat_has_values(parsed, batch, key)]


def has_coverage(parsed: ParsedDeltaResponse, batch: RequestBatch) -> bool:
    """Every requested stat has at least one value across the requested characters."""
    return not missing_stats(parsed, batch)


def has_any_values(parsed: ParsedDeltaResponse) -> bool:
    return bool(
        parsed.confidence
        or any(parsed.deltas.values())
        or parsed.mood
        or parsed.last_thought
        or any(parsed.custom_deltas.values())
        or any(parsed.custom_values.values())
    )
