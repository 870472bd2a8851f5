"""Assembles the DebugRecord for one extraction run."""

from relstats.core.constants import NUMERIC_STAT_KEYS
from relstats.models.schemas import DebugMeta, DebugRecord
from relstats.services.delta_applier import ExtractionState


def _join_sections(sections: list[tuple[str, str]], labelled: bool) -> str:
    if not labelled:
        return sections[0][1] if sections else ""
    return "\n\n".join(f"--- {label} ---\n{text}" for label, text in sections)


def build_debug_record(
    state: ExtractionState,
    context_text: str,
    history_snapshots: int,
    stats_requested: list[str],
    custom_stats_requested: list[str],
) -> DebugRecord:
    """Snapshot the run's raw outputs, parsed/applied values and counts.

    Raw outputs and prompts are concatenated with ``--- label ---`` headers
    when the run issued more than one request. Prompt and context text are
    only included when ``include_context_in_diagnostics`` is set.
    """
    settings = state.settings
    labelled = len(state.raw_outputs) > 1 or len(state.prompts) > 1
    raw_output = _join_sections(state.raw_outputs, labelled)
    prompt_text = _join_sections(state.prompts, labelled)

    parsed = state.parsed.model_copy(deep=True)
    applied = state.applied.model_copy(deep=True)

    parsed_counts = {"confidence": len(parsed.confidence)}
    for key in NUMERIC_STAT_KEYS:
        parsed_counts[key] = len(parsed.deltas.get(key, {}))
    parsed_counts["mood"] = len(parsed.mood)
    parsed_counts["lastThought"] = len(parsed.last_thought)
    for stat_id, values in {**parsed.custom, **parsed.custom_non_numeric}.items():
        parsed_counts[stat_id] = len(values)

    applied_counts = {}
    for key in (*NUMERIC_STAT_KEYS, "mood"):
        applied_counts[key] = len(getattr(applied.statistics, key))
    applied_counts["lastThought"] = len(applied.statistics.last_thought)
    for stat_id, values in {**applied.custom_statistics, **applied.custom_non_numeric_statistics}.items():
        applied_counts[stat_id] = len(values)

    include_context = settings.include_context_in_diagnostics
    return DebugRecord(
        raw_model_output=raw_output,
        prompt_text=prompt_text if include_context else None,
        context_text=context_text if include_context else None,
        parsed=parsed,
        applied=applied,
        meta=DebugMeta(
            prompt_chars=len(prompt_text),
            context_chars=len(context_text),
            history_snapshots=history_snapshots,
            active_characters=list(state.active_characters),
            stats_requested=list(stats_requested),
            custom_stats_requested=list(custom_stats_requested),
            attempts=state.attempts,
            extraction_mode="sequential" if settings.sequential_extraction else "unified",
            retry_used=state.retry_used,
            first_parse_had_values=state.first_parse_had_values,
            raw_length=len(raw_output),
            parsed_counts=parsed_counts,
            applied_counts=applied_counts,
            mood_fallback_applied=list(state.mood_fallback_applied),
            seeded={stat_id: list(owners) for stat_id, owners in state.seeded.items()},
            requests=list(state.requests),
            scope_resolution={
                stat_id: dict(entries) for stat_id, entries in state.scope_resolution.items()
            },
        ),
    )
