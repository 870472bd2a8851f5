"""Template-based prompt builder.

Builds one prompt per RequestBatch: a unified prompt for unified-all
batches, otherwise a per-stat prompt whose instruction block comes from
the sequential templates (built-in stat, custom numeric or custom
non-numeric). Every prompt shares the same envelope and a JSON protocol
generated from the batch's stats.
"""

import logging
from typing import Any

from relstats.core.constants import GLOBAL_TRACKER_KEY, NUMERIC_STAT_KEYS
from relstats.models.schemas import CustomStatDefinition, CustomStatKind, StatKey
from relstats.services.base import BasePromptBuilder, PromptContext
from relstats.services.delta_applier import coerce_stat_value
from relstats.services.prompts import (
    CUSTOM_NON_NUMERIC_INSTRUCTION,
    CUSTOM_NUMERIC_INSTRUCTION,
    MAIN_PROMPT,
    PROTOCOL_RULES,
    SEQUENTIAL_INSTRUCTIONS,
    UNIFIED_ALL_TASK_SUFFIX,
    UNIFIED_INSTRUCTION,
    mood_options_text,
    render_template,
)
from relstats.services.scope_planner import RequestBatch


logger = logging.getLogger(__name__)

HISTORY_SNAPSHOT_LIMIT = 3


def _primary_character(characters: list[str], preferred: str | None) -> str:
    if preferred and preferred in characters:
        return preferred
    return characters[0] if characters else ""


def _format_non_numeric(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return "[" + ", ".join(f'"{item}"' for item in value) + "]"
    return f'"{value}"'


def _value_rule(definition: CustomStatDefinition) -> str:
    kind = definition.kind
    if kind == CustomStatKind.ENUM_SINGLE:
        options = [option.strip() for option in definition.enum_options if option.strip()]
        rule = f"- {definition.id} (enum_single): one of [{', '.join(options) or 'none'}]."
    elif kind == CustomStatKind.BOOLEAN:
        rule = (
            f"- {definition.id} (boolean): strict true/false "
            f"(true={definition.boolean_true_label}, false={definition.boolean_false_label})."
        )
    elif kind == CustomStatKind.ARRAY:
        rule = (
            f"- {definition.id} (array): list of short items, max 20, each max "
            f"{definition.effective_text_max_length} chars."
        )
    else:
        rule = (
            f"- {definition.id} (text_short): one concise single-line text, max "
            f"{definition.effective_text_max_length} chars."
        )
    if definition.description:
        rule += f" Meaning: {definition.description}"
    return rule


def _value_sample(definition: CustomStatDefinition) -> str:
    if definition.kind == CustomStatKind.BOOLEAN:
        return "false"
    if definition.kind == CustomStatKind.ARRAY:
        return "[]"
    return '""'


class TemplatePromptBuilder(BasePromptBuilder):
    """Default prompt builder driven by the templates in ``prompts``."""

    def build(self, batch: RequestBatch, context: PromptContext) -> str:
        settings = context.settings
        instruction, max_delta = self._instruction(batch, context)
        values = {
            "user": context.user_name,
            "userName": context.user_name,
            "char": _primary_character(batch.characters, context.preferred_character_name),
            "characters": ", ".join(batch.characters),
            "maxDelta": str(max_delta),
            "moodOptions": mood_options_text(),
        }
        if len(batch.custom_plans) == 1 and not batch.unified_all:
            definition = batch.custom_plans[0].definition
            values["statId"] = definition.id
            values["statLabel"] = definition.label

        sections = [
            MAIN_PROMPT,
            "",
            f"User: {context.user_name}",
            f"Characters: {', '.join(batch.characters)}",
            "",
            "Recent messages:",
            context.context_text,
            "",
            "Current tracker state:",
            self._current_lines(batch, context),
            "",
            "Recent tracker snapshots:",
            self._history_lines(batch, context),
            "",
            "Task:",
            render_template(instruction, values),
        ]
        if batch.unified_all and batch.custom_plans:
            sections.append(UNIFIED_ALL_TASK_SUFFIX)
        sections.extend(["", render_template(self._protocol(batch, max_delta), values)])
        prompt = "\n".join(sections)
        logger.debug(f"Built prompt for {batch.label}: {len(prompt)} chars (profile={settings.connection_profile or 'default'})")
        return prompt

    def _instruction(self, batch: RequestBatch, context: PromptContext) -> tuple[str, int]:
        settings = context.settings
        if batch.unified_all or len(batch.stat_list) != 1:
            return settings.prompt_template_unified.strip() or UNIFIED_INSTRUCTION, settings.max_delta_per_turn
        if batch.stats:
            stat = batch.stats[0]
            template = settings.sequential_template_for(stat).strip() or SEQUENTIAL_INSTRUCTIONS[stat.value]
            return template, settings.max_delta_per_turn
        definition = batch.custom_plans[0].definition
        if definition.is_numeric:
            template = settings.prompt_template_custom_numeric.strip() or CUSTOM_NUMERIC_INSTRUCTION
            return template, settings.max_delta_for(definition)
        template = settings.prompt_template_custom_non_numeric.strip() or CUSTOM_NON_NUMERIC_INSTRUCTION
        return template, settings.max_delta_per_turn

    def _state_chunks(
        self,
        name: str,
        batch: RequestBatch,
        context: PromptContext,
        statistics,
        custom: dict,
        custom_non_numeric: dict,
        clamp_values: bool,
    ) -> list[str]:
        settings = context.settings
        chunks: list[str] = []
        for stat in batch.stats:
            if stat.value in NUMERIC_STAT_KEYS:
                default = settings.default_for(stat)
                raw = statistics.for_stat(stat).get(name, default)
                value = coerce_stat_value(raw, default) if clamp_values else raw
                chunks.append(f"{stat.value}={value}")
            elif stat == StatKey.MOOD:
                chunks.append(f"mood={statistics.mood.get(name) or settings.default_mood}")
        for plan in batch.custom_plans:
            definition = plan.definition
            owner = GLOBAL_TRACKER_KEY if definition.global_scope else name
            if definition.is_numeric:
                fallback = definition.default_value if isinstance(definition.default_value, (int, float)) else 50
                raw = (custom.get(definition.id) or {}).get(owner, fallback)
                chunks.append(f"{definition.id}={coerce_stat_value(raw, fallback)}")
            else:
                raw = (custom_non_numeric.get(definition.id) or {}).get(owner, definition.default_value)
                chunks.append(f"{definition.id}={_format_non_numeric(raw)}")
        return chunks

    def _current_lines(self, batch: RequestBatch, context: PromptContext) -> str:
        lines = []
        for name in batch.characters:
            chunks = self._state_chunks(
                name,
                batch,
                context,
                context.previous_statistics,
                context.previous_custom_statistics,
                context.previous_custom_non_numeric_statistics,
                clamp_values=True,
            )
            lines.append(f"- {name}: {', '.join(chunks) if chunks else 'no prior values'}")
        return "\n".join(lines)

    def _history_lines(self, batch: RequestBatch, context: PromptContext) -> str:
        blocks = []
        for idx, snapshot in enumerate(context.history[:HISTORY_SNAPSHOT_LIMIT]):
            rows = []
            for name in batch.characters:
                chunks = self._state_chunks(
                    name,
                    batch,
                    context,
                    snapshot.statistics,
                    snapshot.custom_statistics,
                    snapshot.custom_non_numeric_statistics,
                    clamp_values=False,
                )
                rows.append(f"  - {name}: {', '.join(chunks) if chunks else 'no values'}")
            blocks.append(f"Snapshot {idx + 1} (newest-{idx}):\n" + "\n".join(rows))
        return "\n".join(blocks) or "- none"

    def _protocol(self, batch: RequestBatch, max_delta: int) -> str:
        numeric_keys = [stat.value for stat in batch.stats if stat.is_numeric]
        numeric_keys += [plan.stat_id for plan in batch.custom_plans if plan.definition.is_numeric]
        text_stats = [stat.value for stat in batch.stats if not stat.is_numeric]
        non_numeric = [plan.definition for plan in batch.custom_plans if not plan.definition.is_numeric]

        lines: list[str] = []
        if numeric_keys:
            lines += [
                f"Numeric delta stats to update ({', '.join(numeric_keys)}):",
                f"- Return deltas only, each in range -{max_delta}..{max_delta}.",
                "",
            ]
        if text_stats:
            lines.append(f"Text stats to update ({', '.join(text_stats)}):")
            if "mood" in text_stats:
                lines.append("- mood must be one of: {{moodOptions}}.")
            if "lastThought" in text_stats:
                lines.append("- lastThought must be one short sentence.")
            lines.append("")
        if non_numeric:
            lines.append(f"Custom non-numeric stats to update ({', '.join(d.id for d in non_numeric)}):")
            lines.append("- Return them under `value` object per character using exact stat ids.")
            lines.extend(_value_rule(definition) for definition in non_numeric)
            lines.append("")

        entry = ['      "name": "Character Name"', '      "confidence": 0.0']
        if numeric_keys:
            deltas = ",\n".join(f'        "{key}": 0' for key in numeric_keys)
            entry.append('      "delta": {\n' + deltas + "\n      }")
        if non_numeric:
            samples = ",\n".join(f'        "{d.id}": {_value_sample(d)}' for d in non_numeric)
            entry.append('      "value": {\n' + samples + "\n      }")
        if "mood" in text_stats:
            entry.append('      "mood": "Neutral"')
        if "lastThought" in text_stats:
            entry.append('      "lastThought": ""')

        lines += [
            "Return STRICT JSON only:",
            "{",
            '  "characters": [',
            "    {",
            ",\n".join(entry),
            "    }",
            "  ]",
            "}",
            "",
            PROTOCOL_RULES,
        ]
        return "\n".join(lines)
