"""Default prompt templates.

Placeholders use ``{{name}}`` and are filled by ``render_template``.
"""

from relstats.core.constants import MOOD_OPTIONS


MAIN_PROMPT = """SYSTEM:
You are a relationship-state extraction engine. Follow the task and protocol exactly.
Stat meanings:
- affection: emotional warmth, fondness, care toward the user
- trust: perceived safety/reliability; willingness to be vulnerable
- desire: physical/romantic attraction and flirt/sexual tension
- connection: felt closeness/bond depth and emotional attunement
- mood: immediate emotional tone for this turn
- lastThought: brief internal thought grounded in recent messages
Rule:
- If the relationship is non-romantic, desire deltas must be 0 or negative.
- Do not infer romance from affection or playfulness.
Do not add commentary or roleplay."""

UNIFIED_INSTRUCTION = "\n".join([
    "- Propose incremental changes to tracker state from the recent messages.",
    "- Do NOT rewrite absolute values; provide per-stat deltas.",
    "- Keep updates conservative and realistic.",
    "- It is valid to return 0 or negative deltas if the interaction is neutral or negative.",
    "- Do not reuse the same delta for all stats unless strongly justified by context.",
    "- Use recent messages first; use character cards only to disambiguate when context is unclear.",
    "- Only increase desire if the relationship is explicitly romantic/sexual in the recent messages. "
    "If the relationship is non-romantic, desire must be 0 or negative.",
])

UNIFIED_ALL_TASK_SUFFIX = "\n".join([
    "- Update built-in and custom stats in this single response.",
    "- For custom numeric stats, use `delta.<statId>`.",
    "- For custom non-numeric stats, use `value.<statId>`.",
])

PROTOCOL_RULES = "\n".join([
    "Rules:",
    "- confidence is 0..1 (0 low confidence, 1 high confidence) and reflects your "
    "certainty in the extracted update for that character.",
    "- include one entry for each character name exactly: {{characters}}.",
    "- omit fields for stats that are not requested.",
    "- output JSON only, no commentary.",
])

STRICT_RETRY_TEMPLATE = """SYSTEM OVERRIDE:
Return ONLY valid JSON.
No prose. No roleplay. No markdown except optional ```json fences.
If uncertain, still return best-effort JSON with required keys.

{{basePrompt}}"""

REPAIR_MOOD_TEMPLATE = """SYSTEM OVERRIDE:
Return ONLY valid JSON, no prose, no roleplay.
MANDATORY: include `mood` for every character.
Use one of allowed mood labels exactly: {{moodOptions}}.

{{basePrompt}}"""

REPAIR_LAST_THOUGHT_TEMPLATE = """SYSTEM OVERRIDE:
Return ONLY valid JSON, no prose, no roleplay.
MANDATORY: include `lastThought` for every character.
Keep it to one short sentence per character.

{{basePrompt}}"""


def _numeric_instruction(label: str, key: str) -> str:
    return "\n".join([
        f"- Propose incremental changes to {label} from the recent messages.",
        f"- Only update {key} deltas. Ignore other stats.",
        "- Keep updates conservative and realistic.",
        "- It is valid to return 0 or negative deltas if the interaction is neutral or negative.",
        "- Do not reuse the same delta for all characters unless strongly justified by context.",
        "- Use recent messages first; use character cards only to disambiguate when context is unclear.",
    ])


SEQUENTIAL_INSTRUCTIONS: dict[str, str] = {
    "affection": _numeric_instruction("AFFECTION", "affection"),
    "trust": _numeric_instruction("TRUST", "trust"),
    "desire": _numeric_instruction("DESIRE", "desire")
    + "\n- Only increase desire if the relationship is explicitly romantic/sexual in the recent messages.",
    "connection": _numeric_instruction("CONNECTION", "connection"),
    "mood": "\n".join([
        "- Determine each character's current mood toward the user.",
        "- Choose one mood label from: {{moodOptions}}.",
        "- Keep updates conservative and realistic.",
        "- Use recent messages first; use character cards only to disambiguate when context is unclear.",
    ]),
    "lastThought": "\n".join([
        "- Write a short internal thought (one sentence) each character has right now.",
        "- Keep it concise and grounded in the recent messages.",
        "- Use recent messages first; use character cards only to disambiguate when context is unclear.",
    ]),
}

CUSTOM_NUMERIC_INSTRUCTION = _numeric_instruction("{{statLabel}}", "{{statId}}")

CUSTOM_NON_NUMERIC_INSTRUCTION = "\n".join([
    "- Determine the best current value for {{statLabel}} from recent messages.",
    "- Update only {{statId}} and ignore other stats.",
    "- Return one valid value per character using the exact schema for this stat kind.",
    "- Keep updates conservative and context-grounded.",
])


def mood_options_text() -> str:
    return ", ".join(MOOD_OPTIONS)


def render_template(template: str, values: dict[str, str]) -> str:
    output = template
    for key, value in values.items():
        output = output.replace("{{" + key + "}}", value)
    return output


def build_strict_retry_prompt(base_prompt: str) -> str:
    return render_template(STRICT_RETRY_TEMPLATE, {"basePrompt": base_prompt})


def build_repair_prompt(base_prompt: str, stat_key: str) -> str:
    """Stat-specific repair wrapper; non-text stats get the strict wrapper."""
    if stat_key == "mood":
        return render_template(
            REPAIR_MOOD_TEMPLATE,
            {"basePrompt": base_prompt, "moodOptions": mood_options_text()},
        )
    if stat_key == "lastThought":
        return render_template(REPAIR_LAST_THOUGHT_TEMPLATE, {"basePrompt": base_prompt})
    return build_strict_retry_prompt(base_prompt)
