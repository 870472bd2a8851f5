"""Tests for response coverage checks."""

from relstats.models.schemas import CustomStatDefinition, ParsedDeltaResponse, StatKey
from relstats.services.coverage import (
    coverage_groups,
    group_covered,
    has_any_values,
    has_coverage,
    missing_stats,
)
from relstats.services.scope_planner import CustomStatPlan, RequestBatch


RESPECT = CustomStatDefinition(id="respect", label="Respect")
TENSION = CustomStatDefinition(id="tension", label="Tension", global_scope=True)


def _unified_batch() -> RequestBatch:
    return RequestBatch(
        characters=["Alice", "Bob"],
        stats=[StatKey.AFFECTION, StatKey.MOOD],
        custom_plans=[
            CustomStatPlan(RESPECT, ["Alice", "Bob"], existing=["Bob"], first_run=["Alice"]),
            CustomStatPlan(TENSION, ["Alice", "Bob"], existing=["Alice", "Bob"]),
        ],
        unified_all=True,
    )


class TestCoverage:
    def test_one_value_per_stat_is_enough(self):
        batch = RequestBatch(characters=["Alice", "Bob"], stats=[StatKey.AFFECTION, StatKey.MOOD])
        parsed = ParsedDeltaResponse(mood={"Bob": "Happy"})
        parsed.deltas["affection"]["Alice"] = 2

        assert has_coverage(parsed, batch)
        assert missing_stats(parsed, batch) == []

    def test_missing_stat_is_reported(self):
        batch = RequestBatch(characters=["Alice"], stats=[StatKey.AFFECTION, StatKey.LAST_THOUGHT])
        parsed = ParsedDeltaResponse()
        parsed.deltas["affection"]["Alice"] = 2

        assert not has_coverage(parsed, batch)
        assert missing_stats(parsed, batch) == ["lastThought"]

    def test_values_for_other_characters_do_not_count(self):
        batch = RequestBatch(characters=["Alice"], stats=[StatKey.MOOD])
        parsed = ParsedDeltaResponse(mood={"Bob": "Happy"})

        assert not has_coverage(parsed, batch)

    def test_custom_coverage_uses_request_characters(self):
        batch = _unified_batch()
        parsed = ParsedDeltaResponse(
            mood={"Alice": "Happy"},
            custom_deltas={"respect": {"Alice": 3}, "tension": {"Alice": 1}},
        )
        parsed.deltas["affection"]["Alice"] = 1

        # Alice is first-run for respect, so her value does not cover it
        assert missing_stats(parsed, batch) == ["respect"]

        parsed.custom_deltas["respect"]["Bob"] = -2
        assert has_coverage(parsed, batch)


class TestCoverageGroups:
    def test_unified_all_groups_builtins_and_each_custom(self):
        assert coverage_groups(_unified_batch()) == [["affection", "mood"], ["respect"], ["tension"]]

    def test_other_batches_are_one_group(self):
        batch = RequestBatch(characters=["Alice"], stats=[StatKey.TRUST])
        assert coverage_groups(batch) == [["trust"]]

    def test_group_covered(self):
        batch = _unified_batch()
        parsed = ParsedDeltaResponse(custom_deltas={"tension": {"Bob": 4}})

        assert group_covered(parsed, batch, ["tension"])
        assert not group_covered(parsed, batch, ["affection", "mood"])


class TestHasAnyValues:
    def test_empty_parse(self):
        assert not has_any_values(ParsedDeltaResponse())

    def test_confidence_alone_counts(self):
        assert has_any_values(ParsedDeltaResponse(confidence={"Alice": 0.4}))

    def test_custom_values_count(self):
        assert has_any_values(ParsedDeltaResponse(custom_values={"stance": {"Alice": "Calm"}}))
