"""Property-based tests for coverage checks and group adoption.

Tests:
- has_coverage agrees with missing_stats
- Adopting groups from a retry never loses coverage already held
- A unified batch is covered exactly when every coverage group is covered
"""

from hypothesis import given, settings, strategies as st

from relstats.models.schemas import CustomStatDefinition, ParsedDeltaResponse, StatKey
from relstats.services.coverage import coverage_groups, group_covered, has_coverage, missing_stats
from relstats.services.retry_controller import adopt_groups
from relstats.services.scope_planner import CustomStatPlan, RequestBatch


CHARACTERS = ["Alice", "Bob", "Cara"]
CUSTOM = [
    CustomStatDefinition(id="respect", label="Respect"),
    CustomStatDefinition(id="tension", label="Tension", global_scope=True),
]


@st.composite
def batches(draw):
    characters = draw(st.lists(st.sampled_from(CHARACTERS), min_size=1, max_size=3, unique=True))
    stats = draw(st.lists(st.sampled_from(list(StatKey)), max_size=6, unique=True))
    definitions = draw(st.lists(st.sampled_from(CUSTOM), max_size=2, unique_by=lambda d: d.id))
    plans = []
    for definition in definitions:
        existing = draw(st.lists(st.sampled_from(characters), min_size=1, unique=True))
        plans.append(CustomStatPlan(definition, list(characters), existing=existing))
    if not stats and not plans:
        stats = [StatKey.TRUST]
    return RequestBatch(
        characters=list(characters),
        stats=stats,
        custom_plans=plans,
        unified_all=draw(st.booleans()),
    )


@st.composite
def parses(draw):
    names = st.sampled_from(CHARACTERS)
    small_ints = st.integers(min_value=-15, max_value=15)
    parsed = ParsedDeltaResponse(
        confidence=draw(st.dictionaries(names, st.floats(min_value=0, max_value=1), max_size=3)),
        mood=draw(st.dictionaries(names, st.just("Happy"), max_size=3)),
        last_thought=draw(st.dictionaries(names, st.just("thought"), max_size=3)),
        custom_deltas={
            definition.id: draw(st.dictionaries(names, small_ints, max_size=3))
            for definition in CUSTOM
        },
    )
    for key in ("affection", "trust", "desire", "connection"):
        parsed.deltas[key] = draw(st.dictionaries(names, small_ints, max_size=3))
    return parsed


class TestCoverageProperties:
    @settings(max_examples=200)
    @given(batch=batches(), parsed=parses())
    def test_has_coverage_matches_missing_stats(self, batch, parsed):
        assert has_coverage(parsed, batch) == (missing_stats(parsed, batch) == [])

    @settings(max_examples=200)
    @given(batch=batches(), parsed=parses())
    def test_covered_iff_every_group_covered(self, batch, parsed):
        groups = coverage_groups(batch)
        assert has_coverage(parsed, batch) == all(group_covered(parsed, batch, g) for g in groups)

    @settings(max_examples=200)
    @given(batch=batches(), best=parses(), candidate=parses())
    def test_adoption_never_loses_coverage(self, batch, best, candidate):
        merged, adopted = adopt_groups(best, candidate, batch)

        for group in coverage_groups(batch):
            if group_covered(best, batch, group) or group_covered(candidate, batch, group):
                assert group_covered(merged, batch, group)
        if not adopted:
            assert merged == best
