"""Property-based tests for the merge rules.

Tests:
- Numeric updates stay within 0..100 and move at most the per-turn bound
- Numeric updates follow the sign of the delta
- Mood stickiness
- Text normalizers always produce values inside their vocabularies and limits
"""

from hypothesis import given, settings, strategies as st

from relstats.core.constants import MAX_ARRAY_ITEMS, MOOD_OPTIONS
from relstats.services.delta_applier import (
    apply_mood,
    apply_numeric_delta,
    normalize_array,
    normalize_mood,
    normalize_text_short,
    round_half_away,
)


previous_strategy = st.integers(min_value=0, max_value=100)
delta_strategy = st.floats(min_value=-1000, max_value=1000, allow_nan=False, allow_infinity=False)
confidence_strategy = st.one_of(st.none(), st.floats(min_value=-1, max_value=2, allow_nan=False))
unit_strategy = st.floats(min_value=0, max_value=1, allow_nan=False)
max_delta_strategy = st.integers(min_value=1, max_value=30)


class TestNumericDeltaProperties:
    @settings(max_examples=300)
    @given(
        previous=previous_strategy,
        delta=delta_strategy,
        confidence=confidence_strategy,
        dampening=unit_strategy,
        max_delta=max_delta_strategy,
    )
    def test_result_is_bounded(self, previous, delta, confidence, dampening, max_delta):
        """For any input the next value is an int in 0..100 within max_delta of previous."""
        result = apply_numeric_delta(previous, delta, confidence, dampening, max_delta)

        assert isinstance(result, int)
        assert 0 <= result <= 100
        assert abs(result - previous) <= max_delta

    @settings(max_examples=200)
    @given(
        previous=previous_strategy,
        delta=delta_strategy,
        confidence=confidence_strategy,
        dampening=unit_strategy,
        max_delta=max_delta_strategy,
    )
    def test_direction_follows_delta(self, previous, delta, confidence, dampening, max_delta):
        result = apply_numeric_delta(previous, delta, confidence, dampening, max_delta)

        if delta >= 0:
            assert result >= previous
        else:
            assert result <= previous

    @settings(max_examples=200)
    @given(
        previous=previous_strategy,
        delta=delta_strategy,
        confidence=confidence_strategy,
        max_delta=max_delta_strategy,
    )
    def test_zero_dampening_ignores_confidence(self, previous, delta, confidence, max_delta):
        """With dampening off the scale is 1 whatever the confidence."""
        result = apply_numeric_delta(previous, delta, confidence, 0.0, max_delta)

        assert result == apply_numeric_delta(previous, delta, 1.0, 0.0, max_delta)
        assert result == apply_numeric_delta(previous, delta, 0.0, 0.0, max_delta)

    @given(previous=previous_strategy, confidence=confidence_strategy, dampening=unit_strategy)
    def test_zero_delta_is_identity(self, previous, confidence, dampening):
        assert apply_numeric_delta(previous, 0, confidence, dampening, 15) == previous

    @given(value=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False))
    def test_rounding_is_symmetric(self, value):
        assert round_half_away(-value) == -round_half_away(value)


class TestMoodProperties:
    @given(
        previous=st.sampled_from(MOOD_OPTIONS),
        parsed=st.sampled_from(MOOD_OPTIONS),
        confidence=unit_strategy,
        stickiness=unit_strategy,
    )
    def test_stickiness_threshold(self, previous, parsed, confidence, stickiness):
        result = apply_mood(previous, parsed, confidence, stickiness)

        if confidence < stickiness:
            assert result == previous
        else:
            assert result == parsed

    @given(raw=st.text(max_size=60))
    def test_normalized_mood_is_in_vocabulary(self, raw):
        assert normalize_mood(raw) in MOOD_OPTIONS


class TestTextNormalizationProperties:
    @settings(max_examples=200)
    @given(
        items=st.lists(st.text(max_size=40), max_size=40),
        max_length=st.integers(min_value=20, max_value=200),
    )
    def test_array_is_capped_and_unique(self, items, max_length):
        result = normalize_array(items, max_length)

        assert result is not None
        assert len(result) <= MAX_ARRAY_ITEMS
        lowered = [item.lower() for item in result]
        assert len(lowered) == len(set(lowered))
        assert all(0 < len(item) <= max_length for item in result)

    @given(text=st.text(max_size=300), max_length=st.integers(min_value=20, max_value=200))
    def test_text_short_is_single_line_and_capped(self, text, max_length):
        result = normalize_text_short(text, max_length)

        if result is not None:
            assert len(result) <= max_length
            assert "\n" not in result
            assert result == result.strip()
