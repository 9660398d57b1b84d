"""Tests for the game clock offset sampling."""
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.clock import (
    ClockSampler,
    format_clock,
    offset_from_millis,
    sample_offset,
)

T0 = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def at_millis(ms: int) -> datetime:
    return T0 + timedelta(milliseconds=ms)


class TestOffsetSymmetry:
    def test_every_millisecond_folds_to_distance_from_boundary(self):
        for m in range(1000):
            expected = m if m < 500 else 1000 - m
            assert sample_offset(at_millis(m)) == expected

    def test_whole_second_is_zero(self):
        assert sample_offset(T0) == 0

    def test_midpoint_is_500(self):
        assert sample_offset(at_millis(500)) == 500

    def test_just_before_and_after_are_equal(self):
        assert sample_offset(at_millis(1)) == sample_offset(at_millis(999)) == 1

    def test_sub_millisecond_precision_is_truncated(self):
        assert sample_offset(T0 + timedelta(microseconds=7999)) == 7

    @pytest.mark.parametrize("bad", [-1, 1000, 5000])
    def test_out_of_range_millis_rejected(self, bad):
        with pytest.raises(ValueError):
            offset_from_millis(bad)


def test_format_clock_pads_milliseconds():
    assert format_clock(at_millis(7)) == "10:00:00:007"
    assert format_clock(datetime(2024, 1, 15, 9, 5, 3, 250000)) == "09:05:03:250"


class TestClockSampler:
    def test_sample_uses_injected_clock(self):
        sampler = ClockSampler(lambda: at_millis(996))
        reading = sampler.sample()
        assert reading.now == at_millis(996)
        assert reading.millis == 996
        assert reading.offset_ms == 4
        assert reading.display == "10:00:00:996"

    def test_sample_at_explicit_moment(self):
        sampler = ClockSampler(lambda: T0)
        reading = sampler.sample(at_millis(42))
        assert reading.offset_ms == 42

    def test_default_clock_is_timezone_aware(self):
        assert ClockSampler().now().tzinfo is not None
