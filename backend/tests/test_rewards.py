"""Tests for reward band resolution."""
import json

import pytest

from backend.app.rewards import (
    DEFAULT_REWARD_BANDS,
    RewardBand,
    dump_reward_bands,
    parse_reward_bands,
    resolve_reward,
    reward_emojis,
)


class TestDefaultBands:
    @pytest.mark.parametrize("bands", [None, []])
    def test_missing_bands_use_defaults(self, bands):
        assert resolve_reward(0, bands) == 33
        assert resolve_reward(150, bands) == 3

    @pytest.mark.parametrize(
        "offset,expected",
        [(0, 33), (1, 15), (10, 15), (11, 10), (50, 10), (51, 5), (100, 5), (101, 3), (500, 3)],
    )
    def test_band_edges(self, offset, expected):
        assert resolve_reward(offset) == expected


def test_reward_constant_within_each_band():
    bands = [RewardBand(0, 4, 20), RewardBand(5, 40, 8), RewardBand(41, None, 1)]
    for band in bands:
        upper = band.max_ms if band.max_ms is not None else band.min_ms + 200
        rewards = {resolve_reward(offset, bands) for offset in range(band.min_ms, upper + 1)}
        assert rewards == {band.reward}


def test_unsorted_bands_are_sorted_by_min():
    bands = [RewardBand(101, None, 3), RewardBand(0, 100, 7)]
    assert resolve_reward(60, bands) == 7
    assert resolve_reward(101, bands) == 3


def test_first_band_by_min_wins_on_overlap():
    bands = [RewardBand(5, 20, 2), RewardBand(0, 10, 9)]
    assert resolve_reward(7, bands) == 9


def test_gap_in_bands_scores_zero(caplog):
    bands = [RewardBand(0, 10, 15), RewardBand(20, None, 3)]
    with caplog.at_level("WARNING"):
        assert resolve_reward(15, bands) == 0
    assert "No reward band covers offset 15" in caplog.text


class TestParseRewardBands:
    def test_parses_json_string(self):
        raw = json.dumps([{"min": 0, "max": 0, "reward": 50}, {"min": 1, "max": None, "reward": 1}])
        assert parse_reward_bands(raw) == [RewardBand(0, 0, 50), RewardBand(1, None, 1)]

    def test_accepts_legacy_smiles_key(self):
        assert parse_reward_bands([{"min": 0, "max": None, "smiles": 4}]) == [RewardBand(0, None, 4)]

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "not json",
            "{}",
            [],
            [{"min": 0, "max": 10}],
            [{"min": "0", "max": 10, "reward": 1}],
            [{"min": 10, "max": 5, "reward": 1}],
            [{"min": -1, "max": None, "reward": 1}],
            [{"min": 0, "max": None, "reward": 1}, "oops"],
            [{"min": True, "max": None, "reward": 1}],
        ],
    )
    def test_malformed_configuration_returns_none(self, raw):
        assert parse_reward_bands(raw) is None

    def test_dump_then_parse_keeps_open_upper_bound(self):
        dumped = dump_reward_bands(DEFAULT_REWARD_BANDS)
        assert json.loads(dumped)[-1] == {"min": 101, "max": None, "reward": 3}
        assert parse_reward_bands(dumped) == DEFAULT_REWARD_BANDS


def test_reward_emojis():
    assert reward_emojis(0) == ""
    assert reward_emojis(-3) == ""
    assert reward_emojis(3) == "\U0001f60a" * 3
    assert reward_emojis(120) == "\U0001f60a" * 50
