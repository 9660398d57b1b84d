"""Reward table lookup for attempt offsets."""
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardBand:
    """Inclusive offset range [min_ms, max_ms] worth ``reward``.

    ``max_ms`` of None means the band is open-ended.
    """
    min_ms: int
    max_ms: Optional[int]
    reward: int

    def contains(self, offset: int) -> bool:
        return offset >= self.min_ms and (self.max_ms is None or offset <= self.max_ms)

    def to_dict(self) -> dict:
        return {"min": self.min_ms, "max": self.max_ms, "reward": self.reward}


DEFAULT_REWARD_BANDS: List[RewardBand] = [
    RewardBand(0, 0, 33),
    RewardBand(1, 10, 15),
    RewardBand(11, 50, 10),
    RewardBand(51, 100, 5),
    RewardBand(101, None, 3),
]


def resolve_reward(offset: int, bands: Optional[Sequence[RewardBand]] = None) -> int:
    """
    Reward for an offset.

    - None or empty ``bands`` -> DEFAULT_REWARD_BANDS
    - bands are checked in ascending ``min_ms`` order, first match wins
    - an offset no band covers scores 0
    """
    if not bands:
        bands = DEFAULT_REWARD_BANDS

    for band in sorted(bands, key=lambda b: b.min_ms):
        if band.contains(offset):
            return band.reward

    logger.warning("No reward band covers offset %d ms; scoring 0", offset)
    return 0


def _parse_band(item: Any) -> Optional[RewardBand]:
    if not isinstance(item, dict):
        return None
    reward = item.get("reward", item.get("smiles"))
    lo = item.get("min")
    hi = item.get("max")
    for value in (lo, reward):
        if isinstance(value, bool) or not isinstance(value, int):
            return None
    if hi is not None and (isinstance(hi, bool) or not isinstance(hi, int)):
        return None
    if lo < 0 or reward < 0 or (hi is not None and hi < lo):
        return None
    return RewardBand(lo, hi, reward)


def parse_reward_bands(raw: Any) -> Optional[List[RewardBand]]:
    """Parse stored band configuration.

    Accepts a JSON string or an already-decoded list of
    ``{"min", "max", "reward"}`` mappings (``smiles`` is accepted in place of
    ``reward``).  Returns None when the configuration is absent, empty or any
    entry is malformed, so the caller falls back to the defaults.
    """
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, list) or not raw:
        return None

    bands = []
    for item in raw:
        band = _parse_band(item)
        if band is None:
            return None
        bands.append(band)
    return bands


def dump_reward_bands(bands: Iterable[RewardBand]) -> str:
    return json.dumps([b.to_dict() for b in bands])


def reward_emojis(count: int) -> str:
    """One smile per reward point, capped at 50."""
    if count <= 0:
        return ""
    return "\U0001f60a" * min(count, 50)

