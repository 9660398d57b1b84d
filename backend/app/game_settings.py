"""Session settings: attempts per session, cooldown and reward bands."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from .models import GameSettings
from .rewards import DEFAULT_REWARD_BANDS, RewardBand, dump_reward_bands, parse_reward_bands
from .settings import DEFAULT_ATTEMPTS_PER_SESSION, DEFAULT_COOLDOWN_MINUTES

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1


@dataclass(frozen=True)
class SessionSettings:
    attempts_per_session: int = DEFAULT_ATTEMPTS_PER_SESSION
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES
    reward_bands: List[RewardBand] = field(default_factory=lambda: list(DEFAULT_REWARD_BANDS))


def _positive_or_default(value, default: int, name: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    if value is not None:
        logger.warning("Invalid %s=%r in game_settings; using %d", name, value, default)
    return default


def settings_from_row(row: Optional[GameSettings]) -> SessionSettings:
    """Build effective settings, substituting defaults field by field."""
    if row is None:
        return SessionSettings()

    bands = parse_reward_bands(row.reward_bands_json)
    if bands is None:
        if row.reward_bands_json is not None:
            logger.warning("Malformed reward_bands_json in game_settings; using default bands")
        bands = list(DEFAULT_REWARD_BANDS)

    return SessionSettings(
        attempts_per_session=_positive_or_default(
            row.attempts_per_session, DEFAULT_ATTEMPTS_PER_SESSION, "attempts_per_session"
        ),
        cooldown_minutes=_positive_or_default(
            row.cooldown_minutes, DEFAULT_COOLDOWN_MINUTES, "cooldown_minutes"
        ),
        reward_bands=bands,
    )


def get_session_settings(db: Session) -> SessionSettings:
    """Current settings; never fails on missing or malformed configuration."""
    row = db.query(GameSettings).filter(GameSettings.id == SETTINGS_ROW_ID).first()
    return settings_from_row(row)


def update_session_settings(
    db: Session,
    attempts_per_session: Optional[int] = None,
    cooldown_minutes: Optional[int] = None,
    reward_bands: Optional[List[RewardBand]] = None,
) -> SessionSettings:
    """Upsert the settings row.  Fields left as None keep their stored value.

    Sessions already in progress keep their counters and locked-in rewards;
    the new values apply from the next attempt on.
    """
    row = db.query(GameSettings).filter(GameSettings.id == SETTINGS_ROW_ID).first()
    if row is None:
        row = GameSettings(id=SETTINGS_ROW_ID)
        db.add(row)

    if attempts_per_session is not None:
        row.attempts_per_session = attempts_per_session
    if cooldown_minutes is not None:
        row.cooldown_minutes = cooldown_minutes
    if reward_bands is not None:
        row.reward_bands_json = dump_reward_bands(reward_bands)

    db.commit()
    db.refresh(row)
    logger.info(
        "Game settings updated: attempts_per_session=%s cooldown_minutes=%s",
        row.attempts_per_session, row.cooldown_minutes,
    )
    return settings_from_row(row)
