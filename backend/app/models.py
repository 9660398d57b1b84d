"""SQLAlchemy ORM models."""
from sqlalchemy import Column, Integer, String, Text

from .db import Base


class PlayerSession(Base):
    """Current session state, one row per player, reset in place."""
    __tablename__ = "player_sessions"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(String, unique=True, index=True, nullable=False)
    attempts_remaining = Column(Integer, nullable=False)
    last_attempt_at = Column(String, nullable=True)  # ISO-8601 UTC
    best_offset_ms = Column(Integer, nullable=True)
    best_reward = Column(Integer, nullable=False, default=0)
    sessions_started = Column(Integer, nullable=False, default=1)
    created_ts_utc = Column(String, nullable=False)
    updated_ts_utc = Column(String, nullable=False)


class Attempt(Base):
    """Append-only record of an accepted attempt."""
    __tablename__ = "attempts"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(String, index=True, nullable=False)
    offset_ms = Column(Integer, nullable=False)
    reward = Column(Integer, nullable=False)  # locked in at submission time
    created_ts_utc = Column(String, index=True, nullable=False)


class GameSettings(Base):
    """Singleton settings row (id = 1)."""
    __tablename__ = "game_settings"

    id = Column(Integer, primary_key=True, default=1)
    attempts_per_session = Column(Integer, nullable=True)
    cooldown_minutes = Column(Integer, nullable=True)
    reward_bands_json = Column(Text, nullable=True)  # JSON array of bands
