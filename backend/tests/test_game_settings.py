"""Tests for session settings loading and degradation to defaults."""
import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.db import Base
from backend.app.game_settings import (
    SessionSettings,
    get_session_settings,
    update_session_settings,
)
from backend.app.models import GameSettings
from backend.app.rewards import DEFAULT_REWARD_BANDS, RewardBand


@pytest.fixture(scope="function")
def db():
    """Fresh in-memory database session per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    engine.dispose()


def test_missing_row_yields_defaults(db):
    settings = get_session_settings(db)
    assert settings == SessionSettings()
    assert settings.attempts_per_session == 10
    assert settings.cooldown_minutes == 60
    assert settings.reward_bands == DEFAULT_REWARD_BANDS


def test_stored_values_are_used(db):
    db.add(GameSettings(
        id=1,
        attempts_per_session=3,
        cooldown_minutes=15,
        reward_bands_json=json.dumps([{"min": 0, "max": None, "reward": 7}]),
    ))
    db.commit()

    settings = get_session_settings(db)
    assert settings.attempts_per_session == 3
    assert settings.cooldown_minutes == 15
    assert settings.reward_bands == [RewardBand(0, None, 7)]


def test_malformed_fields_fall_back_individually(db, caplog):
    db.add(GameSettings(id=1, attempts_per_session=0, cooldown_minutes=None, reward_bands_json="[{]"))
    db.commit()

    with caplog.at_level("WARNING"):
        settings = get_session_settings(db)

    assert settings.attempts_per_session == 10
    assert settings.cooldown_minutes == 60
    assert settings.reward_bands == DEFAULT_REWARD_BANDS
    assert "attempts_per_session" in caplog.text
    assert "reward_bands_json" in caplog.text


def test_empty_band_list_uses_defaults(db):
    db.add(GameSettings(id=1, attempts_per_session=5, cooldown_minutes=5, reward_bands_json="[]"))
    db.commit()
    assert get_session_settings(db).reward_bands == DEFAULT_REWARD_BANDS


def test_update_creates_then_patches_row(db):
    settings = update_session_settings(db, attempts_per_session=4)
    assert settings.attempts_per_session == 4
    assert settings.cooldown_minutes == 60

    settings = update_session_settings(
        db, cooldown_minutes=30, reward_bands=[RewardBand(0, 5, 20), RewardBand(6, None, 2)]
    )
    assert settings.attempts_per_session == 4
    assert settings.cooldown_minutes == 30
    assert settings.reward_bands == [RewardBand(0, 5, 20), RewardBand(6, None, 2)]
    assert db.query(GameSettings).count() == 1
