"""Tests for the attempt ledger and its current-session view."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.db import Base
from backend.app.ledger import (
    current_session_size,
    list_current_session_attempts,
    list_recent_attempts,
    record_attempt,
)

T0 = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


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


def seed(db, player_id, offsets):
    for i, offset in enumerate(offsets):
        record_attempt(db, player_id, offset, 0, T0 + timedelta(seconds=i))
    db.commit()


@pytest.mark.parametrize(
    "per_session,remaining,expected",
    [
        (10, 10, 0),   # fresh or just reset
        (10, 7, 3),
        (10, 1, 9),
        (10, 0, 10),   # completed session, not yet reset
        (3, 5, 0),     # settings shrank mid-session
    ],
)
def test_current_session_size(per_session, remaining, expected):
    assert current_session_size(per_session, remaining) == expected


def test_recent_attempts_newest_first(db):
    seed(db, "p1", [30, 20, 10])
    seed(db, "p2", [99])

    assert [a.offset_ms for a in list_recent_attempts(db, "p1")] == [10, 20, 30]
    assert [a.offset_ms for a in list_recent_attempts(db, "p1", 2)] == [10, 20]


def test_view_only_includes_current_session(db):
    # Five from an earlier session, then two from the current one.
    seed(db, "p1", [1, 2, 3, 4, 5, 60, 70])

    view = list_current_session_attempts(db, "p1", attempts_per_session=5, attempts_remaining=3)
    assert [a.offset_ms for a in view] == [70, 60]


def test_view_of_completed_session(db):
    seed(db, "p1", [1, 2, 3, 4, 5, 6])

    view = list_current_session_attempts(db, "p1", attempts_per_session=5, attempts_remaining=0)
    assert [a.offset_ms for a in view] == [6, 5, 4, 3, 2]


def test_view_empty_right_after_reset(db):
    seed(db, "p1", [1, 2, 3])
    assert list_current_session_attempts(db, "p1", attempts_per_session=3, attempts_remaining=3) == []


def test_view_respects_limit(db):
    seed(db, "p1", [1, 2, 3, 4])
    view = list_current_session_attempts(db, "p1", attempts_per_session=5, attempts_remaining=1, limit=2)
    assert [a.offset_ms for a in view] == [4, 3]


def test_record_attempt_stores_iso_timestamp(db):
    attempt = record_attempt(db, "p1", 12, 10, T0)
    db.commit()
    db.refresh(attempt)
    assert attempt.id is not None
    assert attempt.created_ts_utc == "2024-01-15T10:00:00+00:00"
    assert attempt.reward == 10
