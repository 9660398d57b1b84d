"""Session state machine: attempt acceptance, cooldown and session resets.

A player's session moves through three phases:

    ACTIVE             attempts_remaining > 0
    EXHAUSTED_COOLING  attempts_remaining == 0, cooldown still running
    EXHAUSTED_READY    attempts_remaining == 0, cooldown over

EXHAUSTED_READY never persists: the next submitted attempt resets the
session and is accepted as its first attempt, in one transaction.

The transition helpers (``reset_state``, ``apply_attempt``) are pure and
operate on ``SessionState`` values; ``submit_attempt`` and ``reset_session``
wrap them with per-player locking and a single commit.
"""
import logging
import math
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterator, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .clock import utc_now
from .game_settings import SessionSettings, get_session_settings
from .ledger import record_attempt
from .models import Attempt, PlayerSession
from .rewards import resolve_reward, reward_emojis

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    ACTIVE = "active"
    EXHAUSTED_COOLING = "exhausted_cooling"
    EXHAUSTED_READY = "exhausted_ready"


class RejectionReason(str, Enum):
    COOLDOWN_ACTIVE = "cooldown_active"
    NO_ATTEMPTS_LEFT = "no_attempts_left"


class PersistenceError(Exception):
    """Storage failed; nothing from the call was committed."""


@dataclass(frozen=True)
class SessionState:
    player_id: str
    attempts_remaining: int
    last_attempt_at: Optional[datetime] = None
    best_offset_ms: Optional[int] = None
    best_reward: int = 0
    sessions_started: int = 1


@dataclass(frozen=True)
class AttemptRecord:
    id: int
    player_id: str
    offset_ms: int
    reward: int
    created_at: datetime


@dataclass(frozen=True)
class Accepted:
    attempt: AttemptRecord
    state: SessionState
    session_reset: bool = False


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    state: SessionState
    retry_after: Optional[timedelta] = None


SubmitOutcome = Union[Accepted, Rejected]


# ----------------------------
# Time helpers
# ----------------------------

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return _as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


# ----------------------------
# Pure state transitions
# ----------------------------

def fresh_state(player_id: str, settings: SessionSettings) -> SessionState:
    return SessionState(player_id=player_id, attempts_remaining=settings.attempts_per_session)


def cooldown_elapsed(state: SessionState, settings: SessionSettings, now: datetime) -> bool:
    """True once ``cooldown_minutes`` have passed since the last attempt.

    The boundary itself counts as elapsed.  An exhausted session with no
    recorded last attempt has nothing to wait for.
    """
    if state.last_attempt_at is None:
        return True
    return _as_utc(now) - state.last_attempt_at >= timedelta(minutes=settings.cooldown_minutes)


def session_phase(state: SessionState, settings: SessionSettings, now: datetime) -> SessionPhase:
    if state.attempts_remaining > 0:
        return SessionPhase.ACTIVE
    if cooldown_elapsed(state, settings, now):
        return SessionPhase.EXHAUSTED_READY
    return SessionPhase.EXHAUSTED_COOLING


def get_remaining_cooldown(
    state: SessionState, settings: SessionSettings, now: datetime
) -> Optional[timedelta]:
    """Time left before a new session opens, or None if nothing to wait for."""
    if state.attempts_remaining > 0 or state.last_attempt_at is None:
        return None
    ends_at = state.last_attempt_at + timedelta(minutes=settings.cooldown_minutes)
    remaining = ends_at - _as_utc(now)
    if remaining <= timedelta(0):
        return None
    return remaining


def format_remaining_cooldown(remaining: Optional[timedelta]) -> str:
    """Human-readable wait, rounded up to whole minutes."""
    if remaining is None or remaining <= timedelta(0):
        return "available now"
    minutes = math.ceil(remaining / timedelta(minutes=1))
    if minutes <= 1:
        return "in less than a minute"
    return f"in {minutes} minutes"


def session_summary_message(state: SessionState) -> str:
    """End-of-session summary shown once all attempts are used."""
    return (
        f"Game finished! Your best result ({state.best_offset_ms} ms) earned you "
        f"{state.best_reward} smiles! {reward_emojis(state.best_reward)}"
    ).rstrip()


def reset_state(state: SessionState, settings: SessionSettings) -> SessionState:
    """Open a new session: full attempts, no best, no last attempt."""
    return replace(
        state,
        attempts_remaining=settings.attempts_per_session,
        last_attempt_at=None,
        best_offset_ms=None,
        best_reward=0,
        sessions_started=state.sessions_started + 1,
    )


def apply_attempt(state: SessionState, offset_ms: int, reward: int, now: datetime) -> SessionState:
    """
    Account for one accepted attempt.

    - best is replaced only by a strictly smaller offset, so on ties the
      earlier attempt and its reward stay
    - attempts_remaining drops by one
    - last_attempt_at becomes ``now``
    """
    if state.attempts_remaining <= 0:
        raise ValueError("cannot apply an attempt to an exhausted session")

    best_offset_ms = state.best_offset_ms
    best_reward = state.best_reward
    if best_offset_ms is None or offset_ms < best_offset_ms:
        best_offset_ms = offset_ms
        best_reward = reward

    return replace(
        state,
        attempts_remaining=state.attempts_remaining - 1,
        last_attempt_at=_as_utc(now),
        best_offset_ms=best_offset_ms,
        best_reward=best_reward,
    )


# ----------------------------
# Per-player serialization
# ----------------------------

# Entries vanish once no caller holds a reference to the lock.
_player_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def player_lock(player_id: str) -> threading.Lock:
    """Lock serializing writes for one player within this process.

    Other worker processes are not covered; against SQLite run a single
    worker, elsewhere the row lock taken by ``_locked_row`` applies.
    """
    with _registry_lock:
        lock = _player_locks.get(player_id)
        if lock is None:
            lock = _player_locks[player_id] = threading.Lock()
        return lock


@contextmanager
def _storage_guard(db: Session, action: str, player_id: str) -> Iterator[None]:
    """Roll back and raise PersistenceError on any storage failure, read or write."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Persistence failure during %s for player %s", action, player_id)
        raise PersistenceError(f"{action} failed for player {player_id}") from exc


# ----------------------------
# Storage adapter
# ----------------------------

def _state_from_row(row: PlayerSession) -> SessionState:
    return SessionState(
        player_id=row.player_id,
        attempts_remaining=row.attempts_remaining,
        last_attempt_at=parse_timestamp(row.last_attempt_at),
        best_offset_ms=row.best_offset_ms,
        best_reward=row.best_reward or 0,
        sessions_started=row.sessions_started or 1,
    )


def _write_state(row: PlayerSession, state: SessionState, now: datetime) -> None:
    row.attempts_remaining = state.attempts_remaining
    row.last_attempt_at = state.last_attempt_at.isoformat() if state.last_attempt_at else None
    row.best_offset_ms = state.best_offset_ms
    row.best_reward = state.best_reward
    row.sessions_started = state.sessions_started
    row.updated_ts_utc = _as_utc(now).isoformat()


def _attempt_record(attempt: Attempt) -> AttemptRecord:
    return AttemptRecord(
        id=attempt.id,
        player_id=attempt.player_id,
        offset_ms=attempt.offset_ms,
        reward=attempt.reward,
        created_at=parse_timestamp(attempt.created_ts_utc),
    )


def get_session_state(db: Session, player_id: str) -> Optional[SessionState]:
    """Stored state for a player, or None if the player never played."""
    row = db.query(PlayerSession).filter(PlayerSession.player_id == player_id).first()
    if row is None:
        return None
    return _state_from_row(row)


def _locked_row(db: Session, player_id: str, settings: SessionSettings, now: datetime) -> PlayerSession:
    """Re-read (or create) the player's row with a row lock where supported."""
    row = (
        db.query(PlayerSession)
        .filter(PlayerSession.player_id == player_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if row is None:
        ts = _as_utc(now).isoformat()
        row = PlayerSession(
            player_id=player_id,
            attempts_remaining=settings.attempts_per_session,
            best_reward=0,
            sessions_started=1,
            created_ts_utc=ts,
            updated_ts_utc=ts,
        )
        db.add(row)
        db.flush()
    return row


def load_session_state(
    db: Session,
    player_id: str,
    now: Optional[datetime] = None,
    settings: Optional[SessionSettings] = None,
) -> SessionState:
    """Stored state, creating a full-attempts session on first access."""
    with _storage_guard(db, "session lookup", player_id):
        state = get_session_state(db, player_id)
        if state is not None:
            return state
        settings = settings or get_session_settings(db)

    now = now or utc_now()
    with player_lock(player_id), _storage_guard(db, "session creation", player_id):
        state = _state_from_row(_locked_row(db, player_id, settings, now))
        db.commit()
    logger.info("Opened first session for player %s", player_id)
    return state


def persist_accepted_attempt(
    db: Session,
    row: PlayerSession,
    offset_ms: int,
    reward: int,
    updated_state: SessionState,
    now: datetime,
) -> AttemptRecord:
    """Append the attempt and write the new state in a single commit.

    Nothing is read back after the commit, so a failure reported by this
    function always means nothing was stored.
    """
    attempt = record_attempt(db, row.player_id, offset_ms, reward, _as_utc(now))
    _write_state(row, updated_state, now)
    db.flush()
    record = _attempt_record(attempt)
    db.commit()
    return record


# ----------------------------
# Public operations
# ----------------------------

def submit_attempt(
    db: Session,
    player_id: str,
    offset_ms: int,
    now: Optional[datetime] = None,
    settings: Optional[SessionSettings] = None,
) -> SubmitOutcome:
    """Submit one attempt for ``player_id``.

    Returns ``Accepted`` or ``Rejected``; raises PersistenceError if any read
    or the write fails, in which case neither the attempt nor the counter
    change is stored.
    """
    if offset_ms < 0:
        raise ValueError(f"offset_ms must be >= 0, got {offset_ms}")

    now = _as_utc(now or utc_now())

    with _storage_guard(db, "attempt submission", player_id):
        settings = settings or get_session_settings(db)
        snapshot = get_session_state(db, player_id) or fresh_state(player_id, settings)
    if session_phase(snapshot, settings, now) is SessionPhase.EXHAUSTED_COOLING:
        return Rejected(
            reason=RejectionReason.COOLDOWN_ACTIVE,
            state=snapshot,
            retry_after=get_remaining_cooldown(snapshot, settings, now),
        )

    with player_lock(player_id), _storage_guard(db, "attempt submission", player_id):
        row = _locked_row(db, player_id, settings, now)
        state = _state_from_row(row)

        session_reset = False
        if state.attempts_remaining <= 0:
            if not cooldown_elapsed(state, settings, now):
                # Another request took the last attempt after our snapshot.
                db.rollback()
                return Rejected(reason=RejectionReason.NO_ATTEMPTS_LEFT, state=state)
            state = reset_state(state, settings)
            session_reset = True

        reward = resolve_reward(offset_ms, settings.reward_bands)
        updated = apply_attempt(state, offset_ms, reward, now)
        attempt = persist_accepted_attempt(db, row, offset_ms, reward, updated, now)

    if session_reset:
        logger.info("Cooldown over for player %s; session %d opened", player_id, updated.sessions_started)
    logger.info(
        "Accepted attempt for player %s: offset=%dms reward=%d remaining=%d",
        player_id, offset_ms, reward, updated.attempts_remaining,
    )
    return Accepted(attempt=attempt, state=updated, session_reset=session_reset)


def reset_session(
    db: Session,
    player_id: str,
    now: Optional[datetime] = None,
    settings: Optional[SessionSettings] = None,
) -> SessionState:
    """Administrative reset: full attempts, cleared best and cooldown."""
    now = _as_utc(now or utc_now())

    with player_lock(player_id), _storage_guard(db, "session reset", player_id):
        settings = settings or get_session_settings(db)
        row = _locked_row(db, player_id, settings, now)
        state = reset_state(_state_from_row(row), settings)
        _write_state(row, state, now)
        db.commit()

    logger.info("Session manually reset for player %s", player_id)
    return state


def reset_all_sessions(
    db: Session,
    now: Optional[datetime] = None,
    settings: Optional[SessionSettings] = None,
) -> int:
    """Reset every known player; returns how many were reset."""
    now = _as_utc(now or utc_now())
    with _storage_guard(db, "bulk reset", "*"):
        settings = settings or get_session_settings(db)
        player_ids = [pid for (pid,) in db.query(PlayerSession.player_id).all()]
    for player_id in player_ids:
        reset_session(db, player_id, now=now, settings=settings)
    logger.info("Reset sessions for %d players", len(player_ids))
    return len(player_ids)
