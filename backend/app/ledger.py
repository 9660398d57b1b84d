"""Attempt ledger: append-only attempt history and the current-session view."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .models import Attempt


def record_attempt(db: Session, player_id: str, offset_ms: int, reward: int, now: datetime) -> Attempt:
    """Stage an attempt row.  The caller owns the transaction."""
    attempt = Attempt(
        player_id=player_id,
        offset_ms=offset_ms,
        reward=reward,
        created_ts_utc=now.isoformat(),
    )
    db.add(attempt)
    return attempt


def list_recent_attempts(db: Session, player_id: str, limit: Optional[int] = None) -> List[Attempt]:
    """Newest-first attempt history for a player."""
    query = (
        db.query(Attempt)
        .filter(Attempt.player_id == player_id)
        .order_by(Attempt.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def current_session_size(attempts_per_session: int, attempts_remaining: int) -> int:
    """
    Number of attempts belonging to the current session.

    There is no session foreign key; the count is derived from the counter:
    - attempts_remaining > 0  -> attempts made so far
    - attempts_remaining == 0 -> the whole just-completed session
    """
    if attempts_remaining > 0:
        return max(attempts_per_session - attempts_remaining, 0)
    return attempts_per_session


def list_current_session_attempts(
    db: Session,
    player_id: str,
    attempts_per_session: int,
    attempts_remaining: int,
    limit: Optional[int] = None,
) -> List[Attempt]:
    """Newest-first attempts of the current session, optionally capped by ``limit``."""
    size = current_session_size(attempts_per_session, attempts_remaining)
    if limit is not None:
        size = min(size, limit)
    if size <= 0:
        return []
    return list_recent_attempts(db, player_id, size)
