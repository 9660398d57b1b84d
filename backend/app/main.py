"""FastAPI application for the whole-second clicker game."""
import csv
import io
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

from fastapi import FastAPI, Depends, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .clock import ClockSampler
from .db import ensure_schema, get_db
from .engine import (
    Accepted,
    PersistenceError,
    RejectionReason,
    SessionState,
    format_remaining_cooldown,
    get_remaining_cooldown,
    load_session_state,
    parse_timestamp,
    reset_all_sessions,
    reset_session,
    session_phase,
    session_summary_message,
    submit_attempt,
)
from .game_settings import SessionSettings, get_session_settings, update_session_settings
from .ledger import current_session_size, list_current_session_attempts
from .models import Attempt, PlayerSession
from .rewards import RewardBand, resolve_reward
from .schemas import (
    AcceptedResponse,
    AttemptResponse,
    ClockResponse,
    CooldownResponse,
    PlayerOverview,
    RejectedResponse,
    ResetAllResponse,
    RewardBandSchema,
    SessionSettingsResponse,
    SessionStateResponse,
    SettingsUpdateRequest,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
)
from .settings import ADMIN_KEY


@asynccontextmanager
async def lifespan(_app: FastAPI):
    ensure_schema()
    yield


app = FastAPI(title="Whole-Second Clicker API", version="0.1.0", lifespan=lifespan)

# CORS configuration
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS")
if _allowed_origins_env:
    allowed_origins = [origin.strip() for origin in _allowed_origins_env.split(",")]
else:
    allowed_origins = ["http://localhost:8501", "http://localhost:5173"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_clock() -> ClockSampler:
    """Dependency providing the wall clock; overridden in tests."""
    return ClockSampler()


def require_admin(x_admin_key: str = Header(...)):
    """Reject the request unless X-ADMIN-KEY matches ADMIN_KEY."""
    if not ADMIN_KEY or x_admin_key != ADMIN_KEY:
        raise HTTPException(status_code=403, detail="Invalid or missing admin key")


def _settings_response(settings: SessionSettings) -> SessionSettingsResponse:
    return SessionSettingsResponse(
        attempts_per_session=settings.attempts_per_session,
        cooldown_minutes=settings.cooldown_minutes,
        reward_bands=[RewardBandSchema(**band.to_dict()) for band in settings.reward_bands],
    )


def _session_response(state: SessionState, settings: SessionSettings, now) -> SessionStateResponse:
    remaining: Optional[timedelta] = get_remaining_cooldown(state, settings, now)
    return SessionStateResponse(
        player_id=state.player_id,
        attempts_remaining=state.attempts_remaining,
        attempts_per_session=settings.attempts_per_session,
        attempts_made=current_session_size(settings.attempts_per_session, state.attempts_remaining),
        last_attempt_at=state.last_attempt_at,
        best_offset_ms=state.best_offset_ms,
        best_reward=state.best_reward,
        sessions_started=state.sessions_started,
        phase=session_phase(state, settings, now).value,
        cooldown_remaining_seconds=remaining.total_seconds() if remaining else None,
        cooldown_message=format_remaining_cooldown(remaining) if remaining else None,
    )


def _persistence_failure(exc: PersistenceError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"Storage unavailable, please retry: {exc}")


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(_request, exc: SQLAlchemyError):
    """Database failures outside the engine (settings, listings) are 503 too."""
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable, please retry"})


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/clock", response_model=ClockResponse)
def read_clock(clock: ClockSampler = Depends(get_clock)):
    """Current server clock reading and its offset from the whole second."""
    reading = clock.sample()
    return ClockResponse(
        server_time=reading.now,
        display=reading.display,
        millis=reading.millis,
        offset_ms=reading.offset_ms,
    )


@app.get("/settings", response_model=SessionSettingsResponse)
def read_settings(db: Session = Depends(get_db)):
    """Effective session settings, defaults filled in."""
    return _settings_response(get_session_settings(db))


@app.post("/players/{player_id}/attempts", response_model=SubmitAttemptResponse)
def post_attempt(
    player_id: str,
    body: SubmitAttemptRequest,
    db: Session = Depends(get_db),
    clock: ClockSampler = Depends(get_clock),
):
    """Submit an attempt.  Rejections are normal responses, not errors."""
    now = clock.now()
    if body.offset_ms is not None:
        offset_ms = body.offset_ms
    else:
        offset_ms = clock.sample(body.clicked_at).offset_ms

    settings = get_session_settings(db)
    try:
        outcome = submit_attempt(db, player_id, offset_ms, now=now, settings=settings)
    except PersistenceError as exc:
        raise _persistence_failure(exc) from exc

    session = _session_response(outcome.state, settings, now)

    if isinstance(outcome, Accepted):
        attempt = outcome.attempt
        message = None
        if outcome.state.attempts_remaining == 0:
            message = session_summary_message(outcome.state)
        return AcceptedResponse(
            attempt=AttemptResponse(
                id=attempt.id,
                player_id=attempt.player_id,
                offset_ms=attempt.offset_ms,
                reward=attempt.reward,
                current_reward=resolve_reward(attempt.offset_ms, settings.reward_bands),
                created_at=attempt.created_at,
            ),
            session=session,
            session_reset=outcome.session_reset,
            message=message,
        )

    if outcome.reason is RejectionReason.COOLDOWN_ACTIVE:
        message = f"No attempts left. Next game available {format_remaining_cooldown(outcome.retry_after)}."
    else:
        message = "No attempts left."
    return RejectedResponse(
        reason=outcome.reason.value,
        session=session,
        retry_after_seconds=outcome.retry_after.total_seconds() if outcome.retry_after else None,
        message=message,
    )


@app.get("/players/{player_id}/session", response_model=SessionStateResponse)
def get_player_session(
    player_id: str,
    db: Session = Depends(get_db),
    clock: ClockSampler = Depends(get_clock),
):
    """Session state for a player, created with full attempts on first access."""
    now = clock.now()
    settings = get_session_settings(db)
    try:
        state = load_session_state(db, player_id, now=now, settings=settings)
    except PersistenceError as exc:
        raise _persistence_failure(exc) from exc
    return _session_response(state, settings, now)


@app.get("/players/{player_id}/attempts", response_model=List[AttemptResponse])
def get_player_attempts(
    player_id: str,
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    clock: ClockSampler = Depends(get_clock),
):
    """Attempts of the current session, newest first."""
    settings = get_session_settings(db)
    try:
        state = load_session_state(db, player_id, now=clock.now(), settings=settings)
    except PersistenceError as exc:
        raise _persistence_failure(exc) from exc

    attempts = list_current_session_attempts(
        db, player_id, settings.attempts_per_session, state.attempts_remaining, limit
    )
    return [
        AttemptResponse(
            id=a.id,
            player_id=a.player_id,
            offset_ms=a.offset_ms,
            reward=a.reward,
            current_reward=resolve_reward(a.offset_ms, settings.reward_bands),
            created_at=parse_timestamp(a.created_ts_utc),
        )
        for a in attempts
    ]


@app.get("/players/{player_id}/cooldown", response_model=CooldownResponse)
def get_player_cooldown(
    player_id: str,
    db: Session = Depends(get_db),
    clock: ClockSampler = Depends(get_clock),
):
    """Remaining cooldown before the player's next session."""
    now = clock.now()
    settings = get_session_settings(db)
    try:
        state = load_session_state(db, player_id, now=now, settings=settings)
    except PersistenceError as exc:
        raise _persistence_failure(exc) from exc

    remaining = get_remaining_cooldown(state, settings, now)
    return CooldownResponse(
        player_id=player_id,
        active=remaining is not None,
        remaining_seconds=remaining.total_seconds() if remaining else None,
        message=format_remaining_cooldown(remaining),
    )


# Admin Endpoints

@app.put("/admin/settings", response_model=SessionSettingsResponse, dependencies=[Depends(require_admin)])
def put_settings(body: SettingsUpdateRequest, db: Session = Depends(get_db)):
    """Update attempts per session, cooldown and/or reward bands."""
    bands = None
    if body.reward_bands is not None:
        bands = [RewardBand(b.min, b.max, b.reward) for b in body.reward_bands]
    settings = update_session_settings(
        db,
        attempts_per_session=body.attempts_per_session,
        cooldown_minutes=body.cooldown_minutes,
        reward_bands=bands,
    )
    return _settings_response(settings)


@app.post(
    "/admin/players/{player_id}/reset",
    response_model=SessionStateResponse,
    dependencies=[Depends(require_admin)],
)
def post_reset_player(
    player_id: str,
    db: Session = Depends(get_db),
    clock: ClockSampler = Depends(get_clock),
):
    """Manually open a fresh session for one player."""
    now = clock.now()
    settings = get_session_settings(db)
    try:
        state = reset_session(db, player_id, now=now, settings=settings)
    except PersistenceError as exc:
        raise _persistence_failure(exc) from exc
    return _session_response(state, settings, now)


@app.post("/admin/reset_all", response_model=ResetAllResponse, dependencies=[Depends(require_admin)])
def post_reset_all(db: Session = Depends(get_db), clock: ClockSampler = Depends(get_clock)):
    """Manually open a fresh session for every player."""
    try:
        count = reset_all_sessions(db, now=clock.now())
    except PersistenceError as exc:
        raise _persistence_failure(exc) from exc
    return ResetAllResponse(players_reset=count)


def _player_overviews(db: Session) -> List[PlayerOverview]:
    totals = dict(
        db.query(Attempt.player_id, func.count(Attempt.id))
        .group_by(Attempt.player_id)
        .all()
    )
    rows = db.query(PlayerSession).order_by(PlayerSession.created_ts_utc.desc()).all()
    return [
        PlayerOverview(
            player_id=row.player_id,
            attempts_remaining=row.attempts_remaining,
            best_offset_ms=row.best_offset_ms,
            best_reward=row.best_reward,
            sessions_started=row.sessions_started,
            total_attempts=totals.get(row.player_id, 0),
            last_attempt_at=parse_timestamp(row.last_attempt_at),
            created_at=parse_timestamp(row.created_ts_utc),
        )
        for row in rows
    ]


@app.get("/admin/players", response_model=List[PlayerOverview], dependencies=[Depends(require_admin)])
def get_players(db: Session = Depends(get_db)):
    """All players with their current session standing."""
    return _player_overviews(db)


@app.get("/admin/players/export", dependencies=[Depends(require_admin)])
def export_players(db: Session = Depends(get_db)):
    """CSV export of the player listing."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([
        "player_id", "best_offset_ms", "best_reward", "attempts_remaining",
        "sessions_started", "total_attempts", "last_attempt_at", "created_at",
    ])
    for p in _player_overviews(db):
        writer.writerow([
            p.player_id,
            p.best_offset_ms if p.best_offset_ms is not None else "-",
            p.best_reward,
            p.attempts_remaining,
            p.sessions_started,
            p.total_attempts,
            p.last_attempt_at.isoformat() if p.last_attempt_at else "",
            p.created_at.isoformat(),
        ])
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="players_export.csv"'},
    )
