"""Database connection, schema bootstrap and session management."""
import logging
import os
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .settings import DATABASE_URL

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # FastAPI hands sessions to worker threads; pysqlite must allow that.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Columns the current code reads.  Tables created before cooldown tracking
# and per-attempt rewards existed lack some of these.
REQUIRED_SCHEMA = {
    "player_sessions": [
        "player_id", "attempts_remaining", "last_attempt_at", "best_offset_ms",
        "best_reward", "sessions_started", "created_ts_utc", "updated_ts_utc",
    ],
    "attempts": [
        "player_id", "offset_ms", "reward", "created_ts_utc",
    ],
    "game_settings": [
        "attempts_per_session", "cooldown_minutes", "reward_bands_json",
    ],
}

MIGRATION_COMMAND = "python -m backend.migrations.001_session_cooldown"


def _get_sqlite_path() -> Path | None:
    """Filesystem path behind a sqlite:/// URL, or None for :memory: and
    non-SQLite engines."""
    if not DATABASE_URL.startswith("sqlite:///"):
        return None
    raw = DATABASE_URL.replace("sqlite:///", "", 1)
    if raw in (":memory:", ""):
        return None
    return Path(raw)


def _get_table_columns(cursor: sqlite3.Cursor, table: str) -> set[str]:
    cursor.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}


def check_schema(db_path: Path) -> dict[str, list[str]]:
    """Map each table that is absent or incomplete to the columns it lacks.

    An empty dict means the file matches REQUIRED_SCHEMA.
    """
    missing: dict[str, list[str]] = {}

    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        existing_tables = {row[0] for row in cursor.fetchall()}

        for table, required_cols in REQUIRED_SCHEMA.items():
            if table not in existing_tables:
                missing[table] = list(required_cols)
                continue
            actual_cols = _get_table_columns(cursor, table)
            cols_missing = [c for c in required_cols if c not in actual_cols]
            if cols_missing:
                missing[table] = cols_missing
    finally:
        conn.close()

    return missing


def ensure_schema():
    """Make sure the database can serve the current models.

    * in-memory / non-SQLite URL: ``create_all`` and return.
    * no file yet: create it.
    * stale file with ``ALLOW_DEV_DB_RESET=1``: move it aside to
      ``<name>.db.bak-<timestamp>`` and create a fresh one.
    * stale file otherwise: raise RuntimeError naming the missing columns
      and the migration to run.
    """
    db_path = _get_sqlite_path()

    if db_path is None:
        Base.metadata.create_all(bind=engine)
        return

    if not db_path.exists():
        Base.metadata.create_all(bind=engine)
        logger.info("Created new database at %s", db_path)
        return

    missing = check_schema(db_path)

    if not missing:
        Base.metadata.create_all(bind=engine)
        return

    if os.getenv("ALLOW_DEV_DB_RESET", "") == "1":
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        backup_path = db_path.with_suffix(f".db.bak-{ts}")
        engine.dispose()
        shutil.move(str(db_path), str(backup_path))
        logger.warning(
            "Schema mismatch detected.  Old DB backed up to %s.  "
            "Recreating fresh database.",
            backup_path,
        )
        Base.metadata.create_all(bind=engine)
        logger.info("Fresh database created at %s", db_path)
        return

    lines = ["Database schema is out of date.  Missing columns:"]
    for table, cols in sorted(missing.items()):
        lines.append(f"  {table}: {', '.join(cols)}")
    lines.append("")
    lines.append("To fix, run the idempotent migration:")
    lines.append(f"  {MIGRATION_COMMAND}")
    lines.append("")
    lines.append("Or set ALLOW_DEV_DB_RESET=1 to auto-backup and recreate the DB.")
    raise RuntimeError("\n".join(lines))


def get_db():
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
