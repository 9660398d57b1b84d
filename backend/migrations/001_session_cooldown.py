"""Migration: bring an existing SQLite file up to REQUIRED_SCHEMA.

Adds whichever of these columns the file lacks, as ALTER TABLE instead of
the dev reset in ensure_schema:
  * player_sessions.last_attempt_at / best_reward / sessions_started
  * attempts.reward (backfilled from the configured or default bands)
  * game_settings.cooldown_minutes

Idempotent; safe to run multiple times.

Run with: python -m backend.migrations.001_session_cooldown
"""
import sqlite3
import sys
from pathlib import Path

from backend.app.rewards import parse_reward_bands, resolve_reward

# Database path at repo root
REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DB_PATH = REPO_ROOT / "clicker.db"

# (table, column, DDL type) in the order they are added
COLUMNS = [
    ("player_sessions", "last_attempt_at", "TEXT"),
    ("player_sessions", "best_reward", "INTEGER NOT NULL DEFAULT 0"),
    ("player_sessions", "sessions_started", "INTEGER NOT NULL DEFAULT 1"),
    ("attempts", "reward", "INTEGER"),
    ("game_settings", "cooldown_minutes", "INTEGER"),
]


def column_exists(cursor: sqlite3.Cursor, table_name: str, column_name: str) -> bool:
    """Check if a column exists in a table."""
    cursor.execute(f"PRAGMA table_info({table_name})")
    return column_name in [row[1] for row in cursor.fetchall()]


def table_exists(cursor: sqlite3.Cursor, table_name: str) -> bool:
    """Check if a table exists."""
    cursor.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def _stored_bands(cursor: sqlite3.Cursor):
    if not table_exists(cursor, "game_settings"):
        return None
    cursor.execute("SELECT reward_bands_json FROM game_settings WHERE id = 1")
    row = cursor.fetchone()
    return parse_reward_bands(row[0]) if row else None


def backfill_rewards(cursor: sqlite3.Cursor) -> int:
    """Score attempts that have no reward yet; returns rows updated."""
    bands = _stored_bands(cursor)
    cursor.execute("SELECT id, offset_ms FROM attempts WHERE reward IS NULL")
    rows = cursor.fetchall()
    for attempt_id, offset_ms in rows:
        cursor.execute(
            "UPDATE attempts SET reward = ? WHERE id = ?",
            (resolve_reward(offset_ms, bands), attempt_id),
        )
    return len(rows)


def migrate(db_path: Path | None = None):
    """Run the migration against the given DB file (defaults to DB_PATH)."""
    path = db_path or DB_PATH

    if not path.exists():
        print(f"Database not found at {path}")
        print("No migration needed; the database will be created with the new schema on first run.")
        return

    conn = sqlite3.connect(str(path))
    cursor = conn.cursor()

    try:
        for table, column, ddl in COLUMNS:
            if not table_exists(cursor, table):
                print(f"Table {table} does not exist; it will be created on app startup.")
                continue
            if column_exists(cursor, table, column):
                print(f"Column {column} already exists in {table}, skipping.")
                continue
            print(f"Adding {column} column to {table}...")
            cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
            print("  Done.")

        if table_exists(cursor, "attempts"):
            updated = backfill_rewards(cursor)
            print(f"Backfilled reward for {updated} attempts.")

        conn.commit()
        print("\nMigration 001_session_cooldown completed successfully!")

    except Exception as e:
        conn.rollback()
        print(f"Migration failed: {e}")
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    migrate()
