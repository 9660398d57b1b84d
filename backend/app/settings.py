"""Application settings."""
import os
from pathlib import Path

# Database file lives at repo root unless DATABASE_URL says otherwise
REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{REPO_ROOT / 'clicker.db'}")

# Admin API key for privileged endpoints (empty disables them)
ADMIN_KEY = os.getenv("ADMIN_KEY", "")

# Fallbacks used when the game_settings row is missing or malformed
DEFAULT_ATTEMPTS_PER_SESSION = int(os.getenv("DEFAULT_ATTEMPTS_PER_SESSION", "10"))
DEFAULT_COOLDOWN_MINUTES = int(os.getenv("DEFAULT_COOLDOWN_MINUTES", "60"))
