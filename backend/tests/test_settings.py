"""Tests for application settings."""
import importlib


def test_database_url_respects_env_var(monkeypatch):
    """DATABASE_URL uses the env var when set."""
    monkeypatch.setenv("DATABASE_URL", "sqlite:////var/data/clicker.db")

    import backend.app.settings as settings
    importlib.reload(settings)

    assert settings.DATABASE_URL == "sqlite:////var/data/clicker.db"


def test_database_url_defaults_to_local_sqlite(monkeypatch):
    """DATABASE_URL falls back to repo-root clicker.db when env var is unset."""
    monkeypatch.delenv("DATABASE_URL", raising=False)

    import backend.app.settings as settings
    importlib.reload(settings)

    assert settings.DATABASE_URL.startswith("sqlite:///")
    assert settings.DATABASE_URL.endswith("clicker.db")


def test_session_defaults_from_env(monkeypatch):
    """Fallback attempts/cooldown can be tuned per deployment."""
    monkeypatch.setenv("DEFAULT_ATTEMPTS_PER_SESSION", "5")
    monkeypatch.setenv("DEFAULT_COOLDOWN_MINUTES", "15")

    import backend.app.settings as settings
    importlib.reload(settings)

    assert settings.DEFAULT_ATTEMPTS_PER_SESSION == 5
    assert settings.DEFAULT_COOLDOWN_MINUTES == 15

    monkeypatch.delenv("DEFAULT_ATTEMPTS_PER_SESSION")
    monkeypatch.delenv("DEFAULT_COOLDOWN_MINUTES")
    importlib.reload(settings)
    assert settings.DEFAULT_ATTEMPTS_PER_SESSION == 10
