import pytest

from scripts.bootstrap_admin import bootstrap_admin, default_database_url, main
from sugarrush.storage.memory import MemoryStore


@pytest.fixture
def store():
    store = MemoryStore()
    store.create_user("google-1", "Willy", "willy@example.com", role="temporary")
    return store


def test_promotes_existing_account(store, capsys):
    result = bootstrap_admin(store, "willy@example.com")

    assert result["status"] == "promoted"
    assert store.get_user_by_email("willy@example.com").role == "admin"
    assert "Promoted" in capsys.readouterr().out


def test_dry_run_changes_nothing(store):
    result = bootstrap_admin(store, "willy@example.com", dry_run=True)

    assert result["status"] == "dry_run"
    assert store.get_user_by_email("willy@example.com").role == "temporary"


def test_already_admin(store):
    bootstrap_admin(store, "willy@example.com")

    assert bootstrap_admin(store, "willy@example.com")["status"] == "already_admin"


def test_unknown_email(store):
    result = bootstrap_admin(store, "nobody@example.com")

    assert result == {"user_id": None, "email": "nobody@example.com", "status": "not_found"}


def test_main_requires_email(monkeypatch):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)

    assert main([]) == 1


class _RecordingPostgresStore(MemoryStore):
    dsns = []

    def __init__(self, dsn):
        super().__init__()
        self.dsns.append(dsn)
        self.create_user("google-1", "Willy", "willy@example.com", role="temporary")

    def close(self):
        pass


@pytest.fixture
def no_server_settings(monkeypatch, tmp_path):
    """No JWT secret, no test mode, no .env file."""

    monkeypatch.chdir(tmp_path)
    for name in ("JWT_SECRET", "TEST_MODE", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)
    _RecordingPostgresStore.dsns = []
    monkeypatch.setattr("sugarrush.storage.postgres.PostgresStore", _RecordingPostgresStore)
    return monkeypatch


def test_main_needs_only_the_database_url(no_server_settings):
    no_server_settings.setenv("DATABASE_URL", "postgresql://db.internal/sugarrush")

    assert main(["--email", "willy@example.com"]) == 0
    assert _RecordingPostgresStore.dsns == ["postgresql://db.internal/sugarrush"]


def test_main_database_url_flag_wins(no_server_settings):
    no_server_settings.setenv("DATABASE_URL", "postgresql://db.internal/sugarrush")

    main(["--email", "willy@example.com", "--database-url", "postgresql://other/db"])

    assert _RecordingPostgresStore.dsns == ["postgresql://other/db"]


def test_database_url_read_from_env_file(no_server_settings, tmp_path):
    (tmp_path / ".env").write_text("DATABASE_URL=postgresql://from-file/db\n")

    assert default_database_url() == "postgresql://from-file/db"


def test_database_url_falls_back_to_settings_default(no_server_settings):
    assert default_database_url() == "postgresql://localhost:5432/sugarrush"
