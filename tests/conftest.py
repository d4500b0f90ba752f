import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from slotwatch import config, database


@pytest.fixture
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "slotwatch.db"
    monkeypatch.setattr(database, "DB_PATH", db_path)
    database.init_db()
    return db_path


@pytest.fixture(autouse=True)
def offline_cfg(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(config.CFG, "telegram_token", "")
    monkeypatch.setitem(config.CFG, "admin_chat_id", "")
    monkeypatch.setitem(config.CFG, "encryption_key", "test-passphrase")


@pytest.fixture
def make_site(db):
    counter = {"n": 0}

    def _make(user_id: str = "1001", url: str | None = None, **kwargs) -> dict:
        if database.get_user(user_id) is None:
            database.create_user(user_id, f"user-{user_id}", kwargs.pop("preferences", None))
        else:
            kwargs.pop("preferences", None)
        counter["n"] += 1
        url = url or f"https://booking.example.com/site-{counter['n']}"
        return database.create_site(
            user_id,
            url,
            kwargs.pop("encrypted_credentials", "blob"),
            kwargs.pop("site_type", "generic"),
            kwargs.pop("check_interval", None),
        )

    return _make
