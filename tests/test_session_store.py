import asyncio

import pytest

from adsense_insights.config import DashboardConfig
from adsense_insights.crypto import decrypt_bytes, encrypt_bytes, generate_key
from adsense_insights.errors import ConfigurationError
from adsense_insights.report import ReportRow
from adsense_insights.session_store import DashboardSession, EncryptedSessionStore

KEY = "rYdGvZpTz4l7mOZ1m3cQ3EJ4xJ8k2bq7d2H1m1v7QkA="


def test_encrypt_decrypt_roundtrip():
    token = encrypt_bytes(KEY, b"hello")
    assert decrypt_bytes(KEY, token) == b"hello"


def test_decrypt_with_wrong_key_raises_value_error():
    token = encrypt_bytes(KEY, b"hello")
    with pytest.raises(ValueError):
        decrypt_bytes(generate_key(), token)


def test_missing_file_loads_empty_session(tmp_path):
    store = EncryptedSessionStore(str(tmp_path / "session.enc"), KEY)
    session = store.load()
    assert session.is_empty()
    assert not store.exists()


def test_save_then_load_restores_session(tmp_path):
    store = EncryptedSessionStore(str(tmp_path / "nested" / "session.enc"), KEY)
    session = DashboardSession(
        user={"name": "Ada", "email": "ada@example.com"},
        tokens={"access_token": "ya29.secret"},
        accounts=[{"name": "accounts/pub-1", "displayName": "Main"}],
        selected_account="accounts/pub-1",
        report=[ReportRow.from_metrics("a.com", earnings=1.0, page_views=100, impressions=10, clicks=1)],
        insights=["one"],
    )
    store.save(session)
    assert b"ya29.secret" not in store.path.read_bytes()
    assert store.load() == session


def test_update_merges_fields(tmp_path):
    store = EncryptedSessionStore(str(tmp_path / "session.enc"), KEY)
    store.update(tokens={"access_token": "t"})
    store.update(selected_account="accounts/pub-2", insights=["x"])
    loaded = store.load()
    assert loaded.tokens == {"access_token": "t"}
    assert loaded.selected_account == "accounts/pub-2"
    assert loaded.insights == ["x"]


def test_corrupt_or_foreign_file_loads_empty_session(tmp_path):
    path = tmp_path / "session.enc"
    path.write_bytes(b"garbage")
    assert EncryptedSessionStore(str(path), KEY).load().is_empty()

    EncryptedSessionStore(str(path), generate_key()).save(DashboardSession(insights=["x"]))
    assert EncryptedSessionStore(str(path), KEY).load().is_empty()


def test_clear_is_idempotent(tmp_path):
    store = EncryptedSessionStore(str(tmp_path / "session.enc"), KEY)
    store.save(DashboardSession(insights=["x"]))
    store.clear()
    store.clear()
    assert store.load().is_empty()


def test_config_requires_key_for_session_store():
    with pytest.raises(ConfigurationError):
        DashboardConfig(session_fernet_key=None).require_session_key()


def test_update_survives_unwritable_path(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")
    store = EncryptedSessionStore(str(blocker / "session.enc"), KEY)
    session = store.update(insights=["kept in memory"])
    assert session.insights == ["kept in memory"]
    assert store.load().is_empty()


@pytest.mark.asyncio
async def test_concurrent_updates_keep_each_others_fields(tmp_path):
    store = EncryptedSessionStore(str(tmp_path / "session.enc"), KEY)

    async def write(**fields):
        await asyncio.sleep(0)
        store.update(**fields)

    await asyncio.gather(
        write(tokens={"access_token": "t"}),
        write(selected_account="accounts/pub-1"),
        write(insights=["x"]),
    )
    loaded = store.load()
    assert loaded.tokens == {"access_token": "t"}
    assert loaded.selected_account == "accounts/pub-1"
    assert loaded.insights == ["x"]
