"""Tests for storage backends."""

from datetime import datetime, timezone
import sqlite3
import tempfile

import pytest

from billguard.models import SpendingLimitsConfig
from billguard.spending_limits import SpendingController
from billguard.storage import InMemoryStorage, SQLiteStorage, StorageError
from billguard.subscription import SubscriptionService


NOW = datetime(2026, 10, 14, 15, 30, tzinfo=timezone.utc)


def test_in_memory_storage_returns_copies():
    """Mutating a loaded value should not change the stored one."""
    storage = InMemoryStorage()
    storage.set("k", {"items": [1, 2]})

    loaded = storage.get("k")
    loaded["items"].append(3)

    assert storage.get("k") == {"items": [1, 2]}


def test_in_memory_storage_keys_and_delete():
    storage = InMemoryStorage()
    storage.set("spending-limits:b", {})
    storage.set("spending-limits:a", {})
    storage.set("subscription-status:a", {})

    assert storage.keys("spending-limits:") == ["spending-limits:a", "spending-limits:b"]
    assert storage.delete("spending-limits:a") is True
    assert storage.delete("spending-limits:a") is False
    assert storage.get("spending-limits:a") is None


def test_sqlite_storage_persists_config():
    """SQLite storage should persist a config across instances."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = f"{tmpdir}/billguard.db"

        storage = SQLiteStorage(db_path=db_path)
        controller = SpendingController(storage=storage)
        limit = controller.add_limit("user_1", 100.0, "monthly", now=NOW)
        controller.record_spend("user_1", 25.0, "Pro Subscription", "subscription", now=NOW)
        storage.close()

        storage2 = SQLiteStorage(db_path=db_path)
        config = SpendingController(storage=storage2).get_config("user_1")
        assert isinstance(config, SpendingLimitsConfig)
        assert config.limits[0].id == limit.id
        assert config.limits[0].current_spend == 25.0
        assert config.history[0].date == NOW
        storage2.close()


def test_sqlite_storage_subscription_roundtrip():
    """SQLite storage should store and load subscription status."""
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = SQLiteStorage(db_path=f"{tmpdir}/billguard.db")
        service = SubscriptionService(storage=storage)

        service.consume_generation("user_1", NOW)

        status = service.get_status("user_1", NOW)
        assert status.generations_used == 1
        assert status.reset_date == datetime(2026, 11, 1, tzinfo=timezone.utc)
        storage.close()


def test_sqlite_storage_keys_escape_wildcards():
    """Prefix matching should treat % and _ literally."""
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = SQLiteStorage(db_path=f"{tmpdir}/billguard.db")
        storage.set("user_1", {"n": 1})
        storage.set("userX1", {"n": 2})

        assert storage.keys("user_") == ["user_1"]
        assert storage.delete("user_1") is True
        assert storage.delete("user_1") is False
        storage.close()


def test_sqlite_storage_corrupt_value_raises():
    """Undecodable rows should surface as StorageError."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = f"{tmpdir}/billguard.db"
        storage = SQLiteStorage(db_path=db_path)
        storage.set("spending-limits:user_1", {})

        conn = sqlite3.connect(db_path)
        conn.execute("UPDATE kv SET value = ? WHERE key = ?", ("{not json", "spending-limits:user_1"))
        conn.commit()
        conn.close()

        with pytest.raises(StorageError):
            storage.get("spending-limits:user_1")
        storage.close()
