"""Tests for atomic JSON file storage and backup rotation."""

import json

import pytest

from genesis.errors import PersistenceError
from genesis.storage import AtomicStorage


def make_storage(tmp_path, **kwargs) -> AtomicStorage:
    storage = AtomicStorage(tmp_path / "memory", **kwargs)
    storage.initialize()
    return storage


def test_write_then_read(tmp_path):
    storage = make_storage(tmp_path)
    storage.write("agents", {"a1": {"role": "EXPLORER"}})

    assert storage.exists("agents")
    assert storage.read("agents") == {"a1": {"role": "EXPLORER"}}
    assert storage.read("missing") is None
    # No temp files survive a successful write
    assert not list(storage.base_path.glob("*.tmp"))


def test_write_backs_up_previous_version(tmp_path):
    storage = make_storage(tmp_path)
    storage.write("metrics", {"version": 1})
    assert storage.list_backups("metrics") == []

    storage.write("metrics", {"version": 2})
    storage.write("metrics", {"version": 3})

    assert storage.read("metrics") == {"version": 3}
    assert storage.read_backup("metrics", 1) == {"version": 2}
    assert storage.read_backup("metrics", 2) == {"version": 1}
    assert storage.list_backups("metrics") == [
        storage.backup_path("metrics", 1),
        storage.backup_path("metrics", 2),
    ]


def test_backup_rotation_keeps_max_backups(tmp_path):
    storage = make_storage(tmp_path, max_backups=2)
    for version in range(5):
        storage.write("decisions", [version])

    backups = storage.list_backups("decisions")
    assert len(backups) == 2
    assert storage.read_backup("decisions", 1) == [3]
    assert storage.read_backup("decisions", 2) == [2]


def test_backups_disabled(tmp_path):
    storage = make_storage(tmp_path, backup_enabled=False)
    storage.write("agents", {})
    storage.write("agents", {"a1": {}})
    assert storage.list_backups("agents") == []


def test_corrupt_file_raises_persistence_error(tmp_path):
    storage = make_storage(tmp_path)
    storage.path_for("agents").write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError) as excinfo:
        storage.read("agents")

    assert excinfo.value.collection == "agents"
    assert "Remediation tips" in str(excinfo.value)


def test_restore_copies_backup_over_live_file(tmp_path):
    storage = make_storage(tmp_path)
    storage.write("wallets", {"good": True})
    storage.write("wallets", {"good": False})
    storage.path_for("wallets").write_text("garbage", encoding="utf-8")

    assert storage.restore("wallets", 1) is True
    assert storage.read("wallets") == {"good": True}
    assert storage.restore("wallets", 4) is False


def test_failed_replace_leaves_live_file_and_no_temp(tmp_path, monkeypatch):
    storage = make_storage(tmp_path, backup_enabled=False)
    storage.write("agents", {"a1": {"v": 1}})

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("genesis.storage.os.replace", failing_replace)

    with pytest.raises(PersistenceError):
        storage.write("agents", {"a1": {"v": 2}})

    assert json.loads(storage.path_for("agents").read_text(encoding="utf-8")) == {"a1": {"v": 1}}
    assert not list(storage.base_path.glob("*.tmp"))


def test_unserializable_data_is_rejected(tmp_path):
    storage = make_storage(tmp_path)
    with pytest.raises(PersistenceError):
        storage.write("agents", {"a1": object()})
    assert not storage.exists("agents")


def test_delete_removes_live_file_and_backups(tmp_path):
    storage = make_storage(tmp_path)
    storage.write("evolution", [1])
    storage.write("evolution", [1, 2])

    storage.delete("evolution")

    assert not storage.exists("evolution")
    assert storage.list_backups("evolution") == []
