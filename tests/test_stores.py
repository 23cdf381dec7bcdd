import os
import stat

import pytest

from conftest import MemoryRelayStore
from journalsync.config import JournalSyncConfig
from journalsync.database.device_registry import DeviceRegistry
from journalsync.database.identity_store import IdentityStore
from journalsync.database.record_store import RecordStore
from journalsync.errors import IdentityUnavailable
from journalsync.models.devices import PairedDevice
from journalsync.services.engine import SyncEngine
from journalsync.utils.file_manager import FileManager


@pytest.fixture
def files(tmp_path):
    return FileManager(tmp_path / "data")


def test_identity_is_created_once_and_persisted(files):
    first = IdentityStore(files).ensure_identity()
    assert first.device_id.startswith("d_")
    assert len(first.local_key) == 64

    again = IdentityStore(FileManager(files.base_dir)).ensure_identity()
    assert again == first


def test_identity_file_is_private(files):
    IdentityStore(files).ensure_identity()
    mode = stat.S_IMODE(os.stat(files.path_for("identity")).st_mode)
    assert mode == 0o600


def test_corrupt_identity_is_fatal(files):
    files.path_for("identity").write_text("{not json", encoding="utf-8")
    with pytest.raises(IdentityUnavailable):
        IdentityStore(files).ensure_identity()


def test_incomplete_identity_is_fatal(files):
    files.write_json("identity", {"deviceId": "d_1"})
    with pytest.raises(IdentityUnavailable):
        IdentityStore(files).ensure_identity()


def test_device_name_fallbacks(files, monkeypatch):
    store = IdentityStore(files)
    assert store.default_device_name("Kitchen tablet") == "Kitchen tablet"

    monkeypatch.setattr("socket.gethostname", lambda: "laptop.local")
    assert store.default_device_name() == "laptop"

    monkeypatch.setattr("socket.gethostname", lambda: "")
    assert store.default_device_name() == f"Device {store.device_id[:8]}"


def test_registry_upsert_and_last_sync(files):
    registry = DeviceRegistry(files)
    device = PairedDevice(id="d_1", display_name="Phone", paired_at="2024-01-01T00:00:00+00:00")

    assert registry.upsert(device) is True
    assert registry.upsert(PairedDevice(id="d_1", display_name="Phone 2", paired_at="2024-02-01")) is False
    assert [d.display_name for d in registry.get_paired_devices()] == ["Phone 2"]

    assert registry.update_last_sync("d_1", "2024-03-01T00:00:00+00:00")
    assert registry.get_device("d_1").last_sync_at == "2024-03-01T00:00:00+00:00"
    assert not registry.update_last_sync("d_missing", "2024-03-01")


def test_registry_keys_are_private(files):
    registry = DeviceRegistry(files)
    assert registry.get_sync_key("d_1") is None

    registry.set_sync_key("d_1", "abc")
    assert registry.get_sync_key("d_1") == "abc"
    mode = stat.S_IMODE(os.stat(files.path_for("sync_keys")).st_mode)
    assert mode == 0o600


def test_record_store_collections(files):
    store = RecordStore(files)
    assert store.snapshot().record_count == 0

    store.add_entry({"id": "e1", "timestamp": 1, "text": "first"})
    store.add_entry({"id": "e2", "timestamp": 2, "text": "second"})
    store.add_expense({"id": "x1", "entryId": "e1", "amount": 3})
    store.add_action_item({"id": "a1", "entryId": "e2", "title": "do"})

    snapshot = store.snapshot()
    assert [e["id"] for e in snapshot.entries] == ["e1", "e2"]
    assert snapshot.to_dict()["actionItems"] == [{"id": "a1", "entryId": "e2", "title": "do"}]
    assert snapshot.record_count == 4


def test_record_store_ignores_malformed_collection(files):
    files.write_json("entries", {"oops": True})
    assert RecordStore(files).get_entries() == []


def test_settings(files):
    store = RecordStore(files)
    assert store.get_setting("theme", "light") == "light"
    store.set_setting("theme", "dark")
    assert store.get_settings() == {"theme": "dark"}


def test_write_json_leaves_no_temp_files(files):
    files.write_json("doc", {"a": 1})
    files.write_json("doc", {"a": 2})
    assert files.read_json("doc") == {"a": 2}
    assert sorted(p.name for p in files.base_dir.iterdir()) == ["doc.json"]
    assert files.delete("doc")
    assert not files.delete("doc")


def test_unusable_data_dir_is_identity_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(IdentityUnavailable):
        IdentityStore(base_dir=blocker / "data").ensure_identity()


def test_engine_reports_unusable_data_dir(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    config = JournalSyncConfig(data_dir=blocker / "data", direct_enabled=False)

    with pytest.raises(IdentityUnavailable):
        SyncEngine(config, relay_store=MemoryRelayStore())
