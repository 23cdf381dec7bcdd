import pytest

from journalsync.database.record_store import RecordStore
from journalsync.models.snapshot import SyncSnapshot
from journalsync.services.merge import MergeResolver, merge_records, record_time
from journalsync.utils.file_manager import FileManager


def test_remote_newer_wins():
    local = [{"id": "a", "timestamp": 10, "text": "old"}]
    remote = [{"id": "a", "timestamp": 20, "text": "new"}]
    assert merge_records(local, remote) == remote


def test_remote_older_keeps_local():
    local = [{"id": "a", "timestamp": 10, "text": "local"}]
    remote = [{"id": "a", "timestamp": 5, "text": "remote"}]
    assert merge_records(local, remote) == local


def test_equal_timestamps_keep_local():
    local = [{"id": "a", "timestamp": 10, "text": "local"}]
    remote = [{"id": "a", "timestamp": 10, "text": "remote"}]
    assert merge_records(local, remote) == local


def test_undated_remote_never_replaces_local():
    local = [{"id": "a", "timestamp": 10, "text": "local"}]
    remote = [{"id": "a", "text": "remote"}]
    assert merge_records(local, remote) == local


def test_undated_local_takes_dated_remote():
    local = [{"id": "a", "text": "local"}]
    remote = [{"id": "a", "timestamp": 10, "text": "remote"}]
    assert merge_records(local, remote) == remote


def test_null_timestamp_falls_back_to_created_at():
    local = [{"id": "a", "timestamp": None, "createdAt": 50, "text": "local"}]
    remote = [{"id": "a", "timestamp": 20, "text": "remote"}]
    assert merge_records(local, remote) == local

    remote = [{"id": "a", "timestamp": 80, "text": "remote"}]
    assert merge_records(local, remote) == remote


def test_both_undated_keep_local():
    local = [{"id": "a", "text": "local"}]
    remote = [{"id": "a", "text": "remote"}]
    assert merge_records(local, remote) == local


def test_new_remote_records_are_appended_in_order():
    local = [{"id": "b", "timestamp": 1}, {"id": "a", "timestamp": 1}]
    remote = [{"id": "d", "timestamp": 1}, {"id": "a", "timestamp": 0}, {"id": "c", "timestamp": 1}]
    assert [r["id"] for r in merge_records(local, remote)] == ["b", "a", "d", "c"]


def test_merge_is_idempotent():
    local = [
        {"id": "a", "timestamp": 10},
        {"id": "b"},
        {"id": "c", "createdAt": "2024-01-01T00:00:00Z"},
    ]
    remote = [
        {"id": "a", "timestamp": 20, "text": "newer"},
        {"id": "b", "timestamp": 5},
        {"id": "c", "createdAt": "2023-12-31T00:00:00Z"},
        {"id": "d", "timestamp": 1},
    ]
    once = merge_records(local, remote)
    assert merge_records(once, remote) == once


def test_iso_timestamps_compare_chronologically():
    local = [{"id": "x", "createdAt": "2024-03-01T10:00:00+00:00", "amount": 1}]
    remote = [{"id": "x", "createdAt": "2024-03-01T12:00:00+02:00", "amount": 2}]
    # 12:00+02:00 is 10:00 UTC: a tie, so local stays
    assert merge_records(local, remote) == local

    remote = [{"id": "x", "createdAt": "2024-03-01T10:00:01Z", "amount": 3}]
    assert merge_records(local, remote) == remote


@pytest.mark.parametrize("record, expected", [
    ({"timestamp": 1500}, 1500.0),
    ({"timestamp": "1500"}, 1500.0),
    ({"createdAt": "1970-01-01T00:00:01Z"}, 1000.0),
    ({"createdAt": "1970-01-01T00:00:01"}, 1000.0),
    ({"timestamp": "yesterday"}, None),
    ({"timestamp": True}, None),
    ({"timestamp": None, "createdAt": 2000}, 2000.0),
    ({"timestamp": None}, None),
    ({}, None),
])
def test_record_time(record, expected):
    assert record_time(record) == expected


@pytest.mark.asyncio
async def test_resolver_writes_each_collection_whole(tmp_path):
    store = RecordStore(FileManager(tmp_path))
    store.save_entries([{"id": "e1", "timestamp": 100, "text": "local"}])
    store.save_expenses([{"id": "x1", "entryId": "e1", "createdAt": 5, "amount": 3}])

    snapshot = SyncSnapshot(
        entries=[{"id": "e1", "timestamp": 200, "text": "remote"}, {"id": "e2", "timestamp": 1}],
        expenses=[],
        action_items=[{"id": "a1", "entryId": "missing-entry", "createdAt": 7, "title": "call"}],
    )
    report = await MergeResolver(store).apply(snapshot)

    assert report.entries == 2
    assert report.expenses == 1
    assert report.action_items == 1
    assert report.total == 4
    assert store.get_entries() == [
        {"id": "e1", "timestamp": 200, "text": "remote"},
        {"id": "e2", "timestamp": 1},
    ]
    assert store.get_expenses() == [{"id": "x1", "entryId": "e1", "createdAt": 5, "amount": 3}]
    # dangling entryId is tolerated
    assert store.get_action_items()[0]["entryId"] == "missing-entry"
