"""
Conflict resolution for received snapshots.

Records are matched by ``id`` only. A remote record replaces the local
one when it is strictly newer, or when the local record carries no
timestamp and the remote one does. Equal timestamps, undated remote
records and records that are undated on both sides keep the local copy,
so merging the same input twice changes nothing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from journalsync.database.record_store import RecordStore
from journalsync.models.snapshot import Record, SyncSnapshot

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ("timestamp", "createdAt")


def _parse_time(value: Any) -> Optional[float]:
    """Epoch milliseconds for a number or an ISO-8601 string; None if unusable."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            pass
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp() * 1000


def record_time(record: Record) -> Optional[float]:
    for name in TIMESTAMP_FIELDS:
        if record.get(name) is not None:
            return _parse_time(record[name])
    return None


def _remote_wins(local: Record, remote: Record) -> bool:
    remote_time = record_time(remote)
    if remote_time is None:
        return False
    local_time = record_time(local)
    if local_time is None:
        return True
    return remote_time > local_time


def merge_records(local: Sequence[Record], remote: Sequence[Record]) -> List[Record]:
    merged: Dict[str, Record] = {}
    for record in local:
        merged[record["id"]] = record

    for record in remote:
        existing = merged.get(record["id"])
        if existing is None or _remote_wins(existing, record):
            merged[record["id"]] = record

    return list(merged.values())


@dataclass(frozen=True)
class MergeReport:
    entries: int
    expenses: int
    action_items: int

    @property
    def total(self) -> int:
        return self.entries + self.expenses + self.action_items


class MergeResolver:

    def __init__(self, store: RecordStore):
        self.store = store

    async def apply(self, snapshot: SyncSnapshot) -> MergeReport:
        """Merge ``snapshot`` into the store, writing each collection back whole."""
        async with self.store.write_lock:
            entries = merge_records(self.store.get_entries(), snapshot.entries)
            expenses = merge_records(self.store.get_expenses(), snapshot.expenses)
            action_items = merge_records(self.store.get_action_items(), snapshot.action_items)

            self.store.save_entries(entries)
            self.store.save_expenses(expenses)
            self.store.save_action_items(action_items)

        logger.info(
            f"Merged snapshot: {len(entries)} entries, {len(expenses)} expenses, "
            f"{len(action_items)} action items")
        return MergeReport(
            entries=len(entries), expenses=len(expenses), action_items=len(action_items))
