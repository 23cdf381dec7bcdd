import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

from journalsync.models.snapshot import Record, SyncSnapshot
from journalsync.utils.file_manager import FileManager

logger = logging.getLogger(__name__)

ENTRIES = "entries"
EXPENSES = "expenses"
ACTION_ITEMS = "action_items"
SETTINGS = "settings"


class RecordStore:
    """Local journal collections, each read and saved as a whole document.

    ``write_lock`` must be held across any read-modify-write of the
    collections so a merge never interleaves with another writer.
    """

    def __init__(self, files: FileManager):
        self.files = files
        self.write_lock = asyncio.Lock()
        self._io_lock = threading.RLock()

    def _load(self, name: str) -> List[Record]:
        with self._io_lock:
            data = self.files.read_json(name, default=[])
        if not isinstance(data, list):
            logger.warning(f"Ignoring malformed {name} collection")
            return []
        return data

    def _save(self, name: str, records: List[Record]) -> None:
        with self._io_lock:
            self.files.write_json(name, list(records))

    def get_entries(self) -> List[Record]:
        return self._load(ENTRIES)

    def save_entries(self, entries: List[Record]) -> None:
        self._save(ENTRIES, entries)

    def get_expenses(self) -> List[Record]:
        return self._load(EXPENSES)

    def save_expenses(self, expenses: List[Record]) -> None:
        self._save(EXPENSES, expenses)

    def get_action_items(self) -> List[Record]:
        return self._load(ACTION_ITEMS)

    def save_action_items(self, action_items: List[Record]) -> None:
        self._save(ACTION_ITEMS, action_items)

    def _add(self, name: str, record: Record) -> None:
        with self._io_lock:
            records = self._load(name)
            records.append(record)
            self._save(name, records)

    def add_entry(self, entry: Record) -> None:
        self._add(ENTRIES, entry)

    def add_expense(self, expense: Record) -> None:
        self._add(EXPENSES, expense)

    def add_action_item(self, action_item: Record) -> None:
        self._add(ACTION_ITEMS, action_item)

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            entries=self.get_entries(),
            expenses=self.get_expenses(),
            action_items=self.get_action_items(),
        )

    def get_settings(self) -> Dict[str, Any]:
        with self._io_lock:
            return self.files.read_json(SETTINGS, default={})

    def get_setting(self, key: str, default: Optional[Any] = None) -> Any:
        return self.get_settings().get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        with self._io_lock:
            settings = self.get_settings()
            settings[key] = value
            self.files.write_json(SETTINGS, settings)
