from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from journalsync.errors import MalformedEnvelope

Record = Dict[str, Any]

COLLECTIONS = ("entries", "expenses", "actionItems")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SyncSnapshot:
    """Full state of the three record collections, built fresh for every send."""
    entries: List[Record] = field(default_factory=list)
    expenses: List[Record] = field(default_factory=list)
    action_items: List[Record] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": list(self.entries),
            "expenses": list(self.expenses),
            "actionItems": list(self.action_items),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SyncSnapshot":
        if not isinstance(data, dict):
            raise MalformedEnvelope("Snapshot must be a JSON object")

        collections: Dict[str, List[Record]] = {}
        for name in COLLECTIONS:
            items = data.get(name) or []
            if not isinstance(items, list) or not all(
                    isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"]
                    for item in items):
                raise MalformedEnvelope(
                    f"Snapshot collection {name!r} must be a list of records with string ids")
            collections[name] = items

        return cls(
            entries=collections["entries"],
            expenses=collections["expenses"],
            action_items=collections["actionItems"],
            timestamp=str(data.get("timestamp") or utc_now_iso()),
        )

    @property
    def record_count(self) -> int:
        return len(self.entries) + len(self.expenses) + len(self.action_items)
