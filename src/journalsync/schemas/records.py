from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

import ulid
from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    # Payload fields written by newer clients are carried through untouched.
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Entry(_Record):
    id: str = Field(default_factory=lambda: f"e_{ulid.new()}")
    text: str
    timestamp: datetime = Field(default_factory=_now)
    type: Literal["log", "action", "expense", "system"] = "log"
    is_markdown: Optional[bool] = Field(default=None, alias="isMarkdown")


class Expense(_Record):
    id: str = Field(default_factory=lambda: f"x_{ulid.new()}")
    entry_id: str = Field(alias="entryId")
    amount: float
    currency: str
    description: str
    category: Optional[str] = None
    created_at: datetime = Field(default_factory=_now, alias="createdAt")
    auto_detected: Optional[bool] = Field(default=None, alias="autoDetected")


class ActionItem(_Record):
    id: str = Field(default_factory=lambda: f"a_{ulid.new()}")
    entry_id: str = Field(alias="entryId")
    title: str
    description: Optional[str] = None
    completed: bool = False
    created_at: datetime = Field(default_factory=_now, alias="createdAt")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    auto_detected: Optional[bool] = Field(default=None, alias="autoDetected")
