"""
Core data models for the Thymer queue bridge.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class QueueAction(str, Enum):
    APPEND = "append"
    LIFELOG = "lifelog"
    CREATE = "create"


# ──────────────────────────────────────────────────────────────
#  Item ids: lexicographic order is creation order
# ──────────────────────────────────────────────────────────────

_SEQ_LIMIT = 10_000


class ItemIdGenerator:
    """
    Produces ids shaped ``{ms:013d}-{seq:04d}-{rand8}``.

    Every id is strictly greater (as a string) than the one before it, even
    inside a single millisecond or when the wall clock steps backwards.
    The random suffix keeps ids from separate processes distinct.
    """

    def __init__(self, clock=None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._lock = threading.Lock()
        self._last_ms = 0
        self._seq = 0

    def next_id(self) -> str:
        with self._lock:
            now = self._clock()
            if now > self._last_ms:
                self._last_ms = now
                self._seq = 0
            else:
                self._seq += 1
                if self._seq >= _SEQ_LIMIT:
                    self._last_ms += 1
                    self._seq = 0
            ms, seq = self._last_ms, self._seq
        return f"{ms:013d}-{seq:04d}-{uuid.uuid4().hex[:8]}"


_id_generator = ItemIdGenerator()


def new_item_id() -> str:
    return _id_generator.next_id()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ──────────────────────────────────────────────────────────────
#  Queue items
# ──────────────────────────────────────────────────────────────

class QueueSubmission(BaseModel):
    """Body of POST /queue."""
    content: str
    action: QueueAction = QueueAction.APPEND
    collection: Optional[str] = None
    title: Optional[str] = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        # Checked on the stripped text, stored untouched
        if not v.strip():
            raise ValueError("content required")
        return v

    @field_validator("action", mode="before")
    @classmethod
    def default_action(cls, v: Any) -> Any:
        return v or QueueAction.APPEND


class QueueItem(BaseModel):
    """A unit of delivery. Never mutated after acceptance."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    content: str
    action: QueueAction = QueueAction.APPEND
    collection: Optional[str] = None
    title: Optional[str] = None
    created_at: str = Field(default_factory=_utcnow_iso, alias="createdAt")

    @classmethod
    def from_submission(cls, submission: QueueSubmission) -> QueueItem:
        return cls(
            id=new_item_id(),
            content=submission.content,
            action=submission.action,
            collection=submission.collection,
            title=submission.title,
        )

    def to_wire(self) -> dict[str, Any]:
        """JSON shape handed to consumers."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> QueueItem:
        return cls.model_validate(data)


class PeekResponse(BaseModel):
    count: int
    items: list[dict[str, Any]] = []
