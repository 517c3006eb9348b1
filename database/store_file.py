"""
FileItemStore — JSON file-backed queue with persistence across restarts.

Data layout:
  {data_dir}/
    queue.json        {item_id: item_json, ...}

Features:
  - Survives process restarts (unlike InMemoryItemStore)
  - No external dependencies (no database server, no Redis)
  - Flushes on every mutation, while still holding the store lock;
    a failed write leaves memory and file as they were
  - Single-process only (no concurrent write safety between processes)

Best for: small deployments, demos, a bridge running on a laptop.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path

from database.store_base import StoreUnavailableError
from database.store_memory import InMemoryItemStore
from models.schemas import QueueItem

logger = structlog.get_logger()

_QUEUE_FILE = "queue.json"


class FileItemStore(InMemoryItemStore):
    """
    Extends InMemoryItemStore with JSON file persistence.

    On init: loads the queue from disk into memory.
    On every write: rewrites the file through a tmp file and rename.
    """

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load()
        logger.info("file_store_initialized",
                    data_dir=str(self._data_dir),
                    items=len(self._items))

    @property
    def path(self) -> Path:
        return self._data_dir / _QUEUE_FILE

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("file_store_load_error", path=str(self.path), error=str(e))
            return
        for item_id, raw in (data if isinstance(data, dict) else {}).items():
            try:
                self._items[item_id] = QueueItem.from_wire(raw)
            except ValueError as e:
                logger.warning("file_store_item_skipped", item_id=item_id, error=str(e))

    def _changed(self) -> None:
        try:
            self._flush()
        except OSError as e:
            logger.error("file_store_write_error", path=str(self.path), error=str(e))
            raise StoreUnavailableError(f"queue file not writable: {e}") from e

    def _flush(self):
        data = {item_id: item.to_wire() for item_id, item in self._items.items()}
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)  # atomic on POSIX
