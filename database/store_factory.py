"""
Store Factory — Create the right item store backend from configuration.

Configuration in settings.yaml:
    store:
      # Where queued items live
      #   "memory" — In-memory dict (development, single process)
      #   "file"   — JSON file on disk (small deployments, survives restarts)
      #   "redis"  — Redis hash + sorted set (hosted, multi-process)
      backend: "memory"

      # For file backend: directory path
      file_dir: "./data"

      # For redis backend
      redis_url: "redis://localhost:6379"
      key_prefix: "thymer:queue"

Usage:
    from database.store_factory import create_store
    store = create_store(settings.store)
"""
from __future__ import annotations

import structlog

from config.settings import StoreConfig
from database.store_base import BaseItemStore

logger = structlog.get_logger()


def create_store(config: StoreConfig = None) -> BaseItemStore:
    """
    Factory: create the appropriate item store backend.

    A new instance per call; the app builds exactly one and keeps it on
    app.state for its whole lifetime.
    """
    config = config or StoreConfig()
    backend = config.backend

    if backend == "redis":
        from database.store_redis import RedisItemStore
        store = RedisItemStore(redis_url=config.redis_url, key_prefix=config.key_prefix)
        logger.info("store_created", backend="redis", key_prefix=config.key_prefix)

    elif backend == "file":
        from database.store_file import FileItemStore
        store = FileItemStore(data_dir=config.file_dir)
        logger.info("store_created", backend="file", data_dir=config.file_dir)

    else:  # "memory" or default
        if backend != "memory":
            logger.warning("unknown_store_backend", backend=backend, using="memory")
        from database.store_memory import InMemoryItemStore
        store = InMemoryItemStore()
        logger.info("store_created", backend="memory")

    return store
