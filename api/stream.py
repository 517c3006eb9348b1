"""
Stream session — Server-Sent Events delivery loop for GET /stream.

States:
  CONNECTING → OPEN      "connected" event sent on open
  OPEN (loop)            every poll_interval: pop one item and send it as a
                         data event, or send a heartbeat comment when empty
  OPEN → CLOSED          session deadline reached, or the peer went away

Between ticks the loop waits on three competing wake sources (next tick,
disconnect watcher, session deadline) and whichever fires first decides
what happens next. Consumers reconnect after a deadline close; nothing is
lost by that because an item only leaves the store on the tick that sends
it.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import structlog

from database.store_base import BaseItemStore, StoreError

logger = structlog.get_logger()

HEARTBEAT = ": heartbeat\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class CloseReason(str, Enum):
    TIMEOUT = "timeout"
    DISCONNECT = "disconnect"


def format_event(data: Any, event: Optional[str] = None) -> str:
    payload = json.dumps(data, separators=(",", ":"))
    if event:
        return f"event: {event}\ndata: {payload}\n\n"
    return f"data: {payload}\n\n"


CONNECTED_EVENT = format_event({}, event="connected")


class StreamSession:
    """One consumer connection. Use once: ``async for chunk in session.events()``."""

    def __init__(
        self,
        store: BaseItemStore,
        is_disconnected: Callable[[], Awaitable[bool]],
        poll_interval: float = 2.0,
        session_timeout: float = 25.0,
        disconnect_check_interval: float = 0.5,
    ):
        self.store = store
        self.poll_interval = poll_interval
        self.session_timeout = session_timeout
        self.session_id = uuid.uuid4().hex[:8]
        self.state = SessionState.CONNECTING
        self.close_reason: Optional[CloseReason] = None
        self.delivered = 0
        self._is_disconnected = is_disconnected
        self._disconnect_check_interval = disconnect_check_interval

    async def events(self) -> AsyncIterator[str]:
        if self.state is not SessionState.CONNECTING:
            raise RuntimeError("stream session already used")

        self.state = SessionState.OPEN
        logger.info("stream_opened", session_id=self.session_id)
        yield CONNECTED_EVENT

        deadline = asyncio.create_task(asyncio.sleep(self.session_timeout))
        disconnect = asyncio.create_task(self._watch_disconnect())
        tick: Optional[asyncio.Task] = None
        try:
            while True:
                if deadline.done():
                    self.close_reason = CloseReason.TIMEOUT
                    break
                # Never pop on behalf of a consumer that is already gone
                if disconnect.done() or await self._is_disconnected():
                    self.close_reason = CloseReason.DISCONNECT
                    break

                yield await self._tick()

                tick = asyncio.create_task(asyncio.sleep(self.poll_interval))
                done, _ = await asyncio.wait(
                    {tick, disconnect, deadline},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if disconnect in done:
                    self.close_reason = CloseReason.DISCONNECT
                    break
                if deadline in done:
                    self.close_reason = CloseReason.TIMEOUT
                    break
        finally:
            for task in (tick, disconnect, deadline):
                if task is not None and not task.done():
                    task.cancel()
            self.state = SessionState.CLOSED
            logger.info("stream_closed",
                        session_id=self.session_id,
                        reason=self.close_reason.value if self.close_reason else "aborted",
                        delivered=self.delivered)

    async def _tick(self) -> str:
        try:
            item = await self.store.pop_oldest()
        except StoreError as e:
            logger.error("stream_store_error", session_id=self.session_id, error=str(e))
            return format_event({"error": str(e)}, event="error")

        if item is None:
            return HEARTBEAT

        self.delivered += 1
        logger.info("item_streamed",
                    session_id=self.session_id,
                    item_id=item.id,
                    action=item.action.value)
        return format_event(item.to_wire())

    async def _watch_disconnect(self) -> None:
        while not await self._is_disconnected():
            await asyncio.sleep(self._disconnect_check_interval)
