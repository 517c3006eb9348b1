"""
Queue consumers — what the editor side runs to receive queued content.

StreamConsumer keeps an SSE session open and reconnects whenever the
server ends one (sessions are closed on purpose every ~25 seconds).
drain_pending empties the queue through the long-poll endpoint.
Every received item is turned into editor blocks by render_blocks.

Command line (``tm-listen``):
    tm-listen            Stream items, one JSON line of blocks per item
    tm-listen --drain    Empty the queue through /pending, then exit
    tm-listen --raw      Print rendered markdown instead of blocks

Items written by older producers carry their text under "markdown"
instead of "content"; both are accepted here.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import IO, Any, Awaitable, Callable, Optional

import httpx
import structlog

from client.connector import QueueClient, QueueClientError, SSEEvent
from client.markdown import Block, parse_markdown
from config.settings import ClientConfig, load_client_config

logger = structlog.get_logger()

LEGACY_CONTENT_FIELD = "markdown"


@dataclass
class ReceivedItem:
    content: str
    action: str = "append"
    id: str = ""
    collection: Optional[str] = None
    title: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Optional[ReceivedItem]:
        """None when the payload carries no text under either field name."""
        content = item_content(data)
        if not content:
            return None
        return cls(
            content=content,
            action=data.get("action") or "append",
            id=data.get("id", ""),
            collection=data.get("collection"),
            title=data.get("title"),
            raw=data,
        )


def item_content(data: dict[str, Any]) -> str:
    return data.get("content") or data.get(LEGACY_CONTENT_FIELD) or ""


def render_item(item: ReceivedItem, now: datetime = None) -> str:
    """Markdown to insert for an item; lifelog entries get a time prefix."""
    if item.action == "lifelog":
        now = now or datetime.now()
        return f"**{now.strftime('%I:%M %p')}** {item.content}"
    # "create" has no record-creation path yet and inserts like "append"
    return item.content


def render_blocks(item: ReceivedItem, now: datetime = None) -> list[Block]:
    """Blocks the editor inserts for an item, in order."""
    return parse_markdown(render_item(item, now))


ItemHandler = Callable[[ReceivedItem], Awaitable[Any]]


class StreamConsumer:
    """
    Listens on /stream and hands every item to ``handler``.

    A clean server close reconnects right away; failures back off
    exponentially up to max_backoff_s.
    """

    def __init__(
        self,
        client: QueueClient,
        handler: ItemHandler,
        backoff_s: float = 1.0,
        max_backoff_s: float = 30.0,
    ):
        self.client = client
        self.handler = handler
        self.backoff_s = backoff_s
        self.max_backoff_s = max_backoff_s
        self.connected = False
        self.received = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the listen loop as a background task."""
        self._running = True
        self._task = asyncio.create_task(self._listen_loop(), name="stream_consumer")
        logger.info("stream_consumer_started", url=self.client.config.url)

    async def run(self) -> None:
        """Foreground listen loop; returns when stop() is called or on cancel."""
        self._running = True
        logger.info("stream_consumer_started", url=self.client.config.url)
        await self._listen_loop()

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self.connected = False
        logger.info("stream_consumer_stopped", received=self.received)

    async def _listen_loop(self) -> None:
        delay = self.backoff_s
        while self._running:
            try:
                await self.run_session()
                delay = self.backoff_s
                continue
            except asyncio.CancelledError:
                break
            except (httpx.HTTPError, QueueClientError) as e:
                logger.warning("stream_session_failed", error=str(e), retry_in_s=delay)
            self._set_connected(False)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_backoff_s)

    async def run_session(self) -> int:
        """Consume one server session to its end. Returns items handled."""
        handled = 0
        async for event in self.client.stream():
            if await self.handle_event(event):
                handled += 1
        self._set_connected(False)
        return handled

    async def handle_event(self, event: SSEEvent) -> bool:
        if event.is_comment:
            return False
        if event.event == "connected":
            self._set_connected(True)
            return False
        if event.event == "error":
            logger.warning("stream_server_error", data=event.data)
            return False
        if event.event != "message":
            return False

        try:
            data = event.json()
        except json.JSONDecodeError as e:
            logger.error("stream_message_unparseable", error=str(e))
            return False
        item = ReceivedItem.from_wire(data) if isinstance(data, dict) else None
        if item is None:
            return False

        await self.handler(item)
        self.received += 1
        return True

    def _set_connected(self, connected: bool) -> None:
        if connected != self.connected:
            self.connected = connected
            logger.info("stream_connection_changed", connected=connected)


async def drain_pending(client: QueueClient, handler: ItemHandler, limit: int = None) -> int:
    """Poll /pending until it answers 204 (or ``limit`` items). Returns the count."""
    handled = 0
    while limit is None or handled < limit:
        data = await client.pending()
        if data is None:
            break
        item = ReceivedItem.from_wire(data)
        if item is None:
            logger.warning("pending_item_without_content", item_id=data.get("id", ""))
            continue
        await handler(item)
        handled += 1
    return handled


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

def print_items(out: IO[str], raw: bool = False) -> ItemHandler:
    """Handler writing one JSON line per item to ``out``."""
    async def handler(item: ReceivedItem) -> None:
        line: dict[str, Any] = {
            "id": item.id,
            "action": item.action,
            "collection": item.collection,
            "title": item.title,
        }
        if raw:
            line["markdown"] = render_item(item)
        else:
            line["blocks"] = [block.to_dict() for block in render_blocks(item)]
        out.write(json.dumps(line, ensure_ascii=False) + "\n")
        out.flush()
    return handler


async def listen(config: ClientConfig, handler: ItemHandler, drain: bool = False,
                 transport: httpx.AsyncBaseTransport = None) -> int:
    """Drain once, or stream until cancelled. Returns items handled."""
    client = QueueClient(config, transport=transport)
    try:
        if drain:
            return await drain_pending(client, handler)
        consumer = StreamConsumer(client, handler)
        try:
            await consumer.run()
        finally:
            await consumer.stop()
        return consumer.received
    finally:
        await client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tm-listen",
        description="Receive queued Thymer content as editor blocks",
    )
    parser.add_argument("--drain", action="store_true",
                        help="Empty the queue through /pending and exit")
    parser.add_argument("--raw", action="store_true",
                        help="Print rendered markdown instead of blocks")
    return parser


def main(argv: Optional[list[str]] = None, out: IO[str] = None) -> int:
    out = out or sys.stdout
    args = build_parser().parse_args(argv)

    config = load_client_config()
    if not config.complete:
        print("Error: THYMER_URL and THYMER_TOKEN required", file=sys.stderr)
        return 1

    try:
        handled = asyncio.run(listen(config, print_items(out, raw=args.raw), drain=args.drain))
    except KeyboardInterrupt:
        return 0
    except (httpx.HTTPError, QueueClientError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.drain:
        print(f"✓ Received {handled} items", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
