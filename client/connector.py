"""
Queue Connector — async HTTP client for the queue API.

Used by the ``tm`` producer CLI and by consumers. Wraps httpx with bearer
auth, retries connection failures with tenacity, and parses the /stream
Server-Sent Events body into SSEEvent objects.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import ClientConfig

logger = structlog.get_logger()


class QueueClientError(Exception):
    """The queue answered with an unexpected status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"server returned {status_code}: {body}")
        self.status_code = status_code
        self.body = body


# ──────────────────────────────────────────────────────────────
#  Server-Sent Events
# ──────────────────────────────────────────────────────────────

@dataclass
class SSEEvent:
    event: str = "message"
    data: str = ""
    comment: Optional[str] = None

    @property
    def is_comment(self) -> bool:
        return self.comment is not None

    def json(self) -> Any:
        return json.loads(self.data) if self.data else None


class SSEParser:
    """Line-at-a-time event-stream parser. Feed lines without their newline."""

    def __init__(self):
        self._event = ""
        self._data: list[str] = []

    def feed(self, line: str) -> Optional[SSEEvent]:
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return SSEEvent(event="", comment=line[1:].strip())

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        # id / retry fields are not used by this queue
        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        if not self._data and not self._event:
            return None
        event = SSEEvent(event=self._event or "message", data="\n".join(self._data))
        self._event = ""
        self._data = []
        return event


# ──────────────────────────────────────────────────────────────
#  Client
# ──────────────────────────────────────────────────────────────

class QueueClient:
    """
    Thin client over the queue endpoints.

    Only connection failures are retried: the request never reached the
    server, so retrying cannot enqueue twice or drop a popped item.
    """

    def __init__(self, config: ClientConfig, transport: httpx.AsyncBaseTransport = None,
                 timeout: float = 30.0):
        self.config = config
        self._transport = transport
        self._timeout = timeout
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.config.url.rstrip("/"),
                headers={"Authorization": f"Bearer {self.config.token}"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self.client

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        return await client.request(method, path, **kwargs)

    async def submit(
        self,
        content: str,
        action: str = "append",
        collection: str = None,
        title: str = None,
    ) -> str:
        """Queue content; returns the id the server assigned."""
        body: dict[str, Any] = {"content": content, "action": action}
        if collection:
            body["collection"] = collection
        if title:
            body["title"] = title

        response = await self._request("POST", "/queue", json=body)
        if response.status_code != 200:
            raise QueueClientError(response.status_code, response.text)
        item_id = response.json()["id"]
        logger.debug("item_submitted", item_id=item_id, action=action)
        return item_id

    async def pending(self) -> Optional[dict[str, Any]]:
        """Take the oldest item, or None when the queue is empty."""
        response = await self._request("GET", "/pending")
        if response.status_code == 204:
            return None
        if response.status_code != 200:
            raise QueueClientError(response.status_code, response.text)
        return response.json()

    async def peek(self) -> dict[str, Any]:
        response = await self._request("GET", "/peek")
        if response.status_code != 200:
            raise QueueClientError(response.status_code, response.text)
        return response.json()

    async def health(self) -> dict[str, Any]:
        response = await self._request("GET", "/health")
        if response.status_code != 200:
            raise QueueClientError(response.status_code, response.text)
        return response.json()

    async def stream(self) -> AsyncIterator[SSEEvent]:
        """One stream session; ends when the server closes it."""
        client = await self._get_client()
        parser = SSEParser()
        async with client.stream("GET", "/stream", timeout=None) as response:
            if response.status_code != 200:
                await response.aread()
                raise QueueClientError(response.status_code, response.text)
            async for line in response.aiter_lines():
                event = parser.feed(line)
                if event is not None:
                    yield event

    async def close(self):
        if self.client:
            await self.client.aclose()
