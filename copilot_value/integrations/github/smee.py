"""Webhook proxy: relays deliveries from a smee.io channel to the local webhook route.

Useful when the deployment is not reachable from GitHub. Each Server-Sent
Event carries the delivery body plus its headers; the body is re-posted to
``http://localhost:{port}{path}`` with those headers.
"""

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

SMEE_NEW_CHANNEL_URL = "https://smee.io/new"
SMEE_HOSTS = ("smee.io", "www.smee.io")
WEBHOOK_PATH = "/api/github/webhooks"
RECONNECT_DELAY_SECONDS = 5
# Smee event fields that are not delivery headers
NON_HEADER_FIELDS = ("body", "query", "timestamp")


class WebhookProxyError(Exception):
    """The proxy channel could not be created or reached."""
    pass


async def create_channel(transport: httpx.AsyncBaseTransport | None = None) -> str:
    """Ask smee.io for a new channel; it answers with a redirect to the channel URL."""
    try:
        async with httpx.AsyncClient(timeout=30.0, transport=transport, follow_redirects=False) as client:
            response = await client.get(SMEE_NEW_CHANNEL_URL)
    except httpx.HTTPError as e:
        raise WebhookProxyError(f"Unable to create webhook channel: {e}") from e
    location = response.headers.get("location")
    if not location:
        raise WebhookProxyError("Unable to create webhook channel")
    return location


def is_smee_url(url: str) -> bool:
    return urlparse(url).netloc in SMEE_HOSTS


def parse_event(data: str) -> tuple[dict[str, str], bytes] | None:
    """Split a smee event payload into delivery headers and body."""
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed webhook proxy event")
        return None
    if not isinstance(event, dict) or "body" not in event:
        return None
    headers = {
        key: str(value)
        for key, value in event.items()
        if key not in NON_HEADER_FIELDS and value is not None and not isinstance(value, (dict, list))
    }
    headers["content-type"] = "application/json"
    # Compact separators keep the body byte-identical to what smee received
    body = json.dumps(event["body"], separators=(",", ":"), ensure_ascii=False).encode()
    return headers, body


async def iter_events(response: httpx.Response):
    """Yield ``(event, data)`` pairs from a Server-Sent Events stream."""
    event, data_lines = "message", []
    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield event, "\n".join(data_lines)
            event, data_lines = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data_lines.append(line[5:].lstrip())


class WebhookProxy:
    """Streams a smee.io channel and forwards each delivery locally."""

    def __init__(
        self,
        url: str | None = None,
        port: int = 8080,
        path: str = WEBHOOK_PATH,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.port = port
        self.path = path
        self._transport = transport
        self._task: asyncio.Task | None = None
        self.connected = False
        self.forwarded = 0

    @property
    def target(self) -> str:
        return f"http://localhost:{self.port}{self.path}"

    async def connect(self, url: str | None = None) -> str:
        """Start relaying; a channel is created when no URL is configured."""
        if url:
            self.url = url
        if not self.url:
            logger.info("No webhook URL provided, creating new Smee channel")
            self.url = await create_channel(self._transport)
        else:
            logger.info(f"Using existing webhook URL: {self.url}")

        await self.disconnect()
        if is_smee_url(self.url):
            logger.info(f"Using Smee to receive webhooks {self.url}")
            self._task = asyncio.create_task(self._run(), name="webhook-proxy")
        else:
            logger.info(f"Webhooks are delivered directly to {self.url}")
        return self.url

    async def disconnect(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.connected = False

    async def forward(self, client: httpx.AsyncClient, data: str) -> int | None:
        parsed = parse_event(data)
        if parsed is None:
            return None
        headers, body = parsed
        response = await client.post(self.target, content=body, headers=headers)
        self.forwarded += 1
        logger.info(f"Forwarded {headers.get('x-github-event', 'event')} to {self.target}: {response.status_code}")
        return response.status_code

    async def _run(self) -> None:
        while True:
            try:
                await self._stream()
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                self.connected = False
                logger.warning(f"Webhook proxy connection lost ({e}), reconnecting")
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    async def _stream(self) -> None:
        async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
            async with client.stream("GET", self.url, headers={"Accept": "text/event-stream"}) as response:
                response.raise_for_status()
                self.connected = True
                async for event, data in iter_events(response):
                    if event in ("ready", "ping"):
                        continue
                    try:
                        await self.forward(client, data)
                    except httpx.HTTPError as e:
                        logger.error(f"Failed to forward webhook to {self.target}: {e}")
        self.connected = False

    def status(self) -> dict[str, Any]:
        return {"url": self.url, "connected": self.connected, "forwarded": self.forwarded}


webhook_proxy = WebhookProxy()


def get_webhook_proxy() -> WebhookProxy:
    """Dependency returning the process-wide webhook proxy."""
    return webhook_proxy
