"""WebSocket transport with automatic reconnection and heartbeat"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .base import BaseTransport

logger = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """
    Connects a SessionClient to the server's /ws endpoint.

    ``run()`` keeps the connection alive: it reconnects with exponential
    backoff, feeds every inbound frame to ``client.handle_message`` and pings
    the server every ``heartbeat_interval`` seconds so the server does not
    evict the connection as stale.
    """

    def __init__(
        self,
        url: str,
        client,
        heartbeat_interval: float = 25.0,
        initial_backoff: float = 0.5,
        max_backoff: float = 10.0,
    ):
        self.url = url
        self.client = client
        self.heartbeat_interval = heartbeat_interval
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._ws = None
        self._closed = False
        # bound to the running loop in run()
        self._wake: Optional[asyncio.Event] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def send(self, message: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            raise ConnectionError("WebSocket is not connected")
        try:
            await ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise ConnectionError(f"WebSocket closed: {e}") from e

    async def reconnect(self) -> None:
        # skip the remaining backoff delay
        if self._wake is not None:
            self._wake.set()

    async def close(self) -> None:
        self._closed = True
        if self._wake is not None:
            self._wake.set()
        if self._ws is not None:
            await self._ws.close()

    async def run(self) -> None:
        self._wake = asyncio.Event()
        backoff = self.initial_backoff
        while not self._closed:
            self.client.on_transport_connecting()
            try:
                async with websockets.connect(self.url) as ws:
                    self._ws = ws
                    backoff = self.initial_backoff
                    self.client.on_transport_connected()
                    await self._receive_loop(ws)
            except (OSError, WebSocketException) as e:
                logger.warning(f"WebSocket connection to {self.url} failed: {e}")
            finally:
                self._ws = None
                self.client.on_transport_disconnected()

            if self._closed:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
            backoff = min(backoff * 2, self.max_backoff)

    async def _receive_loop(self, ws) -> None:
        heartbeat: Optional[asyncio.Task] = asyncio.create_task(self._heartbeat())
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning(f"Ignoring malformed frame: {raw!r}")
                    continue
                if isinstance(message, dict):
                    self.client.handle_message(message)
        finally:
            heartbeat.cancel()

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.send({"type": "ping"})
            except ConnectionError:
                return
