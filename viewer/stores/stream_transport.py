"""
Server-sent events transport for the ledger's live feed.

The transport owns the connection lifecycle: it decodes each named event,
hands it to the caller, and reconnects with bounded exponential backoff when
the connection drops. It does not buffer or reorder; ordering is the gap
detector's job.

Usage:
    transport = SseStreamTransport(client.demo_stream_url())
    disconnect = transport.connect(on_event, on_error, on_complete)
    ...
    disconnect()
"""

import asyncio
import logging
import math
from typing import Any, Callable, Optional

import httpx
from httpx_sse import SSEError, aconnect_sse

from config import ReconnectSettings
from constants import STREAM_EVENT_TYPES, TERMINAL_EVENT
from models.envelope import DecodeError, decode_stream_event

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], None]
ErrorCallback = Callable[["TransportError"], None]
LifecycleCallback = Callable[[], None]


class TransportError(Exception):
    """
    The live feed connection failed or dropped.

    Attributes:
        retry_in: Seconds until the next reconnect attempt, or None when no
            reconnect is scheduled.
    """

    def __init__(self, message: str, retry_in: Optional[float] = None):
        super().__init__(message)
        self.retry_in = retry_in


class ReconnectBackoff:
    """Reconnect delay schedule: min(base * 2^attempt, max)."""

    def __init__(self, base_ms: int = 1000, max_ms: int = 30000):
        self.base_ms = base_ms
        self.max_ms = max_ms
        self.attempt = 0

    @classmethod
    def from_settings(cls, settings: ReconnectSettings) -> "ReconnectBackoff":
        return cls(base_ms=settings.base_delay_ms, max_ms=settings.max_delay_ms)

    def next_delay(self) -> float:
        """Delay in seconds before the next attempt; advances the attempt counter."""
        delay_ms = min(self.base_ms * (2 ** self.attempt), self.max_ms)
        self.attempt += 1
        return delay_ms / 1000

    def reset(self) -> None:
        self.attempt = 0


def reconnect_message(delay: float) -> str:
    return f"Connection lost. Reconnecting in {math.ceil(delay)}s..."


def safe_call(callback: Optional[Callable], *args) -> None:
    """Invoke a subscriber callback, logging instead of propagating its errors."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as e:
        logger.error(f"Error in live feed callback: {e}", exc_info=True)


class SseStreamTransport:
    """
    Live feed over server-sent events.

    connect() starts a background read loop on the running event loop and
    returns a synchronous disconnect function.
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        backoff: Optional[ReconnectBackoff] = None,
        reconnect: bool = True,
        complete_on_close: bool = False,
    ):
        """
        Args:
            url: Live feed URL.
            client: Shared httpx client; one with no read timeout is created if omitted.
            backoff: Reconnect schedule.
            reconnect: Reconnect after drops. Phase streams turn this off.
            complete_on_close: Treat a clean server close as completion
                instead of a drop.
        """
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        self.backoff = backoff or ReconnectBackoff()
        self.reconnect = reconnect
        self.complete_on_close = complete_on_close
        self._task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._task is not None and not self._task.done()

    def connect(
        self,
        on_event: EventCallback,
        on_error: Optional[ErrorCallback] = None,
        on_complete: Optional[LifecycleCallback] = None,
        on_open: Optional[LifecycleCallback] = None,
    ) -> Callable[[], None]:
        """
        Start reading the feed.

        Must be called from within a running event loop.

        Returns:
            A function that closes the connection and cancels any pending
            reconnect wait.
        """
        self.disconnect()
        self.backoff.reset()
        self._task = asyncio.get_running_loop().create_task(
            self._run(on_event, on_error, on_complete, on_open)
        )
        return self.disconnect

    def disconnect(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client if this transport created it."""
        task = self._task
        self.disconnect()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self.client.aclose()

    async def _run(
        self,
        on_event: EventCallback,
        on_error: Optional[ErrorCallback],
        on_complete: Optional[LifecycleCallback],
        on_open: Optional[LifecycleCallback],
    ) -> None:
        """Read loop: read until completion, reconnecting after drops."""
        while True:
            try:
                completed = await self._read_stream(on_event, on_open)
            except (httpx.HTTPError, SSEError) as e:
                reason = str(e) or type(e).__name__
            else:
                if completed:
                    logger.info(f"Live feed {self.url} completed")
                    safe_call(on_complete)
                    return
                reason = "stream closed by server"

            if not self.reconnect:
                logger.warning(f"Live feed {self.url} dropped: {reason}")
                safe_call(on_error, TransportError(f"Connection lost: {reason}"))
                return

            delay = self.backoff.next_delay()
            logger.warning(
                f"Live feed {self.url} dropped ({reason}); "
                f"reconnect attempt {self.backoff.attempt} in {delay:.1f}s"
            )
            safe_call(on_error, TransportError(reconnect_message(delay), retry_in=delay))
            await asyncio.sleep(delay)

    async def _read_stream(
        self,
        on_event: EventCallback,
        on_open: Optional[LifecycleCallback],
    ) -> bool:
        """
        Read one connection until it ends.

        Returns:
            True if the feed is finished (terminal event, or a clean close
            when complete_on_close is set).
        """
        async with aconnect_sse(self.client, "GET", self.url) as event_source:
            event_source.response.raise_for_status()
            self.backoff.reset()
            logger.info(f"Live feed connected: {self.url}")
            safe_call(on_open)

            async for sse in event_source.aiter_sse():
                if sse.event not in STREAM_EVENT_TYPES:
                    logger.debug(f"Ignoring unnamed or unknown SSE event {sse.event!r}")
                    continue
                try:
                    event = decode_stream_event(sse.event, sse.data)
                except DecodeError as e:
                    logger.warning(f"Dropping malformed {sse.event} event: {e}")
                    continue

                safe_call(on_event, event)
                if event.type == TERMINAL_EVENT:
                    return True

        return self.complete_on_close
