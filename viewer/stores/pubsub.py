"""
Redis pub/sub transport for the ledger's live feed.

Deployments that fan ledger writes out through Redis publish every new events
row on a per-hand channel. This module subscribes to that channel and exposes
the same connect()/disconnect interface as the SSE transport, so the session
does not care which one it is given.

Each message on the channel is either:
- a raw events-table row, optionally wrapped as {"new": row}, or
- an already-typed live feed event ({"type": "hand_created", ...}).

Usage:
    pubsub = LedgerPubSub(redis_client, game_id=1, hand_id=1)
    disconnect = pubsub.connect(on_event, on_error, on_complete)
    ...
    disconnect()
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import redis.asyncio as redis

from constants import STREAM_EVENT_TYPES, TERMINAL_EVENT
from models.envelope import DecodeError, decode_stream_event, map_ledger_row
from stores.stream_transport import (
    ErrorCallback,
    EventCallback,
    LifecycleCallback,
    ReconnectBackoff,
    TransportError,
    reconnect_message,
    safe_call,
)

logger = logging.getLogger(__name__)


class LedgerPubSub:
    """
    Live feed over a Redis channel.

    Connection errors are retried with the same backoff schedule as the SSE
    transport; the channel is resubscribed on every reconnect.
    """

    CHANNEL_PREFIX = "ledger:events:"

    def __init__(
        self,
        redis_client: redis.Redis,
        game_id: int,
        hand_id: int,
        backoff: Optional[ReconnectBackoff] = None,
        poll_timeout: float = 1.0,
    ):
        """
        Initialize pub/sub with Redis client.

        Args:
            redis_client: Async Redis client.
            game_id: Ledger game to follow.
            hand_id: Ledger hand to follow.
            backoff: Reconnect schedule.
            poll_timeout: Seconds each get_message call waits.
        """
        self.redis = redis_client
        self.game_id = game_id
        self.hand_id = hand_id
        self.backoff = backoff or ReconnectBackoff()
        self.poll_timeout = poll_timeout
        self._task: Optional[asyncio.Task] = None

    @property
    def channel(self) -> str:
        """Redis channel carrying this hand's events."""
        return f"{self.CHANNEL_PREFIX}game:{self.game_id}:hand:{self.hand_id}"

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
        """Start listening. Must be called from within a running event loop."""
        self.disconnect()
        self.backoff.reset()
        self._task = asyncio.get_running_loop().create_task(
            self._listen(on_event, on_error, on_complete, on_open)
        )
        logger.info(f"LedgerPubSub listener started on {self.channel}")
        return self.disconnect

    def disconnect(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        """Stop listening and wait for the listener to finish."""
        task = self._task
        self.disconnect()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("LedgerPubSub listener stopped")

    async def _listen(
        self,
        on_event: EventCallback,
        on_error: Optional[ErrorCallback],
        on_complete: Optional[LifecycleCallback],
        on_open: Optional[LifecycleCallback],
    ) -> None:
        """Main listener loop."""
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.debug(f"Subscribed to channel {self.channel}")
                self.backoff.reset()
                safe_call(on_open)

                while True:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=self.poll_timeout,
                    )
                    if not message or message["type"] != "message":
                        continue

                    event = self._decode(message["data"])
                    if event is None:
                        continue
                    safe_call(on_event, event)
                    if getattr(event, "type", None) == TERMINAL_EVENT:
                        safe_call(on_complete)
                        return

            except redis.RedisError as e:
                # Connection loss, timeouts and protocol errors all resubscribe
                delay = self.backoff.next_delay()
                logger.warning(f"PubSub error: {e}; reconnecting in {delay:.1f}s")
                safe_call(on_error, TransportError(reconnect_message(delay), retry_in=delay))
                await asyncio.sleep(delay)
            except Exception as e:
                delay = self.backoff.next_delay()
                logger.error(f"PubSub listener error: {e}", exc_info=True)
                safe_call(on_error, TransportError(reconnect_message(delay), retry_in=delay))
                await asyncio.sleep(delay)
            finally:
                try:
                    await pubsub.aclose()
                except redis.RedisError as e:
                    logger.debug(f"Error closing pubsub: {e}")

    def _decode(self, data: Any):
        """Decode one channel message; None (logged) if it is not usable."""
        try:
            if isinstance(data, bytes):
                data = data.decode()
            payload = json.loads(data)
        except UnicodeDecodeError as e:
            logger.warning(f"Non UTF-8 pubsub message: {e}")
            return None
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Invalid JSON in pubsub message: {e}")
            return None

        if isinstance(payload, dict) and isinstance(payload.get("new"), dict):
            payload = payload["new"]

        try:
            if isinstance(payload, dict) and payload.get("type") in STREAM_EVENT_TYPES:
                return decode_stream_event(None, payload)
            return map_ledger_row(payload)
        except DecodeError as e:
            logger.warning(f"Dropping malformed pubsub message: {e}")
            return None
