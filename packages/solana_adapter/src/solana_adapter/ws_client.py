"""Managed logsSubscribe connection with reconnection handling.

This module provides an asyncio WebSocket client for Solana's logsSubscribe
stream. It tracks connection state and fires callbacks around every
(re)connect so the reconciliation controller can backfill the gap before
trusting live notifications again.

Reference:
- logsSubscribe: https://solana.com/docs/rpc/websocket/logssubscribe
- websockets client: https://websockets.readthedocs.io/en/stable/reference/asyncio/client.html
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Callable, Optional
import logging

import websockets

from solana_adapter.normalizer import LogNotification, SolanaNormalizer


logger = logging.getLogger(__name__)


DEFAULT_PING_INTERVAL = 20.0
DEFAULT_PING_TIMEOUT = 60.0  # Public nodes can be slow to answer pings
DEFAULT_SUBSCRIBE_TIMEOUT = 10.0


class SubscriptionError(Exception):
    """The node refused or did not confirm the logsSubscribe request."""


@dataclass
class ConnectionState:
    """Track WebSocket connection state.

    Attributes:
        connected_at: Timestamp when the current connection was established
        disconnected_at: Timestamp when the last disconnection occurred
        last_message_ts: Timestamp of last received message
        reconnect_count: Number of reconnections since initial connect
        is_connected: Whether currently connected and subscribed
        subscription_id: Subscription id returned by the node
    """

    connected_at: Optional[datetime] = None
    disconnected_at: Optional[datetime] = None
    last_message_ts: Optional[datetime] = None
    reconnect_count: int = 0
    is_connected: bool = False
    subscription_id: Optional[int] = None


@dataclass
class LogsSubscriptionClient:
    """Subscribes to transactions mentioning one address.

    Responsibilities:
    - Open the socket and confirm the logsSubscribe subscription
    - Deliver LogNotifications to on_notification
    - Reconnect with exponential backoff after any failure
    - Fire on_connecting / on_connect / on_disconnect around each session

    Callbacks are synchronous and run on the event loop; they must not block.

    Example:
        client = LogsSubscriptionClient(
            ws_url="wss://api.devnet.solana.com",
            mentions=str(pool_address),
            on_notification=lambda n: queue.put_nowait(n.signature),
            on_connect=lambda ts: queue.put_nowait(BACKFILL),
        )
        await client.start()
        # ... later
        await client.stop()
    """

    ws_url: str
    mentions: str
    commitment: str = "confirmed"
    on_notification: Optional[Callable[[LogNotification], None]] = None
    on_connecting: Optional[Callable[[], None]] = None
    on_connect: Optional[Callable[[datetime], None]] = None
    on_disconnect: Optional[Callable[[datetime], None]] = None
    ping_interval: float = DEFAULT_PING_INTERVAL
    ping_timeout: float = DEFAULT_PING_TIMEOUT
    subscribe_timeout: float = DEFAULT_SUBSCRIBE_TIMEOUT
    reconnect_base: float = 1.0
    max_reconnect_delay: float = 30.0
    normalizer: SolanaNormalizer = field(default_factory=SolanaNormalizer)

    _state: ConnectionState = field(default_factory=ConnectionState, init=False)
    _task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _stopping: bool = field(default=False, init=False)
    _failures: int = field(default=0, init=False)
    _notification_count: int = field(default=0, init=False)

    async def start(self) -> None:
        """Start the connection loop as a background task."""
        if self._task is not None and not self._task.done():
            logger.warning("LogsSubscriptionClient already running")
            return
        self._stopping = False
        self._task = asyncio.create_task(self.run(), name="logs-subscription")

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Logs subscription stopped")

    async def run(self) -> None:
        """Connect, subscribe and consume notifications until stopped."""
        while not self._stopping:
            self._fire(self.on_connecting)
            try:
                async with websockets.connect(
                    self.ws_url,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_timeout,
                    close_timeout=10,
                ) as websocket:
                    try:
                        await self._subscribe(websocket)
                        self._mark_connected()
                        async for raw in websocket:
                            self._handle_message(raw)
                        logger.warning("Logs subscription closed by server")
                    finally:
                        self._mark_disconnected()
            except asyncio.CancelledError:
                raise
            except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError, SubscriptionError) as e:
                logger.warning(f"Logs subscription error: {type(e).__name__}: {e}")

            if self._stopping:
                break

            delay = min(self.reconnect_base * (2 ** self._failures), self.max_reconnect_delay)
            self._failures += 1
            logger.info(f"Reconnecting logs subscription in {delay:.1f}s (attempt {self._failures})")
            await asyncio.sleep(delay)

    def get_connection_state(self) -> ConnectionState:
        """Return a copy of the current connection state."""
        return ConnectionState(
            connected_at=self._state.connected_at,
            disconnected_at=self._state.disconnected_at,
            last_message_ts=self._state.last_message_ts,
            reconnect_count=self._state.reconnect_count,
            is_connected=self._state.is_connected,
            subscription_id=self._state.subscription_id,
        )

    def is_connected(self) -> bool:
        return self._state.is_connected

    def get_stats(self) -> dict:
        return {
            "connected": self._state.is_connected,
            "reconnects": self._state.reconnect_count,
            "notifications": self._notification_count,
        }

    async def _subscribe(self, websocket) -> None:
        """Send logsSubscribe and wait for the subscription id."""
        request = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self.mentions]},
                {"commitment": self.commitment},
            ],
        }
        await websocket.send(json.dumps(request))

        raw = await asyncio.wait_for(websocket.recv(), timeout=self.subscribe_timeout)
        try:
            response = json.loads(raw)
        except ValueError as e:
            raise SubscriptionError(f"Invalid subscription response: {raw!r}") from e

        if "result" not in response:
            raise SubscriptionError(f"Subscription rejected: {response.get('error', response)}")

        self._state.subscription_id = response["result"]
        logger.info(f"Subscribed to logs mentioning {self.mentions} (subscription {response['result']})")

    def _mark_connected(self) -> None:
        now = datetime.now(UTC)
        if self._state.connected_at is not None:
            self._state.reconnect_count += 1
        self._state.connected_at = now
        self._state.last_message_ts = now
        self._state.is_connected = True
        self._failures = 0
        logger.info(f"Logs subscription connected (reconnect #{self._state.reconnect_count})")
        self._fire(self.on_connect, now)

    def _mark_disconnected(self) -> None:
        if not self._state.is_connected:
            return
        now = datetime.now(UTC)
        self._state.is_connected = False
        self._state.disconnected_at = now
        self._state.subscription_id = None
        logger.warning("Logs subscription disconnected")
        self._fire(self.on_disconnect, now)

    def _handle_message(self, raw) -> None:
        """Handle one raw frame from the socket."""
        self._state.last_message_ts = datetime.now(UTC)
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring non-JSON frame: {raw!r:.200}")
            return

        notification = self.normalizer.normalize_log_notification(message)
        if notification is None:
            return

        self._notification_count += 1
        self._fire(self.on_notification, notification)

    def _fire(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Error in {getattr(callback, '__name__', 'subscription')} callback: {e}")
