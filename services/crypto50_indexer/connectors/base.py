"""
Base Stream Connector

Abstract base class for market-data WebSocket connectors.
Defines the interface and common functionality for:
- WebSocket connection management
- Reconnection with exponential backoff
- Telemetry tracking
- Frame dispatch to the consumer callback
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import websockets
from websockets import ClientConnection

from ..core.types import (
    ConnectionState,
    FeedTelemetry,
    MiniTickerFrame,
    TickerFrame,
)
from ..core.constants import (
    RECONNECT_INITIAL_DELAY_MS,
    RECONNECT_MAX_DELAY_MS,
    RECONNECT_BACKOFF_MULTIPLIER,
)
from ..core.metrics import increment_feed_reconnects, update_feed_status

logger = logging.getLogger(__name__)

Frame = Union[MiniTickerFrame, TickerFrame]


@dataclass
class ConnectorState:
    """Internal state for a connector."""

    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_message_time_ms: Optional[int] = None
    message_count: int = 0
    frame_count: int = 0
    reconnect_count: int = 0
    session_start_time_ms: Optional[int] = None
    last_error: Optional[str] = None
    current_reconnect_delay_ms: int = RECONNECT_INITIAL_DELAY_MS


class BaseConnector(ABC):
    """
    Abstract base class for streaming WebSocket connectors.

    Subclasses must implement:
    - get_ws_url(): Return the WebSocket URL
    - build_subscription_message(): Build the subscription message
    - parse_message(): Parse a decoded message into frames

    Features:
    - Automatic reconnection with exponential backoff (1s, x2, capped at 30s)
    - Telemetry tracking (message count, frame count, uptime)
    - Configurable callbacks for frame and state events
    """

    def __init__(
        self,
        name: str,
        on_frame: Optional[Callable[[Frame], None]] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        self.name = name
        self.on_frame = on_frame
        self.on_state_change = on_state_change

        # Internal state
        self._state = ConnectorState()
        self._ws: Optional[ClientConnection] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # =========================================================================
    # Abstract Methods (subclasses must implement)
    # =========================================================================

    @abstractmethod
    def get_ws_url(self) -> str:
        """Return the WebSocket URL for this feed."""
        pass

    @abstractmethod
    def build_subscription_message(self) -> Optional[dict[str, Any]]:
        """Build the subscription message (None if the URL is enough)."""
        pass

    @abstractmethod
    def parse_message(self, data: Any) -> list[Frame]:
        """
        Parse a decoded message into stream frames.

        Args:
            data: Parsed JSON message from WebSocket

        Returns:
            List of frames (may be empty for acks, errors or unknown events)
        """
        pass

    # =========================================================================
    # Public API
    # =========================================================================

    async def start(self) -> None:
        """Start the connector (connect and begin receiving)."""
        if self._running:
            logger.warning(f"{self._log_prefix} Already running")
            return

        self._running = True
        self._state.session_start_time_ms = int(time.time() * 1000)
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"{self._log_prefix} Started")

    async def stop(self) -> None:
        """Stop the connector and close connection."""
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info(f"{self._log_prefix} Stopped")

    def get_telemetry(self) -> FeedTelemetry:
        """Get current telemetry snapshot."""
        now_ms = int(time.time() * 1000)
        session_duration_ms = (
            now_ms - self._state.session_start_time_ms
            if self._state.session_start_time_ms
            else 0
        )

        uptime_percent = 0.0
        if session_duration_ms > 0 and self._state.connection_state == ConnectionState.CONNECTED:
            # Approximate: connected with recent traffic counts as up
            if self._state.last_message_time_ms:
                silence_ms = now_ms - self._state.last_message_time_ms
                if silence_ms < 30_000:
                    uptime_percent = 100.0

        avg_message_rate = 0.0
        if session_duration_ms > 0:
            avg_message_rate = self._state.message_count / (session_duration_ms / 1000)

        return FeedTelemetry(
            connection_state=self._state.connection_state,
            last_message_time=self._state.last_message_time_ms,
            message_count=self._state.message_count,
            frame_count=self._state.frame_count,
            reconnect_count=self._state.reconnect_count,
            subscribed_pairs=self.subscribed_count,
            session_start_time=self._state.session_start_time_ms,
            uptime_percent=uptime_percent,
            avg_message_rate=avg_message_rate,
        )

    @property
    def subscribed_count(self) -> int:
        """Number of streams this connector subscribes to."""
        return 0

    def get_last_update_time(self) -> Optional[int]:
        """Get timestamp of last message received (ms)."""
        return self._state.last_message_time_ms

    def is_connected(self) -> bool:
        """Check if connector is currently connected."""
        return self._state.connection_state == ConnectionState.CONNECTED

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Internal Methods
    # =========================================================================

    @property
    def _log_prefix(self) -> str:
        return f"[{self.name}]"

    def _set_state(self, state: ConnectionState) -> None:
        """Update connection state and notify callback."""
        if self._state.connection_state != state:
            self._state.connection_state = state
            update_feed_status(state == ConnectionState.CONNECTED)
            if self.on_state_change:
                self.on_state_change(state)

    async def _run_loop(self) -> None:
        """Main connection loop with reconnection logic."""
        while self._running:
            try:
                await self._connect_and_receive()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._state.last_error = str(e)
                logger.error(f"{self._log_prefix} Connection error: {e}")

            if not self._running:
                break

            self._set_state(ConnectionState.DISCONNECTED)

            # Reconnect with backoff
            self._state.reconnect_count += 1
            increment_feed_reconnects()
            delay_ms = self._state.current_reconnect_delay_ms
            logger.info(
                f"{self._log_prefix} Reconnecting in {delay_ms}ms "
                f"(attempt {self._state.reconnect_count})"
            )

            await asyncio.sleep(delay_ms / 1000)

            self._state.current_reconnect_delay_ms = min(
                int(delay_ms * RECONNECT_BACKOFF_MULTIPLIER),
                RECONNECT_MAX_DELAY_MS,
            )

    async def _connect_and_receive(self) -> None:
        """Connect to WebSocket and process messages."""
        url = self.get_ws_url()
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"{self._log_prefix} Connecting to {url}")

        async with websockets.connect(
            url,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
        ) as ws:
            self._ws = ws
            self._set_state(ConnectionState.CONNECTED)
            self._state.current_reconnect_delay_ms = RECONNECT_INITIAL_DELAY_MS
            logger.info(f"{self._log_prefix} Connected")

            sub_msg = self.build_subscription_message()
            if sub_msg is not None:
                await ws.send(json.dumps(sub_msg))
                logger.debug(f"{self._log_prefix} Sent subscription: {sub_msg}")

            async for message in ws:
                if not self._running:
                    break
                await self._handle_message(message)

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        """Handle incoming WebSocket message."""
        self._state.message_count += 1
        self._state.last_message_time_ms = int(time.time() * 1000)

        try:
            if isinstance(message, bytes):
                message = message.decode("utf-8")
            data = json.loads(message)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"{self._log_prefix} Invalid JSON: {e}")
            return

        for frame in self.parse_message(data):
            self._state.frame_count += 1
            if self.on_frame:
                try:
                    self.on_frame(frame)
                except Exception as e:
                    logger.error(f"{self._log_prefix} Frame handler failed for {frame.pair}: {e}")
