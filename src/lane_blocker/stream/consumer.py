"""
Obstacle Feed Consumer
======================

WebSocket client for consuming obstacle detections.

This module provides the ObstacleFeedConsumer class which:
    - Connects to the obstacle feed WebSocket endpoint
    - Parses and validates obstacle messages
    - Warns on timestamps going backwards
    - Handles reconnection with a fixed backoff
    - Pushes validated messages into an ObservationBuffer

Design Rules:
    - Does NOT transform or store obstacles
    - Invalid messages are logged, counted and skipped
    - Reconnects automatically on disconnect
"""

import asyncio
import logging
from typing import Optional, Union

import websockets
from pydantic import ValidationError
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
)

from lane_blocker.models.input import ObstacleMessage
from lane_blocker.stream.buffer import ObservationBuffer


logger = logging.getLogger(__name__)


class FeedConsumerMetrics:
    """Metrics for ObstacleFeedConsumer observability."""

    __slots__ = (
        "messages_received",
        "obstacles_received",
        "reconnect_count",
        "last_stamp",
        "validation_warnings",
        "parse_errors",
    )

    def __init__(self) -> None:
        self.messages_received: int = 0
        self.obstacles_received: int = 0
        self.reconnect_count: int = 0
        self.last_stamp: float = 0.0
        self.validation_warnings: int = 0
        self.parse_errors: int = 0

    def to_dict(self) -> dict:
        return {
            "messages_received": self.messages_received,
            "obstacles_received": self.obstacles_received,
            "reconnect_count": self.reconnect_count,
            "last_stamp": self.last_stamp,
            "validation_warnings": self.validation_warnings,
            "parse_errors": self.parse_errors,
        }


class ObstacleFeedConsumer:
    """
    WebSocket consumer for obstacle messages.

    Attributes:
        url: WebSocket URL to connect to
        buffer: ObservationBuffer to push messages into
        connected: Whether currently connected
        metrics: Operational metrics

    Example:
        buffer = ObservationBuffer(maxsize=50)
        consumer = ObstacleFeedConsumer("ws://localhost:8000/ws/obstacles", buffer)
        task = asyncio.create_task(consumer.run())
        ...
        await consumer.stop()
        await task
    """

    def __init__(
        self,
        url: str,
        buffer: ObservationBuffer,
        reconnect_backoff_ms: int = 500,
        max_reconnect_attempts: int = 0,
    ) -> None:
        self.url = url
        self.buffer = buffer
        self.reconnect_backoff_ms = reconnect_backoff_ms
        self.max_reconnect_attempts = max_reconnect_attempts

        self._websocket = None
        self._connected: bool = False
        self._running: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()

        self.metrics = FeedConsumerMetrics()

    @property
    def connected(self) -> bool:
        return self._connected

    async def run(self) -> None:
        """
        Consume messages until stop() is called.

        Reconnects on disconnect until max_reconnect_attempts is exceeded.
        """
        self._running = True
        self._stop_event.clear()

        logger.info(f"ObstacleFeedConsumer starting, connecting to {self.url}")

        while self._running:
            try:
                await self._connect_and_consume()
            except Exception as e:
                if not self._running:
                    break

                logger.error(f"Connection error: {e}")
                self._connected = False

                if (
                    self.max_reconnect_attempts > 0
                    and self.metrics.reconnect_count >= self.max_reconnect_attempts
                ):
                    logger.error(
                        f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                    )
                    break

                self.metrics.reconnect_count += 1
                backoff_sec = self.reconnect_backoff_ms / 1000.0
                logger.info(
                    f"Reconnecting in {backoff_sec:.1f}s "
                    f"(attempt {self.metrics.reconnect_count})"
                )

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=backoff_sec)
                    break
                except asyncio.TimeoutError:
                    pass

        logger.info("ObstacleFeedConsumer stopped")

    async def stop(self) -> None:
        """Signal the run loop to exit and close the connection."""
        logger.info("ObstacleFeedConsumer stopping...")
        self._running = False
        self._stop_event.set()

        if self._websocket is not None:
            try:
                await self._websocket.close()
            except ConnectionClosed:
                pass

        self._connected = False

    async def _connect_and_consume(self) -> None:
        async with websockets.connect(
            self.url,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
        ) as ws:
            self._websocket = ws
            self._connected = True
            logger.info(f"Connected to obstacle feed: {self.url}")

            try:
                async for raw in ws:
                    if not self._running:
                        break
                    await self.handle_raw(raw)
            except ConnectionClosedOK:
                logger.info("Connection closed normally")
            except ConnectionClosedError as e:
                logger.warning(f"Connection closed with error: {e}")
                raise
            finally:
                self._connected = False
                self._websocket = None

    async def handle_raw(self, raw: Union[str, bytes]) -> Optional[ObstacleMessage]:
        """Parse one raw message and buffer it if valid."""
        message = self._parse_and_validate(raw)
        if message is None:
            return None

        await self.buffer.put(message)
        self.metrics.messages_received += 1
        self.metrics.obstacles_received += len(message.obstacles)
        self.metrics.last_stamp = message.header.stamp
        return message

    def _parse_and_validate(self, raw: Union[str, bytes]) -> Optional[ObstacleMessage]:
        try:
            message = ObstacleMessage.model_validate_json(raw)
        except ValidationError as e:
            self.metrics.parse_errors += 1
            logger.error(f"Invalid obstacle message: {e.error_count()} errors")
            return None

        stamp = message.header.stamp
        if self.metrics.last_stamp > 0 and stamp < self.metrics.last_stamp:
            self.metrics.validation_warnings += 1
            logger.warning(
                f"Timestamp went backwards: got {stamp:.3f}, "
                f"previous was {self.metrics.last_stamp:.3f}"
            )

        return message
