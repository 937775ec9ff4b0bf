"""
Observation Buffer
==================

Async-safe bounded queue for obstacle messages.

This module provides the ObservationBuffer class, the interface between the
feed consumer and the ingestion loop.

Drop policy:
    - A message is stale once its detections would already be expired:
      stamp + max_age <= newest stamp seen on the feed. Stale messages are
      rejected on put and skipped on get.
    - On overflow, stale messages are purged first; only if the buffer is
      still full is the oldest fresh message dropped.

Design Rules:
    - Staleness uses the feed's own clock (message stamps), never wall time
    - Does NOT modify messages
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from lane_blocker.models.input import ObstacleMessage


logger = logging.getLogger(__name__)


class ObservationBuffer:
    """
    Bounded queue of obstacle messages that discards expired detections.

    Attributes:
        maxsize: Maximum number of messages to buffer
        max_age: Age (seconds, feed clock) after which a message is stale;
            None disables the staleness check
        dropped_count: Fresh messages dropped due to overflow
        stale_count: Messages discarded because they were already expired

    Example:
        buffer = ObservationBuffer(maxsize=50, max_age=1.0)
        await buffer.put(message)
        message = await buffer.get(timeout=1.0)
    """

    def __init__(self, maxsize: int = 50, max_age: Optional[float] = None) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        if max_age is not None and max_age <= 0:
            raise ValueError("max_age must be positive")

        self._maxsize = maxsize
        self._max_age = max_age
        self._messages: Deque[ObstacleMessage] = deque()
        self._available = asyncio.Event()
        self._newest_stamp: Optional[float] = None
        self._dropped_count: int = 0
        self._stale_count: int = 0
        self._total_put: int = 0

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def max_age(self) -> Optional[float]:
        return self._max_age

    @property
    def size(self) -> int:
        return len(self._messages)

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def stale_count(self) -> int:
        return self._stale_count

    @property
    def total_put(self) -> int:
        return self._total_put

    @property
    def newest_stamp(self) -> Optional[float]:
        return self._newest_stamp

    def is_stale(self, message: ObstacleMessage) -> bool:
        if self._max_age is None or self._newest_stamp is None:
            return False
        return message.header.stamp + self._max_age <= self._newest_stamp

    async def put(self, message: ObstacleMessage) -> bool:
        """
        Add a message.

        Returns:
            True if the message was queued and no fresh message was dropped
            to make room.
        """
        self._total_put += 1
        stamp = message.header.stamp
        if self._newest_stamp is None or stamp > self._newest_stamp:
            self._newest_stamp = stamp

        if self.is_stale(message):
            self._stale_count += 1
            logger.warning(
                f"Discarding expired obstacle message "
                f"(frame={message.header.frame_id}, stamp={stamp:.3f}, "
                f"newest={self._newest_stamp:.3f})"
            )
            return False

        dropped = False
        if len(self._messages) >= self._maxsize:
            self._purge_stale()
        if len(self._messages) >= self._maxsize:
            self._messages.popleft()
            self._dropped_count += 1
            dropped = True
            logger.warning(
                f"Buffer full, dropped oldest obstacle message. "
                f"Total dropped: {self._dropped_count}"
            )

        self._messages.append(message)
        self._available.set()
        return not dropped

    async def get(self, timeout: Optional[float] = None) -> Optional[ObstacleMessage]:
        """
        Get the next message that is not stale.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next message, or None if timeout occurred.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            message = self.get_nowait()
            if message is not None:
                return message

            self._available.clear()
            try:
                if deadline is None:
                    await self._available.wait()
                else:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        return None
                    await asyncio.wait_for(self._available.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return None

    def get_nowait(self) -> Optional[ObstacleMessage]:
        while self._messages:
            message = self._messages.popleft()
            if self.is_stale(message):
                self._stale_count += 1
                logger.debug(f"Skipping expired message (stamp={message.header.stamp:.3f})")
                continue
            return message
        return None

    def clear(self) -> int:
        """Clear all messages. Returns the number cleared."""
        cleared = len(self._messages)
        self._messages.clear()
        return cleared

    def _purge_stale(self) -> None:
        fresh = [m for m in self._messages if not self.is_stale(m)]
        purged = len(self._messages) - len(fresh)
        if purged:
            self._stale_count += purged
            self._messages = deque(fresh)
            logger.debug(f"Purged {purged} expired messages to make room")

    def metrics(self) -> dict:
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "max_age": self._max_age,
            "newest_stamp": self._newest_stamp,
            "dropped_count": self._dropped_count,
            "stale_count": self._stale_count,
            "total_put": self._total_put,
        }
