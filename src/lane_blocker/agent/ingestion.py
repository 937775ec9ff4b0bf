"""
Observation Ingestion
=====================

Brings obstacle detections into the common frame and hands them to the
coordinator.

Pipeline per message:
    1. Look up the sensor frame -> common frame transform (bounded by a
       timeout, OUTSIDE the coordinator's lock)
    2. On timeout or lookup failure: drop the message's detections, no retry
    3. Otherwise: upsert every detection into the obstacle store
    4. Optionally run an incremental pass for the upserted obstacles

Design Rules:
    - Never raises for a bad transform; the next message is processed normally
    - Upserting and recomputing are separate critical sections, both entered
      from a worker thread so the event loop never waits on the lock
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from lane_blocker.agent.graph import LaneBlockerGraph, Observation
from lane_blocker.exceptions import TransformLookupError
from lane_blocker.geometry.transforms import Transform2D, TransformLookup
from lane_blocker.models.input import ObstacleMessage


logger = logging.getLogger(__name__)


@dataclass
class IngestionMetrics:
    """Counters for ingestion observability."""

    messages: int = 0
    observations: int = 0
    dropped_observations: int = 0
    transform_timeouts: int = 0
    transform_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "messages": self.messages,
            "observations": self.observations,
            "dropped_observations": self.dropped_observations,
            "transform_timeouts": self.transform_timeouts,
            "transform_failures": self.transform_failures,
        }


class ObservationIngestor:
    """
    Transforms detections and stores them.

    Attributes:
        target_frame: Common frame obstacles are stored in
        lookup_timeout: Maximum seconds to wait for one transform lookup
        incremental: Whether to recompute observed obstacles immediately
    """

    def __init__(
        self,
        blocker: LaneBlockerGraph,
        transforms: TransformLookup,
        target_frame: str,
        lookup_timeout: float = 0.5,
        incremental: bool = True,
    ) -> None:
        if lookup_timeout <= 0:
            raise ValueError("lookup_timeout must be positive")

        self.blocker = blocker
        self.transforms = transforms
        self.target_frame = target_frame
        self.lookup_timeout = lookup_timeout
        self.incremental = incremental
        self.metrics = IngestionMetrics()

    async def _lookup(self, source_frame: str, stamp: float) -> Optional[Transform2D]:
        try:
            return await asyncio.wait_for(
                self.transforms.lookup(self.target_frame, source_frame, stamp),
                timeout=self.lookup_timeout,
            )
        except asyncio.TimeoutError:
            self.metrics.transform_timeouts += 1
            logger.warning(
                f"Transform lookup {source_frame} -> {self.target_frame} "
                f"timed out after {self.lookup_timeout:.2f}s"
            )
        except TransformLookupError as e:
            self.metrics.transform_failures += 1
            logger.warning(f"Transform lookup failed: {e}")
        return None

    async def ingest(self, message: ObstacleMessage) -> int:
        """
        Ingest one message.

        Returns:
            Number of detections stored (0 if the message was dropped)
        """
        self.metrics.messages += 1
        if not message.obstacles:
            return 0

        stamp = message.header.stamp
        transform = await self._lookup(message.header.frame_id, stamp)
        if transform is None:
            self.metrics.dropped_observations += len(message.obstacles)
            return 0

        observations: List[Observation] = []
        for detection in message.obstacles:
            bbox = detection.bbox
            observations.append(Observation(
                key=detection.key,
                box=transform.apply_to_box(
                    bbox.x, bbox.y, bbox.heading, bbox.size_x, bbox.size_y
                ),
                observed_at=stamp,
            ))

        keys = await asyncio.to_thread(self.blocker.upsert_observations, observations)
        self.metrics.observations += len(keys)

        if self.incremental:
            await asyncio.to_thread(self.blocker.process_obstacles, keys, stamp)

        return len(keys)
