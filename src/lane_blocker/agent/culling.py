"""
Culling Engine
==============

Evicts expired obstacles and repairs the vicinity index.

Runs inside the coordinator's critical section, on its own period.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Set

from lane_blocker.models.keys import LaneKey, ObstacleKey
from lane_blocker.tracking.index import VicinityIndex
from lane_blocker.tracking.store import ObstacleStore


logger = logging.getLogger(__name__)


@dataclass
class CullResult:
    """Obstacles evicted by a cull and lanes whose vicinity changed."""

    removed: List[ObstacleKey] = field(default_factory=list)
    affected_lanes: Set[LaneKey] = field(default_factory=set)


class CullingEngine:
    """Removes records whose expiry time has passed."""

    def __init__(self, store: ObstacleStore, index: VicinityIndex) -> None:
        self.store = store
        self.index = index
        self.total_culled: int = 0

    def cull(self, now: float) -> CullResult:
        """
        Remove every obstacle with expires_at <= now.

        Args:
            now: Current time (seconds, same clock as observation stamps)

        Returns:
            CullResult with the evicted keys and affected lanes
        """
        result = CullResult()

        for key in self.store.expired(now):
            self.store.remove(key)
            result.removed.append(key)
            result.affected_lanes |= self.index.remove_obstacle(key)

        if result.removed:
            self.total_culled += len(result.removed)
            logger.debug(
                f"Culled {len(result.removed)} obstacles, "
                f"{len(result.affected_lanes)} lanes affected"
            )

        return result
