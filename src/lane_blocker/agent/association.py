"""
Association Engine
==================

Maps obstacles to the lanes they threaten.

A lane is in the vicinity of an obstacle when their boxes intersect, or
when they are separated by no more than the proximity threshold.

For each recomputed obstacle the new vicinity set is diffed against the
one recorded in the index, and only the added/removed pairs are applied
(on both sides). The lanes touched by the diff are returned so the caller
can re-evaluate their state once the whole pass is done.

All methods run inside the coordinator's critical section.
"""

import logging
from typing import Iterable, Set

from lane_blocker.geometry.lanes import LaneIndex
from lane_blocker.geometry.obb import OrientedBox, in_vicinity
from lane_blocker.models.keys import LaneKey, ObstacleKey
from lane_blocker.tracking.index import VicinityIndex
from lane_blocker.tracking.store import ObstacleStore


logger = logging.getLogger(__name__)


class AssociationEngine:
    """
    Maintains the vicinity index from the obstacle store and lane index.

    Attributes:
        proximity_threshold: Maximum separation (meters) still counted as vicinity
    """

    def __init__(
        self,
        store: ObstacleStore,
        lanes: LaneIndex,
        index: VicinityIndex,
        proximity_threshold: float,
    ) -> None:
        if proximity_threshold < 0:
            raise ValueError("proximity_threshold must be >= 0")

        self.store = store
        self.lanes = lanes
        self.index = index
        self.proximity_threshold = proximity_threshold

    def vicinity_of(self, box: OrientedBox) -> Set[LaneKey]:
        """Lanes of every fleet in the vicinity of `box`."""
        return {
            lane.key
            for lane in self.lanes.lanes()
            if in_vicinity(box, lane.box, self.proximity_threshold)
        }

    def recompute(self, key: ObstacleKey) -> Set[LaneKey]:
        """
        Recompute the vicinity of one obstacle.

        An obstacle no longer in the store loses all its associations.

        Returns:
            Lanes whose vicinity set changed
        """
        record = self.store.get(key)
        if record is None:
            return self.index.remove_obstacle(key)

        added, removed = self.index.replace_lanes(key, self.vicinity_of(record.box))
        if added or removed:
            logger.debug(
                f"Obstacle {key}: +{len(added)} / -{len(removed)} lanes"
            )
        return added | removed

    def recompute_many(self, keys: Iterable[ObstacleKey]) -> Set[LaneKey]:
        affected: Set[LaneKey] = set()
        for key in keys:
            affected |= self.recompute(key)
        return affected

    def recompute_all(self) -> Set[LaneKey]:
        """
        Recompute every stored obstacle.

        Also drops index entries of obstacles the store no longer holds,
        so the index converges even if an earlier update was missed.

        Returns:
            Lanes whose vicinity set changed
        """
        affected = self.recompute_many(self.store.keys())

        for key in self.index.obstacles():
            if key not in self.store:
                logger.warning(f"Dropping stale index entry for obstacle {key}")
                affected |= self.index.remove_obstacle(key)

        return affected

    def drop_lanes(self, lanes: Iterable[LaneKey]) -> Set[ObstacleKey]:
        """Remove lanes from the index. Returns the obstacles that referenced them."""
        touched: Set[ObstacleKey] = set()
        for lane in lanes:
            touched |= self.index.remove_lane(lane)
        return touched
