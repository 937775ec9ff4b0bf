"""
Vicinity Index
==============

Bidirectional many-to-many index between obstacles and lanes.

Two mappings are kept:
    - obstacle -> lanes in its vicinity
    - lane -> obstacles in its vicinity

Invariant:
    lane in lanes_of(obstacle)  <=>  obstacle in obstacles_of(lane)

Every mutation validates its keys first and then updates both sides, so a
rejected call leaves the index untouched. Empty sets are pruned on both
sides. Keys are value tuples (ObstacleKey, LaneKey); records are never used
as keys.
"""

from typing import Dict, FrozenSet, Iterable, Iterator, Set, Tuple

from lane_blocker.exceptions import IndexInvariantError
from lane_blocker.models.keys import (
    LaneKey,
    ObstacleKey,
    ensure_lane_key,
    ensure_obstacle_key,
)


class VicinityIndex:
    """Obstacle <-> lane vicinity relation."""

    def __init__(self) -> None:
        self._obstacle_to_lanes: Dict[ObstacleKey, Set[LaneKey]] = {}
        self._lane_to_obstacles: Dict[LaneKey, Set[ObstacleKey]] = {}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def lanes_of(self, obstacle: ObstacleKey) -> FrozenSet[LaneKey]:
        return frozenset(self._obstacle_to_lanes.get(obstacle, ()))

    def obstacles_of(self, lane: LaneKey) -> FrozenSet[ObstacleKey]:
        return frozenset(self._lane_to_obstacles.get(lane, ()))

    def count(self, lane: LaneKey) -> int:
        """Number of obstacles in the vicinity of `lane`."""
        return len(self._lane_to_obstacles.get(lane, ()))

    def obstacles(self) -> Iterator[ObstacleKey]:
        return iter(list(self._obstacle_to_lanes))

    def lanes(self) -> Iterator[LaneKey]:
        return iter(list(self._lane_to_obstacles))

    def pairs(self) -> Iterator[Tuple[ObstacleKey, LaneKey]]:
        for obstacle, lanes in self._obstacle_to_lanes.items():
            for lane in lanes:
                yield obstacle, lane

    def __len__(self) -> int:
        """Number of obstacle/lane pairs."""
        return sum(len(lanes) for lanes in self._obstacle_to_lanes.values())

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def link(self, obstacle: ObstacleKey, lane: LaneKey) -> bool:
        """Relate an obstacle and a lane. Returns False if already related."""
        obstacle = ensure_obstacle_key(obstacle)
        lane = ensure_lane_key(lane)

        lanes = self._obstacle_to_lanes.setdefault(obstacle, set())
        if lane in lanes:
            return False
        lanes.add(lane)
        self._lane_to_obstacles.setdefault(lane, set()).add(obstacle)
        return True

    def unlink(self, obstacle: ObstacleKey, lane: LaneKey) -> bool:
        """Remove the relation. Returns False if it did not exist."""
        obstacle = ensure_obstacle_key(obstacle)
        lane = ensure_lane_key(lane)

        lanes = self._obstacle_to_lanes.get(obstacle)
        if lanes is None or lane not in lanes:
            return False

        obstacles = self._lane_to_obstacles.get(lane)
        if obstacles is None or obstacle not in obstacles:
            raise IndexInvariantError(
                f"Index out of sync: {lane} lists no {obstacle}"
            )

        lanes.discard(lane)
        obstacles.discard(obstacle)
        if not lanes:
            del self._obstacle_to_lanes[obstacle]
        if not obstacles:
            del self._lane_to_obstacles[lane]
        return True

    def replace_lanes(
        self,
        obstacle: ObstacleKey,
        lanes: Iterable[LaneKey],
    ) -> Tuple[Set[LaneKey], Set[LaneKey]]:
        """
        Set the vicinity of an obstacle, updating both sides.

        Returns:
            Tuple of (added, removed) lane keys
        """
        obstacle = ensure_obstacle_key(obstacle)
        new = {ensure_lane_key(lane) for lane in lanes}
        old = set(self._obstacle_to_lanes.get(obstacle, ()))

        added = new - old
        removed = old - new
        for lane in removed:
            self.unlink(obstacle, lane)
        for lane in added:
            self.link(obstacle, lane)
        return added, removed

    def remove_obstacle(self, obstacle: ObstacleKey) -> Set[LaneKey]:
        """Drop an obstacle from every lane. Returns the lanes it was in."""
        obstacle = ensure_obstacle_key(obstacle)
        lanes = set(self._obstacle_to_lanes.get(obstacle, ()))
        for lane in lanes:
            self.unlink(obstacle, lane)
        return lanes

    def remove_lane(self, lane: LaneKey) -> Set[ObstacleKey]:
        """Drop a lane from every obstacle. Returns the obstacles it had."""
        lane = ensure_lane_key(lane)
        obstacles = set(self._lane_to_obstacles.get(lane, ()))
        for obstacle in obstacles:
            self.unlink(obstacle, lane)
        return obstacles

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    def check_consistency(self) -> None:
        """
        Verify the two-sided invariant.

        Raises:
            IndexInvariantError: On the first mismatch found
        """
        for obstacle, lanes in self._obstacle_to_lanes.items():
            if not lanes:
                raise IndexInvariantError(f"Empty lane set kept for {obstacle}")
            for lane in lanes:
                if obstacle not in self._lane_to_obstacles.get(lane, ()):
                    raise IndexInvariantError(f"{obstacle} -> {lane} has no reverse entry")
        for lane, obstacles in self._lane_to_obstacles.items():
            if not obstacles:
                raise IndexInvariantError(f"Empty obstacle set kept for {lane}")
            for obstacle in obstacles:
                if lane not in self._obstacle_to_lanes.get(obstacle, ()):
                    raise IndexInvariantError(f"{lane} -> {obstacle} has no reverse entry")
