"""
Lane Index
==========

Per-fleet lane rectangles built from navigation graphs.

Each directed lane becomes an oriented box:
    - center  = midpoint of the two waypoints
    - heading = direction from entry to exit waypoint
    - size_x  = segment length
    - size_y  = configured lane width

A fleet's lanes are replaced wholesale whenever its graph is (re)received.
The index only tracks geometry; lane open/closed state is keyed by LaneKey
elsewhere, so it survives a rebuild for every lane the new graph keeps.

Example:
    from lane_blocker.geometry.lanes import LaneIndex

    index = LaneIndex(lane_width=0.5)
    result = index.rebuild("tinyRobot", graph)
    for lane in index.lanes():
        print(lane.key, lane.center, lane.heading)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from lane_blocker.geometry.obb import OrientedBox
from lane_blocker.models.graph import GraphVertex, NavGraph
from lane_blocker.models.keys import LaneKey
from lane_blocker.models.state import Lane


logger = logging.getLogger(__name__)


@dataclass
class RebuildResult:
    """Lane keys of a fleet before vs after a rebuild."""

    fleet: str
    added: Set[LaneKey] = field(default_factory=set)
    removed: Set[LaneKey] = field(default_factory=set)
    retained: Set[LaneKey] = field(default_factory=set)


def build_lane(
    key: LaneKey,
    entry: GraphVertex,
    exit: GraphVertex,
    lane_width: float,
) -> Lane:
    """
    Build the oriented box of a lane from its two waypoints.

    Raises:
        ValueError: If the waypoints coincide or the width is not positive
    """
    dx = exit.x - entry.x
    dy = exit.y - entry.y
    length = math.hypot(dx, dy)
    if length <= 0.0:
        raise ValueError(f"Lane {key} has zero length")
    heading = math.atan2(dy, dx)
    center = ((entry.x + exit.x) / 2.0, (entry.y + exit.y) / 2.0)

    return Lane(
        key=key,
        entry=(entry.x, entry.y),
        exit=(exit.x, exit.y),
        center=center,
        heading=heading,
        length=length,
        width=lane_width,
        box=OrientedBox.from_center(center[0], center[1], heading, length, lane_width),
    )


class LaneIndex:
    """
    Lanes of every known fleet, as oriented rectangles.

    Not thread-safe on its own: mutation happens inside the coordinator's
    critical section.

    Attributes:
        lane_width: Width given to every lane corridor (meters)
    """

    def __init__(self, lane_width: float) -> None:
        if lane_width <= 0:
            raise ValueError("lane_width must be positive")

        self.lane_width = lane_width
        self._fleets: Dict[str, Dict[LaneKey, Lane]] = {}

    def rebuild(self, fleet_name: str, graph: NavGraph) -> RebuildResult:
        """
        Replace the lanes of a fleet with those of a new graph.

        The graph is fully built before anything is replaced, so an invalid
        graph leaves the previous lanes untouched.

        Args:
            fleet_name: Fleet owning the graph
            graph: Navigation graph received for that fleet

        Returns:
            RebuildResult describing added, removed and retained lanes

        Raises:
            ValueError: If a lane cannot be built
        """
        lanes: Dict[LaneKey, Lane] = {}
        for index, (entry, exit) in enumerate(graph.lane_endpoints()):
            key = LaneKey(fleet_name, index)
            lanes[key] = build_lane(key, entry, exit, self.lane_width)

        previous = set(self._fleets.get(fleet_name, {}))
        current = set(lanes)
        self._fleets[fleet_name] = lanes

        result = RebuildResult(
            fleet=fleet_name,
            added=current - previous,
            removed=previous - current,
            retained=current & previous,
        )
        logger.info(
            f"Rebuilt lanes for fleet '{fleet_name}': total={len(lanes)}, "
            f"added={len(result.added)}, removed={len(result.removed)}"
        )
        return result

    def get(self, key: LaneKey) -> Optional[Lane]:
        fleet = self._fleets.get(key.fleet)
        if fleet is None:
            return None
        return fleet.get(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, tuple) and len(key) == 2 and self.get(LaneKey(*key)) is not None

    def __len__(self) -> int:
        return sum(len(lanes) for lanes in self._fleets.values())

    def has_fleet(self, fleet_name: str) -> bool:
        return fleet_name in self._fleets

    def fleets(self) -> List[str]:
        return list(self._fleets)

    def lanes_of(self, fleet_name: str) -> List[Lane]:
        return list(self._fleets.get(fleet_name, {}).values())

    def lanes(self) -> Iterator[Lane]:
        """Iterate over every lane of every fleet."""
        for lanes in self._fleets.values():
            yield from lanes.values()
