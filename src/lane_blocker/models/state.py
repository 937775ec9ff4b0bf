"""
Tracking State Models
=====================

Internal records for tracked obstacles and lanes.

Core Concepts:
    - ObstacleRecord: latest known box of one obstacle, with its expiry
    - Lane: one directed lane of a fleet, as an oriented rectangle
    - LaneState: binary lane state (OPEN, CLOSED)
    - LaneTransition: one lane changing state during a pass

These are frozen dataclasses: a new observation REPLACES a record, it never
mutates one.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from lane_blocker.geometry.obb import OrientedBox
from lane_blocker.models.keys import LaneKey, ObstacleKey
from lane_blocker.models.reason_codes import ReasonCode


class LaneState(str, Enum):
    """Binary lane state as decided by this service."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True, slots=True)
class ObstacleRecord:
    """
    Latest observation of one obstacle, in the common frame.

    Attributes:
        key: (source, id) identity
        box: Obstacle footprint
        observed_at: Time of the observation (seconds)
        expires_at: observed_at + time-to-live
    """

    key: ObstacleKey
    box: OrientedBox
    observed_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True, slots=True)
class Lane:
    """
    Directed lane of a fleet's navigation graph.

    Attributes:
        key: (fleet, lane index) identity
        entry: Entry waypoint position
        exit: Exit waypoint position
        center: Segment midpoint
        heading: Segment direction (radians)
        length: Segment length (meters)
        width: Configured lane width (meters)
        box: Collision box covering the lane corridor
    """

    key: LaneKey
    entry: Tuple[float, float]
    exit: Tuple[float, float]
    center: Tuple[float, float]
    heading: float
    length: float
    width: float
    box: OrientedBox


@dataclass(frozen=True, slots=True)
class LaneTransition:
    """One lane changing state, with the reason and the count that caused it."""

    lane: LaneKey
    new_state: LaneState
    reason_code: ReasonCode
    vicinity_count: int

    @property
    def closed(self) -> bool:
        return self.new_state == LaneState.CLOSED

    def __repr__(self) -> str:
        return (
            f"LaneTransition({self.lane}, {self.new_state.value}, "
            f"{self.reason_code.value}, count={self.vicinity_count})"
        )
