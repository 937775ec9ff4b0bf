"""
Output Models
=============

Requests produced for fleet adapters.

A pass (observation batch, full recompute, cull) produces at most one
LaneRequest and one SpeedLimitRequest per fleet, grouping every lane whose
state changed in that pass. Requests reflect the state AFTER the pass.

Output Contract:
    {
        "fleet_name": "tinyRobot",
        "close_lanes": [3],
        "open_lanes": [7]
    }

    {
        "fleet_name": "tinyRobot",
        "speed_limits": [{"lane_index": 3, "speed_limit": 0.5}],
        "remove_limits": [7]
    }
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from lane_blocker.models.input import SpeedLimitEntry


class Mitigation(str, Enum):
    """Which requests a lane state change produces."""

    CLOSURE = "closure"
    SPEED_LIMIT = "speed_limit"
    BOTH = "both"


class LaneRequest(BaseModel):
    """
    Lane closure/reopen request for one fleet.

    Attributes:
        fleet_name: Fleet the lanes belong to
        close_lanes: Lane indices to close
        open_lanes: Lane indices to reopen
    """

    fleet_name: str = Field(..., description="Fleet the lanes belong to")
    close_lanes: List[int] = Field(default_factory=list)
    open_lanes: List[int] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.close_lanes and not self.open_lanes


class SpeedLimitRequest(BaseModel):
    """
    Speed limit request for one fleet.

    Attributes:
        fleet_name: Fleet the lanes belong to
        speed_limits: Limits to impose
        remove_limits: Lane indices to make unrestricted again
    """

    fleet_name: str = Field(..., description="Fleet the lanes belong to")
    speed_limits: List[SpeedLimitEntry] = Field(default_factory=list)
    remove_limits: List[int] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.speed_limits and not self.remove_limits
