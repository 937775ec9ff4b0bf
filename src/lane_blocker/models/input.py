"""
Input Message Schemas
=====================

Pydantic models for messages consumed from external collaborators.

Obstacle Feed Contract:
    {
        "header": {"frame_id": "lidar_link", "stamp": 1707321234.567},
        "obstacles": [
            {
                "source": "lidar_front",
                "id": 12,
                "bbox": {
                    "x": 1.2, "y": -0.4, "heading": 0.0,
                    "size_x": 0.6, "size_y": 0.6
                }
            }
        ]
    }

    Boxes are expressed in the header's frame, centered at (x, y).

Lane States Contract:
    {
        "fleet_name": "tinyRobot",
        "closed_lanes": [3, 4],
        "speed_limits": [{"lane_index": 5, "speed_limit": 0.5}]
    }

Example:
    from lane_blocker.models.input import ObstacleMessage

    message = ObstacleMessage.model_validate_json(raw)
    for detection in message.obstacles:
        print(detection.key)
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from lane_blocker.models.keys import ObstacleKey


class Header(BaseModel):
    """Frame and time the detections were made in."""

    frame_id: str = Field(..., min_length=1, description="Sensor frame name")
    stamp: float = Field(..., ge=0, description="UNIX timestamp of the detections")


class BoundingBoxMessage(BaseModel):
    """
    Planar bounding box around a world-frame center.

    Attributes:
        x: Center along x (meters)
        y: Center along y (meters)
        heading: Orientation (radians)
        size_x: Full extent along the box's x axis (meters)
        size_y: Full extent along the box's y axis (meters)
    """

    x: float
    y: float
    heading: float = 0.0
    size_x: float = Field(..., gt=0)
    size_y: float = Field(..., gt=0)


class ObstacleDetection(BaseModel):
    """Single detection reported by a perception source."""

    source: str = Field(..., min_length=1, description="Detecting source")
    id: int = Field(..., ge=0, description="Source-local obstacle id")
    bbox: BoundingBoxMessage
    lifetime: Optional[float] = Field(
        default=None,
        ge=0,
        description="Producer-suggested lifetime (seconds); the configured TTL is used instead",
    )

    @property
    def key(self) -> ObstacleKey:
        return ObstacleKey(self.source, self.id)


class ObstacleMessage(BaseModel):
    """Batch of detections sharing a frame and timestamp."""

    header: Header
    obstacles: List[ObstacleDetection] = Field(default_factory=list)


class SpeedLimitEntry(BaseModel):
    """Speed limit applied to one lane."""

    lane_index: int = Field(..., ge=0)
    speed_limit: float = Field(..., gt=0, description="Limit in m/s")


class LaneStates(BaseModel):
    """
    Current lane state of one fleet as reported by its fleet adapter.

    Read-only input: used to avoid requesting what another actor already
    imposed.
    """

    fleet_name: str = Field(..., min_length=1)
    closed_lanes: List[int] = Field(default_factory=list)
    speed_limits: List[SpeedLimitEntry] = Field(default_factory=list)
