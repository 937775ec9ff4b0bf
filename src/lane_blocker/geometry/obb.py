"""
Oriented Bounding Boxes
=======================

Oriented box value type and the separating-axis intersection test used for
every obstacle/lane vicinity check.

Pose Convention:
    A box is described by an offset (x, y), a heading and its full extents
    (size_x, size_y). The pose is composed as rotation after translation:
    a point p in the box's own frame lands at

        R(heading) @ ((x, y) + p)

    so the world-frame center of the box is R(heading) @ (x, y). Boxes
    measured around a world-frame center should be built with
    OrientedBox.from_center(), which performs the inverse placement.

Intersection Test:
    Four candidate axes are tested, the two edge normals of each box. For
    each box taken as reference, the other box's corners are expressed in
    the reference frame and their extent along both reference axes is
    compared with the reference half-extents.

    - Every axis overlapping (within tolerance) -> intersecting.
    - Otherwise the reported separation is the smallest gap among the
      separating axes.

Example:
    from lane_blocker.geometry.obb import OrientedBox, intersects

    a = OrientedBox(x=1.0, y=0.0, heading=0.0, size_x=2.0, size_y=2.0)
    b = OrientedBox(x=4.0, y=0.0, heading=0.0, size_x=2.0, size_y=2.0)

    hit, separation = intersects(a, b)   # (False, 1.0)
"""

import math
from dataclasses import dataclass
from functools import cached_property
from typing import Tuple

import numpy as np


# Gaps at or below this are treated as touching
SEPARATION_TOLERANCE = 1e-3

_UNIT_CORNERS = np.array(
    [
        [-1.0, -1.0],
        [1.0, -1.0],
        [1.0, 1.0],
        [-1.0, 1.0],
    ]
)


def _rotation(heading: float) -> np.ndarray:
    c, s = math.cos(heading), math.sin(heading)
    return np.array([[c, -s], [s, c]])


@dataclass(frozen=True)
class OrientedBox:
    """
    Immutable oriented rectangle.

    Extents must be positive. This is a caller precondition and is not
    checked here, since boxes are built in the hot path; use from_center()
    when the inputs come from outside.

    Attributes:
        x: Offset along the first axis of the pose (see module docstring)
        y: Offset along the second axis of the pose
        heading: Rotation in radians, any real value
        size_x: Full extent along the box's own x axis
        size_y: Full extent along the box's own y axis
    """

    x: float
    y: float
    heading: float
    size_x: float
    size_y: float

    @classmethod
    def from_center(
        cls,
        cx: float,
        cy: float,
        heading: float,
        size_x: float,
        size_y: float,
    ) -> "OrientedBox":
        """
        Build a box whose world-frame center is (cx, cy).

        Raises:
            ValueError: If either extent is not positive
        """
        if size_x <= 0 or size_y <= 0:
            raise ValueError(
                f"Box extents must be positive, got {size_x} x {size_y}"
            )
        c, s = math.cos(heading), math.sin(heading)
        return cls(
            x=c * cx + s * cy,
            y=-s * cx + c * cy,
            heading=heading,
            size_x=size_x,
            size_y=size_y,
        )

    @property
    def half_extents(self) -> Tuple[float, float]:
        return self.size_x / 2.0, self.size_y / 2.0

    @cached_property
    def rotation(self) -> np.ndarray:
        """2x2 rotation matrix for the heading."""
        return _rotation(self.heading)

    @property
    def center(self) -> Tuple[float, float]:
        """World-frame center of the box."""
        cx, cy = self.rotation @ np.array([self.x, self.y])
        return float(cx), float(cy)

    @cached_property
    def corners(self) -> np.ndarray:
        """World-frame corners, shape (4, 2), counter-clockwise."""
        hx, hy = self.half_extents
        local = _UNIT_CORNERS * np.array([hx, hy]) + np.array([self.x, self.y])
        return local @ self.rotation.T

    def to_local(self, points: np.ndarray) -> np.ndarray:
        """
        Express world-frame points relative to this box's center and axes.

        Args:
            points: Array of shape (N, 2)

        Returns:
            Array of shape (N, 2); the box itself spans
            [-size_x/2, size_x/2] x [-size_y/2, size_y/2] in this frame.
        """
        return points @ self.rotation - np.array([self.x, self.y])


def _axis_gaps(reference: OrientedBox, other: OrientedBox) -> Tuple[float, float]:
    """Signed interval gaps of `other` along both axes of `reference`."""
    local = reference.to_local(other.corners)
    lo = local.min(axis=0)
    hi = local.max(axis=0)
    hx, hy = reference.half_extents
    gap_x = max(lo[0] - hx, -hx - hi[0])
    gap_y = max(lo[1] - hy, -hy - hi[1])
    return float(gap_x), float(gap_y)


def intersects(
    box_a: OrientedBox,
    box_b: OrientedBox,
    tolerance: float = SEPARATION_TOLERANCE,
) -> Tuple[bool, float]:
    """
    Separating-axis test between two oriented boxes.

    Args:
        box_a: First box (positive extents)
        box_b: Second box (positive extents)
        tolerance: Gaps at or below this count as touching

    Returns:
        Tuple of (intersecting, separation). When the boxes do not
        intersect, separation is the smallest gap among the separating
        axes. When they intersect, separation is 0.0 and carries no meaning.
    """
    gaps = _axis_gaps(box_a, box_b) + _axis_gaps(box_b, box_a)
    separating = [gap for gap in gaps if gap > tolerance]
    if not separating:
        return True, 0.0
    return False, min(separating)


def in_vicinity(
    box_a: OrientedBox,
    box_b: OrientedBox,
    proximity_threshold: float,
) -> bool:
    """True when the boxes intersect or are at most `proximity_threshold` apart."""
    hit, separation = intersects(box_a, box_b)
    return hit or separation <= proximity_threshold
