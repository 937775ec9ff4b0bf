"""
Frame Transforms
================

Planar rigid transforms and the lookup interface used to bring detections
into the common frame.

The lookup is an external collaborator. StaticTransformTree is the
in-process implementation: a set of fixed parent -> child transforms loaded
from configuration, chained through their common ancestors.

Example:
    tree = StaticTransformTree()
    tree.add("map", "lidar_link", Transform2D(x=2.0, y=0.0, yaw=0.0))

    tf = await tree.lookup("map", "lidar_link", at_time=stamp)
    box_in_map = tf.apply_to_box(box_in_lidar_frame)
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

from lane_blocker.exceptions import TransformLookupError
from lane_blocker.geometry.obb import OrientedBox


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Transform2D:
    """
    Rigid planar transform: rotate by yaw, then translate by (x, y).

    Maps points expressed in the child (source) frame into the parent
    (target) frame.
    """

    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0

    def apply(self, px: float, py: float) -> Tuple[float, float]:
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return c * px - s * py + self.x, s * px + c * py + self.y

    def compose(self, other: "Transform2D") -> "Transform2D":
        """Return self * other (apply `other` first)."""
        x, y = self.apply(other.x, other.y)
        return Transform2D(x=x, y=y, yaw=self.yaw + other.yaw)

    def inverse(self) -> "Transform2D":
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return Transform2D(
            x=-(c * self.x + s * self.y),
            y=-(-s * self.x + c * self.y),
            yaw=-self.yaw,
        )

    def apply_to_box(
        self,
        cx: float,
        cy: float,
        heading: float,
        size_x: float,
        size_y: float,
    ) -> OrientedBox:
        """Move a box given by its center into the target frame."""
        x, y = self.apply(cx, cy)
        return OrientedBox.from_center(x, y, heading + self.yaw, size_x, size_y)


class TransformLookup(Protocol):
    """Source of transforms between named frames."""

    async def lookup(
        self,
        target_frame: str,
        source_frame: str,
        at_time: float,
    ) -> Transform2D:
        """
        Transform mapping `source_frame` coordinates into `target_frame`.

        Raises:
            TransformLookupError: If no such transform is known
        """
        ...


class StaticTransformTree:
    """
    Fixed transform tree.

    Transforms do not vary over time, so `at_time` is accepted for interface
    compatibility and ignored.
    """

    def __init__(self) -> None:
        # child -> (parent, transform child->parent)
        self._parents: Dict[str, Tuple[str, Transform2D]] = {}

    def add(self, parent_frame: str, child_frame: str, transform: Transform2D) -> None:
        """Register the transform mapping `child_frame` into `parent_frame`."""
        if parent_frame == child_frame:
            raise ValueError(f"Frame '{child_frame}' cannot be its own parent")
        self._parents[child_frame] = (parent_frame, transform)
        logger.debug(f"Registered transform {parent_frame} <- {child_frame}")

    def frames(self) -> List[str]:
        frames = set(self._parents)
        frames.update(parent for parent, _ in self._parents.values())
        return sorted(frames)

    def _to_root(self, frame: str) -> List[Tuple[str, Transform2D]]:
        """Chain of (frame, frame->root transform) from `frame` up to its root."""
        chain = [(frame, Transform2D())]
        seen = {frame}
        current = frame
        accumulated = Transform2D()
        while current in self._parents:
            parent, tf = self._parents[current]
            if parent in seen:
                raise TransformLookupError(parent, frame, "cycle in transform tree")
            seen.add(parent)
            accumulated = tf.compose(accumulated)
            chain.append((parent, accumulated))
            current = parent
        return chain

    def resolve(self, target_frame: str, source_frame: str) -> Transform2D:
        """Synchronous lookup. Raises TransformLookupError."""
        if target_frame == source_frame:
            return Transform2D()

        source_chain = self._to_root(source_frame)
        target_chain = dict(self._to_root(target_frame))

        common: Optional[Tuple[str, Transform2D]] = None
        for frame, source_to_frame in source_chain:
            if frame in target_chain:
                common = (frame, source_to_frame)
                break

        if common is None:
            raise TransformLookupError(target_frame, source_frame, "frames are not connected")

        frame, source_to_common = common
        target_to_common = target_chain[frame]
        return target_to_common.inverse().compose(source_to_common)

    async def lookup(
        self,
        target_frame: str,
        source_frame: str,
        at_time: float,
    ) -> Transform2D:
        return self.resolve(target_frame, source_frame)
