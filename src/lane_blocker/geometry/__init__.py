"""
Geometry Module
===============

Spatial primitives for lane blocking.

This module provides the oriented box value type, the separating-axis
intersection test and planar frame transforms. Lane construction from
navigation graphs lives in lane_blocker.geometry.lanes.
"""

from lane_blocker.geometry.obb import OrientedBox, in_vicinity, intersects
from lane_blocker.geometry.transforms import (
    StaticTransformTree,
    Transform2D,
    TransformLookup,
)

__all__ = [
    "OrientedBox",
    "intersects",
    "in_vicinity",
    "Transform2D",
    "TransformLookup",
    "StaticTransformTree",
]
