"""
Tracking Module
===============

Shared tracking state: the obstacle store and the obstacle <-> lane
vicinity index. Both are plain in-memory structures mutated only inside
the coordinator's critical section.
"""

from lane_blocker.tracking.store import ObstacleStore
from lane_blocker.tracking.index import VicinityIndex

__all__ = [
    "ObstacleStore",
    "VicinityIndex",
]
