"""
LaneBlocker
===========

Obstacle-aware lane closure agent for robot fleets.

This package tracks obstacles reported by perception sources, relates them to
the lanes of each fleet's navigation graph, and requests lane closures (or
speed limits) when too many obstacles crowd a lane, reopening it once they
are gone.

Components:
    - geometry: Oriented boxes, separating-axis test, lanes, frame transforms
    - tracking: Obstacle store and obstacle <-> lane vicinity index
    - agent: LangGraph pass workflow, closure policy, culling, triggers
    - stream: Obstacle feed consumer and request publication

Example:
    from lane_blocker.config import settings

    # Service is started via the FastAPI application
    # See main.py for entry point
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
