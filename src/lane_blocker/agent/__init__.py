"""
Agent Module
============

Decision logic for lane blocking.

This module implements the obstacle lifecycle on top of the tracking state:
    - association.py: obstacle -> lane vicinity computation
    - culling.py: eviction of expired obstacles
    - transitions.py: closure thresholds and lane state transitions
    - graph.py: LangGraph pass workflow and the coordinator owning the lock
    - ingestion.py: transform + store of incoming detections
    - scheduler.py: non-reentrant periodic triggers

Key Design Decisions:
    - LangGraph is used for STRUCTURE, not LLM reasoning
    - All transitions are deterministic and inspectable
    - One lock guards all shared state
"""

from lane_blocker.agent.graph import LaneBlockerGraph, Observation
from lane_blocker.agent.transitions import ClosurePolicy, ClosureThresholds

__all__ = [
    "LaneBlockerGraph",
    "Observation",
    "ClosurePolicy",
    "ClosureThresholds",
]
