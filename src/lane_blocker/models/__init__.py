"""
Data Models
===========

Models for the lane blocker.

This module re-exports all data models for convenient access.

Models:
    Keys:
        - ObstacleKey, LaneKey: value identities

    Input:
        - ObstacleMessage: detections from the obstacle feed
        - LaneStates: lane state reported by a fleet adapter

    Graph:
        - NavGraph: per-fleet navigation graph

    State:
        - ObstacleRecord, Lane, LaneState, LaneTransition

    Output:
        - LaneRequest, SpeedLimitRequest
"""

from lane_blocker.models.keys import LaneKey, ObstacleKey
from lane_blocker.models.input import (
    BoundingBoxMessage,
    Header,
    LaneStates,
    ObstacleDetection,
    ObstacleMessage,
    SpeedLimitEntry,
)
from lane_blocker.models.graph import EdgeType, GraphEdge, GraphVertex, NavGraph
from lane_blocker.models.state import Lane, LaneState, LaneTransition, ObstacleRecord
from lane_blocker.models.output import LaneRequest, Mitigation, SpeedLimitRequest
from lane_blocker.models.reason_codes import ReasonCode

__all__ = [
    # Keys
    "ObstacleKey",
    "LaneKey",
    # Input
    "Header",
    "BoundingBoxMessage",
    "ObstacleDetection",
    "ObstacleMessage",
    "SpeedLimitEntry",
    "LaneStates",
    # Graph
    "EdgeType",
    "GraphVertex",
    "GraphEdge",
    "NavGraph",
    # State
    "ObstacleRecord",
    "Lane",
    "LaneState",
    "LaneTransition",
    "ReasonCode",
    # Output
    "Mitigation",
    "LaneRequest",
    "SpeedLimitRequest",
]
