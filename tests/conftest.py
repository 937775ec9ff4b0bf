"""
Test Configuration
==================

Pytest fixtures and test configuration for the lane blocker.

Corridor graph used across tests (fleet "tinyRobot", lane width 0.5):

    lane 0: (0, 0) -> (10, 0)   unidirectional
    lane 1: (0, 5) -> (10, 5)   bidirectional, forward
    lane 2: (10, 5) -> (0, 5)   bidirectional, reverse
"""

import pytest

from lane_blocker.agent import ClosureThresholds, LaneBlockerGraph, Observation
from lane_blocker.geometry.obb import OrientedBox
from lane_blocker.models.graph import NavGraph
from lane_blocker.models.keys import LaneKey, ObstacleKey
from lane_blocker.stream.publisher import RequestDispatcher


FLEET = "tinyRobot"
LANE_0 = LaneKey(FLEET, 0)
LANE_1 = LaneKey(FLEET, 1)
LANE_2 = LaneKey(FLEET, 2)


@pytest.fixture
def corridor_graph_data():
    """Raw navigation graph payload."""
    return {
        "name": FLEET,
        "vertices": [
            {"x": 0.0, "y": 0.0, "name": "a"},
            {"x": 10.0, "y": 0.0, "name": "b"},
            {"x": 0.0, "y": 5.0, "name": "c"},
            {"x": 10.0, "y": 5.0, "name": "d"},
        ],
        "edges": [
            {"v1_idx": 0, "v2_idx": 1, "edge_type": "unidirectional"},
            {"v1_idx": 2, "v2_idx": 3, "edge_type": "bidirectional"},
        ],
    }


@pytest.fixture
def corridor_graph(corridor_graph_data):
    return NavGraph.model_validate(corridor_graph_data)


@pytest.fixture
def make_observation():
    """Factory for small axis-aligned obstacle observations."""

    def _make(source, id, x, y, observed_at=100.0, size=0.2):
        return Observation(
            key=ObstacleKey(source, id),
            box=OrientedBox.from_center(x, y, 0.0, size, size),
            observed_at=observed_at,
        )

    return _make


@pytest.fixture
def dispatcher():
    return RequestDispatcher()


@pytest.fixture
def blocker(corridor_graph, dispatcher):
    """Coordinator closing lanes at 2 vicinity obstacles, TTL 1s."""
    graph = LaneBlockerGraph(
        lane_width=0.5,
        proximity_threshold=0.25,
        thresholds=ClosureThresholds(closure_threshold=2),
        obstacle_ttl=1.0,
        dispatcher=dispatcher,
    )
    graph.rebuild_graph(corridor_graph)
    return graph
