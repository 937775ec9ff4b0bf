"""
Navigation Graph Models
=======================

Schema for per-fleet navigation graphs.

Graphs arrive wholesale: every message replaces the fleet's previous graph.
Lanes are derived from edges in edge order; a bidirectional edge produces
the forward lane (v1 -> v2) followed by the reverse lane (v2 -> v1).

Example Graph:
    {
        "name": "tinyRobot",
        "vertices": [
            {"x": 0.0, "y": 0.0, "name": "charger"},
            {"x": 10.0, "y": 0.0, "name": "pantry"}
        ],
        "edges": [
            {"v1_idx": 0, "v2_idx": 1, "edge_type": "bidirectional"}
        ]
    }

    -> lane 0: charger -> pantry, lane 1: pantry -> charger

Note:
    All coordinates are in the common (fleet management) frame, in meters.
"""

import json
from enum import Enum
from pathlib import Path
from typing import List, Tuple, Union

from pydantic import BaseModel, Field, model_validator


class EdgeType(str, Enum):
    """Traversal direction of a graph edge."""

    BIDIRECTIONAL = "bidirectional"
    UNIDIRECTIONAL = "unidirectional"


class GraphVertex(BaseModel):
    """
    Waypoint of a navigation graph.

    Attributes:
        x: Position along x (meters)
        y: Position along y (meters)
        name: Optional waypoint name
    """

    x: float = Field(..., description="Position along x (meters)")
    y: float = Field(..., description="Position along y (meters)")
    name: str = Field(default="", description="Optional waypoint name")


class GraphEdge(BaseModel):
    """
    Edge between two waypoints.

    Attributes:
        v1_idx: Index of the entry waypoint
        v2_idx: Index of the exit waypoint
        edge_type: Whether the edge can be traversed both ways
    """

    v1_idx: int = Field(..., ge=0, description="Index of the entry waypoint")
    v2_idx: int = Field(..., ge=0, description="Index of the exit waypoint")
    edge_type: EdgeType = Field(
        default=EdgeType.BIDIRECTIONAL,
        description="Traversal direction",
    )


class NavGraph(BaseModel):
    """
    Complete navigation graph of one fleet.

    Attributes:
        name: Fleet name owning this graph
        vertices: Waypoints
        edges: Edges between waypoints
    """

    name: str = Field(..., min_length=1, description="Fleet name")
    vertices: List[GraphVertex] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_edges(self) -> "NavGraph":
        """Reject edges that reference missing or coincident waypoints."""
        count = len(self.vertices)
        for i, edge in enumerate(self.edges):
            if edge.v1_idx >= count or edge.v2_idx >= count:
                raise ValueError(
                    f"Edge {i} references a missing waypoint "
                    f"({edge.v1_idx} -> {edge.v2_idx}, {count} waypoints)"
                )
            v1 = self.vertices[edge.v1_idx]
            v2 = self.vertices[edge.v2_idx]
            if v1.x == v2.x and v1.y == v2.y:
                raise ValueError(f"Edge {i} has zero length")
        return self

    def lane_endpoints(self) -> List[Tuple[GraphVertex, GraphVertex]]:
        """
        Enumerate lanes as (entry, exit) waypoint pairs.

        The position in the returned list is the lane index.
        """
        lanes: List[Tuple[GraphVertex, GraphVertex]] = []
        for edge in self.edges:
            v1 = self.vertices[edge.v1_idx]
            v2 = self.vertices[edge.v2_idx]
            lanes.append((v1, v2))
            if edge.edge_type == EdgeType.BIDIRECTIONAL:
                lanes.append((v2, v1))
        return lanes

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "NavGraph":
        """
        Load a graph from a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist
            pydantic.ValidationError: If the JSON is not a valid graph
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Graph file not found: {path}")

        with open(file_path, "r") as f:
            data = json.load(f)
        return cls.model_validate(data)
