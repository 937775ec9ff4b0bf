"""
Lane Blocker Graph
==================

Coordinator owning all shared tracking state, and the LangGraph workflow
that runs one decision pass. LangGraph is used for CONTROL FLOW only.

Graph Structure:
    START --(trigger)--> associate --+--> decide --> END
                    |              |
                    +--> cull -----+

    - "observation" and "process" triggers recompute vicinity (for the
      observed obstacles, or for every obstacle) in the associate node.
    - "cull" evicts expired obstacles in the cull node.
    - decide applies the closure thresholds to every lane touched by the
      pass, after ALL index updates of the pass.

Concurrency:
    One lock guards the obstacle store, the vicinity index and the closed
    lane set together. Every trigger runs its whole read -> decide -> write
    sequence, request dispatch included, while holding it. Nothing inside
    the lock waits on I/O.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set, TypedDict

from langgraph.graph import END, START, StateGraph

from lane_blocker.agent.association import AssociationEngine
from lane_blocker.agent.culling import CullingEngine
from lane_blocker.agent.transitions import ClosurePolicy, ClosureThresholds
from lane_blocker.geometry.lanes import LaneIndex, RebuildResult
from lane_blocker.geometry.obb import OrientedBox
from lane_blocker.models.graph import NavGraph
from lane_blocker.models.input import LaneStates
from lane_blocker.models.keys import LaneKey, ObstacleKey
from lane_blocker.models.reason_codes import ReasonCode
from lane_blocker.models.state import LaneState, LaneTransition, ObstacleRecord
from lane_blocker.stream.publisher import Request, RequestDispatcher
from lane_blocker.tracking.index import VicinityIndex
from lane_blocker.tracking.store import ObstacleStore


logger = logging.getLogger(__name__)


TRIGGER_OBSERVATION = "observation"
TRIGGER_PROCESS = "process"
TRIGGER_CULL = "cull"


@dataclass(frozen=True, slots=True)
class Observation:
    """Detection already transformed into the common frame."""

    key: ObstacleKey
    box: OrientedBox
    observed_at: float


class PassState(TypedDict):
    """
    State passed through the pass graph.

    Attributes:
        trigger: What started the pass
        timestamp: Pass time (seconds)
        obstacles: Obstacles to recompute for an observation pass
        affected_lanes: Lanes whose vicinity changed during the pass
        culled: Obstacles evicted by a cull pass
        transitions: Lane state changes decided by the pass
    """
    trigger: str
    timestamp: float
    obstacles: List[ObstacleKey]
    affected_lanes: Set[LaneKey]
    culled: List[ObstacleKey]
    transitions: List[LaneTransition]


@dataclass
class PassResult:
    """Outcome of one pass."""

    trigger: str
    timestamp: float
    transitions: List[LaneTransition]
    culled: List[ObstacleKey]
    duration_ms: float


class LaneBlockerGraph:
    """
    Lane blocking coordinator.

    Owns the obstacle store, the vicinity index and the closed-lane set, and
    is the only way they are mutated.

    Example:
        blocker = LaneBlockerGraph(
            lane_width=0.5,
            proximity_threshold=0.25,
            thresholds=ClosureThresholds(closure_threshold=2),
            obstacle_ttl=1.0,
            dispatcher=RequestDispatcher(),
        )
        blocker.rebuild_graph(nav_graph)
        blocker.upsert_observations(observations)
        result = blocker.process()
    """

    def __init__(
        self,
        lane_width: float,
        proximity_threshold: float,
        thresholds: Optional[ClosureThresholds] = None,
        obstacle_ttl: float = 1.0,
        dispatcher: Optional[RequestDispatcher] = None,
        max_pass_ms: float = 500.0,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            lane_width: Width of every lane corridor (meters)
            proximity_threshold: Maximum separation counted as vicinity (meters)
            thresholds: Closure thresholds (uses defaults if None)
            obstacle_ttl: Time-to-live of an observation (seconds)
            dispatcher: Request dispatcher (a closure-only one if None)
            max_pass_ms: Passes slower than this are logged as warnings
        """
        if obstacle_ttl <= 0:
            raise ValueError("obstacle_ttl must be positive")

        self.obstacle_ttl = obstacle_ttl
        self.max_pass_ms = max_pass_ms
        self.dispatcher = dispatcher or RequestDispatcher()

        self.store = ObstacleStore()
        self.lanes = LaneIndex(lane_width=lane_width)
        self.index = VicinityIndex()
        self.closed_lanes: Set[LaneKey] = set()

        self.association = AssociationEngine(
            self.store, self.lanes, self.index, proximity_threshold
        )
        self.culling = CullingEngine(self.store, self.index)
        self.policy = ClosurePolicy(thresholds or ClosureThresholds())

        self._lock = threading.Lock()
        self._graph = self._build_graph()

        self.total_passes: int = 0
        self.total_transitions: int = 0
        self.last_pass: Optional[PassResult] = None

        logger.info("LaneBlockerGraph initialized")

    # -------------------------------------------------------------------------
    # Graph
    # -------------------------------------------------------------------------

    def _build_graph(self) -> Any:
        """Build the LangGraph workflow."""
        workflow = StateGraph(PassState)

        workflow.add_node("associate", self._associate_node)
        workflow.add_node("cull", self._cull_node)
        workflow.add_node("decide", self._decide_node)

        workflow.add_conditional_edges(
            START,
            self._route_trigger,
            {"associate": "associate", "cull": "cull"},
        )
        workflow.add_edge("associate", "decide")
        workflow.add_edge("cull", "decide")
        workflow.add_edge("decide", END)

        return workflow.compile()

    @staticmethod
    def _route_trigger(state: PassState) -> str:
        trigger = state["trigger"]
        if trigger == TRIGGER_CULL:
            return "cull"
        if trigger in (TRIGGER_OBSERVATION, TRIGGER_PROCESS):
            return "associate"
        raise ValueError(f"Unknown trigger: {trigger}")

    def _associate_node(self, state: PassState) -> Dict[str, Any]:
        """Recompute vicinity for the pass's obstacles."""
        if state["trigger"] == TRIGGER_PROCESS:
            affected = self.association.recompute_all()
        else:
            affected = self.association.recompute_many(state["obstacles"])
        return {"affected_lanes": affected}

    def _cull_node(self, state: PassState) -> Dict[str, Any]:
        """Evict expired obstacles."""
        result = self.culling.cull(state["timestamp"])
        return {"affected_lanes": result.affected_lanes, "culled": result.removed}

    def _decide_node(self, state: PassState) -> Dict[str, Any]:
        """Apply closure thresholds to every affected lane."""
        reason = (
            ReasonCode.OBSTACLES_EXPIRED
            if state["trigger"] == TRIGGER_CULL
            else ReasonCode.VICINITY_CLEARED
        )
        affected = {lane for lane in state["affected_lanes"] if lane in self.lanes}
        transitions = self.policy.decide_closures(
            affected, self.index, self.closed_lanes, reopen_reason=reason
        )
        return {"transitions": transitions}

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def _run_pass(
        self,
        trigger: str,
        timestamp: Optional[float],
        obstacles: Sequence[ObstacleKey] = (),
    ) -> PassResult:
        if timestamp is None:
            timestamp = time.time()

        with self._lock:
            started = time.perf_counter()
            result = self._graph.invoke({
                "trigger": trigger,
                "timestamp": timestamp,
                "obstacles": list(obstacles),
                "affected_lanes": set(),
                "culled": [],
                "transitions": [],
            })
            transitions: List[LaneTransition] = result["transitions"]

            for transition in transitions:
                logger.warning(
                    f"LANE STATE CHANGE: {transition.lane} -> "
                    f"{transition.new_state.value} | "
                    f"reason={transition.reason_code.value}, "
                    f"count={transition.vicinity_count}"
                )
            if transitions:
                self.dispatcher.dispatch(transitions)

            duration_ms = (time.perf_counter() - started) * 1000.0
            pass_result = PassResult(
                trigger=trigger,
                timestamp=timestamp,
                transitions=transitions,
                culled=result["culled"],
                duration_ms=duration_ms,
            )
            self.total_passes += 1
            self.total_transitions += len(transitions)
            self.last_pass = pass_result

        if trigger == TRIGGER_PROCESS and duration_ms > self.max_pass_ms:
            logger.warning(
                f"Full pass took {duration_ms:.1f}ms "
                f"(budget {self.max_pass_ms:.0f}ms, "
                f"obstacles={len(self.store)}, lanes={len(self.lanes)})"
            )
        else:
            logger.debug(
                f"Pass [{trigger}]: {len(transitions)} transitions "
                f"in {duration_ms:.1f}ms"
            )
        return pass_result

    def upsert_observations(self, observations: Sequence[Observation]) -> List[ObstacleKey]:
        """
        Store observations. Does not touch the vicinity index.

        Returns:
            Keys of the stored obstacles
        """
        with self._lock:
            for observation in observations:
                self.store.upsert(
                    observation.key,
                    observation.box,
                    observation.observed_at,
                    self.obstacle_ttl,
                )
        return [observation.key for observation in observations]

    def process_obstacles(
        self,
        keys: Sequence[ObstacleKey],
        timestamp: Optional[float] = None,
    ) -> PassResult:
        """Incremental pass: recompute vicinity of the given obstacles only."""
        return self._run_pass(TRIGGER_OBSERVATION, timestamp, keys)

    def process(self, timestamp: Optional[float] = None) -> PassResult:
        """Full pass: recompute vicinity of every stored obstacle."""
        return self._run_pass(TRIGGER_PROCESS, timestamp)

    def cull(self, now: Optional[float] = None) -> PassResult:
        """Cull pass: evict expired obstacles and reopen emptied lanes."""
        return self._run_pass(TRIGGER_CULL, now)

    def rebuild_graph(self, graph: NavGraph, fleet_name: Optional[str] = None) -> RebuildResult:
        """
        Replace a fleet's lanes with those of a new navigation graph.

        Closures of retained lanes are kept. Lanes missing from the new graph
        leave the index and the closed-lane set without a reopen request.
        Vicinity is refreshed by the next pass.
        """
        fleet = fleet_name or graph.name
        with self._lock:
            result = self.lanes.rebuild(fleet, graph)
            if result.removed:
                self.association.drop_lanes(result.removed)
                dropped_closed = self.closed_lanes & result.removed
                self.closed_lanes -= result.removed
                self.dispatcher.forget(sorted(result.removed))
                if dropped_closed:
                    logger.warning(
                        f"Fleet '{fleet}' graph dropped {len(dropped_closed)} "
                        f"closed lanes; no reopen requested"
                    )
        return result

    def load_graph_file(self, path: str) -> RebuildResult:
        """Load a navigation graph JSON file and rebuild its fleet."""
        logger.info(f"Loading navigation graph from: {path}")
        return self.rebuild_graph(NavGraph.from_file(path))

    def update_lane_states(self, states: LaneStates) -> List[Request]:
        """Record lane states reported by a fleet adapter; returns requests it released."""
        with self._lock:
            return self.dispatcher.update_lane_states(states)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def lane_state(self, lane: LaneKey) -> LaneState:
        with self._lock:
            return LaneState.CLOSED if lane in self.closed_lanes else LaneState.OPEN

    def closed_lanes_snapshot(self) -> FrozenSet[LaneKey]:
        with self._lock:
            return frozenset(self.closed_lanes)

    def obstacles_snapshot(self) -> List[ObstacleRecord]:
        with self._lock:
            return self.store.get_all()

    def vicinity_snapshot(self) -> Dict[LaneKey, FrozenSet[ObstacleKey]]:
        with self._lock:
            return {lane: self.index.obstacles_of(lane) for lane in self.index.lanes()}

    def check_consistency(self) -> None:
        """Verify the vicinity index invariant. Raises IndexInvariantError."""
        with self._lock:
            self.index.check_consistency()

    def get_metrics(self) -> Dict[str, Any]:
        """Get coordinator metrics for observability."""
        with self._lock:
            return {
                "obstacles": len(self.store),
                "fleets": len(self.lanes.fleets()),
                "lanes": len(self.lanes),
                "vicinity_pairs": len(self.index),
                "closed_lanes": len(self.closed_lanes),
                "total_passes": self.total_passes,
                "total_transitions": self.total_transitions,
                "total_culled": self.culling.total_culled,
                "total_requests": self.dispatcher.total_requests,
                "last_pass_ms": (
                    round(self.last_pass.duration_ms, 2) if self.last_pass else None
                ),
            }
