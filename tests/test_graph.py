"""
Coordinator Tests
=================

End-to-end tests of LaneBlockerGraph passes over the corridor graph
(see conftest.py): association, closure decisions, culling and graph
refresh.
"""

import random

import pytest

from conftest import FLEET, LANE_0, LANE_1, LANE_2
from lane_blocker.agent import ClosureThresholds, LaneBlockerGraph
from lane_blocker.agent.graph import TRIGGER_CULL, TRIGGER_PROCESS
from lane_blocker.models.graph import NavGraph
from lane_blocker.models.input import LaneStates
from lane_blocker.models.keys import ObstacleKey
from lane_blocker.models.output import LaneRequest
from lane_blocker.models.reason_codes import ReasonCode
from lane_blocker.models.state import LaneState


def assert_index_consistent(blocker):
    blocker.check_consistency()
    vicinity = blocker.vicinity_snapshot()
    for lane, obstacles in vicinity.items():
        for obstacle in obstacles:
            assert lane in blocker.index.lanes_of(obstacle)
    for obstacle in blocker.index.obstacles():
        assert obstacle in blocker.store
        for lane in blocker.index.lanes_of(obstacle):
            assert obstacle in vicinity[lane]


class TestAssociation:
    """Vicinity computation through full and incremental passes."""

    def test_obstacle_on_lane_is_associated(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0)])
        blocker.process()
        assert blocker.index.lanes_of(ObstacleKey("lidar", 1)) == {LANE_0}

    def test_obstacle_within_proximity_is_associated(self, blocker, make_observation):
        # Lane edge at y=0.25, obstacle edge at y=0.4: gap 0.15
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.5)])
        blocker.process()
        assert blocker.index.lanes_of(ObstacleKey("lidar", 1)) == {LANE_0}

    def test_obstacle_far_from_lanes_is_not_associated(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 2.0)])
        blocker.process()
        assert blocker.index.lanes_of(ObstacleKey("lidar", 1)) == frozenset()
        assert len(blocker.index) == 0

    def test_bidirectional_lanes_share_vicinity(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 5.0)])
        blocker.process()
        assert blocker.index.lanes_of(ObstacleKey("lidar", 1)) == {LANE_1, LANE_2}

    def test_upsert_alone_does_not_touch_index(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0)])
        assert len(blocker.store) == 1
        assert len(blocker.index) == 0

    def test_incremental_pass_recomputes_given_obstacles_only(self, blocker, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 1, 5.0, 0.0),
            make_observation("lidar", 2, 6.0, 0.0),
        ])
        blocker.process_obstacles([ObstacleKey("lidar", 1)])
        assert blocker.index.obstacles_of(LANE_0) == {ObstacleKey("lidar", 1)}

    def test_moving_obstacle_changes_lanes(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0)])
        blocker.process()
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 5.0, observed_at=100.5)])
        blocker.process()
        assert blocker.index.lanes_of(ObstacleKey("lidar", 1)) == {LANE_1, LANE_2}
        assert blocker.index.count(LANE_0) == 0

    def test_unknown_fleet_stores_without_associations(self, make_observation):
        blocker = LaneBlockerGraph(lane_width=0.5, proximity_threshold=0.25)
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0)])
        result = blocker.process()
        assert result.transitions == []
        assert len(blocker.store) == 1
        assert len(blocker.index) == 0


class TestClosures:
    """Threshold behavior of the coordinator."""

    def test_closes_at_threshold(self, blocker, dispatcher, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 0.0),
            make_observation("camera", 1, 6.0, 0.0),
        ])
        result = blocker.process()

        assert [(t.lane, t.new_state) for t in result.transitions] == [
            (LANE_0, LaneState.CLOSED)
        ]
        assert blocker.lane_state(LANE_0) == LaneState.CLOSED
        assert list(dispatcher.history) == [
            LaneRequest(fleet_name=FLEET, close_lanes=[0], open_lanes=[])
        ]

    def test_same_id_from_two_sources_counts_twice(self, blocker, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 7, 4.0, 0.0),
            make_observation("camera", 7, 4.0, 0.0),
        ])
        blocker.process()
        assert blocker.index.count(LANE_0) == 2

    def test_below_threshold_emits_nothing(self, blocker, dispatcher, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 4.0, 0.0)])
        result = blocker.process()
        assert result.transitions == []
        assert dispatcher.total_requests == 0

    def test_step_function(self, blocker, dispatcher, make_observation):
        """One closure and one reopen per crossing, nothing in between."""
        obstacles = [make_observation("lidar", i, 1.0 + i, 0.0) for i in range(4)]
        blocker.upsert_observations(obstacles)
        blocker.process()
        assert blocker.lane_state(LANE_0) == LaneState.CLOSED

        # Leave one by one; lane stays closed until the last one leaves
        for i, obstacle in enumerate(obstacles):
            blocker.upsert_observations([
                make_observation("lidar", i, obstacle.box.center[0], 2.0, observed_at=100.1)
            ])
            result = blocker.process()
            if i < len(obstacles) - 1:
                assert result.transitions == []

        assert blocker.lane_state(LANE_0) == LaneState.OPEN
        assert [r.model_dump() for r in dispatcher.history] == [
            {"fleet_name": FLEET, "close_lanes": [0], "open_lanes": []},
            {"fleet_name": FLEET, "close_lanes": [], "open_lanes": [0]},
        ]

    def test_one_request_per_fleet_per_pass(self, blocker, dispatcher, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 0.0),
            make_observation("lidar", 2, 6.0, 0.0),
            make_observation("lidar", 3, 4.0, 5.0),
            make_observation("lidar", 4, 6.0, 5.0),
        ])
        blocker.process()
        assert list(dispatcher.history) == [
            LaneRequest(fleet_name=FLEET, close_lanes=[0, 1, 2])
        ]

    def test_reopen_on_departure(self, blocker, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 0.0),
            make_observation("lidar", 2, 6.0, 0.0),
        ])
        blocker.process()
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 2.0, observed_at=100.2),
            make_observation("lidar", 2, 6.0, 2.0, observed_at=100.2),
        ])
        result = blocker.process()

        assert len(result.transitions) == 1
        assert result.transitions[0].new_state == LaneState.OPEN
        assert result.transitions[0].reason_code == ReasonCode.VICINITY_CLEARED

    def test_reopen_on_expiry(self, blocker, dispatcher, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 0.0, observed_at=100.0),
            make_observation("lidar", 2, 6.0, 0.0, observed_at=100.0),
        ])
        blocker.process()

        result = blocker.cull(now=101.5)

        assert result.trigger == TRIGGER_CULL
        assert sorted(result.culled) == [ObstacleKey("lidar", 1), ObstacleKey("lidar", 2)]
        assert result.transitions[0].new_state == LaneState.OPEN
        assert result.transitions[0].reason_code == ReasonCode.OBSTACLES_EXPIRED
        assert dispatcher.history[-1] == LaneRequest(fleet_name=FLEET, open_lanes=[0])

    def test_reclosure_after_echoed_lane_state(self, blocker, dispatcher, make_observation):
        """A fleet echoing our own closure does not swallow a later one."""
        on_lane = [
            make_observation("lidar", 1, 4.0, 0.0),
            make_observation("lidar", 2, 6.0, 0.0),
        ]
        blocker.upsert_observations(on_lane)
        blocker.process()
        blocker.update_lane_states(LaneStates(fleet_name=FLEET, closed_lanes=[0]))

        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 2.0, observed_at=100.1),
            make_observation("lidar", 2, 6.0, 2.0, observed_at=100.1),
        ])
        blocker.process()
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 0.0, observed_at=100.2),
            make_observation("lidar", 2, 6.0, 0.0, observed_at=100.2),
        ])
        blocker.process()

        assert blocker.lane_state(LANE_0) == LaneState.CLOSED
        assert [r.model_dump() for r in dispatcher.history] == [
            {"fleet_name": FLEET, "close_lanes": [0], "open_lanes": []},
            {"fleet_name": FLEET, "close_lanes": [], "open_lanes": [0]},
            {"fleet_name": FLEET, "close_lanes": [0], "open_lanes": []},
        ]

    def test_reopen_threshold(self, corridor_graph, make_observation):
        blocker = LaneBlockerGraph(
            lane_width=0.5,
            proximity_threshold=0.25,
            thresholds=ClosureThresholds(closure_threshold=3, reopen_threshold=1),
        )
        blocker.rebuild_graph(corridor_graph)
        blocker.upsert_observations([make_observation("lidar", i, 2.0 + i, 0.0) for i in range(3)])
        blocker.process()
        assert blocker.lane_state(LANE_0) == LaneState.CLOSED

        blocker.upsert_observations([
            make_observation("lidar", 0, 2.0, 2.0, observed_at=100.1),
            make_observation("lidar", 1, 3.0, 2.0, observed_at=100.1),
        ])
        blocker.process()
        assert blocker.lane_state(LANE_0) == LaneState.OPEN


class TestCulling:
    """Expiry of unrefreshed observations."""

    def test_not_expired_before_ttl(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0, observed_at=100.0)])
        blocker.process()
        result = blocker.cull(now=100.9)
        assert result.culled == []
        assert len(blocker.store) == 1

    def test_expired_removed_everywhere(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0, observed_at=100.0)])
        blocker.process()
        blocker.cull(now=101.01)
        assert len(blocker.store) == 0
        assert len(blocker.index) == 0
        assert blocker.index.count(LANE_0) == 0

    def test_refresh_postpones_expiry(self, blocker, make_observation):
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0, observed_at=100.0)])
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0, observed_at=100.8)])
        blocker.cull(now=101.5)
        assert ObstacleKey("lidar", 1) in blocker.store

    def test_cull_and_process_agree(self, blocker, make_observation):
        """Full pass after expiry-by-store-removal converges the index."""
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0)])
        blocker.process()
        blocker.store.remove(ObstacleKey("lidar", 1))
        blocker.process()
        assert len(blocker.index) == 0


class TestConsistency:
    """Index stays two-sided under arbitrary trigger sequences."""

    def test_random_sequence(self, blocker, make_observation):
        rng = random.Random(1234)
        now = 100.0
        for _ in range(300):
            now += rng.uniform(0.0, 0.3)
            action = rng.random()
            if action < 0.5:
                blocker.upsert_observations([
                    make_observation(
                        rng.choice(["lidar", "camera"]),
                        rng.randrange(8),
                        rng.uniform(-1.0, 11.0),
                        rng.uniform(-1.0, 6.0),
                        observed_at=now,
                        size=rng.uniform(0.1, 1.0),
                    )
                ])
                if rng.random() < 0.5:
                    blocker.process_obstacles(blocker.store.keys()[-1:], timestamp=now)
            elif action < 0.8:
                blocker.process(timestamp=now)
            else:
                blocker.cull(now=now)
            assert_index_consistent(blocker)

            for lane in blocker.closed_lanes_snapshot():
                assert blocker.index.count(lane) > 0

        blocker.cull(now=now + 10.0)
        assert len(blocker.store) == 0
        assert len(blocker.index) == 0
        assert blocker.closed_lanes_snapshot() == frozenset()


class TestGraphRefresh:
    """Lane set replacement while closures stand."""

    def test_same_graph_keeps_closures(self, blocker, corridor_graph, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 0.0),
            make_observation("lidar", 2, 6.0, 0.0),
        ])
        blocker.process()

        result = blocker.rebuild_graph(corridor_graph)

        assert result.removed == set()
        assert blocker.lane_state(LANE_0) == LaneState.CLOSED
        assert blocker.process().transitions == []

    def test_removed_lanes_dropped_silently(
        self, blocker, dispatcher, corridor_graph_data, make_observation
    ):
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 5.0),
            make_observation("lidar", 2, 6.0, 5.0),
        ])
        blocker.process()
        assert blocker.closed_lanes_snapshot() == {LANE_1, LANE_2}
        requests_before = dispatcher.total_requests

        corridor_graph_data["edges"] = corridor_graph_data["edges"][:1]
        result = blocker.rebuild_graph(NavGraph.model_validate(corridor_graph_data))

        assert result.removed == {LANE_1, LANE_2}
        assert blocker.closed_lanes_snapshot() == frozenset()
        assert dispatcher.total_requests == requests_before
        assert blocker.index.count(LANE_1) == 0
        assert_index_consistent(blocker)

        # Nothing to reopen on later passes either
        assert blocker.process().transitions == []
        assert dispatcher.total_requests == requests_before

    def test_new_lanes_pick_up_obstacles_on_next_pass(
        self, corridor_graph_data, make_observation
    ):
        blocker = LaneBlockerGraph(
            lane_width=0.5,
            proximity_threshold=0.25,
            thresholds=ClosureThresholds(closure_threshold=1),
        )
        blocker.upsert_observations([make_observation("lidar", 1, 5.0, 0.0)])
        assert blocker.process().transitions == []

        blocker.rebuild_graph(NavGraph.model_validate(corridor_graph_data))
        result = blocker.process()

        assert [t.lane for t in result.transitions] == [LANE_0]

    def test_fleet_name_override(self, corridor_graph):
        blocker = LaneBlockerGraph(lane_width=0.5, proximity_threshold=0.25)
        result = blocker.rebuild_graph(corridor_graph, fleet_name="deliveryBot")
        assert result.fleet == "deliveryBot"
        assert blocker.lanes.has_fleet("deliveryBot")
        assert not blocker.lanes.has_fleet(FLEET)


class TestMetrics:
    """Coordinator metrics."""

    def test_metrics_track_passes(self, blocker, make_observation):
        blocker.upsert_observations([
            make_observation("lidar", 1, 4.0, 0.0),
            make_observation("lidar", 2, 6.0, 0.0),
        ])
        result = blocker.process()
        blocker.cull(now=200.0)

        metrics = blocker.get_metrics()
        assert result.trigger == TRIGGER_PROCESS
        assert metrics["total_passes"] == 2
        assert metrics["total_transitions"] == 2
        assert metrics["total_culled"] == 2
        assert metrics["total_requests"] == 2
        assert metrics["lanes"] == 3
        assert metrics["obstacles"] == 0
