"""
Request Dispatcher Tests
========================

Tests for request building, lane-state reconciliation and fan-out.
"""

import asyncio

import pytest

from lane_blocker.models.input import LaneStates, SpeedLimitEntry
from lane_blocker.models.keys import LaneKey
from lane_blocker.models.output import LaneRequest, Mitigation, SpeedLimitRequest
from lane_blocker.models.reason_codes import ReasonCode
from lane_blocker.models.state import LaneState, LaneTransition
from lane_blocker.stream.publisher import RequestDispatcher


def close(fleet, index, count=5):
    return LaneTransition(
        lane=LaneKey(fleet, index),
        new_state=LaneState.CLOSED,
        reason_code=ReasonCode.OBSTACLE_THRESHOLD_REACHED,
        vicinity_count=count,
    )


def reopen(fleet, index):
    return LaneTransition(
        lane=LaneKey(fleet, index),
        new_state=LaneState.OPEN,
        reason_code=ReasonCode.VICINITY_CLEARED,
        vicinity_count=0,
    )


class TestDispatch:
    """Tests for request grouping."""

    def test_groups_by_fleet(self):
        dispatcher = RequestDispatcher()
        requests = dispatcher.dispatch([close("a", 0), close("a", 3), reopen("b", 1)])
        assert requests == [
            LaneRequest(fleet_name="a", close_lanes=[0, 3]),
            LaneRequest(fleet_name="b", open_lanes=[1]),
        ]
        assert dispatcher.total_requests == 2
        assert list(dispatcher.history) == requests

    def test_no_transitions_no_requests(self):
        dispatcher = RequestDispatcher()
        assert dispatcher.dispatch([]) == []
        assert dispatcher.total_requests == 0

    def test_speed_limit_mitigation(self):
        dispatcher = RequestDispatcher(Mitigation.SPEED_LIMIT, speed_limit=0.3)
        requests = dispatcher.dispatch([close("a", 2), reopen("a", 4)])
        assert requests == [
            SpeedLimitRequest(
                fleet_name="a",
                speed_limits=[SpeedLimitEntry(lane_index=2, speed_limit=0.3)],
                remove_limits=[4],
            )
        ]

    def test_both_mitigations(self):
        dispatcher = RequestDispatcher(Mitigation.BOTH)
        requests = dispatcher.dispatch([close("a", 2)])
        assert [type(r) for r in requests] == [LaneRequest, SpeedLimitRequest]

    def test_history_is_bounded(self):
        dispatcher = RequestDispatcher(history_size=2)
        for i in range(5):
            dispatcher.dispatch([close("a", i)])
        assert len(dispatcher.history) == 2
        assert dispatcher.history[-1].close_lanes == [4]
        assert dispatcher.total_requests == 5

    def test_rejects_non_positive_speed_limit(self):
        with pytest.raises(ValueError):
            RequestDispatcher(speed_limit=0.0)


class TestLaneStateReconciliation:
    """Lanes restricted by another actor are left alone."""

    def test_externally_closed_lane_not_requested(self):
        dispatcher = RequestDispatcher()
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2]))

        requests = dispatcher.dispatch([close("a", 2), close("a", 3)])

        assert requests == [LaneRequest(fleet_name="a", close_lanes=[3])]
        assert dispatcher.is_held(LaneKey("a", 2))

    def test_held_lane_reopen_not_requested(self):
        dispatcher = RequestDispatcher()
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2]))
        dispatcher.dispatch([close("a", 2)])

        assert dispatcher.dispatch([reopen("a", 2)]) == []
        assert not dispatcher.is_held(LaneKey("a", 2))
        assert dispatcher.total_requests == 0

    def test_other_fleets_unaffected(self):
        dispatcher = RequestDispatcher()
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2]))
        requests = dispatcher.dispatch([close("b", 2)])
        assert requests == [LaneRequest(fleet_name="b", close_lanes=[2])]

    def test_externally_limited_lane_not_requested(self):
        dispatcher = RequestDispatcher(Mitigation.SPEED_LIMIT)
        dispatcher.update_lane_states(LaneStates(
            fleet_name="a",
            speed_limits=[SpeedLimitEntry(lane_index=1, speed_limit=0.2)],
        ))
        assert dispatcher.dispatch([close("a", 1)]) == []
        assert dispatcher.dispatch([reopen("a", 1)]) == []

    def test_echo_of_own_closure_does_not_suppress_reclosure(self):
        dispatcher = RequestDispatcher()
        dispatcher.dispatch([close("a", 2)])
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2]))

        assert dispatcher.dispatch([reopen("a", 2)]) == [
            LaneRequest(fleet_name="a", open_lanes=[2])
        ]
        assert dispatcher.dispatch([close("a", 2)]) == [
            LaneRequest(fleet_name="a", close_lanes=[2])
        ]
        assert not dispatcher.is_held(LaneKey("a", 2))

    def test_echo_of_own_limit_does_not_suppress_relimit(self):
        dispatcher = RequestDispatcher(Mitigation.SPEED_LIMIT, speed_limit=0.3)
        dispatcher.dispatch([close("a", 1)])
        dispatcher.update_lane_states(LaneStates(
            fleet_name="a",
            speed_limits=[SpeedLimitEntry(lane_index=1, speed_limit=0.3)],
        ))
        dispatcher.dispatch([reopen("a", 1)])

        requests = dispatcher.dispatch([close("a", 1)])

        assert requests == [
            SpeedLimitRequest(
                fleet_name="a",
                speed_limits=[SpeedLimitEntry(lane_index=1, speed_limit=0.3)],
            )
        ]
        assert not dispatcher.is_held(LaneKey("a", 1))

    def test_released_hold_requests_pending_closure(self):
        dispatcher = RequestDispatcher()
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2, 4]))
        assert dispatcher.dispatch([close("a", 2)]) == []

        released = dispatcher.update_lane_states(
            LaneStates(fleet_name="a", closed_lanes=[4])
        )

        assert released == [LaneRequest(fleet_name="a", close_lanes=[2])]
        assert not dispatcher.is_held(LaneKey("a", 2))
        assert dispatcher.history[-1] == released[0]

        # Now ours, so the reopen is requested as well
        assert dispatcher.dispatch([reopen("a", 2)]) == [
            LaneRequest(fleet_name="a", open_lanes=[2])
        ]

    def test_repeated_report_keeps_hold(self):
        dispatcher = RequestDispatcher()
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2]))
        dispatcher.dispatch([close("a", 2)])

        assert dispatcher.update_lane_states(
            LaneStates(fleet_name="a", closed_lanes=[2])
        ) == []
        assert dispatcher.is_held(LaneKey("a", 2))

    def test_report_for_other_fleet_keeps_hold(self):
        dispatcher = RequestDispatcher()
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2]))
        dispatcher.dispatch([close("a", 2)])

        assert dispatcher.update_lane_states(LaneStates(fleet_name="b")) == []
        assert dispatcher.is_held(LaneKey("a", 2))

    def test_forget_drops_hold(self):
        dispatcher = RequestDispatcher()
        dispatcher.update_lane_states(LaneStates(fleet_name="a", closed_lanes=[2]))
        dispatcher.dispatch([close("a", 2)])
        dispatcher.forget([LaneKey("a", 2)])
        assert not dispatcher.is_held(LaneKey("a", 2))


class TestSubscribers:
    """Tests for WebSocket fan-out queues."""

    def test_subscriber_receives_payload(self):
        dispatcher = RequestDispatcher()

        async def scenario():
            queue = dispatcher.subscribe()
            dispatcher.dispatch([close("a", 1)])
            return await asyncio.wait_for(queue.get(), timeout=1.0)

        payload = asyncio.run(scenario())
        assert payload == {
            "type": "LaneRequest",
            "fleet_name": "a",
            "close_lanes": [1],
            "open_lanes": [],
        }

    def test_full_queue_drops_oldest(self):
        dispatcher = RequestDispatcher(subscriber_queue_size=2)

        async def scenario():
            queue = dispatcher.subscribe()
            for i in range(4):
                dispatcher.dispatch([close("a", i)])
            await asyncio.sleep(0)
            return [queue.get_nowait()["close_lanes"] for _ in range(queue.qsize())]

        assert asyncio.run(scenario()) == [[2], [3]]

    def test_unsubscribe(self):
        dispatcher = RequestDispatcher()

        async def scenario():
            queue = dispatcher.subscribe()
            assert dispatcher.subscriber_count == 1
            dispatcher.unsubscribe(queue)

        asyncio.run(scenario())
        assert dispatcher.subscriber_count == 0
