"""
Request Dispatcher
==================

Turns lane transitions into requests for fleet adapters and publishes them.

This module provides the RequestDispatcher class, which:
    - Groups a pass's transitions into one request per fleet
    - Emits LaneRequest and/or SpeedLimitRequest per configured mitigation
    - Avoids contending with lane states imposed by other actors
    - Fans requests out to WebSocket subscribers and a bounded history

Reconciliation with reported lane states:
    If a fleet reports a lane closed (or speed-limited) that this service
    never requested, and this service then decides to close (or limit) it,
    no request is sent and the lane is marked as externally held. Its later
    reopening is not requested either, so the other actor's restriction is
    left in place. A report that stops listing a held lane releases the
    hold, and the pending closure is requested then.

    Lanes this service requested itself are never held: a report that only
    echoes an earlier closure of ours does not suppress a new one. Reopening
    a lane also marks the last report as stale for it.

Design Rules:
    - dispatch() is called inside the coordinator's critical section and
      never blocks
    - Subscribers may live on another thread's event loop; delivery goes
      through loop.call_soon_threadsafe
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Sequence, Set, Tuple, Union

from pydantic import BaseModel

from lane_blocker.models.input import LaneStates, SpeedLimitEntry
from lane_blocker.models.keys import LaneKey
from lane_blocker.models.output import LaneRequest, Mitigation, SpeedLimitRequest
from lane_blocker.models.state import LaneTransition


logger = logging.getLogger(__name__)


Request = Union[LaneRequest, SpeedLimitRequest]


def _offer(queue: "asyncio.Queue[dict]", item: dict) -> None:
    """Put without blocking, dropping the oldest item when full."""
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(item)


class RequestDispatcher:
    """
    Builds and publishes lane requests.

    Attributes:
        mitigation: Which request types to produce
        speed_limit: Limit (m/s) used for speed-limit mitigation
        history: Most recent requests, newest last

    Example:
        dispatcher = RequestDispatcher(Mitigation.CLOSURE, speed_limit=0.5)
        requests = dispatcher.dispatch(transitions)
    """

    def __init__(
        self,
        mitigation: Mitigation = Mitigation.CLOSURE,
        speed_limit: float = 0.5,
        history_size: int = 100,
        subscriber_queue_size: int = 100,
    ) -> None:
        if speed_limit <= 0:
            raise ValueError("speed_limit must be positive")

        self.mitigation = mitigation
        self.speed_limit = speed_limit
        self.history: Deque[Request] = deque(maxlen=history_size)
        self._subscriber_queue_size = subscriber_queue_size

        self._external_closed: Dict[str, Set[int]] = {}
        self._external_limited: Dict[str, Set[int]] = {}
        self._held_closures: Set[LaneKey] = set()
        self._held_limits: Set[LaneKey] = set()
        # Lanes this service asked to close (or limit) and has not reopened
        self._requested_closed: Set[LaneKey] = set()
        self._requested_limited: Set[LaneKey] = set()

        self._subscribers: List[Tuple[asyncio.AbstractEventLoop, "asyncio.Queue[dict]"]] = []
        self.total_requests: int = 0

    @property
    def emits_closures(self) -> bool:
        return self.mitigation in (Mitigation.CLOSURE, Mitigation.BOTH)

    @property
    def emits_speed_limits(self) -> bool:
        return self.mitigation in (Mitigation.SPEED_LIMIT, Mitigation.BOTH)

    # -------------------------------------------------------------------------
    # External lane states
    # -------------------------------------------------------------------------

    def update_lane_states(self, states: LaneStates) -> List[Request]:
        """
        Record the lane state a fleet currently reports.

        Held lanes the report no longer lists were released by the other
        actor; their pending closure (or limit) is requested now.

        Returns:
            Requests published for released holds
        """
        fleet = states.fleet_name
        closed = set(states.closed_lanes)
        limited = {entry.lane_index for entry in states.speed_limits}
        self._external_closed[fleet] = closed
        self._external_limited[fleet] = limited
        logger.debug(
            f"Lane states for '{fleet}': "
            f"closed={len(closed)}, limited={len(limited)}"
        )

        lane_request = LaneRequest(fleet_name=fleet)
        for lane in sorted(self._held_closures):
            if lane.fleet == fleet and lane.index not in closed:
                self._held_closures.discard(lane)
                logger.info(f"Lane {lane} reopened by another actor, requesting closure")
                self._apply_closure(lane_request, lane, closed=True)

        limit_request = SpeedLimitRequest(fleet_name=fleet)
        for lane in sorted(self._held_limits):
            if lane.fleet == fleet and lane.index not in limited:
                self._held_limits.discard(lane)
                logger.info(f"Lane {lane} limit lifted by another actor, requesting limit")
                self._apply_speed_limit(limit_request, lane, closed=True)

        requests: List[Request] = [
            request for request in (lane_request, limit_request) if not request.is_empty
        ]
        for request in requests:
            self._publish(request)
        return requests

    def forget(self, lanes: Sequence[LaneKey]) -> None:
        """Drop hold and request markers of lanes that no longer exist."""
        for lane in lanes:
            self._held_closures.discard(lane)
            self._held_limits.discard(lane)
            self._requested_closed.discard(lane)
            self._requested_limited.discard(lane)

    def is_held(self, lane: LaneKey) -> bool:
        return lane in self._held_closures or lane in self._held_limits

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(self, transitions: Sequence[LaneTransition]) -> List[Request]:
        """
        Build and publish the requests for one pass.

        Args:
            transitions: Lane transitions of the pass

        Returns:
            Requests published, at most one of each type per fleet
        """
        lane_requests: Dict[str, LaneRequest] = {}
        limit_requests: Dict[str, SpeedLimitRequest] = {}

        for transition in transitions:
            lane = transition.lane

            if self.emits_closures:
                request = lane_requests.setdefault(
                    lane.fleet, LaneRequest(fleet_name=lane.fleet)
                )
                self._apply_closure(request, lane, transition.closed)

            if self.emits_speed_limits:
                request = limit_requests.setdefault(
                    lane.fleet, SpeedLimitRequest(fleet_name=lane.fleet)
                )
                self._apply_speed_limit(request, lane, transition.closed)

        requests: List[Request] = [
            request
            for request in [*lane_requests.values(), *limit_requests.values()]
            if not request.is_empty
        ]
        for request in requests:
            self._publish(request)
        return requests

    def _apply_closure(self, request: LaneRequest, lane: LaneKey, closed: bool) -> None:
        reported = self._external_closed.setdefault(lane.fleet, set())
        if closed:
            if lane.index in reported and lane not in self._requested_closed:
                self._held_closures.add(lane)
                logger.info(f"Lane {lane} already closed by another actor, not requesting")
                return
            self._requested_closed.add(lane)
            request.close_lanes.append(lane.index)
        else:
            if lane in self._held_closures:
                self._held_closures.discard(lane)
                return
            self._requested_closed.discard(lane)
            # Any reported closure of this lane predates our reopen
            reported.discard(lane.index)
            request.open_lanes.append(lane.index)

    def _apply_speed_limit(
        self,
        request: SpeedLimitRequest,
        lane: LaneKey,
        closed: bool,
    ) -> None:
        reported = self._external_limited.setdefault(lane.fleet, set())
        if closed:
            if lane.index in reported and lane not in self._requested_limited:
                self._held_limits.add(lane)
                logger.info(f"Lane {lane} already speed-limited by another actor")
                return
            self._requested_limited.add(lane)
            request.speed_limits.append(
                SpeedLimitEntry(lane_index=lane.index, speed_limit=self.speed_limit)
            )
        else:
            if lane in self._held_limits:
                self._held_limits.discard(lane)
                return
            self._requested_limited.discard(lane)
            reported.discard(lane.index)
            request.remove_limits.append(lane.index)

    def _publish(self, request: BaseModel) -> None:
        self.history.append(request)
        self.total_requests += 1
        payload = {"type": type(request).__name__, **request.model_dump(mode="json")}
        logger.info(f"Publishing {payload['type']}: {request.model_dump()}")

        for loop, queue in list(self._subscribers):
            if loop.is_closed():
                self._subscribers.remove((loop, queue))
                continue
            loop.call_soon_threadsafe(_offer, queue, payload)

    # -------------------------------------------------------------------------
    # Subscribers
    # -------------------------------------------------------------------------

    def subscribe(self) -> "asyncio.Queue[dict]":
        """Register a subscriber on the running event loop."""
        queue: "asyncio.Queue[dict]" = asyncio.Queue(maxsize=self._subscriber_queue_size)
        self._subscribers.append((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[dict]") -> None:
        self._subscribers = [(l, q) for l, q in self._subscribers if q is not queue]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
