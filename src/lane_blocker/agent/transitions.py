"""
Lane Transition Logic
=====================

Deterministic, threshold-based lane state policy.

Transition Rules:
    OPEN -> CLOSED:  vicinity count >= closure_threshold
    CLOSED -> OPEN:  vicinity count <= reopen_threshold

    With the default reopen_threshold of 0 a closed lane reopens only once
    its vicinity is empty. Raising it gives a two-sided hysteresis band
    (reopen_threshold, closure_threshold) in which the lane keeps whatever
    state it has.

Key Features:
    - Hard step function, no intermediate states
    - Decisions are taken once per pass, after all index updates
    - Only lanes whose state actually changed are reported
    - Machine-readable reason codes
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Set

from lane_blocker.models.keys import LaneKey
from lane_blocker.models.reason_codes import ReasonCode
from lane_blocker.models.state import LaneState, LaneTransition
from lane_blocker.tracking.index import VicinityIndex


logger = logging.getLogger(__name__)


@dataclass
class ClosureThresholds:
    """
    Thresholds for lane transitions.

    Loaded from configuration file.
    """

    closure_threshold: int = 5
    reopen_threshold: int = 0

    def __post_init__(self) -> None:
        if self.closure_threshold < 1:
            raise ValueError("closure_threshold must be >= 1")
        if not 0 <= self.reopen_threshold < self.closure_threshold:
            raise ValueError(
                "reopen_threshold must be >= 0 and below closure_threshold"
            )


class ClosurePolicy:
    """
    Decides lane closures and reopenings from vicinity counts.

    The policy owns no state: the closed-lane set is passed in and updated
    in place by decide_closures().
    """

    def __init__(self, thresholds: ClosureThresholds) -> None:
        self.thresholds = thresholds
        logger.info(
            f"ClosurePolicy initialized: "
            f"close at >= {thresholds.closure_threshold}, "
            f"reopen at <= {thresholds.reopen_threshold}"
        )

    def decide_closures(
        self,
        affected_lanes: Iterable[LaneKey],
        index: VicinityIndex,
        closed_lanes: Set[LaneKey],
        reopen_reason: ReasonCode = ReasonCode.VICINITY_CLEARED,
    ) -> List[LaneTransition]:
        """
        Apply the thresholds to every affected lane.

        Args:
            affected_lanes: Lanes whose vicinity count may have changed
            index: Vicinity index, already updated for this pass
            closed_lanes: Closed-lane set, updated in place
            reopen_reason: Reason code attached to reopenings

        Returns:
            Transitions for lanes whose state changed, ordered by lane key
        """
        th = self.thresholds
        transitions: List[LaneTransition] = []

        for lane in sorted(set(affected_lanes)):
            count = index.count(lane)

            if lane not in closed_lanes and count >= th.closure_threshold:
                closed_lanes.add(lane)
                transitions.append(LaneTransition(
                    lane=lane,
                    new_state=LaneState.CLOSED,
                    reason_code=ReasonCode.OBSTACLE_THRESHOLD_REACHED,
                    vicinity_count=count,
                ))
            elif lane in closed_lanes and count <= th.reopen_threshold:
                closed_lanes.discard(lane)
                transitions.append(LaneTransition(
                    lane=lane,
                    new_state=LaneState.OPEN,
                    reason_code=reopen_reason,
                    vicinity_count=count,
                ))

        return transitions
