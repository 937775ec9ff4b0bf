"""
Reason Codes
============

Fixed set of machine-readable reason codes for lane state transitions.

Each transition carries exactly ONE reason code.
"""

from enum import Enum


class ReasonCode(str, Enum):
    """
    Machine-readable lane transition explanation codes.

    Attributes:
        OBSTACLE_THRESHOLD_REACHED: Vicinity count reached the closure threshold
        VICINITY_CLEARED: Obstacles left the lane's vicinity
        OBSTACLES_EXPIRED: Vicinity obstacles expired and were culled
    """

    # Closing
    OBSTACLE_THRESHOLD_REACHED = "OBSTACLE_THRESHOLD_REACHED"

    # Reopening
    VICINITY_CLEARED = "VICINITY_CLEARED"
    OBSTACLES_EXPIRED = "OBSTACLES_EXPIRED"
