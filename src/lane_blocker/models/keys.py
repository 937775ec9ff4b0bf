"""
Identity Keys
=============

Value identities for obstacles and lanes.

Keys are plain tuples so they hash by value and can be used on both sides
of the obstacle/lane index without any reference to the records they name.

String Form:
    ObstacleKey("lidar_front", 12)  <->  "lidar_front_12"
    LaneKey("tinyRobot", 3)         <->  "tinyRobot_3"

    The numeric part is split off at the LAST underscore, so source and
    fleet names may themselves contain underscores.
"""

from typing import Any, NamedTuple, Tuple

from lane_blocker.exceptions import MalformedKeyError


def _split_key(key: str) -> Tuple[str, int]:
    if not isinstance(key, str):
        raise MalformedKeyError(f"Key must be a string, got {type(key).__name__}")
    name, sep, number = key.rpartition("_")
    if not sep or not name:
        raise MalformedKeyError(f"Key '{key}' has no '<name>_<index>' form")
    try:
        index = int(number)
    except ValueError:
        raise MalformedKeyError(f"Key '{key}' does not end in an integer") from None
    if index < 0:
        raise MalformedKeyError(f"Key '{key}' has a negative index")
    return name, index


def _is_well_formed(key: Any) -> bool:
    return (
        isinstance(key, tuple)
        and len(key) == 2
        and isinstance(key[0], str)
        and bool(key[0])
        and isinstance(key[1], int)
        and not isinstance(key[1], bool)
        and key[1] >= 0
    )


class ObstacleKey(NamedTuple):
    """Identity of a tracked obstacle: the detecting source and its id."""

    source: str
    id: int

    @classmethod
    def parse(cls, key: str) -> "ObstacleKey":
        """Parse '<source>_<id>'. Raises MalformedKeyError."""
        source, obstacle_id = _split_key(key)
        return cls(source, obstacle_id)

    def __str__(self) -> str:
        return f"{self.source}_{self.id}"


class LaneKey(NamedTuple):
    """Identity of a lane: fleet name and lane index in that fleet's graph."""

    fleet: str
    index: int

    @classmethod
    def parse(cls, key: str) -> "LaneKey":
        """Parse '<fleet>_<index>'. Raises MalformedKeyError."""
        fleet, index = _split_key(key)
        return cls(fleet, index)

    def __str__(self) -> str:
        return f"{self.fleet}_{self.index}"


def ensure_obstacle_key(key: Any) -> ObstacleKey:
    """Validate that `key` is a well-formed (source, id) pair."""
    if not _is_well_formed(key):
        raise MalformedKeyError(f"Malformed obstacle key: {key!r}")
    return key if isinstance(key, ObstacleKey) else ObstacleKey(*key)


def ensure_lane_key(key: Any) -> LaneKey:
    """Validate that `key` is a well-formed (fleet, index) pair."""
    if not _is_well_formed(key):
        raise MalformedKeyError(f"Malformed lane key: {key!r}")
    return key if isinstance(key, LaneKey) else LaneKey(*key)
