"""
Obstacle Store
==============

Latest known footprint of every tracked obstacle, keyed by (source, id).

Design Rules:
    - At most one record per key
    - A new observation REPLACES the record and resets its expiry
    - Only the culling engine removes records
    - No internal locking: callers hold the coordinator's lock
"""

import logging
from typing import Dict, List, Optional

from lane_blocker.geometry.obb import OrientedBox
from lane_blocker.models.keys import ObstacleKey, ensure_obstacle_key
from lane_blocker.models.state import ObstacleRecord


logger = logging.getLogger(__name__)


class ObstacleStore:
    """
    Keyed store of obstacle records.

    Example:
        store = ObstacleStore()
        store.upsert(ObstacleKey("lidar", 1), box, observed_at=now, ttl=1.0)

        for record in store.get_all():
            ...
    """

    def __init__(self) -> None:
        self._records: Dict[ObstacleKey, ObstacleRecord] = {}
        self._total_upserts: int = 0

    def upsert(
        self,
        key: ObstacleKey,
        box: OrientedBox,
        observed_at: float,
        ttl: float,
    ) -> None:
        """
        Insert or replace the record for `key`.

        Args:
            key: (source, id) identity
            box: Footprint in the common frame
            observed_at: Observation time (seconds)
            ttl: Time-to-live (seconds); expiry = observed_at + ttl
        """
        key = ensure_obstacle_key(key)
        self._records[key] = ObstacleRecord(
            key=key,
            box=box,
            observed_at=observed_at,
            expires_at=observed_at + ttl,
        )
        self._total_upserts += 1

    def get(self, key: ObstacleKey) -> Optional[ObstacleRecord]:
        return self._records.get(key)

    def get_all(self) -> List[ObstacleRecord]:
        """Snapshot of every record. Order is unspecified."""
        return list(self._records.values())

    def keys(self) -> List[ObstacleKey]:
        return list(self._records)

    def remove(self, key: ObstacleKey) -> Optional[ObstacleRecord]:
        """Remove and return the record for `key`, if any."""
        return self._records.pop(key, None)

    def expired(self, now: float) -> List[ObstacleKey]:
        """Keys of every record with expires_at <= now."""
        return [key for key, record in self._records.items() if record.is_expired(now)]

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    @property
    def total_upserts(self) -> int:
        """Total observations ever stored."""
        return self._total_upserts
