"""
Stream Module
=============

Obstacle feed ingestion and request publication.

Components:
    - ObservationBuffer: Bounded queue of obstacle messages, discards expired ones
    - ObstacleFeedConsumer: WebSocket client for the obstacle feed
    - RequestDispatcher: Lane/speed-limit request building and fan-out
"""

from lane_blocker.stream.buffer import ObservationBuffer
from lane_blocker.stream.consumer import ObstacleFeedConsumer, FeedConsumerMetrics
from lane_blocker.stream.publisher import RequestDispatcher

__all__ = [
    "ObservationBuffer",
    "ObstacleFeedConsumer",
    "FeedConsumerMetrics",
    "RequestDispatcher",
]
