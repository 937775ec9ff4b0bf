"""
Exceptions
==========

Error types raised by the lane blocker.

Taxonomy:
    - TransformLookupError: a single observation could not be brought into
      the common frame. Recoverable: the observation is dropped.
    - IndexInvariantError: the obstacle/lane bookkeeping was asked to do
      something that would corrupt it. Never recoverable: the operation
      attempting it fails and the service shuts down.
"""


class LaneBlockerError(Exception):
    """Base class for lane blocker errors."""


class TransformLookupError(LaneBlockerError):
    """Raised when no transform exists between two frames."""

    def __init__(self, target_frame: str, source_frame: str, detail: str = "") -> None:
        self.target_frame = target_frame
        self.source_frame = source_frame
        message = f"No transform from '{source_frame}' to '{target_frame}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class IndexInvariantError(LaneBlockerError):
    """Raised when an index mutation would break obstacle/lane consistency."""


class MalformedKeyError(IndexInvariantError, ValueError):
    """Raised when a key cannot be decomposed into its identity parts."""
