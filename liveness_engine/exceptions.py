"""
Attempt-level errors raised by the liveness engine.

Per-frame analysis problems never raise; they degrade to cached or neutral
scores. Only conditions that end a verification attempt are exceptions.
"""


class LivenessError(Exception):
    """Base class for liveness engine errors."""


class ModelUnavailableError(LivenessError):
    """A landmark model could not be loaded or stopped responding."""


class AttemptInProgressError(LivenessError):
    """A new attempt was requested while the previous one was not reset."""
