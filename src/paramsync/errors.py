"""Error types raised by the synchronous training core.

A failed round surfaces as one of these exceptions. The driver keeps the
last successfully installed global state when a round raises.
"""


class ParamSyncError(Exception):
    """Base class for all training-core errors"""


class ShapeMismatchError(ParamSyncError):
    """Parameter, gradient or optimizer buffer lengths disagree.

    Fatal for the round in which it is raised; nothing is applied.
    """

    def __init__(self, message: str, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class EmptyPartitionSetError(ParamSyncError):
    """A round was scheduled over zero partitions"""


class ConfigurationError(ParamSyncError, ValueError):
    """Malformed training options, raised before any round starts"""


class MissingOptimizerState(UserWarning):
    """Optimizer state was absent and a fresh default was created"""


class SplitScheduleInconsistency(UserWarning):
    """Requested examples-per-round was normalised to a single round"""
