"""Errors raised (or recorded) by irfpy.

Malformed inputs raise immediately.  Degenerate nodes never raise: the tree
builder turns them into leaves.  An empty leaf collection handed to RIT is
logged and yields no interactions.  Bootstrap replicates that fail are wrapped
in :class:`ReplicateFailure` and reported next to the results.
"""
from __future__ import annotations


class IRFError(Exception):
    """Base class for irfpy errors."""


class DimensionMismatch(IRFError, ValueError):
    """Row counts of X and y differ, or a vector does not match the feature count."""


class InvalidWeightVector(IRFError, ValueError):
    """Feature weights are negative, non-finite, or carry no usable mass."""


class EmptyFeatureSetCollection(IRFError, UserWarning):
    """RIT was given no leaves to sample from."""


class ReplicateFailure(IRFError, RuntimeError):
    """Diagnostic record for a bootstrap replicate whose pipeline raised.

    Instances are returned, not raised, so that sibling replicates keep
    running.

    Attributes
    ----------
    replicate : int
        1-based index of the failed replicate.
    error : BaseException
        The exception raised inside the replicate.
    """

    def __init__(self, replicate: int, error: BaseException):
        self.replicate = int(replicate)
        self.error = error
        super().__init__(f"replicate {self.replicate} failed: {type(error).__name__}: {error}")

    def __reduce__(self):
        return (self.__class__, (self.replicate, self.error))
