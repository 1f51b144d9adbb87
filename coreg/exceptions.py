"""
Exception hierarchy for the coregistration pipeline.

Every error subclasses both CoregError and the closest built-in exception,
so callers can catch either. Errors raised inside a pipeline stage carry
the stage name in `stage`.
"""


class CoregError(Exception):
    """Base class for all coregistration errors."""

    def __init__(self, message, stage=None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self):
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class ValidationError(CoregError, ValueError):
    """Malformed keypoints, descriptors, parameters or configuration."""


class DecodeError(CoregError, IOError):
    """An image file could not be read or decoded."""


class EncodeError(CoregError, IOError):
    """An image could not be encoded or written."""


class InsufficientCorrespondences(CoregError, RuntimeError):
    """
    Fewer than 4 usable point pairs.

    Usually fixed by raising the detector feature count or the match count.
    """


class NoConsensusFound(CoregError, RuntimeError):
    """
    RANSAC found no transform with enough support.

    The two images most likely do not overlap, or are not related by a
    single planar transform.
    """


class SingularTransform(NoConsensusFound):
    """The estimated transform is not invertible."""
