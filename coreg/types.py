"""
Typed records exchanged between the detector, matcher and estimator.
"""

import math

import numpy as np

from .exceptions import ValidationError


class Keypoint:
    """Detected keypoint. `pt` is the (x, y) pixel location."""

    __slots__ = ('pt', 'size', 'angle', 'response', 'octave')

    def __init__(self, x, y, size=1.0, angle=0.0, response=0.0, octave=0):
        x = float(x)
        y = float(y)
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ValidationError(f"Keypoint coordinates must be finite, got ({x}, {y})")
        self.pt = (x, y)
        self.size = float(size)
        self.angle = float(angle)
        self.response = float(response)
        self.octave = int(octave)

    @property
    def x(self):
        return self.pt[0]

    @property
    def y(self):
        return self.pt[1]

    def __repr__(self):
        return f"Keypoint(pt=({self.pt[0]:.2f}, {self.pt[1]:.2f}), size={self.size:.2f}, angle={self.angle:.2f})"


class Match:
    """
    Correspondence between descriptor `query_idx` of set 1 and
    descriptor `train_idx` of set 2. Lower distance is better.
    """

    __slots__ = ('query_idx', 'train_idx', 'distance')

    def __init__(self, query_idx, train_idx, distance):
        self.query_idx = int(query_idx)
        self.train_idx = int(train_idx)
        self.distance = float(distance)

    def __eq__(self, other):
        if not isinstance(other, Match):
            return NotImplemented
        return (self.query_idx, self.train_idx, self.distance) == \
            (other.query_idx, other.train_idx, other.distance)

    def __hash__(self):
        return hash((self.query_idx, self.train_idx, self.distance))

    def __repr__(self):
        return f"Match({self.query_idx} -> {self.train_idx}, distance={self.distance:.3f})"


def validate_features(keypoints, descriptors):
    """
    Check a detector's output and return the descriptors as a 2-D array.

    Args:
        keypoints: Sequence of Keypoint
        descriptors: Array-like of shape (N, D), or None when N == 0

    Returns:
        descriptors: ndarray of shape (N, D)

    Raises:
        ValidationError: If the counts disagree or the array has the wrong shape
    """
    keypoints = list(keypoints)
    for kp in keypoints:
        if not isinstance(kp, Keypoint):
            raise ValidationError(f"Expected Keypoint, got {type(kp).__name__}")

    if descriptors is None:
        if keypoints:
            raise ValidationError(f"{len(keypoints)} keypoints but no descriptors")
        return np.zeros((0, 0), dtype=np.float32)

    descriptors = np.asarray(descriptors)
    if descriptors.ndim != 2:
        raise ValidationError(f"Descriptors must be a 2-D array, got shape {descriptors.shape}")
    if descriptors.shape[0] != len(keypoints):
        raise ValidationError(
            f"Got {len(keypoints)} keypoints but {descriptors.shape[0]} descriptors"
        )
    if descriptors.shape[0] > 0 and descriptors.shape[1] == 0:
        raise ValidationError("Descriptors must not be empty vectors")
    if not np.issubdtype(descriptors.dtype, np.number):
        raise ValidationError(f"Descriptors must be numeric, got dtype {descriptors.dtype}")
    return descriptors


def check_compatible(desc1, desc2, metric='l2'):
    """Raise ValidationError when two descriptor sets cannot be compared."""
    if len(desc1) == 0 or len(desc2) == 0:
        return
    if desc1.shape[1] != desc2.shape[1]:
        raise ValidationError(
            f"Descriptor lengths differ: {desc1.shape[1]} vs {desc2.shape[1]}"
        )
    if metric == 'hamming' and (desc1.dtype != np.uint8 or desc2.dtype != np.uint8):
        raise ValidationError(
            f"Hamming distance needs packed uint8 descriptors, got {desc1.dtype} and {desc2.dtype}"
        )
