"""
Brute-force descriptor matching with mutual cross-check.
Supports L2 distance for real-valued descriptors and Hamming distance
for packed binary descriptors.
"""

import logging

import numpy as np

from .exceptions import ValidationError
from .types import Match, check_compatible


logger = logging.getLogger(__name__)


class FeatureMatcher:
    """
    Feature matcher over two descriptor sets.
    Implements brute-force nearest neighbour matching with cross-check
    and an optional ratio test.
    """

    METRICS = ('l2', 'hamming')

    def __init__(self, metric='l2', cross_check=True, ratio_threshold=None,
                 chunk_size=1024):
        """
        Initialize feature matcher.

        Args:
            metric: 'l2' for real-valued descriptors, 'hamming' for packed uint8 bits
            cross_check: Keep only mutual nearest neighbours
            ratio_threshold: Lowe's ratio test threshold (e.g. 0.75), None to disable
            chunk_size: Rows of set 1 per distance block
        """
        if metric not in self.METRICS:
            raise ValidationError(f"Unknown metric '{metric}'. Choose from: {self.METRICS}")
        if ratio_threshold is not None and not 0 < ratio_threshold <= 1:
            raise ValidationError(f"ratio_threshold must be in (0, 1], got {ratio_threshold}")
        if chunk_size < 1:
            raise ValidationError(f"chunk_size must be positive, got {chunk_size}")

        self.metric = metric
        self.cross_check = cross_check
        self.ratio_threshold = ratio_threshold
        self.chunk_size = int(chunk_size)

    def match(self, descriptors1, descriptors2):
        """
        Match features between two sets of descriptors.

        Args:
            descriptors1: Descriptors from the reference image (N x D)
            descriptors2: Descriptors from the moving image (M x D)

        Returns:
            matches: List of Match sorted by ascending distance, ties broken
                     by query index then train index
        """
        desc1 = np.asarray(descriptors1)
        desc2 = np.asarray(descriptors2)

        if len(desc1) == 0 or len(desc2) == 0:
            return []

        check_compatible(desc1, desc2, self.metric)

        distances = self.distance_matrix(desc1, desc2)

        nearest_1to2 = np.argmin(distances, axis=1)
        keep = np.ones(len(desc1), dtype=bool)

        if self.cross_check:
            nearest_2to1 = np.argmin(distances, axis=0)
            keep &= nearest_2to1[nearest_1to2] == np.arange(len(desc1))

        if self.ratio_threshold is not None:
            keep &= self._passes_ratio_test(distances, nearest_1to2)

        query_idx = np.flatnonzero(keep)
        train_idx = nearest_1to2[query_idx]
        best = distances[query_idx, train_idx]

        # lexsort uses the last key as primary
        order = np.lexsort((train_idx, query_idx, best))
        matches = [
            Match(query_idx[k], train_idx[k], best[k]) for k in order
        ]

        logger.debug("Matched %d of %d x %d descriptors (%s)",
                     len(matches), len(desc1), len(desc2), self.metric)
        return matches

    def distance_matrix(self, desc1, desc2):
        """
        Compute the N x M distance matrix, one block of rows at a time.
        """
        distances = np.empty((len(desc1), len(desc2)), dtype=np.float64)

        if self.metric == 'hamming':
            bits2 = np.unpackbits(desc2, axis=1)
            for start in range(0, len(desc1), self.chunk_size):
                bits1 = np.unpackbits(desc1[start:start + self.chunk_size], axis=1)
                distances[start:start + len(bits1)] = self._hamming(bits1, bits2)
        else:
            d2 = desc2.astype(np.float64)
            sq_norms2 = np.sum(d2**2, axis=1)
            for start in range(0, len(desc1), self.chunk_size):
                d1 = desc1[start:start + self.chunk_size].astype(np.float64)
                distances[start:start + len(d1)] = self._l2(d1, d2, sq_norms2)

        return distances

    @staticmethod
    def _l2(d1, d2, sq_norms2):
        # ||a - b||^2 = ||a||^2 + ||b||^2 - 2*a.b
        sq_norms1 = np.sum(d1**2, axis=1, keepdims=True)
        sq_distances = sq_norms1 + sq_norms2[np.newaxis, :] - 2 * (d1 @ d2.T)
        return np.sqrt(np.maximum(sq_distances, 0))

    @staticmethod
    def _hamming(bits1, bits2):
        # Differing bits = ones(a) + ones(b) - 2 * common ones
        b1 = bits1.astype(np.int32)
        b2 = bits2.astype(np.int32)
        return b1.sum(axis=1, keepdims=True) + b2.sum(axis=1)[np.newaxis, :] - 2 * (b1 @ b2.T)

    def _passes_ratio_test(self, distances, nearest):
        """
        Lowe's ratio test. Queries with a single candidate always pass.
        """
        if distances.shape[1] < 2:
            return np.ones(distances.shape[0], dtype=bool)

        two_smallest = np.partition(distances, 1, axis=1)[:, :2]
        best = distances[np.arange(len(nearest)), nearest]
        second = two_smallest[:, 1]

        return best < self.ratio_threshold * second


def select_top_matches(matches, n):
    """
    Keep the first min(n, len(matches)) matches of a distance-sorted list.

    Args:
        matches: Matches sorted best first
        n: Number to keep, or None to keep all

    Returns:
        List of the best matches
    """
    if n is None:
        return list(matches)
    if n < 0:
        raise ValidationError(f"Match count must be non-negative, got {n}")
    return list(matches[:n])
