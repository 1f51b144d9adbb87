"""
Homography estimation with RANSAC, using only NumPy.

The homography maps points of the moving image (src) onto the
reference image (dst).
"""

import itertools
import logging
import time

import numpy as np

from .exceptions import (
    InsufficientCorrespondences,
    NoConsensusFound,
    SingularTransform,
    ValidationError,
)


logger = logging.getLogger(__name__)

MIN_SAMPLES = 4

# Relative tolerance for collinear / coincident sample points
_DEGENERACY_TOL = 1e-6


class HomographyEstimator:
    """
    Homography matrix estimation using RANSAC.

    A homography is a 3x3 matrix that describes the projective transformation
    between two planes (images).
    """

    METHODS = ('ransac', 'lstsq')

    def __init__(self, ransac_reproj_threshold=4.0, max_iters=2000,
                 confidence=0.995, min_inliers=8, min_inlier_ratio=0.0,
                 method='ransac', seed=None, rng=None, max_seconds=None):
        """
        Initialize Homography Estimator.

        Args:
            ransac_reproj_threshold: Maximum reprojection error (pixels) of an inlier
            max_iters: Maximum number of RANSAC iterations
            confidence: Desired probability of drawing one all-inlier sample
            min_inliers: Minimum support for a model to be accepted
            min_inlier_ratio: Minimum inlier fraction for a model to be accepted
            method: 'ransac', or 'lstsq' for a plain fit over all pairs
            seed: Seed for the sampler, used when rng is not given
            rng: numpy.random.Generator to draw samples from
            max_seconds: Optional wall-clock budget for the sampling loop
        """
        if method not in self.METHODS:
            raise ValidationError(f"Unknown method '{method}'. Choose from: {self.METHODS}")
        if ransac_reproj_threshold <= 0:
            raise ValidationError("ransac_reproj_threshold must be positive")
        if max_iters < 1:
            raise ValidationError("max_iters must be at least 1")
        if not 0 < confidence < 1:
            raise ValidationError("confidence must be in (0, 1)")
        if not 0 <= min_inlier_ratio <= 1:
            raise ValidationError("min_inlier_ratio must be in [0, 1]")

        self.ransac_reproj_threshold = ransac_reproj_threshold
        self.max_iters = int(max_iters)
        self.confidence = confidence
        self.min_inliers = int(min_inliers)
        self.min_inlier_ratio = min_inlier_ratio
        self.method = method
        self.seed = seed
        self.rng = rng
        self.max_seconds = max_seconds

    def find_homography(self, src_points, dst_points, return_info=False):
        """
        Find the homography mapping src_points onto dst_points.

        Args:
            src_points: Source points (N x 2)
            dst_points: Destination points (N x 2)
            return_info: Also return a dict of fit statistics

        Returns:
            H: Homography matrix (3 x 3) with H[2, 2] == 1
            mask: Inlier mask (N,)
            info: (Optional) iterations, degenerate_samples, num_inliers,
                  inlier_ratio, residual_rms

        Raises:
            InsufficientCorrespondences: Fewer than 4 pairs
            NoConsensusFound: No model reaches the required support
            SingularTransform: The fitted homography is not invertible
        """
        src_points, dst_points = self._validate(src_points, dst_points)
        n_points = len(src_points)

        if self.method == 'lstsq':
            H = self._compute_homography_dlt(src_points, dst_points)
            stats = {'iterations': 0, 'degenerate_samples': 0}
            mask = np.ones(n_points, dtype=bool)
        else:
            H, mask, stats = self._ransac(src_points, dst_points)

        if H is None or not is_invertible(H):
            raise SingularTransform("Estimated homography is singular")

        errors = reprojection_errors(src_points, dst_points, H)
        num_inliers = int(np.sum(mask))
        info = dict(
            stats,
            num_inliers=num_inliers,
            inlier_ratio=num_inliers / n_points,
            residual_rms=float(np.sqrt(np.mean(errors[mask] ** 2))) if num_inliers else float('inf'),
        )
        logger.debug("Homography fit: %d/%d inliers after %d iterations",
                     num_inliers, n_points, info['iterations'])

        if return_info:
            return H, mask, info
        return H, mask

    def _validate(self, src_points, dst_points):
        src_points = np.asarray(src_points, dtype=np.float64)
        dst_points = np.asarray(dst_points, dtype=np.float64)

        if src_points.ndim != 2 or src_points.shape[1:] != (2,) or \
                dst_points.ndim != 2 or dst_points.shape[1:] != (2,):
            if src_points.size == 0 and dst_points.size == 0:
                raise InsufficientCorrespondences("Need at least 4 point correspondences, got 0")
            raise ValidationError(
                f"Points must have shape (N, 2), got {src_points.shape} and {dst_points.shape}"
            )
        if len(src_points) != len(dst_points):
            raise ValidationError("Source and destination points must have same length")
        if not (np.all(np.isfinite(src_points)) and np.all(np.isfinite(dst_points))):
            raise ValidationError("Point coordinates must be finite")
        if len(src_points) < MIN_SAMPLES:
            raise InsufficientCorrespondences(
                f"Need at least {MIN_SAMPLES} point correspondences, got {len(src_points)}"
            )
        return src_points, dst_points

    def _ransac(self, src_points, dst_points):
        n_points = len(src_points)
        rng = self.rng if self.rng is not None else np.random.default_rng(self.seed)
        deadline = None
        if self.max_seconds is not None:
            deadline = time.monotonic() + self.max_seconds

        best_H = None
        best_inliers = None
        best_num_inliers = 0
        best_error = np.inf
        n_iters_needed = self.max_iters
        degenerate = 0
        iteration = 0

        while iteration < min(self.max_iters, n_iters_needed):
            iteration += 1

            # Every draw, degenerate or not, spends one iteration
            indices = rng.choice(n_points, MIN_SAMPLES, replace=False)
            src_sample = src_points[indices]
            dst_sample = dst_points[indices]

            if is_degenerate(src_sample) or is_degenerate(dst_sample):
                degenerate += 1
                continue

            H = self._compute_homography_dlt(src_sample, dst_sample)
            if H is None or not is_invertible(H):
                degenerate += 1
                continue

            errors = reprojection_errors(src_points, dst_points, H)
            inliers = errors < self.ransac_reproj_threshold
            num_inliers = int(np.sum(inliers))
            error = float(np.sum(errors[inliers]))

            # Ties go to the tighter fit
            if num_inliers > best_num_inliers or \
                    (num_inliers == best_num_inliers and num_inliers > 0 and error < best_error):
                best_num_inliers = num_inliers
                best_inliers = inliers
                best_H = H
                best_error = error
                n_iters_needed = self._iterations_needed(num_inliers / n_points)

            if deadline is not None and time.monotonic() > deadline:
                logger.debug("RANSAC stopped by time budget after %d iterations", iteration)
                break

        stats = {'iterations': iteration, 'degenerate_samples': degenerate}

        required = max(MIN_SAMPLES, min(self.min_inliers, n_points))
        if best_H is None:
            raise NoConsensusFound(
                f"Every sample was degenerate ({degenerate} of {iteration} draws)"
            )
        if best_num_inliers < required or best_num_inliers / n_points < self.min_inlier_ratio:
            raise NoConsensusFound(
                f"Best model has {best_num_inliers}/{n_points} inliers, "
                f"need {required} and ratio >= {self.min_inlier_ratio:.2f}"
            )

        # Refine homography using all inliers
        refined = self._compute_homography_dlt(src_points[best_inliers], dst_points[best_inliers])
        if refined is not None and is_invertible(refined):
            refined_inliers = reprojection_errors(src_points, dst_points, refined) < self.ransac_reproj_threshold
            if np.sum(refined_inliers) >= best_num_inliers:
                best_H, best_inliers = refined, refined_inliers

        return best_H, best_inliers, stats

    def _iterations_needed(self, inlier_ratio):
        """Adaptive iteration count for the current inlier ratio."""
        p_good_sample = inlier_ratio ** MIN_SAMPLES
        if p_good_sample >= 1.0:
            return 1
        if p_good_sample <= 0.0:
            return self.max_iters
        n = np.log(1 - self.confidence) / np.log(1 - p_good_sample)
        return int(min(self.max_iters, np.ceil(n)))

    def _compute_homography_dlt(self, src_pts, dst_pts):
        """
        Compute homography using the normalized Direct Linear Transform.

        For each point correspondence (x, y) -> (x', y'), we have:
        x' = (h11*x + h12*y + h13) / (h31*x + h32*y + h33)
        y' = (h21*x + h22*y + h23) / (h31*x + h32*y + h33)

        Two equations per correspondence; 4 points fix the 8 unknowns,
        more points give the least-squares solution.
        """
        if len(src_pts) < MIN_SAMPLES:
            return None

        src_norm, T_src = normalize_points(src_pts)
        dst_norm, T_dst = normalize_points(dst_pts)

        x, y = src_norm[:, 0], src_norm[:, 1]
        xp, yp = dst_norm[:, 0], dst_norm[:, 1]
        zeros = np.zeros_like(x)
        ones = np.ones_like(x)

        A = np.empty((2 * len(x), 9))
        A[0::2] = np.stack([-x, -y, -ones, zeros, zeros, zeros, x * xp, y * xp, xp], axis=1)
        A[1::2] = np.stack([zeros, zeros, zeros, -x, -y, -ones, x * yp, y * yp, yp], axis=1)

        try:
            _, _, Vt = np.linalg.svd(A)
            H = np.linalg.inv(T_dst) @ Vt[-1].reshape(3, 3) @ T_src
        except np.linalg.LinAlgError:
            return None

        if abs(H[2, 2]) < 1e-12:
            return None
        return H / H[2, 2]


def normalize_points(points):
    """
    Hartley normalization: move the centroid to the origin and scale so
    the mean distance from it is sqrt(2).

    Returns:
        normalized points (N x 2) and the 3 x 3 normalizing transform
    """
    points = np.asarray(points, dtype=np.float64)
    centroid = np.mean(points, axis=0)
    avg_dist = np.mean(np.sqrt(np.sum((points - centroid)**2, axis=1)))

    if avg_dist < 1e-10:
        avg_dist = 1.0
    scale = np.sqrt(2) / avg_dist

    T = np.array([
        [scale, 0, -scale * centroid[0]],
        [0, scale, -scale * centroid[1]],
        [0, 0, 1]
    ])
    return (points - centroid) * scale, T


def apply_homography(points, H):
    """
    Apply homography transformation to points.

    Args:
        points: Points to transform (N x 2)
        H: Homography matrix (3 x 3)

    Returns:
        Transformed points (N x 2). Points sent to infinity become inf.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    points_homogeneous = np.hstack([points, np.ones((len(points), 1))])
    transformed = points_homogeneous @ np.asarray(H, dtype=np.float64).T

    w = transformed[:, 2:3]
    with np.errstate(divide='ignore', invalid='ignore'):
        result = transformed[:, :2] / w
    result[np.abs(w[:, 0]) < 1e-12] = np.inf
    return result


def reprojection_errors(src_pts, dst_pts, H):
    """Euclidean distance between H(src) and dst for every pair."""
    projected = apply_homography(src_pts, H)
    with np.errstate(invalid='ignore'):
        errors = np.sqrt(np.sum((dst_pts - projected)**2, axis=1))
    errors[~np.isfinite(errors)] = np.inf
    return errors


def is_degenerate(points):
    """
    True when any three of the sample points are (nearly) collinear,
    which includes coincident points.
    """
    points = np.asarray(points, dtype=np.float64)
    extent = np.ptp(points, axis=0).max()
    if extent <= 0:
        return True
    tol = _DEGENERACY_TOL * extent * extent

    for i, j, k in itertools.combinations(range(len(points)), 3):
        d1 = points[j] - points[i]
        d2 = points[k] - points[i]
        if abs(d1[0] * d2[1] - d1[1] * d2[0]) <= tol:
            return True
    return False


def is_invertible(H, tol=1e-12):
    """True when H is finite with a non-negligible determinant."""
    H = np.asarray(H, dtype=np.float64)
    if H.shape != (3, 3) or not np.all(np.isfinite(H)):
        return False
    scale = np.abs(H).max()
    if scale == 0:
        return False
    return abs(np.linalg.det(H / scale)) > tol
