"""
Shared fixtures: synthetic scenes with known homographies and a scripted
detector standing in for SIFT.
"""

import numpy as np
import pytest
from scipy.ndimage import gaussian_filter

from coreg.homography import apply_homography
from coreg.types import Keypoint


class ScriptedDetector:
    """Returns preset (keypoints, descriptors) pairs, one per call, in order."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = 0

    def detect_and_compute(self, image):
        output = self.outputs[self.calls % len(self.outputs)]
        self.calls += 1
        return output


def similarity(angle_deg, scale, center):
    """Rotation by angle_deg and scaling by scale about center (x, y)."""
    theta = np.radians(angle_deg)
    cx, cy = center
    to_origin = np.array([[1, 0, -cx], [0, 1, -cy], [0, 0, 1]], dtype=np.float64)
    back = np.array([[1, 0, cx], [0, 1, cy], [0, 0, 1]], dtype=np.float64)
    rot = np.array([
        [scale * np.cos(theta), -scale * np.sin(theta), 0],
        [scale * np.sin(theta), scale * np.cos(theta), 0],
        [0, 0, 1],
    ])
    return back @ rot @ to_origin


def keypoints_from(points):
    return [Keypoint(x, y) for x, y in points]


@pytest.fixture
def make_scene():
    """
    Factory for matched feature sets related by a known transform.

    make_scene(T, n) returns (kp_ref, desc_ref, kp_mov, desc_mov) where T
    maps moving points onto reference points and descriptor i of both
    sets belong to the same scene point.
    """
    def factory(T, n=60, low=10.0, high=90.0, seed=0, dim=32):
        rng = np.random.default_rng(seed)
        ref_pts = rng.uniform(low, high, size=(n, 2))
        mov_pts = apply_homography(ref_pts, np.linalg.inv(T))
        descriptors = rng.random((n, dim)).astype(np.float32)
        return (keypoints_from(ref_pts), descriptors,
                keypoints_from(mov_pts), descriptors.copy())
    return factory


@pytest.fixture
def gradient_image():
    """100x100 uint8 diagonal gradient."""
    y, x = np.mgrid[0:100, 0:100]
    return np.rint((x + y) * 255.0 / 198.0).astype(np.uint8)


@pytest.fixture
def textured_image():
    """100x100 uint8 image with random texture."""
    rng = np.random.default_rng(42)
    img = rng.integers(0, 256, size=(100, 100)).astype(np.uint8)
    img[20:30, 20:30] = 255
    img[60:80, 40:60] = 0
    return img


@pytest.fixture
def known_homography():
    """Mild projective transform."""
    return np.array([
        [0.95, -0.10, 6.0],
        [0.08, 1.02, -4.0],
        [1e-4, -5e-5, 1.0],
    ])


@pytest.fixture
def smooth_texture():
    """200x200 uint8 smoothed random texture with blob-like structure at several scales."""
    rng = np.random.default_rng(7)
    smooth = gaussian_filter(rng.random((200, 200)), 2.0)
    smooth = (smooth - smooth.min()) / (smooth.max() - smooth.min())
    return np.rint(smooth * 255).astype(np.uint8)
