"""
Tests for the SIFT detector.
"""

import numpy as np
import pytest

from coreg.image_io import to_grayscale
from coreg.sift import DESCRIPTOR_SIZE, SIFT
from coreg.types import Keypoint


@pytest.fixture
def blob_image():
    """128x128 uint8 image of four bright Gaussian blobs on black."""
    y, x = np.mgrid[0:128, 0:128]
    img = np.zeros((128, 128))
    for cx, cy in [(48, 48), (80, 48), (48, 80), (80, 80)]:
        img += np.exp(-((x - cx) ** 2 + (y - cy) ** 2) / (2 * 4.0 ** 2))
    return np.rint(np.clip(img, 0, 1) * 255).astype(np.uint8)


class TestSIFT:

    def test_initialization(self):
        sift = SIFT()
        assert sift.num_octaves == 4
        assert sift.num_scales == 5
        assert sift.max_features is None
        assert sift.k == pytest.approx(2 ** 0.2)

    def test_flat_image_has_no_features(self):
        keypoints, descriptors = SIFT().detect_and_compute(np.full((64, 64), 128, dtype=np.uint8))
        assert keypoints == []
        assert descriptors.shape == (0, DESCRIPTOR_SIZE)
        assert descriptors.dtype == np.uint8

    def test_tiny_image(self):
        keypoints, descriptors = SIFT().detect_and_compute(np.zeros((8, 8)))
        assert keypoints == []
        assert descriptors.shape == (0, DESCRIPTOR_SIZE)

    def test_detects_blobs(self, blob_image):
        keypoints, descriptors = SIFT().detect_and_compute(blob_image)

        assert len(keypoints) > 0
        assert all(isinstance(kp, Keypoint) for kp in keypoints)
        assert descriptors.shape == (len(keypoints), DESCRIPTOR_SIZE)
        assert descriptors.dtype == np.uint8

        for kp in keypoints:
            assert 0 <= kp.x < 128 and 0 <= kp.y < 128

    def test_max_features_keeps_strongest(self, blob_image):
        everything, _ = SIFT().detect_and_compute(blob_image)
        limited, descriptors = SIFT(max_features=2).detect_and_compute(blob_image)

        assert len(limited) == min(2, len(everything))
        assert len(descriptors) == len(limited)
        strongest = sorted((kp.response for kp in everything), reverse=True)[:len(limited)]
        assert [kp.response for kp in limited] == pytest.approx(strongest)

    def test_color_input(self, blob_image):
        rgb = np.stack([blob_image, blob_image // 2, blob_image], axis=2)
        rgb_kps, rgb_desc = SIFT().detect_and_compute(rgb)
        gray_kps, gray_desc = SIFT().detect_and_compute(to_grayscale(rgb))

        assert len(rgb_kps) == len(gray_kps) > 0
        np.testing.assert_array_equal(rgb_desc, gray_desc)

    def test_sixteen_bit_input_uses_full_range(self, blob_image):
        wide = blob_image.astype(np.uint16) * 257
        narrow_kps, narrow_desc = SIFT().detect_and_compute(blob_image)
        wide_kps, wide_desc = SIFT().detect_and_compute(wide)

        assert [kp.pt for kp in wide_kps] == [kp.pt for kp in narrow_kps]
        np.testing.assert_array_equal(wide_desc, narrow_desc)

    def test_default_threshold_finds_texture(self, smooth_texture):
        keypoints, _ = SIFT().detect_and_compute(smooth_texture)
        assert len(keypoints) >= 50
