"""
SIFT (Scale-Invariant Feature Transform) keypoint detector and descriptor
using NumPy and SciPy - no OpenCV dependencies.

This is the detector used by the pipeline when none is supplied; any object
with a compatible detect_and_compute() can replace it.
"""

import logging

import numpy as np
from scipy.ndimage import gaussian_filter, maximum_filter, minimum_filter

from .image_io import to_grayscale
from .types import Keypoint


logger = logging.getLogger(__name__)

DESCRIPTOR_SIZE = 128


class SIFT:
    """
    Scale-Invariant Feature Transform (SIFT) implementation.

    The pipeline:
    1. Scale-space extrema detection
    2. Keypoint localization
    3. Orientation assignment
    4. Keypoint descriptor
    """

    def __init__(self, num_octaves=4, num_scales=5, sigma=1.6,
                 contrast_threshold=0.04, edge_threshold=10,
                 border_width=5, max_features=None):
        """
        Initialize SIFT detector.

        Args:
            num_octaves: Number of octaves in the scale space
            num_scales: Number of scales per octave
            sigma: Base sigma for Gaussian blur
            contrast_threshold: Threshold for low-contrast keypoint removal,
                divided by num_scales before it is applied to DoG values
            edge_threshold: Threshold for edge response removal
            border_width: Border width to ignore keypoints
            max_features: Keep at most this many keypoints (strongest first)
        """
        self.num_octaves = num_octaves
        self.num_scales = num_scales
        self.sigma = sigma
        self.contrast_threshold = contrast_threshold
        self.edge_threshold = edge_threshold
        self.border_width = border_width
        self.max_features = max_features
        self.k = 2 ** (1.0 / num_scales)  # Scale multiplication factor

        # DoG responses shrink as scales per octave grow
        self._contrast_limit = contrast_threshold / num_scales

    def detect_and_compute(self, image):
        """
        Detect keypoints and compute descriptors.

        Args:
            image: Grayscale or color image (2D or 3D numpy array)

        Returns:
            keypoints: List of Keypoint
            descriptors: uint8 array of descriptors (N x 128)
        """
        image = self._prepare(image)

        gaussian_pyramid = self._build_gaussian_pyramid(image)
        dog_pyramid = self._build_dog_pyramid(gaussian_pyramid)

        candidates = self._find_scale_space_extrema(dog_pyramid)
        candidates = self._assign_orientations(gaussian_pyramid, candidates)
        candidates, descriptors = self._generate_descriptors(gaussian_pyramid, candidates)

        if self.max_features is not None and len(candidates) > self.max_features:
            order = np.argsort([-c['response'] for c in candidates], kind='stable')
            order = order[:self.max_features]
            candidates = [candidates[i] for i in order]
            descriptors = descriptors[order]

        keypoints = [
            Keypoint(c['x'], c['y'], size=c['sigma'], angle=np.degrees(c['orientation']),
                     response=c['response'], octave=c['octave'])
            for c in candidates
        ]
        logger.debug("SIFT found %d keypoints in %dx%d image",
                     len(keypoints), image.shape[1], image.shape[0])
        return keypoints, descriptors

    def _prepare(self, image):
        """
        Grayscale float image scaled to [0, 1].

        Integer images are scaled by the range of their dtype; float images
        are assumed to be 0..1, or 0..255 when larger values appear.
        """
        image = np.asarray(image)
        gray = to_grayscale(image)
        if np.issubdtype(image.dtype, np.integer):
            gray = gray / np.iinfo(image.dtype).max
        elif gray.size and gray.max() > 1.0:
            gray = gray / 255.0
        return gray.astype(np.float32)

    def _build_gaussian_pyramid(self, image):
        pyramid = []

        for octave in range(self.num_octaves):
            if octave == 0:
                base_image = image
            else:
                # Downsample the scale with twice the base sigma
                base_image = pyramid[octave - 1][-3][::2, ::2]

            if min(base_image.shape) < 2 * self.border_width + 3:
                break

            pyramid.append([
                gaussian_filter(base_image, self.sigma * (self.k ** scale))
                for scale in range(self.num_scales + 3)
            ])

        return pyramid

    def _build_dog_pyramid(self, gaussian_pyramid):
        return [
            [octave[i + 1] - octave[i] for i in range(len(octave) - 1)]
            for octave in gaussian_pyramid
        ]

    def _find_scale_space_extrema(self, dog_pyramid):
        """Find refined local extrema in DoG scale space."""
        candidates = []

        for octave_idx, octave_dog in enumerate(dog_pyramid):
            for scale_idx in range(1, len(octave_dog) - 1):
                prev_dog, curr_dog, next_dog = octave_dog[scale_idx - 1:scale_idx + 2]

                for y, x in self._find_local_extrema(prev_dog, curr_dog, next_dog):
                    refined = self._refine_keypoint(prev_dog, curr_dog, next_dog, y, x)
                    if refined is None:
                        continue

                    dy, dx, ds = refined
                    factor = 2 ** octave_idx
                    candidates.append({
                        'octave': octave_idx,
                        'scale': scale_idx + ds,
                        'y': (y + dy) * factor,
                        'x': (x + dx) * factor,
                        'sigma': self.sigma * (self.k ** (scale_idx + ds)) * factor,
                        'response': float(abs(curr_dog[y, x])),
                    })

        return candidates

    def _find_local_extrema(self, prev_dog, curr_dog, next_dog):
        """Coordinates of 3x3x3 maxima and minima above the contrast threshold."""
        # Loose pre-filter; the refined value is checked against the full threshold
        strong = np.abs(curr_dog) > 0.5 * self._contrast_limit

        is_max = (curr_dog == maximum_filter(curr_dog, size=3))
        is_max &= (curr_dog > prev_dog) & (curr_dog > next_dog)

        is_min = (curr_dog == minimum_filter(curr_dog, size=3))
        is_min &= (curr_dog < prev_dog) & (curr_dog < next_dog)

        extrema = (is_max | is_min) & strong

        b = max(1, self.border_width)
        extrema[:b, :] = False
        extrema[-b:, :] = False
        extrema[:, :b] = False
        extrema[:, -b:] = False

        return np.argwhere(extrema)

    def _refine_keypoint(self, prev_dog, curr_dog, next_dog, y, x):
        """
        Sub-pixel offset (dy, dx, ds) from a quadratic fit, or None for
        unstable, low-contrast or edge-like extrema.
        """
        c = curr_dog[y, x]

        gradient = np.array([
            (curr_dog[y, x + 1] - curr_dog[y, x - 1]) / 2.0,
            (curr_dog[y + 1, x] - curr_dog[y - 1, x]) / 2.0,
            (next_dog[y, x] - prev_dog[y, x]) / 2.0,
        ])

        dxx = curr_dog[y, x + 1] + curr_dog[y, x - 1] - 2 * c
        dyy = curr_dog[y + 1, x] + curr_dog[y - 1, x] - 2 * c
        dss = next_dog[y, x] + prev_dog[y, x] - 2 * c
        dxy = ((curr_dog[y + 1, x + 1] - curr_dog[y + 1, x - 1]) -
               (curr_dog[y - 1, x + 1] - curr_dog[y - 1, x - 1])) / 4.0
        dxs = ((next_dog[y, x + 1] - next_dog[y, x - 1]) -
               (prev_dog[y, x + 1] - prev_dog[y, x - 1])) / 4.0
        dys = ((next_dog[y + 1, x] - next_dog[y - 1, x]) -
               (prev_dog[y + 1, x] - prev_dog[y - 1, x])) / 4.0

        hessian = np.array([[dxx, dxy, dxs],
                            [dxy, dyy, dys],
                            [dxs, dys, dss]])

        try:
            offset = -np.linalg.solve(hessian, gradient)
        except np.linalg.LinAlgError:
            return None

        if np.any(np.abs(offset) > 1.5):
            return None

        if abs(c + 0.5 * np.dot(gradient, offset)) < self._contrast_limit:
            return None

        # Principal curvature ratio rejects edges
        trace = dxx + dyy
        det = dxx * dyy - dxy * dxy
        if det <= 0:
            return None
        if trace * trace / det > ((self.edge_threshold + 1) ** 2) / self.edge_threshold:
            return None

        return offset[1], offset[0], offset[2]

    def _octave_location(self, gaussian_pyramid, candidate):
        """Blurred image and integer position for a candidate, or None."""
        octave = gaussian_pyramid[candidate['octave']]
        scale_idx = int(round(candidate['scale']))
        if scale_idx < 0 or scale_idx >= len(octave):
            return None

        factor = 2 ** candidate['octave']
        return (octave[scale_idx],
                int(round(candidate['y'] / factor)),
                int(round(candidate['x'] / factor)))

    def _assign_orientations(self, gaussian_pyramid, candidates):
        """One copy of each candidate per dominant gradient orientation."""
        oriented = []

        for candidate in candidates:
            location = self._octave_location(gaussian_pyramid, candidate)
            if location is None:
                continue
            image, y, x = location

            octave_sigma = candidate['sigma'] / (2 ** candidate['octave'])
            for orientation in self._dominant_orientations(image, y, x, octave_sigma):
                oriented.append(dict(candidate, orientation=orientation))

        return oriented

    def _dominant_orientations(self, image, y, x, sigma, num_bins=36):
        """Peaks of the Gaussian-weighted gradient orientation histogram."""
        radius = max(1, min(int(round(4.5 * sigma)), 8))

        y0, y1 = max(1, y - radius), min(image.shape[0] - 1, y + radius + 1)
        x0, x1 = max(1, x - radius), min(image.shape[1] - 1, x + radius + 1)
        if y1 - y0 < 1 or x1 - x0 < 1:
            return [0.0]

        gy = image[y0 + 1:y1 + 1, x0:x1] - image[y0 - 1:y1 - 1, x0:x1]
        gx = image[y0:y1, x0 + 1:x1 + 1] - image[y0:y1, x0 - 1:x1 - 1]

        rows, cols = np.mgrid[y0:y1, x0:x1]
        weight = np.exp(-((rows - y) ** 2 + (cols - x) ** 2) / (2 * sigma ** 2))
        magnitude = np.sqrt(gx ** 2 + gy ** 2) * weight
        angle = np.degrees(np.arctan2(gy, gx)) % 360

        bins = (angle * num_bins / 360).astype(int) % num_bins
        hist = np.bincount(bins.ravel(), weights=magnitude.ravel(), minlength=num_bins)

        # Circular smoothing
        hist = (np.roll(hist, 1) + hist + np.roll(hist, -1)) / 3.0

        max_val = hist.max()
        if max_val <= 0:
            return [0.0]

        orientations = []
        for i in range(num_bins):
            prev_val = hist[(i - 1) % num_bins]
            next_val = hist[(i + 1) % num_bins]
            if hist[i] > 0.8 * max_val and hist[i] >= prev_val and hist[i] >= next_val:
                denom = prev_val - 2 * hist[i] + next_val
                interp = 0.5 * (prev_val - next_val) / denom if denom != 0 else 0.0
                angle_deg = ((i + interp) * 360.0 / num_bins) % 360
                orientations.append(float(np.radians(angle_deg)))

        return orientations or [0.0]

    def _generate_descriptors(self, gaussian_pyramid, candidates):
        descriptors = []
        valid = []

        for candidate in candidates:
            location = self._octave_location(gaussian_pyramid, candidate)
            if location is None:
                continue
            image, y, x = location

            octave_sigma = candidate['sigma'] / (2 ** candidate['octave'])
            descriptor = self._compute_descriptor(image, y, x, candidate['orientation'], octave_sigma)
            if descriptor is not None:
                descriptors.append(descriptor)
                valid.append(candidate)

        if descriptors:
            return valid, np.array(descriptors, dtype=np.uint8)
        return valid, np.zeros((0, DESCRIPTOR_SIZE), dtype=np.uint8)

    def _compute_descriptor(self, image, y, x, orientation, sigma, d=4, n=8):
        """
        128-dimensional descriptor: a d x d grid of n-bin orientation
        histograms, trilinearly interpolated, in the keypoint's frame.
        """
        radius = int(round(3 * sigma * d / 2.0 * np.sqrt(2)))
        radius = max(radius, d)

        if (x - radius < 1 or x + radius >= image.shape[1] - 1 or
                y - radius < 1 or y + radius >= image.shape[0] - 1):
            return None

        ys = slice(y - radius, y + radius + 1)
        xs = slice(x - radius, x + radius + 1)
        gy = image[y - radius + 1:y + radius + 2, xs] - image[y - radius - 1:y + radius, xs]
        gx = image[ys, x - radius + 1:x + radius + 2] - image[ys, x - radius - 1:x + radius]

        magnitude = np.sqrt(gx ** 2 + gy ** 2)
        angle = (np.arctan2(gy, gx) - orientation) % (2 * np.pi)

        y_rel, x_rel = np.mgrid[-radius:radius + 1, -radius:radius + 1]
        cos_o, sin_o = np.cos(orientation), np.sin(orientation)
        x_rot = cos_o * x_rel + sin_o * y_rel
        y_rot = -sin_o * x_rel + cos_o * y_rel

        cell = 3 * sigma
        x_bin = x_rot / cell + d / 2.0 - 0.5
        y_bin = y_rot / cell + d / 2.0 - 0.5
        a_bin = angle * n / (2 * np.pi)

        window = np.exp(-(x_rot ** 2 + y_rot ** 2) / (2 * (0.5 * d * cell) ** 2))
        weight = (magnitude * window).ravel()

        x_bin, y_bin, a_bin = x_bin.ravel(), y_bin.ravel(), a_bin.ravel()
        x0, y0, a0 = np.floor(x_bin), np.floor(y_bin), np.floor(a_bin)
        fx, fy, fa = x_bin - x0, y_bin - y0, a_bin - a0
        x0, y0, a0 = x0.astype(int), y0.astype(int), a0.astype(int)

        hist = np.zeros((d, d, n))
        for dy_i in (0, 1):
            yi = y0 + dy_i
            wy = fy if dy_i else 1 - fy
            for dx_i in (0, 1):
                xi = x0 + dx_i
                wx = fx if dx_i else 1 - fx
                ok = (yi >= 0) & (yi < d) & (xi >= 0) & (xi < d)
                for da_i in (0, 1):
                    ai = (a0 + da_i) % n
                    wa = fa if da_i else 1 - fa
                    np.add.at(hist, (yi[ok], xi[ok], ai[ok]), (weight * wy * wx * wa)[ok])

        descriptor = hist.ravel()
        norm = np.linalg.norm(descriptor)
        if norm == 0:
            return None

        # Clip large gradients and renormalize (illumination invariance)
        descriptor = np.minimum(descriptor / norm, 0.2)
        descriptor = descriptor / np.linalg.norm(descriptor)

        return np.clip(np.round(descriptor * 512), 0, 255).astype(np.uint8)
