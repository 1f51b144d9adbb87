"""
Side-by-side rendering of feature matches for inspecting a registration.
"""

import numpy as np


INLIER_COLOR = (0, 255, 0)
OUTLIER_COLOR = (255, 0, 0)


def draw_matches(img1, img2, kp1, kp2, matches, max_matches=100, inlier_mask=None):
    """
    Create visualization of feature matches.

    Args:
        img1: Reference image
        img2: Moving image
        kp1: Keypoints in the reference image
        kp2: Keypoints in the moving image
        matches: List of Match
        max_matches: Maximum number of matches to draw
        inlier_mask: Optional boolean per match; outliers are drawn red

    Returns:
        RGB uint8 image with both inputs side by side and matches drawn
    """
    left = _as_rgb(img1)
    right = _as_rgb(img2)

    h1, w1 = left.shape[:2]
    h2, w2 = right.shape[:2]

    vis = np.zeros((max(h1, h2), w1 + w2, 3), dtype=np.uint8)
    vis[:h1, :w1] = left
    vis[:h2, w1:w1 + w2] = right

    for i, match in enumerate(matches[:max_matches]):
        pt1 = _pixel(kp1[match.query_idx].pt)
        x2, y2 = _pixel(kp2[match.train_idx].pt)
        pt2 = (x2 + w1, y2)

        is_inlier = inlier_mask is None or bool(inlier_mask[i])
        color = INLIER_COLOR if is_inlier else OUTLIER_COLOR

        _draw_line(vis, pt1, pt2, color)
        _draw_circle(vis, pt1, 3, color)
        _draw_circle(vis, pt2, 3, color)

    return vis


def _as_rgb(image):
    image = np.asarray(image)
    if image.dtype != np.uint8:
        image = np.clip(np.rint(image), 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return np.stack([image] * 3, axis=2)
    if image.shape[2] == 1:
        return np.repeat(image, 3, axis=2)
    return image[:, :, :3]


def _pixel(pt):
    return int(round(pt[0])), int(round(pt[1]))


def _draw_line(image, pt1, pt2, color):
    """Draw line on image using Bresenham's algorithm."""
    x1, y1 = pt1
    x2, y2 = pt2

    steep = abs(y2 - y1) > abs(x2 - x1)
    if steep:
        x1, y1 = y1, x1
        x2, y2 = y2, x2

    if x1 > x2:
        x1, x2 = x2, x1
        y1, y2 = y2, y1

    dx = x2 - x1
    dy = abs(y2 - y1)

    error = dx // 2
    ystep = 1 if y1 < y2 else -1
    y = y1

    for x in range(x1, x2 + 1):
        row, col = (x, y) if steep else (y, x)
        if 0 <= row < image.shape[0] and 0 <= col < image.shape[1]:
            image[row, col] = color

        error -= dy
        if error < 0:
            y += ystep
            error += dx


def _draw_circle(image, center, radius, color):
    """Draw filled circle on image."""
    cx, cy = center

    for y in range(max(0, cy - radius), min(image.shape[0], cy + radius + 1)):
        for x in range(max(0, cx - radius), min(image.shape[1], cx + radius + 1)):
            if (x - cx) ** 2 + (y - cy) ** 2 <= radius ** 2:
                image[y, x] = color
