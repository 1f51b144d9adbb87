"""
Backward warping of an image through a homography.
"""

import numpy as np

from .exceptions import SingularTransform, ValidationError
from .homography import is_invertible


INTERPOLATIONS = ('bilinear', 'nearest')

# Slack for source coordinates that land a hair outside the image
_EDGE_EPS = 1e-6


def invert_homography(H):
    """
    Invert a homography, normalized so the result has H[2, 2] == 1.

    Raises:
        SingularTransform: If H is not invertible
    """
    H = np.asarray(H, dtype=np.float64)
    if not is_invertible(H):
        raise SingularTransform("Transform is not invertible")
    try:
        H_inv = np.linalg.inv(H)
    except np.linalg.LinAlgError as e:
        raise SingularTransform(f"Transform is not invertible: {e}") from e
    if abs(H_inv[2, 2]) > 1e-12:
        H_inv = H_inv / H_inv[2, 2]
    return H_inv


def warp_perspective(image, H, output_shape, interpolation='bilinear',
                     border_value=0, chunk_rows=None):
    """
    Warp image using homography matrix.

    For every output pixel the source location is found through the
    inverse of H and sampled from image.

    Args:
        image: Input image (H x W x C) or (H x W)
        H: Homography mapping source pixels to output pixels (3 x 3)
        output_shape: Output image shape (height, width)
        interpolation: 'bilinear' or 'nearest'
        border_value: Value for output pixels that map outside the source
        chunk_rows: Number of output rows per block, None for all at once

    Returns:
        Warped image with the dtype and band count of the input
    """
    if interpolation not in INTERPOLATIONS:
        raise ValidationError(f"Unknown interpolation '{interpolation}'. Choose from: {INTERPOLATIONS}")

    image = np.asarray(image)
    if image.ndim not in (2, 3) or image.shape[0] == 0 or image.shape[1] == 0:
        raise ValidationError(f"Expected a non-empty (H x W) or (H x W x C) image, got shape {image.shape}")

    h, w = (int(v) for v in output_shape)
    if h < 0 or w < 0:
        raise ValidationError(f"Output shape must be non-negative, got {output_shape}")

    H_inv = invert_homography(H)

    # Handle grayscale and color images alike
    squeeze = image.ndim == 2
    source = image[:, :, np.newaxis] if squeeze else image

    output = np.empty((h, w, source.shape[2]), dtype=image.dtype)
    step = h if not chunk_rows else int(chunk_rows)

    for start in range(0, h, max(step, 1)):
        stop = min(start + step, h)
        src_x, src_y = _source_coordinates(H_inv, start, stop, w)

        if interpolation == 'nearest':
            values, inside = nearest_interpolate(source, src_x, src_y)
        else:
            values, inside = bilinear_interpolate(source, src_x, src_y)

        values[~inside] = border_value
        output[start:stop] = _cast(values, image.dtype)

    return output[:, :, 0] if squeeze else output


def _source_coordinates(H_inv, row_start, row_stop, width):
    """Map output rows [row_start, row_stop) back into source coordinates."""
    y, x = np.mgrid[row_start:row_stop, 0:width].astype(np.float64)

    # Elementwise so results do not depend on the block size
    u = H_inv[0, 0] * x + H_inv[0, 1] * y + H_inv[0, 2]
    v = H_inv[1, 0] * x + H_inv[1, 1] * y + H_inv[1, 2]
    w = H_inv[2, 0] * x + H_inv[2, 1] * y + H_inv[2, 2]

    with np.errstate(divide='ignore', invalid='ignore'):
        src_x = u / w
        src_y = v / w
    behind = np.abs(w) < 1e-12
    src_x[behind] = np.nan
    src_y[behind] = np.nan
    return src_x, src_y


def nearest_interpolate(image, x, y):
    """
    Nearest-neighbour sampling.

    Args:
        image: Input image (H x W x C)
        x: X coordinates (h x w)
        y: Y coordinates (h x w)

    Returns:
        values (h x w x C) as float64, and the in-bounds mask (h x w)
    """
    height, width = image.shape[:2]
    with np.errstate(invalid='ignore'):
        xi = np.floor(x + 0.5)
        yi = np.floor(y + 0.5)
        inside = (xi >= 0) & (xi < width) & (yi >= 0) & (yi < height)

    xi = np.where(inside, xi, 0).astype(np.intp)
    yi = np.where(inside, yi, 0).astype(np.intp)
    return image[yi, xi].astype(np.float64), inside


def bilinear_interpolate(image, x, y):
    """
    Bilinear interpolation for image warping.

    Args:
        image: Input image (H x W x C)
        x: X coordinates (h x w)
        y: Y coordinates (h x w)

    Returns:
        values (h x w x C) as float64, and the in-bounds mask (h x w)
    """
    height, width = image.shape[:2]

    with np.errstate(invalid='ignore'):
        inside = (x >= -_EDGE_EPS) & (x <= width - 1 + _EDGE_EPS) & \
                 (y >= -_EDGE_EPS) & (y <= height - 1 + _EDGE_EPS)

    x = np.clip(np.where(inside, x, 0), 0, width - 1)
    y = np.clip(np.where(inside, y, 0), 0, height - 1)

    x0 = np.floor(x).astype(np.intp)
    y0 = np.floor(y).astype(np.intp)
    x1 = np.minimum(x0 + 1, width - 1)
    y1 = np.minimum(y0 + 1, height - 1)

    fx = (x - x0)[..., np.newaxis]
    fy = (y - y0)[..., np.newaxis]

    I00 = image[y0, x0].astype(np.float64)
    I01 = image[y1, x0].astype(np.float64)
    I10 = image[y0, x1].astype(np.float64)
    I11 = image[y1, x1].astype(np.float64)

    values = ((1 - fx) * (1 - fy) * I00 + (1 - fx) * fy * I01 +
              fx * (1 - fy) * I10 + fx * fy * I11)
    return values, inside


def _cast(values, dtype):
    """Convert float samples back to the image dtype."""
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    if dtype == np.bool_:
        return values >= 0.5
    return values.astype(dtype)
