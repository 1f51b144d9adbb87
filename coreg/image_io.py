"""
Image I/O utilities using PIL (Pillow)
No OpenCV dependencies.
"""

import os
import tempfile

import numpy as np
from PIL import Image, UnidentifiedImageError

from .exceptions import DecodeError, EncodeError


def read_image(filepath):
    """
    Read image from file.

    Args:
        filepath: Path to image file

    Returns:
        Image as numpy array (H x W x C) for color or (H x W) for grayscale

    Raises:
        DecodeError: If the file is missing or cannot be decoded
    """
    try:
        with Image.open(filepath) as img:
            # Convert to RGB if needed
            if img.mode not in ('RGB', 'L'):
                img = img.convert('RGB')
            return np.array(img)
    except (OSError, UnidentifiedImageError, ValueError) as e:
        raise DecodeError(f"Failed to read image from {filepath}: {e}") from e


def write_image(filepath, image):
    """
    Write image to file.

    The image is written to a temporary file next to the target and moved
    into place, so a failed write never leaves a partial file behind.

    Args:
        filepath: Path to save image; the extension selects the format
        image: Image as numpy array

    Raises:
        EncodeError: If the image cannot be encoded or written
    """
    image = np.asarray(image)
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (1, 3, 4)):
        raise EncodeError(f"Cannot encode array of shape {image.shape} as an image")

    # Ensure image is in correct format
    if image.dtype != np.uint8:
        image = np.clip(np.rint(image), 0, 255).astype(np.uint8)
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]

    directory = os.path.dirname(os.path.abspath(filepath))
    suffix = os.path.splitext(filepath)[1]
    tmp_path = None
    try:
        img_format = Image.registered_extensions().get(suffix.lower())
        if img_format is None:
            raise ValueError(f"unknown file extension '{suffix}'")

        fd, tmp_path = tempfile.mkstemp(suffix=suffix, dir=directory)
        os.close(fd)
        Image.fromarray(image).save(tmp_path, format=img_format)
        os.replace(tmp_path, filepath)
    except (OSError, ValueError, KeyError) as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise EncodeError(f"Failed to write image to {filepath}: {e}") from e


def read_images(filepaths):
    """
    Read multiple images.

    Args:
        filepaths: List of image file paths

    Returns:
        List of images as numpy arrays
    """
    return [read_image(filepath) for filepath in filepaths]


def to_grayscale(image):
    """Convert image to grayscale (float64) if needed."""
    image = np.asarray(image)
    if image.ndim == 3:
        if image.shape[2] == 1:
            return image[:, :, 0].astype(np.float64)
        # RGB to grayscale using standard weights
        return np.dot(image[..., :3].astype(np.float64), [0.299, 0.587, 0.114])
    return image.astype(np.float64)
