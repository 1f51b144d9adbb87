"""
Feature-based image coregistration without OpenCV.

Aligns a moving image onto a reference image taken from a different
viewpoint, scale or rotation, using only NumPy, SciPy and Pillow.

Main components:
- SIFT: Keypoint detection and description
- FeatureMatcher: Brute-force matching with cross-check (L2 or Hamming)
- HomographyEstimator: RANSAC homography estimation
- warp_perspective: Backward warping into the reference frame
- Coregistration: The detect -> match -> estimate -> warp pipeline

Example usage:
    from coreg.image_io import read_image, write_image
    from coreg.pipeline import Coregistration

    reference = read_image('reference.png')
    moving = read_image('moving.png')
    result = Coregistration().register(reference, moving)
    write_image('aligned.png', result.aligned)
"""

__version__ = '1.0.0'
__author__ = 'Pure Coreg Team'

from .config import CoregConfig, DEFAULT_CONFIG
from .exceptions import (
    CoregError,
    DecodeError,
    EncodeError,
    InsufficientCorrespondences,
    NoConsensusFound,
    SingularTransform,
    ValidationError,
)
from .types import Keypoint, Match
from .sift import SIFT
from .matcher import FeatureMatcher, select_top_matches
from .homography import HomographyEstimator, apply_homography
from .warp import warp_perspective, invert_homography
from .pipeline import Coregistration, CoregistrationResult, PipelineState, Stage
from .image_io import read_image, write_image, read_images

__all__ = [
    'CoregConfig',
    'DEFAULT_CONFIG',
    'CoregError',
    'DecodeError',
    'EncodeError',
    'InsufficientCorrespondences',
    'NoConsensusFound',
    'SingularTransform',
    'ValidationError',
    'Keypoint',
    'Match',
    'SIFT',
    'FeatureMatcher',
    'select_top_matches',
    'HomographyEstimator',
    'apply_homography',
    'warp_perspective',
    'invert_homography',
    'Coregistration',
    'CoregistrationResult',
    'PipelineState',
    'Stage',
    'read_image',
    'write_image',
    'read_images',
]
