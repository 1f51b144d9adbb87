"""
Pairwise coregistration pipeline: detect -> match -> select -> estimate -> warp.
"""

import enum
import logging
from contextlib import contextmanager

import numpy as np

from .config import CoregConfig
from .exceptions import CoregError, InsufficientCorrespondences, SingularTransform, ValidationError
from .homography import MIN_SAMPLES, HomographyEstimator, apply_homography
from .matcher import FeatureMatcher, select_top_matches
from .sift import SIFT
from .types import validate_features
from .warp import invert_homography, warp_perspective


logger = logging.getLogger(__name__)


class Stage(str, enum.Enum):
    """Pipeline steps; errors are tagged with the step that failed."""
    LOAD = 'load'
    DETECT = 'detect'
    MATCH = 'match'
    SELECT = 'select'
    ESTIMATE = 'estimate'
    WARP = 'warp'
    SAVE = 'save'

    def __str__(self):
        return self.value


class PipelineState(str, enum.Enum):
    LOADED = 'loaded'
    KEYPOINTS_READY = 'keypoints_ready'
    MATCHED = 'matched'
    SELECTED = 'selected'
    ESTIMATED = 'estimated'
    WARPED = 'warped'
    DONE = 'done'

    def __str__(self):
        return self.value


@contextmanager
def stage(name):
    """
    Tag any error raised in the block with the stage name.

    CoregErrors keep their type; LinAlgError becomes SingularTransform and
    any other exception is wrapped in a CoregError chained to the original.
    """
    try:
        yield
    except CoregError as e:
        if e.stage is None:
            e.stage = str(name)
        raise
    except np.linalg.LinAlgError as e:
        raise SingularTransform(f"Linear algebra failure: {e}", stage=str(name)) from e
    except Exception as e:
        raise CoregError(f"{type(e).__name__}: {e}", stage=str(name)) from e


class CoregistrationResult:
    """
    Output of a pipeline run.

    Attributes:
        transform: 3 x 3 homography mapping moving pixels to reference pixels
        inlier_mask: Boolean per selected match
        aligned: Moving image resampled into the reference frame
        keypoints1, keypoints2: Keypoints of the reference and moving image
        matches: Selected matches handed to the estimator
        num_matches: Matches found before selection
        num_inliers, inlier_ratio, residual_rms, iterations: Fit statistics
    """

    def __init__(self, transform, inlier_mask, aligned, keypoints1, keypoints2,
                 matches, num_matches, info):
        self.transform = transform
        self.inlier_mask = inlier_mask
        self.aligned = aligned
        self.keypoints1 = keypoints1
        self.keypoints2 = keypoints2
        self.matches = matches
        self.num_matches = num_matches
        self.num_inliers = info['num_inliers']
        self.inlier_ratio = info['inlier_ratio']
        self.residual_rms = info['residual_rms']
        self.iterations = info['iterations']

    def transform_points(self, points, inverse=False):
        """
        Map (x, y) points from the moving frame to the reference frame,
        or back when inverse is True.
        """
        H = invert_homography(self.transform) if inverse else self.transform
        return apply_homography(points, H)

    def __repr__(self):
        return (
            f"CoregistrationResult(inliers={self.num_inliers}/{len(self.matches)}, "
            f"rms={self.residual_rms:.4f}px, matches={self.num_matches})"
        )


class Coregistration:
    """
    Complete coregistration pipeline.

    This class coordinates all components:
    1. Feature detection (SIFT unless another detector is given)
    2. Cross-checked descriptor matching
    3. Selection of the best matches
    4. Homography estimation with RANSAC
    5. Warping of the moving image into the reference frame

    A failing stage raises immediately; nothing is retried.
    """

    def __init__(self, config=None, detector=None):
        """
        Args:
            config: CoregConfig, or a dict accepted by CoregConfig.from_dict
            detector: Object with detect_and_compute(image) -> (keypoints, descriptors)
        """
        if config is None:
            config = CoregConfig()
        elif isinstance(config, dict):
            config = CoregConfig.from_dict(config)
        self.config = config

        self.detector = detector if detector is not None else SIFT(**config.detector_params)
        self.matcher = FeatureMatcher(**config.matcher_params)
        self.homography_estimator = HomographyEstimator(**config.ransac_params)
        self.state = None

    def register(self, reference, moving):
        """
        Align moving onto reference.

        Args:
            reference: Reference image (H x W) or (H x W x C)
            moving: Image to align, same conventions

        Returns:
            CoregistrationResult; aligned has the reference's height and width
        """
        self.state = None
        with stage(Stage.LOAD):
            reference = np.asarray(reference)
            moving = np.asarray(moving)
            for name, image in (('reference', reference), ('moving', moving)):
                if image.ndim not in (2, 3) or 0 in image.shape[:2]:
                    raise ValidationError(f"Invalid {name} image shape {image.shape}")
        self.state = PipelineState.LOADED

        with stage(Stage.DETECT):
            kp1, desc1 = self.detector.detect_and_compute(reference)
            kp2, desc2 = self.detector.detect_and_compute(moving)
            logger.info("Detected %d keypoints in reference, %d in moving image",
                        len(kp1), len(kp2))

        return self.register_features(kp1, desc1, kp2, desc2, moving, reference.shape[:2])

    def register_features(self, keypoints1, descriptors1, keypoints2, descriptors2,
                          moving, output_shape):
        """
        Run the pipeline from already detected features.

        Args:
            keypoints1, descriptors1: Features of the reference image
            keypoints2, descriptors2: Features of the moving image
            moving: Image to warp
            output_shape: (height, width) of the reference image

        Returns:
            CoregistrationResult
        """
        with stage(Stage.DETECT):
            keypoints1 = list(keypoints1)
            keypoints2 = list(keypoints2)
            descriptors1 = validate_features(keypoints1, descriptors1)
            descriptors2 = validate_features(keypoints2, descriptors2)
        self.state = PipelineState.KEYPOINTS_READY

        with stage(Stage.MATCH):
            matches = self.matcher.match(descriptors1, descriptors2)
            logger.info("Found %d matches", len(matches))
        self.state = PipelineState.MATCHED

        with stage(Stage.SELECT):
            selected = select_top_matches(matches, self.config.match_count)
            if len(selected) < MIN_SAMPLES:
                raise InsufficientCorrespondences(
                    f"Only {len(selected)} matches available, need at least {MIN_SAMPLES}; "
                    f"try more features or a larger match count"
                )
        self.state = PipelineState.SELECTED

        with stage(Stage.ESTIMATE):
            src_pts = np.array([keypoints2[m.train_idx].pt for m in selected], dtype=np.float64)
            dst_pts = np.array([keypoints1[m.query_idx].pt for m in selected], dtype=np.float64)
            H, inliers, info = self.homography_estimator.find_homography(
                src_pts, dst_pts, return_info=True
            )
            logger.info("Homography supported by %d of %d matches (rms %.3f px, %d iterations)",
                        info['num_inliers'], len(selected), info['residual_rms'], info['iterations'])
        self.state = PipelineState.ESTIMATED

        with stage(Stage.WARP):
            aligned = warp_perspective(moving, H, output_shape, **self.config.warp_params)
        self.state = PipelineState.WARPED

        result = CoregistrationResult(
            transform=H,
            inlier_mask=inliers,
            aligned=aligned,
            keypoints1=keypoints1,
            keypoints2=keypoints2,
            matches=selected,
            num_matches=len(matches),
            info=info,
        )
        self.state = PipelineState.DONE
        return result
