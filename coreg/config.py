"""
Configuration for the coregistration pipeline.

A CoregConfig is passed explicitly to Coregistration; nothing is read from
the environment.
"""

import copy

from .exceptions import ValidationError


DEFAULT_CONFIG = {
    "detector": {
        "num_octaves": 4,
        "num_scales": 5,
        "sigma": 1.6,
        "contrast_threshold": 0.04,
        "edge_threshold": 10,
        "border_width": 5,
        "max_features": 5000,
    },
    "matcher": {
        "metric": "l2",
        "cross_check": True,
        "ratio_threshold": None,
    },
    "ransac": {
        "ransac_reproj_threshold": 4.0,
        "max_iters": 2000,
        "confidence": 0.995,
        "min_inliers": 8,
        "min_inlier_ratio": 0.0,
        "seed": None,
        "max_seconds": None,
    },
    "warp": {
        "interpolation": "bilinear",
        "border_value": 0,
    },
    # The number of best matches handed to RANSAC
    "match_count": 50,
}


class CoregConfig:
    """
    Parameters for every pipeline stage.

    Args:
        detector_params: Keyword arguments for the SIFT detector
        matcher_params: Keyword arguments for FeatureMatcher
        ransac_params: Keyword arguments for HomographyEstimator
        warp_params: Keyword arguments for warp_perspective
        match_count: Number of best matches to keep, or None for all
    """

    _SECTIONS = ('detector', 'matcher', 'ransac', 'warp')

    def __init__(self, detector_params=None, matcher_params=None,
                 ransac_params=None, warp_params=None,
                 match_count=DEFAULT_CONFIG['match_count']):
        self.detector_params = _merged('detector', detector_params)
        self.matcher_params = _merged('matcher', matcher_params)
        self.ransac_params = _merged('ransac', ransac_params)
        self.warp_params = _merged('warp', warp_params)

        if match_count is not None and (not isinstance(match_count, int) or match_count < 0):
            raise ValidationError(f"match_count must be a non-negative int or None, got {match_count!r}")
        self.match_count = match_count

    @classmethod
    def from_dict(cls, data):
        """Build a config from a (possibly partial) nested dict."""
        data = dict(data or {})
        unknown = set(data) - set(cls._SECTIONS) - {'match_count'}
        if unknown:
            raise ValidationError(f"Unknown configuration sections: {sorted(unknown)}")

        return cls(
            detector_params=data.get('detector'),
            matcher_params=data.get('matcher'),
            ransac_params=data.get('ransac'),
            warp_params=data.get('warp'),
            match_count=data.get('match_count', DEFAULT_CONFIG['match_count']),
        )

    def to_dict(self):
        return {
            'detector': dict(self.detector_params),
            'matcher': dict(self.matcher_params),
            'ransac': dict(self.ransac_params),
            'warp': dict(self.warp_params),
            'match_count': self.match_count,
        }

    def __repr__(self):
        return f"CoregConfig({self.to_dict()!r})"


def _merged(section, overrides):
    params = copy.deepcopy(DEFAULT_CONFIG[section])
    overrides = overrides or {}
    unknown = set(overrides) - set(params)
    if unknown:
        raise ValidationError(f"Unknown {section} parameters: {sorted(unknown)}")
    params.update(overrides)
    return params
