"""
Tests for pipeline configuration, logging setup and the error hierarchy.
"""

import logging

import pytest

import coreg
from coreg.config import DEFAULT_CONFIG, CoregConfig
from coreg.exceptions import (
    CoregError,
    DecodeError,
    EncodeError,
    InsufficientCorrespondences,
    NoConsensusFound,
    SingularTransform,
    ValidationError,
)
from coreg.log import setup_logger


class TestCoregConfig:

    def test_defaults(self):
        config = CoregConfig()
        assert config.match_count == 50
        assert config.detector_params == DEFAULT_CONFIG['detector']
        assert config.ransac_params['ransac_reproj_threshold'] == 4.0
        assert config.warp_params['interpolation'] == 'bilinear'

    def test_partial_override(self):
        config = CoregConfig.from_dict({'ransac': {'seed': 7}, 'matcher': {'metric': 'hamming'}})
        assert config.ransac_params['seed'] == 7
        assert config.ransac_params['max_iters'] == 2000
        assert config.matcher_params['metric'] == 'hamming'
        assert config.matcher_params['cross_check'] is True

    def test_defaults_are_not_shared(self):
        config = CoregConfig()
        config.detector_params['max_features'] = 1
        assert DEFAULT_CONFIG['detector']['max_features'] == 5000

    def test_unknown_section(self):
        with pytest.raises(ValidationError, match='sections'):
            CoregConfig.from_dict({'blending': {}})

    def test_unknown_parameter(self):
        with pytest.raises(ValidationError, match='ransac'):
            CoregConfig(ransac_params={'iterations': 10})

    @pytest.mark.parametrize('value', [-1, 2.5, '10'])
    def test_invalid_match_count(self, value):
        with pytest.raises(ValidationError):
            CoregConfig(match_count=value)

    def test_match_count_none_keeps_all(self):
        assert CoregConfig(match_count=None).match_count is None

    def test_to_dict_round_trip(self):
        config = CoregConfig.from_dict({'warp': {'border_value': 9}, 'match_count': 10})
        again = CoregConfig.from_dict(config.to_dict())
        assert again.to_dict() == config.to_dict()
        assert 'match_count' in repr(config)


class TestSetupLogger:

    def test_repeated_setup_does_not_duplicate(self):
        setup_logger('coreg.test_repeat')
        logger = setup_logger('coreg.test_repeat', logging.DEBUG)
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_log_file(self, tmp_path):
        log_file = tmp_path / 'logs' / 'run.log'
        logger = setup_logger('coreg.test_file', logging.INFO, str(log_file))

        logger.info('estimated transform')
        for handler in logger.handlers:
            handler.flush()

        assert 'estimated transform' in log_file.read_text()
        setup_logger('coreg.test_file')


class TestErrors:

    def test_stage_prefix(self):
        error = NoConsensusFound('only 3 inliers', stage='estimate')
        assert str(error) == '[estimate] only 3 inliers'
        assert error.message == 'only 3 inliers'
        assert str(NoConsensusFound('plain')) == 'plain'

    @pytest.mark.parametrize('cls, builtin', [
        (ValidationError, ValueError),
        (DecodeError, IOError),
        (EncodeError, IOError),
        (InsufficientCorrespondences, RuntimeError),
        (NoConsensusFound, RuntimeError),
        (SingularTransform, NoConsensusFound),
    ])
    def test_hierarchy(self, cls, builtin):
        assert issubclass(cls, CoregError)
        assert issubclass(cls, builtin)


def test_package_metadata():
    assert coreg.__author__ == 'Pure Coreg Team'
    assert coreg.__version__ == '1.0.0'
