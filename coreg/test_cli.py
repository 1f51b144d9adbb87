"""
Tests for the command-line interface.
"""

import logging
import os

import numpy as np
import pytest

from coreg import cli
from coreg.conftest import ScriptedDetector, similarity
from coreg.image_io import read_image, write_image
from coreg.pipeline import Coregistration
from coreg.warp import warp_perspective


@pytest.fixture
def image_pair(tmp_path, textured_image):
    reference = str(tmp_path / 'reference.png')
    moving = str(tmp_path / 'moving.png')
    write_image(reference, textured_image)
    write_image(moving, textured_image)
    return reference, moving


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    # main() attaches handlers bound to the captured stdout
    logger = logging.getLogger('coreg')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def scripted_pipeline(monkeypatch, make_scene):
    """Route the CLI through a pipeline whose detector returns an identity scene."""
    kp, desc, _, _ = make_scene(np.eye(3), n=40)

    def factory(config):
        return Coregistration(config, detector=ScriptedDetector((kp, desc)))

    monkeypatch.setattr(cli, 'Coregistration', factory)


class TestParser:

    def test_defaults(self):
        args = cli.build_parser().parse_args(['a.png', 'b.png'])
        assert args.output == 'outputs/aligned.png'
        assert args.match_count == 50
        assert args.seed is None

    def test_config_from_args(self):
        args = cli.build_parser().parse_args([
            'a.png', 'b.png', '--match-count', '0', '--seed', '3',
            '--reprojection-threshold', '2.5', '--ratio-test', '0.8', '--interpolation', 'nearest',
        ])
        config = cli.config_from_args(args)

        assert config.match_count is None
        assert config.ransac_params['seed'] == 3
        assert config.ransac_params['ransac_reproj_threshold'] == 2.5
        assert config.matcher_params['ratio_threshold'] == 0.8
        assert config.warp_params['interpolation'] == 'nearest'


@pytest.mark.usefixtures('scripted_pipeline')
class TestMain:

    def test_success(self, tmp_path, image_pair, textured_image, capsys):
        output = str(tmp_path / 'out' / 'aligned.png')

        code = cli.main([*image_pair, '-o', output, '--seed', '0', '--interpolation', 'nearest'])

        assert code == 0
        np.testing.assert_array_equal(read_image(output), textured_image)
        assert 'Aligned image saved to' in capsys.readouterr().out

    def test_matched_output(self, tmp_path, image_pair):
        output = str(tmp_path / 'aligned.png')
        matched = str(tmp_path / 'matches.png')

        assert cli.main([*image_pair, '-o', output, '--matched-output', matched, '--seed', '0']) == 0
        assert read_image(matched).shape == (100, 200, 3)

    def test_missing_input(self, tmp_path, image_pair, capsys):
        output = str(tmp_path / 'aligned.png')

        code = cli.main([image_pair[0], str(tmp_path / 'missing.png'), '-o', output])

        assert code == 1
        assert 'Error [load]' in capsys.readouterr().err
        assert not os.path.exists(output)

    def test_unwritable_output(self, tmp_path, image_pair, capsys):
        code = cli.main([*image_pair, '-o', str(tmp_path / 'aligned.xyz'), '--seed', '0'])

        assert code == 1
        assert 'Error [save]' in capsys.readouterr().err

    def test_outputs_all_or_nothing(self, tmp_path, image_pair):
        output = str(tmp_path / 'aligned.png')

        code = cli.main([*image_pair, '-o', output, '--matched-output', str(tmp_path / 'matches.xyz'),
                         '--seed', '0'])

        assert code == 1
        assert not os.path.exists(output)

    def test_invalid_parameter(self, tmp_path, image_pair, capsys):
        code = cli.main([*image_pair, '-o', str(tmp_path / 'aligned.png'), '--match-count', '-3'])

        assert code == 1
        assert 'Error [config]' in capsys.readouterr().err

    def test_failed_save_keeps_existing_output(self, tmp_path, image_pair, gradient_image):
        output = str(tmp_path / 'aligned.png')
        write_image(output, gradient_image)
        before = sorted(os.listdir(tmp_path))

        code = cli.main([*image_pair, '-o', output, '--matched-output', str(tmp_path / 'matches.xyz'),
                         '--seed', '0'])

        assert code == 1
        np.testing.assert_array_equal(read_image(output), gradient_image)
        assert sorted(os.listdir(tmp_path)) == before


class TestMainFailures:

    def test_detector_error_is_reported_with_stage(self, monkeypatch, tmp_path, image_pair, capsys):
        class BrokenDetector:
            def detect_and_compute(self, image):
                raise ValueError("detector broke")

        monkeypatch.setattr(cli, 'Coregistration',
                            lambda config: Coregistration(config, detector=BrokenDetector()))

        code = cli.main([*image_pair, '-o', str(tmp_path / 'aligned.png')])

        assert code == 1
        assert 'Error [detect]: ValueError: detector broke' in capsys.readouterr().err
        assert not os.path.exists(tmp_path / 'aligned.png')


class TestMainWithSIFT:

    def test_default_detector(self, tmp_path, smooth_texture):
        reference = str(tmp_path / 'reference.png')
        moving = str(tmp_path / 'moving.png')
        output = str(tmp_path / 'aligned.png')
        write_image(reference, smooth_texture)
        write_image(moving, warp_perspective(smooth_texture, similarity(10, 0.9, (100, 100)), (200, 200)))

        assert cli.main([reference, moving, '-o', output, '--seed', '0']) == 0

        aligned = read_image(output).astype(float)
        center = (slice(70, 130), slice(70, 130))
        assert np.abs(aligned[center] - smooth_texture[center]).mean() < 10
