#!/usr/bin/env python3
"""
Coregistration CLI
Aligns a moving image onto a reference image and writes the result.

Usage:
    python coregister.py reference.png moving.png -o aligned.png [options]
"""

import argparse
import logging
import os
import sys
import tempfile
import time

from .config import CoregConfig
from .exceptions import CoregError
from .image_io import read_image, write_image
from .log import setup_logger
from .pipeline import Coregistration, Stage, stage
from .visualize import draw_matches


def build_parser():
    parser = argparse.ArgumentParser(
        description='Align a moving image onto a reference image using feature matching and RANSAC'
    )

    parser.add_argument('reference', help='Reference image path')
    parser.add_argument('moving', help='Image to align onto the reference')

    parser.add_argument(
        '-o', '--output',
        default='outputs/aligned.png',
        help='Aligned image output path (default: outputs/aligned.png)'
    )
    parser.add_argument(
        '--max-features',
        type=int,
        default=5000,
        help='Maximum keypoints per image (default: 5000)'
    )
    parser.add_argument(
        '--match-count',
        type=int,
        default=50,
        help='Number of best matches passed to RANSAC, 0 for all (default: 50)'
    )
    parser.add_argument(
        '--reprojection-threshold',
        type=float,
        default=4.0,
        help='RANSAC inlier threshold in pixels (default: 4.0)'
    )
    parser.add_argument(
        '--ransac-iterations',
        type=int,
        default=2000,
        help='Maximum RANSAC iterations (default: 2000)'
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Random seed for reproducible RANSAC sampling'
    )
    parser.add_argument(
        '--interpolation',
        choices=('bilinear', 'nearest'),
        default='bilinear',
        help='Resampling method (default: bilinear)'
    )
    parser.add_argument(
        '--ratio-test',
        type=float,
        default=None,
        help="Lowe's ratio test threshold, e.g. 0.75 (default: off)"
    )
    parser.add_argument(
        '--matched-output',
        default=None,
        help='Also write a matched features visualization to this path'
    )
    parser.add_argument(
        '--log-level',
        default='WARNING',
        choices=('DEBUG', 'INFO', 'WARNING', 'ERROR'),
        help='Logging level (default: WARNING)'
    )
    parser.add_argument(
        '--log-file',
        default=None,
        help='Also write logs to this file'
    )

    return parser


def config_from_args(args):
    return CoregConfig(
        detector_params={'max_features': args.max_features},
        matcher_params={'ratio_threshold': args.ratio_test},
        ransac_params={
            'ransac_reproj_threshold': args.reprojection_threshold,
            'max_iters': args.ransac_iterations,
            'seed': args.seed,
        },
        warp_params={'interpolation': args.interpolation},
        match_count=args.match_count or None,
    )


def _ensure_parent(path):
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)


def _save_all(outputs):
    """
    Write every output, or none of them.

    Each image is first encoded to a temporary file beside its target; the
    targets are only replaced once every encode has succeeded, so a failure
    leaves any existing files untouched.
    """
    staged = []
    try:
        for path, image in outputs:
            _ensure_parent(path)
            directory = os.path.dirname(os.path.abspath(path))
            name, suffix = os.path.splitext(os.path.basename(path))
            fd, tmp_path = tempfile.mkstemp(prefix=f'.{name}.', suffix=suffix, dir=directory)
            os.close(fd)
            staged.append((tmp_path, path))
            write_image(tmp_path, image)
    except (CoregError, OSError):
        for tmp_path, _ in staged:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        raise

    for tmp_path, path in staged:
        os.replace(tmp_path, path)


def main(argv=None):
    """Main function for CLI."""
    args = build_parser().parse_args(argv)
    setup_logger('coreg', getattr(logging, args.log_level), args.log_file)

    start_time = time.time()

    try:
        config = config_from_args(args)

        with stage(Stage.LOAD):
            reference = read_image(args.reference)
            moving = read_image(args.moving)

        print(f"Reference: {args.reference} {reference.shape}")
        print(f"Moving:    {args.moving} {moving.shape}")

        result = Coregistration(config).register(reference, moving)

        with stage(Stage.SAVE):
            outputs = [(args.output, result.aligned)]
            if args.matched_output:
                vis = draw_matches(reference, moving, result.keypoints1, result.keypoints2,
                                   result.matches, inlier_mask=result.inlier_mask)
                outputs.append((args.matched_output, vis))
            _save_all(outputs)

    except CoregError as e:
        stage_name = e.stage or 'config'
        print(f"Error [{stage_name}]: {e.message}", file=sys.stderr)
        return 1

    elapsed_time = time.time() - start_time

    print(f"Matches: {result.num_matches} found, {len(result.matches)} used, "
          f"{result.num_inliers} inliers ({result.inlier_ratio:.1%})")
    print(f"Residual RMS: {result.residual_rms:.3f} px")
    print("Transform:")
    for row in result.transform:
        print("  " + "  ".join(f"{v: .6f}" for v in row))
    print(f"Aligned image saved to: {args.output}")
    if args.matched_output:
        print(f"Matched features saved to: {args.matched_output}")
    print(f"Processing time: {elapsed_time:.2f} seconds")

    return 0


if __name__ == '__main__':
    sys.exit(main())
