#!/usr/bin/env python3
"""CLI for running the Haar cascade detector on images."""

from __future__ import annotations

import argparse
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional

from faceauth.detectors.cascade import CascadeLimits, load_cascade_file
from faceauth.detectors.scanner import DetectorConfig, detect_faces
from faceauth.io_utils import dump_json, load_image, setup_logging


LOGGER = logging.getLogger("scripts.detect_faces")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Detect faces with a Haar cascade")
    parser.add_argument("images", type=Path, nargs="+", help="Input image files")
    parser.add_argument("--cascade", type=Path, required=True, help="Haar cascade XML")
    parser.add_argument("--scale-factor", type=float, default=1.1)
    parser.add_argument("--min-neighbors", type=int, default=3)
    parser.add_argument("--min-size", type=int, nargs=2, default=(80, 80), metavar=("W", "H"))
    parser.add_argument("--max-size", type=int, nargs=2, default=None, metavar=("W", "H"))
    parser.add_argument(
        "--max-stages",
        type=int,
        default=5,
        help="Cascade stages to load (0 loads all of them)",
    )
    parser.add_argument(
        "--max-classifiers",
        type=int,
        default=10,
        help="Weak classifiers per stage to load (0 loads all of them)",
    )
    parser.add_argument("--max-side", type=int, default=1024, help="Downscale images above this size")
    parser.add_argument("--output-json", type=Path, default=None, help="Write detections as JSON")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    limits = CascadeLimits(
        max_stages=args.max_stages or None,
        max_classifiers_per_stage=args.max_classifiers or None,
    )
    cascade = load_cascade_file(args.cascade, limits)
    config = DetectorConfig(
        scale_factor=args.scale_factor,
        min_neighbors=args.min_neighbors,
        min_size=tuple(args.min_size),
        max_size=tuple(args.max_size) if args.max_size else None,
    )

    results: Dict[str, List[Dict]] = {}
    for path in args.images:
        detections = detect_faces(load_image(path, max_side=args.max_side), cascade, config)
        LOGGER.info("%s: %d face(s)", path, len(detections))
        results[str(path)] = [asdict(d) for d in detections]

    if args.output_json is not None:
        dump_json(args.output_json, results)


if __name__ == "__main__":
    main()
