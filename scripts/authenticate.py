#!/usr/bin/env python3
"""CLI for matching a burst of face photos against a built facebank."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from faceauth.io_utils import dump_json, load_image, setup_logging
from faceauth.pipeline import FaceAuthPipeline, load_pipeline_config
from faceauth.recognition.facebank import load_facebank
from faceauth.recognition.index import MatchIndex


LOGGER = logging.getLogger("scripts.authenticate")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Authenticate face frames against the facebank")
    parser.add_argument("frames", type=Path, nargs="+", help="Image files captured for one login attempt")
    parser.add_argument(
        "--facebank-parquet",
        type=Path,
        default=Path("data/facebank.parquet"),
        help="Path to facebank parquet file",
    )
    parser.add_argument(
        "--pipeline-config",
        type=Path,
        default=None,
        help="Pipeline configuration YAML (defaults are used when omitted)",
    )
    parser.add_argument("--cascade", type=str, default=None, help="Haar cascade XML override")
    parser.add_argument("--threshold", type=float, default=None, help="Cosine distance threshold override")
    parser.add_argument("--margin", type=float, default=None, help="Best vs runner-up margin override")
    parser.add_argument("--output-json", type=Path, default=None, help="Write the match result as JSON")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    config = load_pipeline_config(args.pipeline_config)
    if args.cascade is not None:
        config.cascade.path = args.cascade

    index = MatchIndex(max_samples=config.matching.max_samples)
    index.rebuild(load_facebank(args.facebank_parquet))
    pipeline = FaceAuthPipeline.from_config(config, index=index)

    frames = [load_image(path, max_side=config.max_image_side) for path in args.frames]
    result = pipeline.authenticate(frames, threshold=args.threshold, margin=args.margin)

    payload = {"matched": result is not None, "result": result}
    if args.output_json is not None:
        dump_json(args.output_json, payload)
    if result is None:
        LOGGER.info("No match for %d frame(s)", len(frames))
        return 1
    LOGGER.info(
        "Match: %s distance=%.4f confidence=%.3f",
        result.identity_id,
        result.distance,
        result.confidence,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
