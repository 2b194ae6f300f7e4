#!/usr/bin/env python3
"""CLI for building the facebank from per-identity photo folders."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from faceauth.io_utils import ensure_dir, setup_logging
from faceauth.pipeline import FaceAuthPipeline, load_pipeline_config
from faceauth.recognition.facebank import FacebankArtifacts, build_facebank


LOGGER = logging.getLogger("scripts.facebank")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build facebank embeddings with the faceauth descriptor")
    parser.add_argument(
        "--facebank-dir",
        type=Path,
        default=Path("data/facebank"),
        help="Directory containing labeled face images (per-identity subdirectories)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data"),
        help="Directory where facebank artifacts will be written",
    )
    parser.add_argument(
        "--pipeline-config",
        type=Path,
        default=None,
        help="Pipeline configuration YAML (defaults are used when omitted)",
    )
    parser.add_argument(
        "--cascade",
        type=str,
        default=None,
        help="Haar cascade XML overriding cascade.path from the config",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = load_pipeline_config(args.pipeline_config)
    if args.cascade is not None:
        config.cascade.path = args.cascade
    pipeline = FaceAuthPipeline.from_config(config)
    ensure_dir(args.output_dir)

    artifacts: FacebankArtifacts = build_facebank(
        facebank_dir=args.facebank_dir,
        output_dir=args.output_dir,
        pipeline=pipeline,
        max_side=config.max_image_side,
    )

    LOGGER.info(
        "Facebank built: parquet=%s meta=%s samples=%s",
        artifacts.parquet_path,
        artifacts.meta_json_path,
        artifacts.samples_csv_path,
    )


if __name__ == "__main__":
    main()
