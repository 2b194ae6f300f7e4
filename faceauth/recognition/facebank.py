"""Facebank build/load utilities.

A facebank directory holds one sub-directory per identity with that person's
enrollment photos. Building it writes a parquet table of per-identity
mean/median/sample embeddings that :func:`load_facebank` turns back into
index entries for :meth:`MatchIndex.rebuild`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from tqdm import tqdm

from faceauth.errors import InvalidFormat, NotFound
from faceauth.io_utils import ensure_dir, list_images, load_image
from faceauth.recognition.aggregate import aggregate_embeddings, validate_quality
from faceauth.recognition.index import IndexEntry

LOGGER = logging.getLogger("faceauth.recognition.facebank")


@dataclass
class FacebankArtifacts:
    parquet_path: Path
    meta_json_path: Path
    samples_csv_path: Path


def build_facebank(
    facebank_dir: Path,
    output_dir: Path,
    pipeline,
    max_side: Optional[int] = None,
) -> FacebankArtifacts:
    """Embed every identity folder under ``facebank_dir`` and write artifacts."""

    ensure_dir(output_dir)
    rows: List[Dict] = []
    samples_rows: List[Dict] = []
    label_embeddings: Dict[str, List[np.ndarray]] = {}

    label_dirs = sorted(p for p in facebank_dir.iterdir() if p.is_dir())
    for label_dir in tqdm(label_dirs, desc="Facebank identities", unit="id"):
        label = label_dir.name
        for img_path in list_images(label_dir):
            frame = pipeline.embed_frame(load_image(img_path, max_side=max_side))
            samples_rows.append(
                {
                    "identity": label,
                    "path": str(img_path),
                    "accepted": frame.accepted,
                    "reason": frame.reason or "",
                    "strategy": frame.location.strategy if frame.location else "",
                    "quality": frame.quality.overall if frame.quality else float("nan"),
                }
            )
            if frame.accepted:
                label_embeddings.setdefault(label, []).append(frame.embedding)

    max_samples = pipeline.config.matching.max_samples
    quality_cfg = pipeline.config.quality
    for label, embeds in label_embeddings.items():
        report = validate_quality(
            embeds,
            min_samples=quality_cfg.min_samples,
            max_mean_distance=quality_cfg.max_mean_distance,
            min_variance=quality_cfg.min_variance,
        )
        if not report.is_valid:
            LOGGER.warning("Identity %s: quality check %s (%d samples)", label, report.reason, report.sample_count)
            if quality_cfg.enforce:
                continue
        aggregate = aggregate_embeddings(embeds, max_samples=max_samples)
        rows.append(
            {
                "identity": label,
                "count": aggregate.count,
                "quality": report.reason,
                "mean": aggregate.mean.astype(np.float32).tolist(),
                "median": aggregate.median.astype(np.float32).tolist(),
                "samples": [s.astype(np.float32).tolist() for s in aggregate.samples],
            }
        )

    if not rows:
        raise NotFound(f"No usable facebank images found under {facebank_dir}")

    df = pd.DataFrame(rows)
    samples_df = pd.DataFrame(samples_rows)

    parquet_path = output_dir / "facebank.parquet"
    meta_json_path = output_dir / "facebank_meta.json"
    samples_csv_path = output_dir / "facebank_samples.csv"

    df.to_parquet(parquet_path, index=False)
    samples_df.to_csv(samples_csv_path, index=False)

    metadata = {
        "identities": df["identity"].tolist(),
        "counts": {k: int(v) for k, v in df.set_index("identity")["count"].to_dict().items()},
        "num_identities": len(df),
        "embedding_dim": len(rows[0]["mean"]),
    }

    with meta_json_path.open("w", encoding="utf-8") as fh:
        json.dump(metadata, fh, indent=2)

    LOGGER.info("Facebank built: %s identities", len(df))
    return FacebankArtifacts(parquet_path, meta_json_path, samples_csv_path)


def load_facebank(parquet_path: Path) -> List[IndexEntry]:
    """Read a facebank parquet into index entries (mean, median, samples)."""
    df = pd.read_parquet(parquet_path)
    missing = {"identity", "mean", "median"} - set(df.columns)
    if missing:
        raise InvalidFormat(f"Facebank {parquet_path} is missing columns {sorted(missing)}")
    entries: List[IndexEntry] = []
    for _, row in df.iterrows():
        variants = [_normalize_embedding(row["mean"]), _normalize_embedding(row["median"])]
        samples = row["samples"] if "samples" in df.columns else None
        if samples is not None:
            variants.extend(_normalize_embedding(s) for s in samples)
        entries.append(IndexEntry.from_variants(str(row["identity"]), variants))
    LOGGER.info("Loaded %d facebank identities from %s", len(entries), parquet_path)
    return entries


def _normalize_embedding(raw) -> np.ndarray:
    """Convert a parquet-loaded embedding cell into a 1D float64 vector."""
    if isinstance(raw, np.ndarray) and (raw.dtype == object or raw.ndim > 1):
        parts = [np.asarray(part, dtype=np.float64).ravel() for part in raw]
        arr = np.concatenate(parts) if parts else np.empty((0,), dtype=np.float64)
    else:
        arr = np.asarray(raw, dtype=np.float64)
    return arr.reshape(-1)
