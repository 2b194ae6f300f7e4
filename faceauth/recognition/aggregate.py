"""Multi-sample embedding aggregation and enrollment quality checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from faceauth.errors import DimensionMismatch, InsufficientSamples
from faceauth.recognition.matcher import cosine_distance
from faceauth.types import as_embedding

LOGGER = logging.getLogger("faceauth.recognition.aggregate")


@dataclass
class EmbeddingAggregate:
    """Per-dimension mean/median representatives plus a bounded sample set."""

    mean: np.ndarray
    median: np.ndarray
    samples: List[np.ndarray] = field(default_factory=list)
    count: int = 0

    @property
    def dimension(self) -> int:
        return int(self.mean.size)


@dataclass
class QualityReport:
    is_valid: bool
    reason: str
    sample_count: int
    variance: Optional[float] = None
    mean_distance: Optional[float] = None


def stack_embeddings(embeddings: Sequence) -> np.ndarray:
    """Stack embeddings into an (N, D) matrix, enforcing a common length."""
    if len(embeddings) == 0:
        raise InsufficientSamples("At least one embedding is required")
    vectors = [as_embedding(e, name=f"embedding {i}") for i, e in enumerate(embeddings)]
    dimension = vectors[0].size
    for i, vec in enumerate(vectors):
        if vec.size != dimension:
            raise DimensionMismatch(f"Embedding {i} has length {vec.size}, expected {dimension}")
    return np.stack(vectors, axis=0)


def aggregate_embeddings(embeddings: Sequence, max_samples: int = 5) -> EmbeddingAggregate:
    """Combine samples of one identity into mean and median vectors.

    The median of an even number of samples is the average of the two middle
    values for that dimension.
    """
    stacked = stack_embeddings(embeddings)
    return EmbeddingAggregate(
        mean=stacked.mean(axis=0),
        median=np.median(stacked, axis=0),
        samples=[row.copy() for row in stacked[: max(0, max_samples)]],
        count=int(stacked.shape[0]),
    )


def validate_quality(
    embeddings: Sequence,
    min_samples: int = 3,
    max_mean_distance: float = 0.9,
    min_variance: float = 0.0005,
) -> QualityReport:
    """Judge whether a sample set is usable as one identity's enrollment.

    Rejects sets that are too small, too uniform (static input replayed as
    frames) or too spread out to represent a single face.
    """
    count = len(embeddings)
    if count < min_samples or count == 0:
        return QualityReport(is_valid=False, reason="insufficient_samples", sample_count=count)

    stacked = stack_embeddings(embeddings)
    variance = float(np.mean((stacked - stacked.mean(axis=0)) ** 2))

    distances = [
        cosine_distance(stacked[i], stacked[j])
        for i in range(count)
        for j in range(i + 1, count)
    ]
    mean_distance = float(np.mean(distances)) if distances else 0.0

    if variance < min_variance:
        reason = "low_variance"
    elif mean_distance >= max_mean_distance:
        reason = "inconsistent_samples"
    else:
        reason = "valid"
    report = QualityReport(
        is_valid=reason == "valid",
        reason=reason,
        sample_count=count,
        variance=variance,
        mean_distance=mean_distance,
    )
    LOGGER.debug(
        "Quality check: samples=%d variance=%.6f mean_distance=%.4f -> %s",
        count,
        variance,
        mean_distance,
        reason,
    )
    return report
