"""Cosine-distance matching with an ambiguity margin."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from faceauth.errors import DimensionMismatch
from faceauth.types import MatchResult, RankedCandidate

LOGGER = logging.getLogger("faceauth.recognition.matcher")

MAX_DISTANCE = 2.0


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    """``1 - cos(a, b)``, clipped to [0, 2]; 2 when either vector is zero."""
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise DimensionMismatch(f"Embedding lengths do not match: {a.size} vs {b.size}")
    magnitude = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if magnitude == 0:
        return MAX_DISTANCE
    return float(np.clip(1.0 - float(np.dot(a, b)) / magnitude, 0.0, MAX_DISTANCE))


def variant_distances(query: np.ndarray, variants: np.ndarray) -> np.ndarray:
    """Cosine distances from ``query`` to every row of ``variants``."""
    q_norm = float(np.linalg.norm(query))
    norms = np.linalg.norm(variants, axis=1) * q_norm
    dots = variants @ query
    distances = np.full(variants.shape[0], MAX_DISTANCE, dtype=np.float64)
    nonzero = norms > 0
    distances[nonzero] = np.clip(1.0 - dots[nonzero] / norms[nonzero], 0.0, MAX_DISTANCE)
    return distances


def rank_candidates(
    query: np.ndarray,
    candidates: Sequence[Tuple[str, np.ndarray]],
) -> List[RankedCandidate]:
    """Minimum distance per identity, ascending; mismatched lengths are skipped."""
    query = np.asarray(query, dtype=np.float64).reshape(-1)
    ranked: List[RankedCandidate] = []
    for identity_id, variants in candidates:
        if variants.ndim != 2 or variants.shape[1] != query.size:
            continue
        distances = variant_distances(query, variants)
        if distances.size == 0:
            continue
        ranked.append(RankedCandidate(identity_id=identity_id, distance=float(distances.min())))
    ranked.sort(key=lambda item: item.distance)
    return ranked


def find_best_match(
    query: np.ndarray,
    candidates: Sequence[Tuple[str, np.ndarray]],
    threshold: float = 0.6,
    margin: float = 0.05,
    top_k: int = 5,
) -> Optional[MatchResult]:
    """Select the closest identity subject to a distance threshold and margin.

    ``candidates`` pairs an identity with an (N, D) matrix of its variants.
    The best distance must be below ``threshold`` and, when a runner-up exists,
    at least ``margin`` smaller than the runner-up's distance.
    """
    ranked = rank_candidates(query, candidates)
    if not ranked:
        return None
    best = ranked[0]
    second = ranked[1].distance if len(ranked) > 1 else None
    if best.distance >= threshold:
        LOGGER.debug("No match: best distance %.4f >= threshold %.4f", best.distance, threshold)
        return None
    if second is not None and (second - best.distance) < margin:
        LOGGER.debug(
            "Ambiguous match rejected: best=%.4f second=%.4f margin=%.4f",
            best.distance,
            second,
            margin,
        )
        return None
    return MatchResult(
        identity_id=best.identity_id,
        distance=best.distance,
        second_distance=second,
        confidence=1.0 - best.distance / threshold,
        ranked=ranked[: max(0, top_k)],
    )
