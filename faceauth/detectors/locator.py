"""Ordered face-location strategies with provenance.

The cascade is tried first; heuristic strategies only run when every earlier
strategy found nothing. The returned :class:`FaceLocation` names the strategy
that produced the region and every strategy that was attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from faceauth.detectors.cascade import Cascade
from faceauth.detectors.scanner import DetectorConfig, detect_faces
from faceauth.errors import InvalidConfig
from faceauth.types import Region, as_pixels

LOGGER = logging.getLogger("faceauth.detectors.locator")

Proposal = Tuple[Region, float]


@dataclass(frozen=True)
class FaceLocation:
    region: Region
    strategy: str
    confidence: float
    attempts: Tuple[str, ...]


class CascadeStrategy:
    name = "cascade"

    def __init__(self, cascade: Cascade, config: Optional[DetectorConfig] = None) -> None:
        self.cascade = cascade
        self.config = config or DetectorConfig()

    def locate(self, pixels: np.ndarray) -> Optional[Proposal]:
        detections = detect_faces(pixels, self.cascade, self.config)
        if not detections:
            return None
        best = max(detections, key=lambda d: (d.neighbors, d.width * d.height))
        return best.to_region(), best.confidence


class SkinToneStrategy:
    """Bounding box of skin-coloured pixels, padded."""

    name = "skin"

    def __init__(self, min_ratio: float = 0.1, padding: int = 20, confidence: float = 0.7) -> None:
        self.min_ratio = min_ratio
        self.padding = padding
        self.confidence = confidence

    def locate(self, pixels: np.ndarray) -> Optional[Proposal]:
        arr = as_pixels(pixels)
        rgb = arr[:, :, :3].astype(np.int64)
        r, g, b = rgb[:, :, 0], rgb[:, :, 1], rgb[:, :, 2]
        spread = rgb.max(axis=2) - rgb.min(axis=2)
        mask = (
            (r > 95) & (g > 40) & (b > 20)
            & (spread > 15) & (np.abs(r - g) > 15)
            & (r > g) & (r > b)
        )
        if mask.mean() <= self.min_ratio:
            return None
        ys, xs = np.nonzero(mask)
        x1, x2 = int(xs.min()), int(xs.max())
        y1, y2 = int(ys.min()), int(ys.max())
        if x2 <= x1 or y2 <= y1:
            return None
        height, width = mask.shape
        left = max(0, x1 - self.padding)
        top = max(0, y1 - self.padding)
        right = min(width, x2 + self.padding)
        bottom = min(height, y2 + self.padding)
        return Region(left, top, right - left, bottom - top), self.confidence


class EdgeDensityStrategy:
    """Square window with the most edge energy on a coarse sampling grid."""

    name = "edge"

    def __init__(self, size_frac: float = 0.4, stride: int = 20, sample_step: int = 5, confidence: float = 0.6) -> None:
        if stride % sample_step:
            raise InvalidConfig("edge stride must be a multiple of sample_step")
        self.size_frac = size_frac
        self.stride = stride
        self.sample_step = sample_step
        self.confidence = confidence

    @staticmethod
    def edge_map(pixels: np.ndarray) -> np.ndarray:
        gray = as_pixels(pixels)[:, :, :3].astype(np.float64).mean(axis=2)
        edges = np.zeros_like(gray)
        center = gray[1:-1, 1:-1]
        edges[1:-1, 1:-1] = (
            np.abs(center - gray[1:-1, :-2])
            + np.abs(center - gray[1:-1, 2:])
            + np.abs(center - gray[:-2, 1:-1])
            + np.abs(center - gray[2:, 1:-1])
        )
        return edges

    def locate(self, pixels: np.ndarray) -> Optional[Proposal]:
        edges = self.edge_map(pixels)
        height, width = edges.shape
        size = int(min(width, height) * self.size_frac)
        if size <= 0 or size >= min(width, height):
            return None
        step = self.sample_step
        sampled = edges[::step, ::step]
        table = np.zeros((sampled.shape[0] + 1, sampled.shape[1] + 1))
        table[1:, 1:] = sampled.cumsum(axis=0).cumsum(axis=1)
        span = -(-size // step)

        best: Optional[Tuple[int, int]] = None
        best_score = 0.0
        for y in range(0, height - size + 1, self.stride):
            for x in range(0, width - size + 1, self.stride):
                sy, sx = y // step, x // step
                ey = min(sy + span, sampled.shape[0])
                ex = min(sx + span, sampled.shape[1])
                score = table[ey, ex] - table[sy, ex] - table[ey, sx] + table[sy, sx]
                if score > best_score:
                    best_score = score
                    best = (x, y)
        if best is None:
            return None
        return Region(best[0], best[1], size, size), self.confidence


class CenterStrategy:
    """Fixed centre-weighted box, the usual framing of a selfie."""

    name = "center"

    def __init__(self, confidence: float = 0.5) -> None:
        self.confidence = confidence

    def locate(self, pixels: np.ndarray) -> Optional[Proposal]:
        height, width = as_pixels(pixels).shape[:2]
        region = Region(int(round(width * 0.15)), int(round(height * 0.1)), int(round(width * 0.7)), int(round(height * 0.8)))
        if region.width <= 0 or region.height <= 0:
            return None
        return region, self.confidence


STRATEGY_NAMES = ("cascade", "skin", "edge", "center")


def build_strategies(
    names: Sequence[str],
    cascade: Optional[Cascade] = None,
    detector_config: Optional[DetectorConfig] = None,
) -> List:
    strategies = []
    for name in names:
        if name == "cascade":
            if cascade is None:
                raise InvalidConfig("The 'cascade' strategy needs a loaded cascade")
            strategies.append(CascadeStrategy(cascade, detector_config))
        elif name == "skin":
            strategies.append(SkinToneStrategy())
        elif name == "edge":
            strategies.append(EdgeDensityStrategy())
        elif name == "center":
            strategies.append(CenterStrategy())
        else:
            raise InvalidConfig(f"Unknown locator strategy {name!r}; expected one of {STRATEGY_NAMES}")
    if not strategies:
        raise InvalidConfig("At least one locator strategy is required")
    return strategies


def locate_face(pixels: np.ndarray, strategies: Sequence, min_face_size: int = 0) -> Optional[FaceLocation]:
    """Return the first region produced by ``strategies``, in order."""
    attempts: List[str] = []
    for strategy in strategies:
        attempts.append(strategy.name)
        proposal = strategy.locate(pixels)
        if proposal is None:
            LOGGER.debug("Strategy %s found no face", strategy.name)
            continue
        region, confidence = proposal
        if min(region.width, region.height) < min_face_size:
            LOGGER.debug("Strategy %s region %s below min_face_size=%d", strategy.name, region, min_face_size)
            continue
        return FaceLocation(region=region, strategy=strategy.name, confidence=confidence, attempts=tuple(attempts))
    return None
