"""Multi-scale sliding-window face detection over an integral image."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from faceauth.detectors.cascade import Cascade, evaluate_positions
from faceauth.detectors.integral import IntegralImage, build_integral_image
from faceauth.errors import InvalidConfig
from faceauth.types import Detection, Size, iou

LOGGER = logging.getLogger("faceauth.detectors.scanner")


@dataclass
class DetectorConfig:
    scale_factor: float = 1.1
    min_neighbors: int = 3
    min_size: Size = (80, 80)
    max_size: Optional[Size] = None
    step_factor: float = 2.0
    group_iou: float = 0.3
    raw_confidence: float = 0.8
    grouped_confidence: float = 0.9

    def __post_init__(self) -> None:
        self.min_size = tuple(int(v) for v in self.min_size)  # type: ignore[assignment]
        if self.max_size is not None:
            self.max_size = tuple(int(v) for v in self.max_size)  # type: ignore[assignment]
        if self.scale_factor <= 1.0:
            raise InvalidConfig(f"scale_factor must be > 1.0, got {self.scale_factor}")
        if self.min_neighbors < 1:
            raise InvalidConfig(f"min_neighbors must be >= 1, got {self.min_neighbors}")
        if self.step_factor <= 0:
            raise InvalidConfig(f"step_factor must be > 0, got {self.step_factor}")
        if len(self.min_size) != 2 or (self.max_size is not None and len(self.max_size) != 2):
            raise InvalidConfig("min_size/max_size must be (width, height) pairs")


def scan_windows(integral: IntegralImage, cascade: Cascade, config: DetectorConfig) -> List[Detection]:
    """Return every raw window accepted by the cascade, across all scales."""
    detections: List[Detection] = []
    min_w, min_h = config.min_size
    scale = 1.0
    while True:
        win_w = int(math.floor(scale * cascade.width))
        win_h = int(math.floor(scale * cascade.height))
        if win_w > integral.width or win_h > integral.height:
            break
        if config.max_size is not None and (win_w > config.max_size[0] or win_h > config.max_size[1]):
            break
        if win_w < min_w or win_h < min_h:
            scale *= config.scale_factor
            continue

        step = max(1, int(math.floor(scale * config.step_factor)))
        ys, xs = np.meshgrid(
            np.arange(0, integral.height - win_h + 1, step),
            np.arange(0, integral.width - win_w + 1, step),
            indexing="ij",
        )
        xs = xs.reshape(-1)
        ys = ys.reshape(-1)
        mask = evaluate_positions(integral, cascade, xs, ys, scale)
        hits = int(mask.sum())
        LOGGER.debug(
            "scale=%.3f window=%dx%d step=%d positions=%d hits=%d",
            scale,
            win_w,
            win_h,
            step,
            xs.size,
            hits,
        )
        for x, y in zip(xs[mask].tolist(), ys[mask].tolist()):
            detections.append(
                Detection(x=float(x), y=float(y), width=float(win_w), height=float(win_h), confidence=config.raw_confidence)
            )
        scale *= config.scale_factor
    return detections


def group_detections(
    detections: Sequence[Detection],
    min_neighbors: int,
    iou_threshold: float = 0.3,
    confidence: float = 0.9,
) -> List[Detection]:
    """Cluster overlapping raw detections and average each surviving cluster.

    Each unconsumed detection seeds a cluster that absorbs every later
    unconsumed detection whose IoU with the seed exceeds ``iou_threshold``.
    Clusters smaller than ``min_neighbors`` are dropped.
    """
    grouped: List[Detection] = []
    used = [False] * len(detections)
    for i, seed in enumerate(detections):
        if used[i]:
            continue
        used[i] = True
        cluster = [seed]
        for j in range(i + 1, len(detections)):
            if used[j]:
                continue
            if iou(seed, detections[j]) > iou_threshold:
                cluster.append(detections[j])
                used[j] = True
        if len(cluster) < min_neighbors:
            continue
        count = len(cluster)
        grouped.append(
            Detection(
                x=sum(d.x for d in cluster) / count,
                y=sum(d.y for d in cluster) / count,
                width=sum(d.width for d in cluster) / count,
                height=sum(d.height for d in cluster) / count,
                confidence=confidence,
                neighbors=count,
            )
        )
    return grouped


def detect_in_integral(integral: IntegralImage, cascade: Cascade, config: DetectorConfig) -> List[Detection]:
    raw = scan_windows(integral, cascade, config)
    grouped = group_detections(raw, config.min_neighbors, config.group_iou, config.grouped_confidence)
    LOGGER.debug("Detection: %d raw windows -> %d grouped", len(raw), len(grouped))
    return grouped


def detect_faces(pixels: np.ndarray, cascade: Cascade, config: Optional[DetectorConfig] = None) -> List[Detection]:
    """Detect faces in an RGB pixel buffer; an empty list means no face."""
    return detect_in_integral(build_integral_image(pixels), cascade, config or DetectorConfig())
