"""Per-frame image quality scoring for a face region."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from faceauth.detectors.integral import to_luminance
from faceauth.types import Region, as_pixels

# Laplacian energy that maps to a perfect sharpness score.
SHARPNESS_SCALE = 1000.0
# Shorter region side that maps to a perfect size score.
TARGET_FACE_PX = 160.0
QUALITY_WEIGHTS = (0.4, 0.4, 0.2)


@dataclass(frozen=True)
class ImageQuality:
    overall: float
    sharpness: float
    lighting: float
    size: float


def laplacian_energy(gray: np.ndarray) -> float:
    """Mean squared 4-neighbour Laplacian over interior pixels."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0
    g = gray.astype(np.float64)
    lap = (
        g[:-2, 1:-1]
        + g[2:, 1:-1]
        + g[1:-1, :-2]
        + g[1:-1, 2:]
        - 4.0 * g[1:-1, 1:-1]
    )
    return float(np.mean(lap * lap))


def lighting_score(gray: np.ndarray) -> float:
    """Average of a mid-brightness score and a contrast score, both in [0, 1]."""
    g = gray.astype(np.float64)
    mean = float(g.mean())
    brightness = 1.0 - abs(mean - 128.0) / 128.0
    contrast = min(1.0, float(g.std()) / 50.0)
    return max(0.0, (brightness + contrast) / 2.0)


def assess_image_quality(pixels: np.ndarray, region: Region) -> ImageQuality:
    arr = as_pixels(pixels)
    region = region.clip(arr.shape[1], arr.shape[0])
    gray = to_luminance(arr[region.y : region.y + region.height, region.x : region.x + region.width])
    sharpness = min(1.0, laplacian_energy(gray) / SHARPNESS_SCALE)
    lighting = lighting_score(gray)
    size = min(1.0, min(region.width, region.height) / TARGET_FACE_PX)
    w_sharp, w_light, w_size = QUALITY_WEIGHTS
    overall = w_sharp * sharpness + w_light * lighting + w_size * size
    return ImageQuality(
        overall=round(overall, 4),
        sharpness=round(sharpness, 4),
        lighting=round(lighting, 4),
        size=round(size, 4),
    )
