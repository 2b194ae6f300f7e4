"""Hand-built face descriptor: five feature groups reduced to a unit vector."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from faceauth.detectors.integral import to_luminance
from faceauth.errors import InvalidConfig
from faceauth.types import Region, as_pixels, l2_normalize

LOGGER = logging.getLogger("faceauth.recognition.descriptor")

GROUP_ORDER = ("lbp", "hog", "gabor", "geometric", "intensity")

HOG_BINS = 9
GABOR_ORIENTATIONS = (0.0, 45.0, 90.0, 135.0)
GABOR_FREQUENCIES = (0.1, 0.2, 0.3, 0.4)
INTENSITY_BINS = 32
REDUCTION_WEIGHTS = (0.8, 0.2)


@dataclass
class DescriptorConfig:
    """Per-group sub-lengths and weights; the embedding is half their total."""

    lengths: Dict[str, int] = field(
        default_factory=lambda: {"lbp": 64, "hog": 64, "gabor": 64, "geometric": 32, "intensity": 32}
    )
    weights: Dict[str, float] = field(
        default_factory=lambda: {"lbp": 1.2, "hog": 1.0, "gabor": 1.0, "geometric": 0.9, "intensity": 0.9}
    )
    gabor_sigma_sq: float = 100.0

    def __post_init__(self) -> None:
        for name, mapping in (("lengths", self.lengths), ("weights", self.weights)):
            if set(mapping) != set(GROUP_ORDER):
                raise InvalidConfig(f"descriptor {name} must define exactly {GROUP_ORDER}, got {sorted(mapping)}")
        if any(int(v) <= 0 for v in self.lengths.values()):
            raise InvalidConfig(f"descriptor lengths must be positive: {self.lengths}")
        if self.gabor_sigma_sq <= 0:
            raise InvalidConfig(f"gabor_sigma_sq must be positive, got {self.gabor_sigma_sq}")

    @property
    def raw_dim(self) -> int:
        return sum(self.lengths[name] for name in GROUP_ORDER)

    @property
    def embedding_dim(self) -> int:
        return (self.raw_dim + 1) // 2


def lbp_histogram(gray: np.ndarray) -> np.ndarray:
    """256-bin local binary pattern histogram over interior pixels."""
    height, width = gray.shape
    if height < 3 or width < 3:
        return np.zeros(256, dtype=np.float64)
    center = gray[1:-1, 1:-1]
    # Clockwise from the top-left neighbour: (dy, dx) per bit.
    offsets = ((-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1))
    codes = np.zeros(center.shape, dtype=np.int64)
    for bit, (dy, dx) in enumerate(offsets):
        neighbor = gray[1 + dy : height - 1 + dy, 1 + dx : width - 1 + dx]
        codes |= (neighbor >= center).astype(np.int64) << bit
    hist = np.bincount(codes.reshape(-1), minlength=256).astype(np.float64)
    return hist / codes.size


def _gradients(gray: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    g = gray.astype(np.float64)
    gx = np.zeros_like(g)
    gy = np.zeros_like(g)
    gx[:, 1:-1] = g[:, 2:] - g[:, :-2]
    gy[1:-1, :] = g[2:, :] - g[:-2, :]
    return gx, gy


def hog_features(gray: np.ndarray) -> np.ndarray:
    """Per-cell 9-bin orientation histograms, L1-normalised, cells row-major."""
    height, width = gray.shape
    cell = max(8, min(width, height) // 8)
    cells_y = height // cell
    cells_x = width // cell
    if cells_y == 0 or cells_x == 0:
        return np.zeros(0, dtype=np.float64)

    gx, gy = _gradients(gray)
    magnitude = np.hypot(gx, gy)
    orientation = np.mod(np.degrees(np.arctan2(gy, gx)), 180.0)
    bins = np.clip((orientation // (180.0 / HOG_BINS)).astype(np.int64), 0, HOG_BINS - 1)

    span_y = cells_y * cell
    span_x = cells_x * cell
    cell_ids = (np.arange(span_y) // cell)[:, None] * cells_x + (np.arange(span_x) // cell)[None, :]
    flat = cell_ids.reshape(-1) * HOG_BINS + bins[:span_y, :span_x].reshape(-1)
    hist = np.bincount(flat, weights=magnitude[:span_y, :span_x].reshape(-1), minlength=cells_y * cells_x * HOG_BINS)
    hist = hist.reshape(cells_y * cells_x, HOG_BINS)
    totals = hist.sum(axis=1, keepdims=True)
    normalized = np.divide(hist, totals, out=np.zeros_like(hist), where=totals > 0)
    return normalized.reshape(-1)


def gabor_features(gray: np.ndarray, sigma_sq: float = 100.0) -> np.ndarray:
    """Mean Gaussian-windowed cosine responses for 4 orientations x 4 frequencies."""
    height, width = gray.shape
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    dx = xs - width / 2.0
    dy = ys - height / 2.0
    intensity = gray.astype(np.float64) / 255.0
    responses = []
    for orientation in GABOR_ORIENTATIONS:
        angle = np.radians(orientation)
        rot_x = dx * np.cos(angle) + dy * np.sin(angle)
        rot_y = -dx * np.sin(angle) + dy * np.cos(angle)
        envelope = np.exp(-(rot_x * rot_x + rot_y * rot_y) / (2.0 * sigma_sq)) * intensity
        for frequency in GABOR_FREQUENCIES:
            response = envelope * np.cos(2.0 * np.pi * frequency * rot_x)
            responses.append(float(response.mean()))
    return np.asarray(responses, dtype=np.float64)


def geometric_features(gray: np.ndarray, region: Region, image_width: int, image_height: int) -> np.ndarray:
    """Placement ratios, quadrant statistics and luminance moments."""
    height, width = gray.shape
    lum = gray.astype(np.float64)
    features = [
        region.width / region.height,
        region.width / image_width,
        region.height / image_height,
        (region.x + region.width / 2.0) / image_width,
        (region.y + region.height / 2.0) / image_height,
    ]

    mid_y = (height + 1) // 2
    mid_x = (width + 1) // 2
    quadrants = (lum[:mid_y, :mid_x], lum[:mid_y, mid_x:], lum[mid_y:, :mid_x], lum[mid_y:, mid_x:])
    features.extend(float(q.mean()) / 255.0 if q.size else 0.0 for q in quadrants)
    top, bottom = lum[:mid_y], lum[mid_y:]
    left, right = lum[:, :mid_x], lum[:, mid_x:]
    features.append(((top.mean() if top.size else 0.0) - (bottom.mean() if bottom.size else 0.0)) / 255.0)
    features.append(((left.mean() if left.size else 0.0) - (right.mean() if right.size else 0.0)) / 255.0)

    mean = lum.mean()
    centered = lum - mean
    variance = float(np.mean(centered ** 2))
    if variance > 0:
        skewness = float(np.mean(centered ** 3)) / variance ** 1.5
        kurtosis = float(np.mean(centered ** 4)) / variance ** 2
    else:
        skewness = 0.0
        kurtosis = 0.0
    features.extend(
        [
            mean / 255.0,
            np.sqrt(variance) / 255.0,
            skewness / (1.0 + abs(skewness)),
            kurtosis / (1.0 + kurtosis),
        ]
    )
    return np.asarray(features, dtype=np.float64)


def intensity_histogram(gray: np.ndarray) -> np.ndarray:
    """32-bin luminance histogram (8 levels per bin), normalised by pixel count."""
    bins = np.minimum(gray.reshape(-1) // 8, INTENSITY_BINS - 1)
    hist = np.bincount(bins, minlength=INTENSITY_BINS).astype(np.float64)
    return hist / gray.size


def fit_length(values: np.ndarray, length: int) -> np.ndarray:
    """Truncate or zero-pad ``values`` to exactly ``length`` entries."""
    out = np.zeros(length, dtype=np.float64)
    n = min(length, values.size)
    out[:n] = values[:n]
    return out


def reduce_dimensions(vec: np.ndarray) -> np.ndarray:
    """Halve the vector by blending adjacent pairs with fixed 0.8/0.2 weights."""
    vec = np.asarray(vec, dtype=np.float64)
    if vec.size % 2:
        vec = np.append(vec, 0.0)
    pairs = vec.reshape(-1, 2)
    return pairs[:, 0] * REDUCTION_WEIGHTS[0] + pairs[:, 1] * REDUCTION_WEIGHTS[1]


def _region_gray(pixels: np.ndarray, region: Region) -> Tuple[Region, np.ndarray, int, int]:
    arr = as_pixels(pixels)
    image_height, image_width = arr.shape[:2]
    region = region.clip(image_width, image_height)
    crop = arr[region.y : region.y + region.height, region.x : region.x + region.width]
    return region, to_luminance(crop), image_width, image_height


def _groups(gray: np.ndarray, region: Region, image_width: int, image_height: int, config: DescriptorConfig) -> Dict[str, np.ndarray]:
    return {
        "lbp": lbp_histogram(gray),
        "hog": hog_features(gray),
        "gabor": gabor_features(gray, config.gabor_sigma_sq),
        "geometric": geometric_features(gray, region, image_width, image_height),
        "intensity": intensity_histogram(gray),
    }


def feature_groups(pixels: np.ndarray, region: Region, config: Optional[DescriptorConfig] = None) -> Dict[str, np.ndarray]:
    """Compute the raw (unfitted, unweighted) feature groups for a region."""
    region, gray, image_width, image_height = _region_gray(pixels, region)
    return _groups(gray, region, image_width, image_height, config or DescriptorConfig())


def extract_embedding(pixels: np.ndarray, region: Region, config: Optional[DescriptorConfig] = None) -> np.ndarray:
    """Compute the L2-normalised descriptor of ``region``.

    A region whose luminance is uniform carries no signal and yields the zero
    vector. Identical input always produces a bit-identical result.
    """
    config = config or DescriptorConfig()
    region, gray, image_width, image_height = _region_gray(pixels, region)
    if gray.min() == gray.max():
        LOGGER.debug("Region %s has uniform luminance; returning zero embedding", region)
        return np.zeros(config.embedding_dim, dtype=np.float64)

    groups = _groups(gray, region, image_width, image_height, config)
    parts = [fit_length(groups[name], config.lengths[name]) * config.weights[name] for name in GROUP_ORDER]
    combined = np.concatenate(parts)
    return l2_normalize(reduce_dimensions(combined))
