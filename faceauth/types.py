"""Common dataclasses and helpers used across the faceauth package."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from faceauth.errors import InvalidDimensions, InvalidFormat

# Size order: width, height (pixels)
Size = Tuple[int, int]


@dataclass(frozen=True)
class Region:
    """Axis-aligned face region in pixel coordinates (top-left origin)."""

    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    def clip(self, image_width: int, image_height: int) -> "Region":
        """Clip the region to the image bounds."""
        if self.width <= 0 or self.height <= 0:
            raise InvalidDimensions(f"Region has non-positive size: {self.width}x{self.height}")
        x1 = max(0, self.x)
        y1 = max(0, self.y)
        x2 = min(image_width, self.x + self.width)
        y2 = min(image_height, self.y + self.height)
        if x2 <= x1 or y2 <= y1:
            raise InvalidDimensions(
                f"Region {self} does not intersect image of size {image_width}x{image_height}"
            )
        return Region(x1, y1, x2 - x1, y2 - y1)

    @classmethod
    def full(cls, pixels: np.ndarray) -> "Region":
        height, width = pixels.shape[:2]
        return cls(0, 0, int(width), int(height))


@dataclass(frozen=True)
class Detection:
    """Face window accepted by the cascade (raw) or produced by grouping."""

    x: float
    y: float
    width: float
    height: float
    confidence: float
    neighbors: int = 1

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    def to_region(self) -> Region:
        return Region(
            int(round(self.x)),
            int(round(self.y)),
            int(round(self.width)),
            int(round(self.height)),
        )


@dataclass(frozen=True)
class RankedCandidate:
    identity_id: str
    distance: float


@dataclass
class MatchResult:
    """Accepted match returned by the index search."""

    identity_id: str
    distance: float
    second_distance: Optional[float]
    confidence: float
    ranked: List[RankedCandidate] = field(default_factory=list)

    @property
    def margin(self) -> Optional[float]:
        if self.second_distance is None:
            return None
        return self.second_distance - self.distance


def as_pixels(pixels: np.ndarray) -> np.ndarray:
    """Validate an interleaved (H, W, C) pixel buffer with at least 3 channels."""
    arr = np.asarray(pixels)
    if arr.ndim != 3 or arr.shape[2] < 3:
        raise InvalidFormat(f"Expected an (H, W, C>=3) pixel buffer, got shape {arr.shape}")
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise InvalidDimensions(f"Pixel buffer has zero size: {arr.shape[1]}x{arr.shape[0]}")
    if not (np.issubdtype(arr.dtype, np.integer) or np.issubdtype(arr.dtype, np.floating)):
        raise InvalidFormat(f"Pixel buffer has non-numeric dtype {arr.dtype}")
    if arr.dtype != np.uint8:
        if not np.all(np.isfinite(arr)):
            raise InvalidFormat("Pixel buffer contains non-finite samples")
        if arr.min() < 0 or arr.max() > 255:
            raise InvalidFormat(f"Pixel samples must lie in [0, 255], got [{arr.min()}, {arr.max()}]")
    return arr


def as_embedding(vec, name: str = "embedding") -> np.ndarray:
    """Convert an embedding-like sequence into a finite 1D float64 vector."""
    arr = np.asarray(vec, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        raise InvalidFormat(f"{name} is empty")
    if not np.all(np.isfinite(arr)):
        raise InvalidFormat(f"{name} contains non-finite values")
    return arr


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """L2-normalize the input vector; zero-magnitude vectors map to zeros."""
    vec = np.asarray(vec, dtype=np.float64)
    norm = np.linalg.norm(vec)
    if norm == 0 or not np.isfinite(norm):
        return np.zeros_like(vec)
    return vec / norm


def is_degenerate(vec: np.ndarray) -> bool:
    return not np.any(vec)


def iou(box_a: Detection, box_b: Detection) -> float:
    """Compute intersection-over-union between two detections."""
    ax1, ay1, ax2, ay2 = box_a.as_xyxy()
    bx1, by1, bx2, by2 = box_b.as_xyxy()
    inter_x1 = max(ax1, bx1)
    inter_y1 = max(ay1, by1)
    inter_x2 = min(ax2, bx2)
    inter_y2 = min(ay2, by2)
    if inter_x2 <= inter_x1 or inter_y2 <= inter_y1:
        return 0.0
    inter_area = (inter_x2 - inter_x1) * (inter_y2 - inter_y1)
    area_a = box_a.width * box_a.height
    area_b = box_b.width * box_b.height
    union = area_a + area_b - inter_area
    if union <= 0:
        return 0.0
    return inter_area / union
