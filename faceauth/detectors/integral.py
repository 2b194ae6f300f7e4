"""Grayscale conversion and summed-area tables."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from faceauth.errors import InvalidDimensions
from faceauth.types import as_pixels

LUMA_WEIGHTS = (0.299, 0.587, 0.114)


def to_luminance(pixels: np.ndarray) -> np.ndarray:
    """Convert an (H, W, C) buffer to integer luminance, rounding half up."""
    arr = as_pixels(pixels)
    rgb = arr[:, :, :3].astype(np.float64)
    r_w, g_w, b_w = LUMA_WEIGHTS
    luma = r_w * rgb[:, :, 0] + g_w * rgb[:, :, 1] + b_w * rgb[:, :, 2]
    return np.floor(luma + 0.5).astype(np.int64)


@dataclass(frozen=True)
class IntegralImage:
    """Luminance grid plus its (H+1, W+1) summed-area table."""

    width: int
    height: int
    gray: np.ndarray
    table: np.ndarray

    def sum(self, x: int, y: int, w: int, h: int) -> int:
        """Sum of luminance inside the rectangle, in O(1)."""
        if w < 0 or h < 0 or x < 0 or y < 0 or x + w > self.width or y + h > self.height:
            raise InvalidDimensions(
                f"Rectangle ({x}, {y}, {w}, {h}) outside {self.width}x{self.height} image"
            )
        t = self.table
        return int(t[y + h, x + w] - t[y, x + w] - t[y + h, x] + t[y, x])


def integral_from_gray(gray: np.ndarray) -> IntegralImage:
    gray = np.array(gray, dtype=np.int64)
    if gray.ndim != 2 or gray.shape[0] == 0 or gray.shape[1] == 0:
        raise InvalidDimensions(f"Grayscale grid has invalid shape {gray.shape}")
    height, width = gray.shape
    table = np.zeros((height + 1, width + 1), dtype=np.int64)
    table[1:, 1:] = gray.cumsum(axis=0).cumsum(axis=1)
    gray.setflags(write=False)
    table.setflags(write=False)
    return IntegralImage(width=width, height=height, gray=gray, table=table)


def build_integral_image(pixels: np.ndarray) -> IntegralImage:
    """Build the integral image of an RGB(A) pixel buffer."""
    return integral_from_gray(to_luminance(pixels))
