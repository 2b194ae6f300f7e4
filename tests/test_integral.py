import numpy as np
import pytest

from faceauth.detectors.integral import build_integral_image, integral_from_gray, to_luminance
from faceauth.errors import InvalidDimensions, InvalidFormat


def test_rectangle_sums_match_brute_force():
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(37, 53, 3), dtype=np.uint8)
    integral = build_integral_image(pixels)
    gray = to_luminance(pixels)

    for _ in range(200):
        x = int(rng.integers(0, integral.width))
        y = int(rng.integers(0, integral.height))
        w = int(rng.integers(0, integral.width - x + 1))
        h = int(rng.integers(0, integral.height - y + 1))
        assert integral.sum(x, y, w, h) == int(gray[y : y + h, x : x + w].sum())


def test_luminance_rounds_to_nearest_integer():
    pixels = np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255], [10, 10, 10]]], dtype=np.uint8)
    gray = to_luminance(pixels)
    # 76.245, 149.685, 29.07, 10.0
    assert gray.tolist() == [[76, 150, 29, 10]]


def test_alpha_channel_is_ignored():
    rgb = np.full((4, 4, 3), 120, dtype=np.uint8)
    rgba = np.concatenate([rgb, np.zeros((4, 4, 1), dtype=np.uint8)], axis=2)
    assert np.array_equal(build_integral_image(rgb).table, build_integral_image(rgba).table)


def test_table_has_zero_border():
    integral = build_integral_image(np.full((3, 5, 3), 9, dtype=np.uint8))
    assert integral.table.shape == (4, 6)
    assert not integral.table[0].any()
    assert not integral.table[:, 0].any()
    assert integral.sum(0, 0, 5, 3) == 9 * 15


def test_integral_is_read_only_and_does_not_touch_input():
    gray = np.arange(12).reshape(3, 4)
    integral = integral_from_gray(gray)
    gray[0, 0] = 100
    assert integral.gray[0, 0] == 0
    with pytest.raises(ValueError):
        integral.table[0, 0] = 1


def test_zero_size_buffer_rejected():
    with pytest.raises(InvalidDimensions):
        build_integral_image(np.zeros((0, 10, 3), dtype=np.uint8))


def test_out_of_bounds_rectangle_rejected():
    integral = build_integral_image(np.zeros((10, 10, 3), dtype=np.uint8))
    with pytest.raises(InvalidDimensions):
        integral.sum(5, 5, 6, 1)


def test_grayscale_buffer_rejected():
    with pytest.raises(InvalidFormat):
        build_integral_image(np.zeros((10, 10), dtype=np.uint8))


@pytest.mark.parametrize(
    "pixels",
    [
        np.full((8, 8, 3), -50, dtype=np.int16),
        np.full((8, 8, 3), 300, dtype=np.int16),
        np.where(np.eye(8, dtype=bool)[:, :, None], np.nan, 10.0) * np.ones((1, 1, 3)),
        np.full((8, 8, 3), "a"),
    ],
)
def test_corrupt_pixel_samples_rejected(pixels):
    with pytest.raises(InvalidFormat):
        build_integral_image(pixels)


def test_float_pixels_in_range_accepted():
    pixels = np.full((4, 4, 3), 100.4)
    assert build_integral_image(pixels).sum(0, 0, 4, 4) == 100 * 16
