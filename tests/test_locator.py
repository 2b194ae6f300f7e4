import numpy as np
import pytest

from faceauth.detectors.cascade import Cascade, Rect, Stage, WeakClassifier
from faceauth.detectors.locator import (
    CascadeStrategy,
    CenterStrategy,
    EdgeDensityStrategy,
    SkinToneStrategy,
    build_strategies,
    locate_face,
)
from faceauth.detectors.scanner import DetectorConfig
from faceauth.errors import InvalidConfig
from faceauth.types import Region


def skin_patch_image() -> np.ndarray:
    pixels = np.full((100, 100, 3), 30, dtype=np.uint8)
    pixels[30:70, 30:70] = (200, 120, 90)
    return pixels


def test_center_strategy_region():
    region, confidence = CenterStrategy().locate(np.zeros((100, 200, 3), dtype=np.uint8))
    assert region == Region(30, 10, 140, 80)
    assert confidence == 0.5


def test_skin_strategy_pads_skin_bounding_box():
    region, confidence = SkinToneStrategy().locate(skin_patch_image())
    assert region == Region(10, 10, 79, 79)
    assert confidence == 0.7


def test_skin_strategy_needs_enough_skin():
    pixels = np.full((100, 100, 3), 30, dtype=np.uint8)
    pixels[45:55, 45:55] = (200, 120, 90)
    assert SkinToneStrategy().locate(pixels) is None


def test_edge_strategy_finds_textured_area():
    pixels = np.full((200, 200, 3), 128, dtype=np.uint8)
    pixels[100:180:2, 100:180] = 255
    region, confidence = EdgeDensityStrategy().locate(pixels)
    assert (region.width, region.height) == (80, 80)
    assert region.x >= 60 and region.y >= 60
    assert confidence == 0.6


def test_edge_strategy_on_flat_image_finds_nothing():
    assert EdgeDensityStrategy().locate(np.full((200, 200, 3), 90, dtype=np.uint8)) is None


def test_locate_face_reports_provenance():
    pixels = np.full((120, 120, 3), 128, dtype=np.uint8)
    location = locate_face(pixels, [SkinToneStrategy(), EdgeDensityStrategy(), CenterStrategy()])
    assert location.strategy == "center"
    assert location.attempts == ("skin", "edge", "center")
    assert location.confidence == 0.5


def test_locate_face_prefers_earlier_strategy():
    location = locate_face(skin_patch_image(), build_strategies(["skin", "center"]))
    assert location.strategy == "skin"
    assert location.attempts == ("skin",)


def test_locate_face_skips_small_regions():
    pixels = np.full((50, 50, 3), 128, dtype=np.uint8)
    assert locate_face(pixels, [CenterStrategy()], min_face_size=80) is None


def test_cascade_strategy_returns_grouped_detection():
    clf = WeakClassifier(rects=(Rect(0, 0, 20, 20, 1.0),), threshold=0.0, left_value=-1.0, right_value=1.0)
    cascade = Cascade(width=20, height=20, stages=(Stage(threshold=0.0, classifiers=(clf,)),))
    strategy = CascadeStrategy(cascade, DetectorConfig(min_size=(20, 20), max_size=(20, 20)))
    region, confidence = strategy.locate(np.zeros((40, 40, 3), dtype=np.uint8))
    assert (region.width, region.height) == (20, 20)
    assert confidence == 0.9


def test_build_strategies_validation():
    with pytest.raises(InvalidConfig):
        build_strategies(["cascade"])
    with pytest.raises(InvalidConfig):
        build_strategies(["mystery"])
    with pytest.raises(InvalidConfig):
        build_strategies([])
    assert [s.name for s in build_strategies(["edge", "center"])] == ["edge", "center"]


def test_edge_strategy_reaches_last_window_origin():
    pixels = np.full((100, 100, 3), 128, dtype=np.uint8)
    pixels[60:100:2, 60:100] = 255
    region, _ = EdgeDensityStrategy().locate(pixels)
    assert region == Region(60, 60, 40, 40)
