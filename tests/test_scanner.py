import numpy as np
import pytest

from faceauth.detectors.cascade import Cascade, Rect, Stage, WeakClassifier
from faceauth.detectors.integral import build_integral_image
from faceauth.detectors.scanner import DetectorConfig, detect_faces, group_detections, scan_windows
from faceauth.errors import InvalidConfig
from faceauth.types import Detection, iou


def always_accept_cascade(size: int = 20) -> Cascade:
    clf = WeakClassifier(
        rects=(Rect(0, 0, size, size, 1.0),),
        threshold=0.0,
        left_value=-1.0,
        right_value=1.0,
    )
    return Cascade(width=size, height=size, stages=(Stage(threshold=0.0, classifiers=(clf,)),))


def test_always_accepting_cascade_yields_full_grid():
    integral = build_integral_image(np.zeros((100, 100, 3), dtype=np.uint8))
    config = DetectorConfig(min_neighbors=1, min_size=(20, 20), max_size=(20, 20))

    raw = scan_windows(integral, always_accept_cascade(), config)

    # step = floor(1.0 * 2) = 2 -> 41 positions per axis
    assert len(raw) == 41 * 41
    assert {(d.width, d.height) for d in raw} == {(20.0, 20.0)}
    assert {d.confidence for d in raw} == {0.8}
    assert max(d.x for d in raw) == 80.0


def test_window_equal_to_image_is_scanned_once():
    integral = build_integral_image(np.zeros((20, 20, 3), dtype=np.uint8))
    raw = scan_windows(integral, always_accept_cascade(), DetectorConfig(min_size=(20, 20)))
    assert [(d.x, d.y) for d in raw] == [(0.0, 0.0)]


def test_window_larger_than_image_yields_nothing():
    integral = build_integral_image(np.zeros((10, 10, 3), dtype=np.uint8))
    assert scan_windows(integral, always_accept_cascade(), DetectorConfig(min_size=(1, 1))) == []


def test_min_size_skips_small_scales():
    integral = build_integral_image(np.zeros((30, 30, 3), dtype=np.uint8))
    raw = scan_windows(integral, always_accept_cascade(), DetectorConfig(min_size=(24, 24)))
    assert raw
    assert min(d.width for d in raw) >= 24


def test_grouping_averages_tight_cluster():
    cluster = [
        Detection(10.0, 10.0, 20.0, 20.0, 0.8),
        Detection(11.0, 10.0, 20.0, 20.0, 0.8),
        Detection(10.0, 11.0, 22.0, 20.0, 0.8),
    ]
    grouped = group_detections(cluster, min_neighbors=3)

    assert len(grouped) == 1
    result = grouped[0]
    assert result.x == pytest.approx(31.0 / 3)
    assert result.y == pytest.approx(31.0 / 3)
    assert result.width == pytest.approx(62.0 / 3)
    assert result.height == pytest.approx(20.0)
    assert result.neighbors == 3
    assert result.confidence == 0.9


def test_grouping_drops_small_clusters():
    detections = [
        Detection(10.0, 10.0, 20.0, 20.0, 0.8),
        Detection(11.0, 10.0, 20.0, 20.0, 0.8),
        Detection(70.0, 70.0, 20.0, 20.0, 0.8),
    ]
    assert group_detections(detections, min_neighbors=3) == []
    grouped = group_detections(detections, min_neighbors=2)
    assert [(d.x, d.neighbors) for d in grouped] == [(10.5, 2)]


def test_iou_values():
    a = Detection(0.0, 0.0, 10.0, 10.0, 0.8)
    assert iou(a, a) == pytest.approx(1.0)
    assert iou(a, Detection(10.0, 0.0, 10.0, 10.0, 0.8)) == 0.0
    assert iou(a, Detection(5.0, 0.0, 10.0, 10.0, 0.8)) == pytest.approx(50.0 / 150.0)


def test_detect_faces_groups_raw_hits():
    pixels = np.zeros((40, 40, 3), dtype=np.uint8)
    config = DetectorConfig(min_neighbors=3, min_size=(20, 20), max_size=(20, 20))
    faces = detect_faces(pixels, always_accept_cascade(), config)
    assert faces
    assert all(face.confidence == 0.9 and face.neighbors >= 3 for face in faces)


def test_detect_faces_returns_empty_list_without_hits():
    cascade = always_accept_cascade()
    rejecting = Cascade(
        width=cascade.width,
        height=cascade.height,
        stages=(Stage(threshold=5.0, classifiers=cascade.stages[0].classifiers),),
    )
    assert detect_faces(np.zeros((40, 40, 3), dtype=np.uint8), rejecting, DetectorConfig(min_size=(20, 20))) == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"scale_factor": 1.0},
        {"min_neighbors": 0},
        {"step_factor": 0.0},
        {"min_size": (20,)},
    ],
)
def test_invalid_detector_config(kwargs):
    with pytest.raises(InvalidConfig):
        DetectorConfig(**kwargs)
