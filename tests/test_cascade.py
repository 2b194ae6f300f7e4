import numpy as np
import pytest

from faceauth.detectors.cascade import (
    CascadeLimits,
    evaluate_positions,
    evaluate_window,
    load_cascade,
    load_cascade_file,
)
from faceauth.detectors.integral import build_integral_image
from faceauth.errors import InvalidFormat

# Right half minus left half of a 20x20 window.
SPLIT_FEATURE = [(0, 0, 10, 20, -1.0), (10, 0, 10, 20, 1.0)]
FULL_FEATURE = [(0, 0, 20, 20, 1.0)]


def cascade_xml(stages, features=None, width=20, height=20):
    """Render an OpenCV-style cascade document.

    ``stages`` holds (stage_threshold, [(feature_idx, split, left, right), ...]).
    """
    parts = [
        "<?xml version='1.0'?>",
        "<opencv_storage>",
        '<cascade type_id="opencv-cascade-classifier">',
        "<stageType>BOOST</stageType><featureType>HAAR</featureType>",
        f"<height>{height}</height><width>{width}</width>",
        f"<stageNum>{len(stages)}</stageNum>",
        "<stages>",
    ]
    for threshold, classifiers in stages:
        parts.append(f"<_><maxWeakCount>{len(classifiers)}</maxWeakCount>")
        parts.append(f"<stageThreshold>{threshold}</stageThreshold><weakClassifiers>")
        for feature_idx, split, left, right in classifiers:
            parts.append(
                f"<_><internalNodes>0 -1 {feature_idx} {split}</internalNodes>"
                f"<leafValues>{left} {right}</leafValues></_>"
            )
        parts.append("</weakClassifiers></_>")
    parts.append("</stages>")
    if features is not None:
        parts.append("<features>")
        for rects in features:
            parts.append("<_><rects>")
            parts.extend(f"<_>{x} {y} {w} {h} {weight}</_>" for x, y, w, h, weight in rects)
            parts.append("</rects></_>")
        parts.append("</features>")
    parts.append("</cascade></opencv_storage>")
    return "\n".join(parts)


def test_load_cascade_parses_window_stages_and_rects():
    xml = cascade_xml([(0.5, [(0, 0.0, -1.0, 1.0)])], features=[SPLIT_FEATURE])
    cascade = load_cascade(xml.encode("utf-8"))

    assert (cascade.width, cascade.height) == (20, 20)
    assert len(cascade.stages) == 1
    stage = cascade.stages[0]
    assert stage.threshold == 0.5
    clf = stage.classifiers[0]
    assert (clf.threshold, clf.left_value, clf.right_value) == (0.0, -1.0, 1.0)
    assert [(r.x, r.y, r.width, r.height, r.weight) for r in clf.rects] == [
        (0, 0, 10, 20, -1.0),
        (10, 0, 10, 20, 1.0),
    ]


def test_default_limits_cap_stages_and_classifiers():
    stage = (0.0, [(0, 0.0, -1.0, 1.0)] * 12)
    xml = cascade_xml([stage] * 7, features=[FULL_FEATURE])

    capped = load_cascade(xml)
    assert len(capped.stages) == 5
    assert all(len(s.classifiers) == 10 for s in capped.stages)

    full = load_cascade(xml, CascadeLimits(max_stages=None, max_classifiers_per_stage=None))
    assert len(full.stages) == 7
    assert full.classifier_count == 84


def test_missing_features_block_uses_full_window():
    cascade = load_cascade(cascade_xml([(0.0, [(0, 0.0, -1.0, 1.0)])]))
    rect = cascade.stages[0].classifiers[0].rects[0]
    assert (rect.x, rect.y, rect.width, rect.height) == (0, 0, 20, 20)


@pytest.mark.parametrize(
    "document",
    [
        "not xml at all <",
        "<opencv_storage><other/></opencv_storage>",
        "<opencv_storage><cascade><width>20</width><height>20</height></cascade></opencv_storage>",
        cascade_xml([], features=[FULL_FEATURE]),
        cascade_xml([(0.0, [(3, 0.0, -1.0, 1.0)])], features=[FULL_FEATURE]),
        cascade_xml([(0.0, [(0, 0.0, -1.0, 1.0)])], features=[[(15, 0, 10, 20, 1.0)]]),
        cascade_xml([(0.0, [(0, 0.0, -1.0, 1.0)])], features=[FULL_FEATURE], width=0),
        cascade_xml([("abc", [(0, 0.0, -1.0, 1.0)])], features=[FULL_FEATURE]),
        cascade_xml([(0.0, [("nan", 0.0, -1.0, 1.0)])], features=[FULL_FEATURE]),
        cascade_xml([(0.0, [(0, "inf", -1.0, 1.0)])], features=[FULL_FEATURE]),
        cascade_xml([(0.0, [(0, 0.0, -1.0, 1.0)])], features=[[(0, 0, 20, 20, "nan")]]),
    ],
)
def test_malformed_cascades_raise_invalid_format(document):
    with pytest.raises(InvalidFormat):
        load_cascade(document)


def test_tilted_features_rejected():
    xml = cascade_xml([(0.0, [(0, 0.0, -1.0, 1.0)])], features=[FULL_FEATURE])
    xml = xml.replace("</rects></_>", "</rects><tilted>1</tilted></_>")
    with pytest.raises(InvalidFormat):
        load_cascade(xml)


def test_load_cascade_file(tmp_path):
    path = tmp_path / "cascade.xml"
    path.write_text(cascade_xml([(0.0, [(0, 0.0, -1.0, 1.0)])], features=[FULL_FEATURE]), encoding="utf-8")
    assert len(load_cascade_file(path).stages) == 1


def _split_cascade():
    return load_cascade(cascade_xml([(0.0, [(0, 0.0, -1.0, 1.0)])], features=[SPLIT_FEATURE]))


def test_evaluate_window_uses_feature_sign():
    cascade = _split_cascade()
    right_bright = np.zeros((20, 20, 3), dtype=np.uint8)
    right_bright[:, 10:] = 200
    left_bright = right_bright[:, ::-1].copy()

    assert evaluate_window(build_integral_image(right_bright), cascade, 0, 0, 1.0)
    assert not evaluate_window(build_integral_image(left_bright), cascade, 0, 0, 1.0)


def test_unreachable_stage_threshold_rejects_everything():
    cascade = load_cascade(cascade_xml([(2.0, [(0, 0.0, -1.0, 1.0)])], features=[FULL_FEATURE]))
    integral = build_integral_image(np.full((30, 30, 3), 255, dtype=np.uint8))
    assert not evaluate_window(integral, cascade, 0, 0, 1.0)
    assert not evaluate_positions(integral, cascade, [0, 5, 10], [0, 5, 10], 1.0).any()


def test_vectorised_evaluation_matches_scalar():
    stages = [
        (0.0, [(0, 0.0, -1.0, 1.0), (1, 20000.0, -0.5, 0.5)]),
        (-0.5, [(0, 500.0, -1.0, 0.3)]),
    ]
    cascade = load_cascade(cascade_xml(stages, features=[SPLIT_FEATURE, FULL_FEATURE]))
    rng = np.random.default_rng(3)
    integral = build_integral_image(rng.integers(0, 256, size=(60, 70, 3), dtype=np.uint8))

    for scale in (1.0, 1.1, 1.6):
        size = int(np.floor(20 * scale))
        ys, xs = np.meshgrid(np.arange(0, 60 - size + 1, 3), np.arange(0, 70 - size + 1, 3), indexing="ij")
        xs, ys = xs.reshape(-1), ys.reshape(-1)
        mask = evaluate_positions(integral, cascade, xs, ys, scale)
        expected = [evaluate_window(integral, cascade, int(x), int(y), scale) for x, y in zip(xs, ys)]
        assert mask.tolist() == expected
