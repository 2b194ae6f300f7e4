"""Boosted Haar cascade: definition loading and window evaluation."""

from __future__ import annotations

import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from faceauth.detectors.integral import IntegralImage
from faceauth.errors import InvalidFormat

LOGGER = logging.getLogger("faceauth.detectors.cascade")


@dataclass(frozen=True)
class Rect:
    """Weighted rectangle of a Haar-like feature, in base-window coordinates."""

    x: int
    y: int
    width: int
    height: int
    weight: float


@dataclass(frozen=True)
class WeakClassifier:
    rects: Tuple[Rect, ...]
    threshold: float
    left_value: float
    right_value: float


@dataclass(frozen=True)
class Stage:
    threshold: float
    classifiers: Tuple[WeakClassifier, ...]


@dataclass(frozen=True)
class Cascade:
    """Immutable cascade definition shared read-only by every detection call."""

    width: int
    height: int
    stages: Tuple[Stage, ...]

    @property
    def classifier_count(self) -> int:
        return sum(len(stage.classifiers) for stage in self.stages)


@dataclass(frozen=True)
class CascadeLimits:
    """Caps applied while loading; ``None`` loads everything."""

    max_stages: Optional[int] = 5
    max_classifiers_per_stage: Optional[int] = 10


def _text(parent: ET.Element, tag: str, context: str) -> str:
    node = parent.find(tag)
    if node is None or node.text is None or not node.text.strip():
        raise InvalidFormat(f"Invalid cascade: missing <{tag}> in {context}")
    return node.text.strip()


def _numbers(text: str, context: str) -> List[float]:
    try:
        values = [float(part) for part in text.split()]
    except ValueError as exc:
        raise InvalidFormat(f"Invalid cascade: non-numeric values in {context}: {text!r}") from exc
    if not all(math.isfinite(v) for v in values):
        raise InvalidFormat(f"Invalid cascade: non-finite values in {context}: {text!r}")
    return values


def _int(text: str, context: str) -> int:
    try:
        return int(text)
    except ValueError as exc:
        raise InvalidFormat(f"Invalid cascade: {context} is not an integer: {text!r}") from exc


def _parse_features(cascade_el: ET.Element, width: int, height: int) -> Optional[List[Tuple[Rect, ...]]]:
    features_el = cascade_el.find("features")
    if features_el is None:
        return None
    features: List[Tuple[Rect, ...]] = []
    for idx, feature_el in enumerate(features_el.findall("_")):
        tilted = feature_el.find("tilted")
        if tilted is not None and (tilted.text or "").strip() not in ("", "0"):
            raise InvalidFormat(f"Invalid cascade: feature {idx} is tilted, which is not supported")
        rects_el = feature_el.find("rects")
        if rects_el is None:
            raise InvalidFormat(f"Invalid cascade: feature {idx} has no <rects>")
        rects: List[Rect] = []
        for rect_el in rects_el.findall("_"):
            values = _numbers(rect_el.text or "", f"feature {idx} rect")
            if len(values) != 5:
                raise InvalidFormat(f"Invalid cascade: feature {idx} rect needs 5 values, got {len(values)}")
            rx, ry, rw, rh = (int(v) for v in values[:4])
            if rx < 0 or ry < 0 or rw <= 0 or rh <= 0 or rx + rw > width or ry + rh > height:
                raise InvalidFormat(
                    f"Invalid cascade: feature {idx} rect {values[:4]} outside {width}x{height} window"
                )
            rects.append(Rect(rx, ry, rw, rh, values[4]))
        if not rects:
            raise InvalidFormat(f"Invalid cascade: feature {idx} has no rectangles")
        features.append(tuple(rects))
    return features


def _parse_classifier(
    clf_el: ET.Element,
    context: str,
    features: Optional[List[Tuple[Rect, ...]]],
    window_rect: Tuple[Rect, ...],
) -> WeakClassifier:
    nodes = _numbers(_text(clf_el, "internalNodes", context), context)
    leaves = _numbers(_text(clf_el, "leafValues", context), context)
    if len(nodes) < 4 or len(nodes) % 4 != 0:
        raise InvalidFormat(f"Invalid cascade: {context} internalNodes must hold groups of 4 values")
    if len(leaves) < 2:
        raise InvalidFormat(f"Invalid cascade: {context} needs at least 2 leaf values")
    # Only the root split is evaluated; deeper trees collapse to their first two leaves.
    feature_idx = int(nodes[2])
    if features is None:
        rects = window_rect
    elif 0 <= feature_idx < len(features):
        rects = features[feature_idx]
    else:
        raise InvalidFormat(f"Invalid cascade: {context} references missing feature {feature_idx}")
    return WeakClassifier(rects=rects, threshold=nodes[3], left_value=leaves[0], right_value=leaves[1])


def load_cascade(data: Union[bytes, str], limits: Optional[CascadeLimits] = None) -> Cascade:
    """Parse an OpenCV ``opencv_storage/cascade`` XML document.

    Stages beyond ``limits.max_stages`` and weak classifiers beyond
    ``limits.max_classifiers_per_stage`` are not loaded. Any structural problem
    raises :class:`InvalidFormat`.
    """
    limits = limits or CascadeLimits()
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise InvalidFormat(f"Invalid cascade: XML parse error: {exc}") from exc

    cascade_el = root if root.tag == "cascade" else root.find("cascade")
    if cascade_el is None:
        raise InvalidFormat("Invalid cascade: missing <cascade> element")

    width = _int(_text(cascade_el, "width", "cascade"), "width")
    height = _int(_text(cascade_el, "height", "cascade"), "height")
    if width <= 0 or height <= 0:
        raise InvalidFormat(f"Invalid cascade: window size {width}x{height}")

    stages_el = cascade_el.find("stages")
    if stages_el is None:
        raise InvalidFormat("Invalid cascade: missing <stages> element")

    features = _parse_features(cascade_el, width, height)
    window_rect = (Rect(0, 0, width, height, 1.0),)
    if features is None:
        LOGGER.warning("Cascade has no <features> block; weak classifiers use the full window")

    stage_elements = stages_el.findall("_")
    if limits.max_stages is not None and len(stage_elements) > limits.max_stages:
        LOGGER.info("Loading %d of %d cascade stages (max_stages)", limits.max_stages, len(stage_elements))
        stage_elements = stage_elements[: limits.max_stages]

    stages: List[Stage] = []
    for stage_idx, stage_el in enumerate(stage_elements):
        context = f"stage {stage_idx}"
        threshold = _numbers(_text(stage_el, "stageThreshold", context), context)
        if len(threshold) != 1:
            raise InvalidFormat(f"Invalid cascade: {context} stageThreshold must be a single value")
        classifiers_el = stage_el.find("weakClassifiers")
        clf_elements = classifiers_el.findall("_") if classifiers_el is not None else []
        if not clf_elements:
            raise InvalidFormat(f"Invalid cascade: {context} has no weak classifiers")
        cap = limits.max_classifiers_per_stage
        if cap is not None and len(clf_elements) > cap:
            LOGGER.debug("%s: loading %d of %d weak classifiers", context, cap, len(clf_elements))
            clf_elements = clf_elements[:cap]
        classifiers = tuple(
            _parse_classifier(clf_el, f"{context} classifier {clf_idx}", features, window_rect)
            for clf_idx, clf_el in enumerate(clf_elements)
        )
        stages.append(Stage(threshold=threshold[0], classifiers=classifiers))

    if not stages:
        raise InvalidFormat("Invalid cascade: no stages defined")

    cascade = Cascade(width=width, height=height, stages=tuple(stages))
    LOGGER.info(
        "Cascade loaded: %d stages, %d weak classifiers, %dx%d window",
        len(cascade.stages),
        cascade.classifier_count,
        width,
        height,
    )
    return cascade


def load_cascade_file(path: Path, limits: Optional[CascadeLimits] = None) -> Cascade:
    """Read and parse a cascade XML file."""
    LOGGER.info("Loading cascade from %s", path)
    return load_cascade(Path(path).read_bytes(), limits)


def _scaled_size(rect: Rect, scale: float) -> Tuple[int, int]:
    return int(math.floor(rect.width * scale)), int(math.floor(rect.height * scale))


def _rect_sum(integral: IntegralImage, x: int, y: int, rect: Rect, scale: float) -> int:
    w, h = _scaled_size(rect, scale)
    rx = min(int(math.floor(x + rect.x * scale)), integral.width - w)
    ry = min(int(math.floor(y + rect.y * scale)), integral.height - h)
    return integral.sum(rx, ry, w, h)


def evaluate_window(integral: IntegralImage, cascade: Cascade, x: int, y: int, scale: float) -> bool:
    """Run the cascade on one window; rejects at the first failing stage."""
    for stage in cascade.stages:
        stage_sum = 0.0
        for clf in stage.classifiers:
            value = 0.0
            for rect in clf.rects:
                value += _rect_sum(integral, x, y, rect, scale) * rect.weight
            stage_sum += clf.left_value if value < clf.threshold else clf.right_value
        if stage_sum < stage.threshold:
            return False
    return True


def _rect_sums(integral: IntegralImage, xs: np.ndarray, ys: np.ndarray, rect: Rect, scale: float) -> np.ndarray:
    w, h = _scaled_size(rect, scale)
    rx = np.minimum(np.floor(xs + rect.x * scale).astype(np.int64), integral.width - w)
    ry = np.minimum(np.floor(ys + rect.y * scale).astype(np.int64), integral.height - h)
    t = integral.table
    return t[ry + h, rx + w] - t[ry, rx + w] - t[ry + h, rx] + t[ry, rx]


def evaluate_positions(
    integral: IntegralImage,
    cascade: Cascade,
    xs: Sequence[int],
    ys: Sequence[int],
    scale: float,
) -> np.ndarray:
    """Vectorised :func:`evaluate_window` over many window origins.

    Each stage only evaluates the positions that passed every earlier stage.
    Returns a boolean acceptance mask aligned with ``xs``/``ys``.
    """
    xs = np.asarray(xs, dtype=np.int64).reshape(-1)
    ys = np.asarray(ys, dtype=np.int64).reshape(-1)
    if xs.shape != ys.shape:
        raise ValueError("xs and ys must have the same length")
    accepted = np.ones(xs.shape, dtype=bool)
    active = np.arange(xs.size)
    for stage_idx, stage in enumerate(cascade.stages):
        if active.size == 0:
            break
        ax = xs[active]
        ay = ys[active]
        stage_sum = np.zeros(active.size, dtype=np.float64)
        for clf in stage.classifiers:
            value = np.zeros(active.size, dtype=np.float64)
            for rect in clf.rects:
                value = value + _rect_sums(integral, ax, ay, rect, scale) * rect.weight
            stage_sum = stage_sum + np.where(value < clf.threshold, clf.left_value, clf.right_value)
        passed = stage_sum >= stage.threshold
        accepted[active[~passed]] = False
        active = active[passed]
        LOGGER.debug("stage %d: %d windows remain", stage_idx, active.size)
    return accepted
