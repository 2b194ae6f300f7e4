"""Enrollment and authentication pipeline orchestration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

import numpy as np

from faceauth.detectors.cascade import Cascade, CascadeLimits, load_cascade_file
from faceauth.detectors.locator import FaceLocation, build_strategies, locate_face
from faceauth.detectors.scanner import DetectorConfig
from faceauth.errors import InsufficientSamples, InvalidConfig, NotFound
from faceauth.io_utils import load_yaml
from faceauth.recognition.aggregate import (
    EmbeddingAggregate,
    QualityReport,
    aggregate_embeddings,
    validate_quality,
)
from faceauth.recognition.descriptor import DescriptorConfig, extract_embedding
from faceauth.recognition.index import IndexStats, MatchIndex
from faceauth.recognition.quality import ImageQuality, assess_image_quality
from faceauth.types import MatchResult, is_degenerate, l2_normalize

LOGGER = logging.getLogger("faceauth.pipeline")

T = TypeVar("T")


@dataclass
class CascadeSettings:
    path: Optional[str] = None
    max_stages: Optional[int] = 5
    max_classifiers_per_stage: Optional[int] = 10

    @property
    def limits(self) -> CascadeLimits:
        return CascadeLimits(self.max_stages, self.max_classifiers_per_stage)


@dataclass
class LocatorConfig:
    strategies: Tuple[str, ...] = ("cascade", "skin", "edge", "center")
    min_face_size: int = 80
    min_frame_quality: float = 0.0

    def __post_init__(self) -> None:
        self.strategies = tuple(self.strategies)


@dataclass
class MatchConfig:
    threshold: float = 0.6
    margin: float = 0.05
    top_k: int = 5
    max_samples: int = 5

    def __post_init__(self) -> None:
        if not 0.0 < self.threshold <= 2.0:
            raise InvalidConfig(f"matching.threshold must be in (0, 2], got {self.threshold}")
        if self.margin < 0:
            raise InvalidConfig(f"matching.margin must be >= 0, got {self.margin}")


@dataclass
class QualityConfig:
    min_samples: int = 3
    max_mean_distance: float = 0.9
    min_variance: float = 0.0005
    enforce: bool = False


@dataclass
class PipelineConfig:
    cascade: CascadeSettings = field(default_factory=CascadeSettings)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    descriptor: DescriptorConfig = field(default_factory=DescriptorConfig)
    locator: LocatorConfig = field(default_factory=LocatorConfig)
    matching: MatchConfig = field(default_factory=MatchConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    max_image_side: Optional[int] = 1024

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        sections: Dict[str, Type] = {
            "cascade": CascadeSettings,
            "detector": DetectorConfig,
            "descriptor": DescriptorConfig,
            "locator": LocatorConfig,
            "matching": MatchConfig,
            "quality": QualityConfig,
        }
        unknown = set(data) - set(sections) - {"max_image_side"}
        if unknown:
            raise InvalidConfig(f"Unknown pipeline config sections: {sorted(unknown)}")
        kwargs: Dict[str, Any] = {name: _section(klass, data.get(name) or {}, name) for name, klass in sections.items()}
        if "max_image_side" in data:
            kwargs["max_image_side"] = data["max_image_side"]
        return cls(**kwargs)


def _section(klass: Type[T], values: Mapping[str, Any], name: str) -> T:
    allowed = {f.name for f in fields(klass)}
    unknown = set(values) - allowed
    if unknown:
        raise InvalidConfig(f"Unknown keys in '{name}' config: {sorted(unknown)}")
    try:
        return klass(**values)
    except TypeError as exc:
        raise InvalidConfig(f"Invalid '{name}' config: {exc}") from exc


ENV_OVERRIDES = {
    "FACE_MATCH_THRESHOLD": ("matching", "threshold", float),
    "FACE_DISTANCE_MARGIN": ("matching", "margin", float),
    "FACE_MAX_SAMPLES": ("matching", "max_samples", int),
    "MIN_VALID_FRAMES": ("quality", "min_samples", int),
}


def apply_env_overrides(data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Overlay environment variables onto a raw config mapping."""
    environ = os.environ if environ is None else environ
    merged = {key: dict(value) if isinstance(value, Mapping) else value for key, value in data.items()}
    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError as exc:
            raise InvalidConfig(f"{env_name}={raw!r} is not a valid {cast.__name__}") from exc
        if merged.get(section) is None:
            merged[section] = {}
        merged[section][key] = value
        LOGGER.debug("Config override from %s: %s.%s=%s", env_name, section, key, value)
    return merged


def load_pipeline_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> PipelineConfig:
    """Load YAML config (if given), apply env overrides and validate."""
    data: Dict[str, Any] = load_yaml(Path(path)) if path is not None else {}
    return PipelineConfig.from_dict(apply_env_overrides(data, environ))


@dataclass
class FrameEmbedding:
    """Outcome of processing one frame; ``reason`` is set when it was rejected."""

    frame_idx: int
    location: Optional[FaceLocation] = None
    quality: Optional[ImageQuality] = None
    embedding: Optional[np.ndarray] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None


@dataclass
class EnrollmentResult:
    identity_id: str
    aggregate: EmbeddingAggregate
    quality: QualityReport
    frames: List[FrameEmbedding]
    index_stats: IndexStats

    @property
    def embeddings(self) -> List[np.ndarray]:
        return [f.embedding for f in self.frames if f.accepted and f.embedding is not None]


def _as_frames(frames) -> List[np.ndarray]:
    if isinstance(frames, np.ndarray) and frames.ndim == 3:
        return [frames]
    return list(frames)


class FaceAuthPipeline:
    """Locate, describe, aggregate and match faces against a shared index."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        cascade: Optional[Cascade] = None,
        index: Optional[MatchIndex] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.cascade = cascade
        strategy_names = self.config.locator.strategies
        if cascade is None and "cascade" in strategy_names:
            LOGGER.warning("No cascade loaded; locating faces with %s", [n for n in strategy_names if n != "cascade"])
            strategy_names = tuple(n for n in strategy_names if n != "cascade")
        self.strategies = build_strategies(strategy_names, cascade, self.config.detector)
        self.index = index if index is not None else MatchIndex(max_samples=self.config.matching.max_samples)

    @classmethod
    def from_config(cls, config: PipelineConfig, index: Optional[MatchIndex] = None) -> "FaceAuthPipeline":
        cascade = None
        if config.cascade.path:
            cascade = load_cascade_file(Path(config.cascade.path), config.cascade.limits)
        return cls(config=config, cascade=cascade, index=index)

    def embed_frame(self, pixels: np.ndarray, frame_idx: int = 0) -> FrameEmbedding:
        locator_cfg = self.config.locator
        location = locate_face(pixels, self.strategies, locator_cfg.min_face_size)
        if location is None:
            return FrameEmbedding(frame_idx=frame_idx, reason="no_face")
        quality = assess_image_quality(pixels, location.region)
        if quality.overall < locator_cfg.min_frame_quality:
            return FrameEmbedding(frame_idx=frame_idx, location=location, quality=quality, reason="low_quality")
        embedding = extract_embedding(pixels, location.region, self.config.descriptor)
        if is_degenerate(embedding):
            return FrameEmbedding(frame_idx=frame_idx, location=location, quality=quality, reason="degenerate")
        return FrameEmbedding(frame_idx=frame_idx, location=location, quality=quality, embedding=embedding)

    def embed_frames(self, frames) -> List[FrameEmbedding]:
        results = [self.embed_frame(pixels, idx) for idx, pixels in enumerate(_as_frames(frames))]
        rejected = [r for r in results if not r.accepted]
        if rejected:
            LOGGER.info(
                "Frames: %d accepted, %d rejected (%s)",
                len(results) - len(rejected),
                len(rejected),
                ", ".join(f"{r.frame_idx}:{r.reason}" for r in rejected),
            )
        return results

    def enroll(self, identity_id: str, frames) -> EnrollmentResult:
        """Embed every frame, validate the set and add the identity to the index."""
        results = self.embed_frames(frames)
        embeddings = [r.embedding for r in results if r.accepted]
        if not embeddings:
            raise NotFound(f"No usable face found in {len(results)} enrollment frame(s) for {identity_id!r}")

        quality_cfg = self.config.quality
        report = validate_quality(
            embeddings,
            min_samples=quality_cfg.min_samples,
            max_mean_distance=quality_cfg.max_mean_distance,
            min_variance=quality_cfg.min_variance,
        )
        if not report.is_valid:
            if quality_cfg.enforce:
                raise InsufficientSamples(
                    f"Enrollment for {identity_id!r} failed quality check: {report.reason} "
                    f"({report.sample_count} samples)"
                )
            LOGGER.warning("Enrolling %s despite quality issue: %s", identity_id, report.reason)

        aggregate = aggregate_embeddings(embeddings, max_samples=self.config.matching.max_samples)
        stats = self.index.add(identity_id, embeddings)
        LOGGER.info("Enrolled %s from %d/%d frames", identity_id, len(embeddings), len(results))
        return EnrollmentResult(
            identity_id=str(identity_id),
            aggregate=aggregate,
            quality=report,
            frames=results,
            index_stats=stats,
        )

    def query_embedding(self, frames) -> Optional[np.ndarray]:
        """Normalised mean of the usable frame embeddings, or ``None``."""
        embeddings = [r.embedding for r in self.embed_frames(frames) if r.accepted]
        if not embeddings:
            return None
        query = l2_normalize(aggregate_embeddings(embeddings, max_samples=0).mean)
        return None if is_degenerate(query) else query

    def authenticate(
        self,
        frames,
        threshold: Optional[float] = None,
        margin: Optional[float] = None,
    ) -> Optional[MatchResult]:
        """Match a burst of frames against the index; ``None`` means rejected."""
        query = self.query_embedding(frames)
        if query is None:
            LOGGER.info("Authentication rejected: no usable face")
            return None
        match_cfg = self.config.matching
        result = self.index.search(
            query,
            threshold=match_cfg.threshold if threshold is None else threshold,
            margin=match_cfg.margin if margin is None else margin,
            top_k=match_cfg.top_k,
        )
        if result is None:
            LOGGER.info("Authentication rejected: no confident match")
        else:
            LOGGER.info(
                "Authenticated %s distance=%.4f confidence=%.3f",
                result.identity_id,
                result.distance,
                result.confidence,
            )
        return result
