"""Exception taxonomy shared by the detection, descriptor and matching modules."""

from __future__ import annotations


class FaceAuthError(Exception):
    """Base class for every error raised by the faceauth package."""


class InvalidFormat(FaceAuthError, ValueError):
    """Malformed cascade document, pixel buffer or embedding values."""


class InvalidDimensions(FaceAuthError, ValueError):
    """Zero, negative or out-of-range sizes."""


class DimensionMismatch(FaceAuthError, ValueError):
    """Embeddings (or a query and the stored vectors) have differing lengths."""


class InsufficientSamples(FaceAuthError, ValueError):
    """Too few usable samples to aggregate or enroll."""


class InvalidConfig(FaceAuthError, ValueError):
    """Configuration values that cannot drive the pipeline."""


class NotFound(FaceAuthError, LookupError):
    """No face located in any frame where one was required."""


class IndexNotLoaded(FaceAuthError, RuntimeError):
    """Search attempted before the match index was loaded."""
