"""
Core package init for faceauth.

Face detection, descriptor extraction and identity matching for face login.
"""

__all__ = [
    "detectors",
    "recognition",
    "errors",
    "io_utils",
    "pipeline",
    "types",
]
