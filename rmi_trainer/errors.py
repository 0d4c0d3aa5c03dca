"""Error taxonomy for RMI training.

Degenerate data (empty ranges, zero-variance segments, empty buckets) never
raises; it is absorbed by the per-model constant fallback. Everything here is
a hard failure that the caller has to see.
"""

from __future__ import annotations

from typing import Optional


class ConfigurationError(ValueError):
    """Invalid branching factor, unknown model name or bad key/model pairing."""


class TrainingError(RuntimeError):
    """A configuration could not be trained to completion."""


class StarvedBucketError(TrainingError):
    """A model type that cannot represent a constant received no training data."""

    def __init__(self, layer: int, bucket: int, model_type: str, message: Optional[str] = None):
        self.layer = layer
        self.bucket = bucket
        self.model_type = model_type
        super().__init__(
            message
            or f"layer {layer} bucket {bucket}: model type '{model_type}' "
            "received no training data and cannot be set to a constant"
        )


class ManifestError(RuntimeError):
    """Manifest or parameter file could not be written or read."""
