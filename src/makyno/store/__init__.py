"""Task record persistence."""

from .feature_store import FeatureStore

__all__ = ["FeatureStore"]
