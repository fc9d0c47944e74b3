"""Domain services package."""

from .lifecycle import LifecyclePipeline

__all__ = ["LifecyclePipeline"]
