"""Orchestration of production submissions through the engine."""

from .pipeline import QualityEventPipeline

__all__ = ["QualityEventPipeline"]
