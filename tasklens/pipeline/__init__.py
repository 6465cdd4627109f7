"""Caller-facing extraction pipeline."""

from .service import ExtractionPipeline, SessionMessages, build_pipeline

__all__ = ["ExtractionPipeline", "SessionMessages", "build_pipeline"]
