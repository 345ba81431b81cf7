"""Generation provider abstraction, response recovery, and shared enrichment types."""

from app.ai.provider_interface import GenerationProvider, ProgressCallback
from app.ai.thresholds import CONFIDENCE_HIGH, CONFIDENCE_LOW, CONFIDENCE_REVIEW

__all__ = [
    "GenerationProvider",
    "ProgressCallback",
    "CONFIDENCE_HIGH",
    "CONFIDENCE_REVIEW",
    "CONFIDENCE_LOW",
]
