"""Confidence thresholds shared by the worker, preview, and review tooling."""

from __future__ import annotations

from dataclasses import dataclass

# Auto-approvable in bulk.
CONFIDENCE_HIGH = 0.80
# Below this a result needs human review.
CONFIDENCE_REVIEW = 0.65
# Below this a result is too unreliable to act on automatically.
CONFIDENCE_LOW = 0.50


@dataclass(slots=True)
class ConfidenceTally:
    """High/low bucket counts for a set of confidence scores."""

    high: int = 0
    low: int = 0
    review_required: int = 0

    def add(self, confidence: float) -> None:
        if confidence >= CONFIDENCE_HIGH:
            self.high += 1
        elif confidence < CONFIDENCE_REVIEW:
            self.low += 1
        if confidence < CONFIDENCE_REVIEW:
            self.review_required += 1
