"""
Per-stage default values substituted when model output is unusable.

Every placeholder the pipeline can emit lives in FALLBACKS.
"""

from dataclasses import dataclass, field
from typing import Tuple

__all__ = [
    "DescribeFallbacks",
    "MatchFallbacks",
    "SelectFallbacks",
    "AnalyzeFallbacks",
    "FallbackTable",
    "FALLBACKS",
]

@dataclass(frozen=True)
class DescribeFallbacks:
    empty_description: str = "Analysis failed or returned empty response."
    failed_text_content: str = "Text extraction failed"
    unknown: str = "Unknown"
    unknown_elements: Tuple[str, ...] = ("Unknown",)

@dataclass(frozen=True)
class MatchFallbacks:
    record_count: int = 3
    explanation: str = "Automatic fallback match due to processing error"

@dataclass(frozen=True)
class SelectFallbacks:
    no_candidates_explanation: str = "No potential matches were identified in the previous step."
    no_candidates_score: float = 0.0
    explanation: str = "Automatic fallback to first match due to processing error"
    score: float = 70.0
    missing_explanation: str = "No explanation provided."
    invalid_score: float = 0.0

@dataclass(frozen=True)
class AnalyzeFallbacks:
    missing_match_style: str = "Unknown"
    missing_match_explanation: str = "Analysis could not be performed due to missing match data."
    failed_style: str = "Analysis failed due to processing error."
    failed_explanation: str = "Could not determine confidence due to processing error."
    missing_style: str = "Style analysis unavailable."
    missing_explanation: str = "Confidence explanation unavailable."
    percentage: float = 0.0

@dataclass(frozen=True)
class FallbackTable:
    describe: DescribeFallbacks = field(default_factory=DescribeFallbacks)
    match: MatchFallbacks = field(default_factory=MatchFallbacks)
    select: SelectFallbacks = field(default_factory=SelectFallbacks)
    analyze: AnalyzeFallbacks = field(default_factory=AnalyzeFallbacks)

FALLBACKS = FallbackTable()
