"""
Pydantic models for pipeline stage outputs and API response data structures.
"""

from typing import Any, Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .media import ContentDescription, DatasetRecord

class PipelineState(str, Enum):
    """States a single pipeline run moves through."""
    IDLE = "idle"
    DESCRIBING_MEDIA = "describing_media"
    MATCHING_CANDIDATES = "matching_candidates"
    SELECTING_BEST_MATCH = "selecting_best_match"
    ANALYZING_CONFIDENCE = "analyzing_confidence"
    COMPLETE = "complete"
    FAILED = "failed"

class CandidateSet(BaseModel):
    """Dataset records picked by the candidate matcher."""
    model_config = ConfigDict(frozen=True)

    candidates: List[DatasetRecord] = Field(default_factory=list, description="Selected records, in model order")
    explanations: Dict[int, str] = Field(
        default_factory=dict,
        description="Explanation per candidate, keyed by 0-based position in candidates",
    )

    @model_validator(mode="after")
    def _explanations_reference_candidates(self) -> "CandidateSet":
        for position in self.explanations:
            if not 0 <= position < len(self.candidates):
                raise ValueError(f"explanation references missing candidate position {position}")
        return self

    def __len__(self) -> int:
        return len(self.candidates)

    def explanation_for(self, position: int) -> Optional[str]:
        return self.explanations.get(position)

class SelectedMatch(BaseModel):
    """The single closest candidate chosen by the best-match selector."""
    model_config = ConfigDict(frozen=True)

    match: DatasetRecord = Field(..., description="Chosen candidate or the sentinel record")
    explanation: str = Field(..., description="Why this candidate was chosen")
    similarity_score: float = Field(..., ge=0.0, le=100.0, description="Similarity score (0 to 100)")

class ConfidenceReport(BaseModel):
    """Confidence analysis of the selected match."""
    model_config = ConfigDict(frozen=True)

    match_percentage: float = Field(..., ge=0.0, le=100.0, description="Attribution confidence (0 to 100)")
    matching_features: List[str] = Field(default_factory=list, description="Features shared with the creator's work")
    creator_style: str = Field(..., description="The creator's typical style")
    confidence_explanation: str = Field(..., description="Explanation of the confidence value")

class _PublicModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

class MatchSummary(_PublicModel):
    """Public view of a candidate."""
    id: int
    creator: Optional[str] = None
    upload_date: Optional[str] = None
    image_url: Optional[str] = None
    post_link: Optional[str] = None
    explanation: Optional[str] = None

class FinalMatch(_PublicModel):
    """Public view of the selected match."""
    id: int
    creator: Optional[str] = None
    description: Optional[str] = None
    upload_date: Optional[str] = None
    image_url: Optional[str] = None
    post_link: Optional[str] = None
    explanation: str
    similarity_score: float = Field(..., ge=0.0, le=100.0)

class MatchResult(_PublicModel):
    """Public view of the confidence report."""
    percentage: float = Field(..., ge=0.0, le=100.0)
    features: List[str] = Field(default_factory=list)
    creator_style: str
    explanation: str

class AttributionResult(_PublicModel):
    """Final result of one pipeline run, as returned to callers."""
    success: bool = True
    original_analysis: ContentDescription
    matches: List[MatchSummary] = Field(default_factory=list)
    final_match: FinalMatch
    match_result: MatchResult

    @classmethod
    def assemble(
        cls,
        description: ContentDescription,
        candidates: CandidateSet,
        selected: SelectedMatch,
        report: ConfidenceReport,
    ) -> "AttributionResult":
        matches = [
            MatchSummary(
                id=record.id,
                creator=record.creator_username,
                upload_date=record.upload_date,
                image_url=record.image_url,
                post_link=record.post_link,
                explanation=candidates.explanation_for(position),
            )
            for position, record in enumerate(candidates.candidates)
        ]
        record = selected.match
        final_match = FinalMatch(
            id=record.id,
            creator=record.creator_username,
            description=record.description,
            upload_date=record.upload_date,
            image_url=record.image_url,
            post_link=record.post_link,
            explanation=selected.explanation,
            similarity_score=selected.similarity_score,
        )
        match_result = MatchResult(
            percentage=report.match_percentage,
            features=list(report.matching_features),
            creator_style=report.creator_style,
            explanation=report.confidence_explanation,
        )
        return cls(
            original_analysis=description,
            matches=matches,
            final_match=final_match,
            match_result=match_result,
        )

class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")
