"""Feedback input records and the derived analysis result."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

QUALITY_ISSUES: dict[str, str] = {
    "too_long": "Note contains unnecessary information or is verbose",
    "too_brief": "Missing important clinical details",
    "missing_details": "Lacks specific clinical information",
    "wrong_tone": "Not appropriate for clinical documentation",
    "poor_structure": "Disorganized or hard to follow",
    "medical_inaccuracy": "Contains potential medical errors",
    "epic_syntax_errors": "SmartPhrases or formatting issues",
    "irrelevant_content": "Includes unrelated information",
    "formatting_issues": "Layout or presentation problems",
}


class FeedbackRecord(BaseModel):
    """A clinician's rating of one generated note. Read-only to the engine."""

    user_id: str = "default"
    note_id: str | None = None
    rating: int = Field(ge=1, le=5)
    quality_issues: list[str] = Field(default_factory=list)
    time_to_review: float = Field(default=0.0, ge=0)  # seconds
    ai_provider: str = "unknown"
    template_used: str = "general"
    note_length: int = 0
    clinical_specialty: str | None = None
    encounter_type: str | None = None
    freeform_feedback: str = ""
    would_use_again: bool = True
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("quality_issues")
    @classmethod
    def _normalize_issues(cls, issues: list[str]) -> list[str]:
        # Tags arrive from free-form UIs; dedupe while keeping order.
        seen: dict[str, None] = {}
        for issue in issues:
            tag = issue.strip().lower().replace(" ", "_")
            if tag:
                seen.setdefault(tag, None)
        return list(seen)

    @field_validator("created_at")
    @classmethod
    def _naive_local_time(cls, value: datetime) -> datetime:
        # Stored timestamps may carry an offset; analysis compares naive local times.
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class PerformanceTier(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs_improvement"


class RatingTrends(BaseModel):
    average_rating: float
    recent_average: float
    older_average: float
    trend: Trend
    consistency_score: float
    rating_distribution: dict[int, int]


class IssuePattern(BaseModel):
    issue: str
    frequency: int
    percentage: float
    average_rating: float | None
    severity: float


class TemporalPatterns(BaseModel):
    review_time_correlation: float
    average_review_time: float
    optimal_review_time_range: tuple[float, float] | None = None


class ProviderStats(BaseModel):
    provider: str
    average_rating: float
    count: int
    consistency: float


class ProviderAnalysis(BaseModel):
    providers: dict[str, ProviderStats] = Field(default_factory=dict)
    recommended_provider: str | None = None


class TemplateStats(BaseModel):
    template: str
    average_rating: float
    count: int
    performance: PerformanceTier


class ContentAnalysis(BaseModel):
    templates: dict[str, TemplateStats] = Field(default_factory=dict)
    best_template: str | None = None
    worst_template: str | None = None


class FeedbackAnalysis(BaseModel):
    """Derived statistics over one user's feedback set. Recomputed on demand."""

    user_id: str = "default"
    total_feedback_analyzed: int
    rating_trends: RatingTrends
    issue_patterns: list[IssuePattern] = Field(default_factory=list)
    temporal_patterns: TemporalPatterns
    provider_analysis: ProviderAnalysis
    content_analysis: ContentAnalysis
    confidence_score: float = Field(ge=0.0, le=0.95)
