"""Prompt experiment data model."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

CONTROL_VARIANT = "control"


class ExperimentStatus(str, Enum):
    ACTIVE = "active"
    CONCLUDED = "concluded"


class VariantResult(BaseModel):
    """Running outcome totals for one prompt variant."""

    variant_id: str
    prompt: str
    strategy: str = CONTROL_VARIANT
    note_count: int = 0
    average_rating: float = 0.0
    average_processing_time: float = 0.0
    feedback_count: int = 0

    def record(self, rating: int | None, processing_time: float | None) -> None:
        if processing_time is not None:
            total = self.average_processing_time * self.note_count + processing_time
            self.note_count += 1
            self.average_processing_time = total / self.note_count
        if rating is not None:
            total = self.average_rating * self.feedback_count + rating
            self.feedback_count += 1
            self.average_rating = total / self.feedback_count


class PromptExperiment(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str = "default"
    context: dict[str, Any] = Field(default_factory=dict)
    base_prompt: str
    variant_results: list[VariantResult] = Field(default_factory=list)
    status: ExperimentStatus = ExperimentStatus.ACTIVE
    target_note_count: int = 30
    confidence_threshold: float = 0.95
    winning_variant: str | None = None
    improvement_percentage: float | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None

    @property
    def variant_prompts(self) -> list[str]:
        """All candidate prompts, control first."""
        return [v.prompt for v in self.variant_results]

    @property
    def total_notes(self) -> int:
        return sum(v.note_count for v in self.variant_results)

    def variant(self, variant_id: str) -> VariantResult | None:
        for result in self.variant_results:
            if result.variant_id == variant_id:
                return result
        return None


class VariantAssignment(BaseModel):
    experiment_id: str
    variant_id: str
    prompt: str


class ExperimentSummary(BaseModel):
    experiment_id: str
    status: ExperimentStatus
    total_notes: int
    total_feedback: int
    variants: list[VariantResult]
    leading_variant: str | None = None
    leading_improvement: float | None = None  # percent over control
