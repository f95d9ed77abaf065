"""Personalization inputs and outputs."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class GenerationContext(BaseModel):
    """What is being generated. ``base_prompt`` overrides the template baseline."""

    template_type: str = "general"
    specialty: str | None = None
    encounter_type: str | None = None
    base_prompt: str | None = None


class DirectiveType(str, Enum):
    ISSUE = "issue"
    TREND = "trend"
    TEMPLATE = "template"
    PROVIDER = "provider"
    STYLE = "style"


class Personalization(BaseModel):
    """One ranked instruction injected into a generation prompt."""

    type: DirectiveType
    text: str
    reasoning: str
    impact: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)


class PersonalizedPrompt(BaseModel):
    prompt: str
    base_prompt: str
    personalizations: list[Personalization] = Field(default_factory=list)
    confidence_score: float = 0.0
    baseline_comparison: float = 0.0  # expected percent improvement over the base prompt
    based_on_feedback_count: int = 0
    recommended_provider: str | None = None
