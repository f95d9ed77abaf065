"""Choose a prompt strategy for each note generation and close the feedback loop."""

from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from deltascribe.errors import ExperimentConcludedError, InsufficientDataError
from deltascribe.experiments.controller import ExperimentController
from deltascribe.feedback.analyzer import FeedbackPatternAnalyzer
from deltascribe.llm.client import GeneratedNote
from deltascribe.llm.prompts import baseline_prompt, render
from deltascribe.personalization.generator import PromptPersonalizer
from deltascribe.personalization.models import GenerationContext, Personalization
from deltascribe.personalization.profile import ClinicianStyleProfile
from deltascribe.storage.repository import FeedbackStore

logger = logging.getLogger(__name__)


class NoteBackend(Protocol):
    provider: str

    def generate_note(self, system_prompt: str, encounter_prompt: str) -> GeneratedNote: ...


class StrategyType(str, Enum):
    BASELINE = "baseline"
    PERSONALIZED = "personalized"
    EXPERIMENTAL = "experimental"


class PromptStrategy(BaseModel):
    type: StrategyType
    prompt: str
    confidence_score: float = 1.0
    baseline_comparison: float = 0.0
    experiment_id: str | None = None
    experiment_variant: str | None = None
    personalizations: list[Personalization] = Field(default_factory=list)


class GenerationResult(BaseModel):
    content: str
    provider: str
    strategy: StrategyType
    experiment_id: str | None = None
    experiment_variant: str | None = None
    generation_time: float
    confidence_score: float
    baseline_comparison: float = 0.0


class KeyOptimization(BaseModel):
    area: str
    improvement: float
    frequency: float


class PersonalizationInsights(BaseModel):
    is_personalization_active: bool = False
    confidence_score: float = 0.0
    total_feedback_analyzed: int = 0
    key_optimizations: list[KeyOptimization] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)


class NoteGenerationService:
    """Generates notes with experimental, personalized or baseline prompts.

    Strategy order: an active experiment below its target wins, then a
    personalized prompt when there is enough feedback, then the baseline.
    """

    def __init__(
        self,
        backend: NoteBackend,
        feedback_store: FeedbackStore,
        experiments: ExperimentController,
        *,
        analyzer: FeedbackPatternAnalyzer | None = None,
        personalizer: PromptPersonalizer | None = None,
        profiles_dir: Path | None = None,
    ) -> None:
        self._backend = backend
        self._feedback = feedback_store
        self._experiments = experiments
        self._analyzer = analyzer or FeedbackPatternAnalyzer()
        self._personalizer = personalizer or PromptPersonalizer()
        self._profiles_dir = profiles_dir

    def select_strategy(
        self,
        user_id: str,
        context: GenerationContext,
        *,
        request_id: str | None = None,
        force: StrategyType | None = None,
    ) -> PromptStrategy:
        if force == StrategyType.BASELINE:
            return self._baseline(context)

        if force is None:
            experiment = self._experiments.active_experiment(user_id, context)
            if experiment is not None:
                assignment = self._experiments.assign_variant(experiment.id, request_id)
                if assignment is not None:
                    return PromptStrategy(
                        type=StrategyType.EXPERIMENTAL,
                        prompt=assignment.prompt,
                        confidence_score=0.5,
                        experiment_id=experiment.id,
                        experiment_variant=assignment.variant_id,
                    )

        try:
            analysis = self._analyzer.analyze(self._feedback.list_for_user(user_id), user_id=user_id)
        except InsufficientDataError as exc:
            logger.info("Using baseline prompt for %s: %s", user_id, exc)
            return self._baseline(context)

        personalized = self._personalizer.personalize(analysis, self._profile(user_id), context)
        return PromptStrategy(
            type=StrategyType.PERSONALIZED,
            prompt=personalized.prompt,
            confidence_score=personalized.confidence_score,
            baseline_comparison=personalized.baseline_comparison,
            personalizations=personalized.personalizations,
        )

    def generate(
        self,
        user_id: str,
        encounter_data: str,
        context: GenerationContext | None = None,
        *,
        request_id: str | None = None,
        force: StrategyType | None = None,
    ) -> GenerationResult:
        context = context or GenerationContext()
        start = time.monotonic()
        strategy = self.select_strategy(user_id, context, request_id=request_id, force=force)

        encounter_prompt = render(
            "generation_request.j2",
            template_type=context.template_type,
            specialty=context.specialty,
            encounter_type=context.encounter_type,
            encounter_data=encounter_data,
        )
        note = self._backend.generate_note(strategy.prompt, encounter_prompt)
        elapsed = time.monotonic() - start

        if strategy.experiment_id and strategy.experiment_variant:
            # The rating arrives later through record_outcome.
            try:
                self._experiments.record_outcome(
                    strategy.experiment_id, strategy.experiment_variant, processing_time=elapsed
                )
            except ExperimentConcludedError as exc:
                logger.warning("Generation time not recorded: %s", exc)

        logger.info(
            "Generated note for %s with %s prompt in %.2fs", user_id, strategy.type.value, elapsed
        )
        return GenerationResult(
            content=note.content,
            provider=note.provider,
            strategy=strategy.type,
            experiment_id=strategy.experiment_id,
            experiment_variant=strategy.experiment_variant,
            generation_time=elapsed,
            confidence_score=strategy.confidence_score,
            baseline_comparison=strategy.baseline_comparison,
        )

    def personalization_insights(self, user_id: str) -> PersonalizationInsights:
        feedback = self._feedback.list_for_user(user_id)
        try:
            analysis = self._analyzer.analyze(feedback, user_id=user_id)
        except InsufficientDataError:
            return PersonalizationInsights(
                total_feedback_analyzed=len(feedback),
                recommended_actions=[
                    "Start providing feedback on generated notes to enable personalization"
                ],
            )

        actions = []
        if analysis.total_feedback_analyzed < 10:
            actions.append("Provide feedback on more notes to improve personalization")
        if analysis.confidence_score < 0.6:
            actions.append("Continue providing consistent feedback to build confidence")
        if analysis.issue_patterns:
            top = analysis.issue_patterns[0].issue.replace("_", " ")
            actions.append(f"Focus on addressing {top} in note generation")

        return PersonalizationInsights(
            is_personalization_active=True,
            confidence_score=analysis.confidence_score,
            total_feedback_analyzed=analysis.total_feedback_analyzed,
            key_optimizations=[
                KeyOptimization(
                    area=p.issue.replace("_", " "),
                    improvement=p.severity,
                    frequency=p.percentage,
                )
                for p in analysis.issue_patterns[:3]
            ],
            recommended_actions=actions,
        )

    def _baseline(self, context: GenerationContext) -> PromptStrategy:
        return PromptStrategy(
            type=StrategyType.BASELINE,
            prompt=context.base_prompt or baseline_prompt(context.template_type),
        )

    def _profile(self, user_id: str) -> ClinicianStyleProfile:
        if self._profiles_dir is None:
            return ClinicianStyleProfile.default(user_id)
        return ClinicianStyleProfile.load(self._profiles_dir, user_id)
