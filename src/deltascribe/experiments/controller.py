"""A/B experiments over prompt variants.

The controller builds variants, assigns them fairly and records outcomes.
It never promotes a variant on its own: ``conclude`` must be called with the
chosen winner, and ``summarize`` only reports which variant is ahead.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import threading
from datetime import datetime
from typing import Iterator

from deltascribe.config import Settings
from deltascribe.errors import (
    ExperimentConcludedError,
    ExperimentNotFoundError,
    UnknownVariantError,
)
from deltascribe.experiments.models import (
    CONTROL_VARIANT,
    ExperimentStatus,
    ExperimentSummary,
    PromptExperiment,
    VariantAssignment,
    VariantResult,
)
from deltascribe.feedback.models import FeedbackAnalysis
from deltascribe.personalization.generator import instruction_for
from deltascribe.personalization.models import GenerationContext
from deltascribe.storage.repository import ExperimentStore

logger = logging.getLogger(__name__)

# name -> (instruction, issue that contradicts it)
STYLE_TRANSFORMS: dict[str, tuple[str, str | None]] = {
    "concise": (
        "Keep every section brief: short statements, no repeated history.",
        "too_brief",
    ),
    "detailed": (
        "Expand the clinical reasoning behind each assessment and plan item.",
        "too_long",
    ),
    "clinical_tone": (
        "Write in terse clinical register using standard medical abbreviations.",
        "wrong_tone",
    ),
    "structured": (
        "Present each section as a short labeled list rather than prose.",
        None,
    ),
}

ISSUE_FOCUS = "issue_focus"


def build_variants(
    base_prompt: str,
    analysis: FeedbackAnalysis | None = None,
    *,
    max_variants: int = 3,
) -> list[VariantResult]:
    """Control plus up to ``max_variants`` mechanically perturbed prompts."""
    variants = [VariantResult(variant_id=CONTROL_VARIANT, prompt=base_prompt)]

    top_issues = [p.issue for p in analysis.issue_patterns[:3]] if analysis else []
    candidates: list[tuple[str, str]] = []
    if top_issues:
        focus = "\n".join(f"- {instruction_for(issue)}" for issue in top_issues)
        candidates.append((ISSUE_FOCUS, f"{base_prompt}\n\nFOCUS AREAS:\n{focus}"))
    for name, (instruction, contradicted_by) in STYLE_TRANSFORMS.items():
        if contradicted_by in top_issues:
            continue
        candidates.append((name, f"{base_prompt}\n\nSTYLE: {instruction}"))

    for name, prompt in candidates[:max_variants]:
        variants.append(VariantResult(variant_id=f"variant_{name}", prompt=prompt, strategy=name))
    return variants


class ExperimentController:
    """Creates experiments and records per-variant outcomes.

    Assignment and outcome recording are safe to call from several threads.
    """

    def __init__(self, store: ExperimentStore | None = None, settings: Settings | None = None) -> None:
        settings = settings or Settings()
        self._store = store
        self._max_variants = settings.experiment_max_variants
        self._target_note_count = settings.experiment_target_note_count
        self._confidence_threshold = settings.experiment_confidence_threshold
        self._min_feedback = settings.min_feedback
        self._lock = threading.Lock()
        self._experiments: dict[str, PromptExperiment] = {}
        self._counters: dict[str, Iterator[int]] = {}

    def create_experiment(
        self,
        base_prompt: str,
        context: GenerationContext | None = None,
        *,
        user_id: str = "default",
        analysis: FeedbackAnalysis | None = None,
    ) -> str:
        """Create an active experiment and return its id."""
        experiment = PromptExperiment(
            user_id=user_id,
            context=(context or GenerationContext()).model_dump(),
            base_prompt=base_prompt,
            variant_results=build_variants(base_prompt, analysis, max_variants=self._max_variants),
            target_note_count=self._target_note_count,
            confidence_threshold=self._confidence_threshold,
        )
        with self._lock:
            self._persist(experiment)
            self._experiments[experiment.id] = experiment
        logger.info(
            "Created experiment %s for %s with variants %s",
            experiment.id,
            user_id,
            [v.variant_id for v in experiment.variant_results],
        )
        return experiment.id

    def get(self, experiment_id: str) -> PromptExperiment:
        with self._lock:
            return self._load(experiment_id).model_copy(deep=True)

    def active_experiment(
        self, user_id: str, context: GenerationContext | None = None
    ) -> PromptExperiment | None:
        """The user's most recent active experiment still below its target.

        With a ``context`` only experiments created for the same template
        type count, and a specialty or encounter type set on the experiment
        must match too.
        """
        with self._lock:
            candidates = [e for e in self._experiments.values() if e.user_id == user_id]
            if self._store is not None:
                known = {e.id for e in candidates}
                candidates += [
                    e for e in self._store.list_for_user(user_id, status=ExperimentStatus.ACTIVE.value)
                    if e.id not in known
                ]
            running = [
                e for e in candidates
                if e.status == ExperimentStatus.ACTIVE
                and e.total_notes < e.target_note_count
                and (context is None or _applies_to(e, context))
            ]
            if not running:
                return None
            latest = max(running, key=lambda e: e.created_at)
            self._experiments.setdefault(latest.id, latest)
            return latest.model_copy(deep=True)

    def assign_variant(
        self, experiment_id: str, request_id: str | None = None
    ) -> VariantAssignment | None:
        """Pick the variant for the next generation.

        With a ``request_id`` the choice is a stable hash of it; otherwise
        variants are handed out round-robin. Returns None once the experiment
        is concluded or has reached its target note count.
        """
        with self._lock:
            experiment = self._load(experiment_id)
            if (
                experiment.status != ExperimentStatus.ACTIVE
                or experiment.total_notes >= experiment.target_note_count
            ):
                return None
            n = len(experiment.variant_results)
            if request_id is not None:
                digest = hashlib.sha256(f"{experiment_id}:{request_id}".encode()).hexdigest()
                index = int(digest, 16) % n
            else:
                counter = self._counters.setdefault(experiment_id, itertools.count())
                index = next(counter) % n
            variant = experiment.variant_results[index]
        return VariantAssignment(
            experiment_id=experiment_id, variant_id=variant.variant_id, prompt=variant.prompt
        )

    def record_outcome(
        self,
        experiment_id: str,
        variant_id: str,
        rating: int | None = None,
        processing_time: float | None = None,
    ) -> None:
        """Add one generation and/or rating to a variant's running totals.

        Raises:
            ExperimentConcludedError: the experiment is no longer active.
            UnknownVariantError: the experiment has no such variant.
        """
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {rating}")
        with self._lock:
            experiment = self._load(experiment_id).model_copy(deep=True)
            if experiment.status != ExperimentStatus.ACTIVE:
                raise ExperimentConcludedError(
                    f"Experiment {experiment_id} is {experiment.status.value}; "
                    "it no longer accepts outcomes"
                )
            variant = experiment.variant(variant_id)
            if variant is None:
                raise UnknownVariantError(
                    f"Experiment {experiment_id} has no variant {variant_id!r}"
                )
            variant.record(rating, processing_time)
            self._persist(experiment)
            self._experiments[experiment_id] = experiment

    def summarize(self, experiment_id: str) -> ExperimentSummary:
        """Current per-variant results and the variant in the lead, if any."""
        with self._lock:
            experiment = self._load(experiment_id).model_copy(deep=True)

        leader, improvement = self._leader(experiment)
        return ExperimentSummary(
            experiment_id=experiment.id,
            status=experiment.status,
            total_notes=experiment.total_notes,
            total_feedback=sum(v.feedback_count for v in experiment.variant_results),
            variants=experiment.variant_results,
            leading_variant=leader,
            leading_improvement=improvement,
        )

    def conclude(self, experiment_id: str, winning_variant: str | None = None) -> PromptExperiment:
        """Close the experiment, recording the winner chosen by the caller."""
        with self._lock:
            experiment = self._load(experiment_id).model_copy(deep=True)
            improvement = None
            if winning_variant is not None:
                winner = experiment.variant(winning_variant)
                if winner is None:
                    raise UnknownVariantError(
                        f"Experiment {experiment_id} has no variant {winning_variant!r}"
                    )
                improvement = _improvement(experiment, winner)
            experiment.status = ExperimentStatus.CONCLUDED
            experiment.winning_variant = winning_variant
            experiment.improvement_percentage = improvement
            experiment.completed_at = datetime.now()
            self._persist(experiment)
            self._experiments[experiment_id] = experiment
            self._counters.pop(experiment_id, None)
            logger.info("Concluded experiment %s (winner: %s)", experiment_id, winning_variant)
            return experiment.model_copy(deep=True)

    def _leader(self, experiment: PromptExperiment) -> tuple[str | None, float | None]:
        rated = [v for v in experiment.variant_results if v.feedback_count >= self._min_feedback]
        if not rated:
            return None, None
        best = max(rated, key=lambda v: v.average_rating)
        if sum(1 for v in rated if v.average_rating == best.average_rating) > 1:
            return None, None
        return best.variant_id, _improvement(experiment, best)

    def _load(self, experiment_id: str) -> PromptExperiment:
        experiment = self._experiments.get(experiment_id)
        if experiment is None and self._store is not None:
            experiment = self._store.get(experiment_id)
            if experiment is not None:
                self._experiments[experiment_id] = experiment
        if experiment is None:
            raise ExperimentNotFoundError(f"No experiment with id {experiment_id}")
        return experiment

    def _persist(self, experiment: PromptExperiment) -> None:
        if self._store is not None:
            self._store.save(experiment)


def _applies_to(experiment: PromptExperiment, context: GenerationContext) -> bool:
    stored = GenerationContext.model_validate(experiment.context)
    if stored.template_type != context.template_type:
        return False
    if stored.specialty is not None and stored.specialty != context.specialty:
        return False
    return stored.encounter_type is None or stored.encounter_type == context.encounter_type


def _improvement(experiment: PromptExperiment, variant: VariantResult) -> float | None:
    control = experiment.variant(CONTROL_VARIANT)
    if control is None or control.feedback_count == 0 or control.average_rating == 0:
        return None
    return round((variant.average_rating - control.average_rating) / control.average_rating * 100, 1)
