"""Engine facade: the operations exposed to the surrounding application."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from deltascribe.config import Settings
from deltascribe.experiments.controller import ExperimentController
from deltascribe.feedback.analyzer import FeedbackPatternAnalyzer
from deltascribe.feedback.models import FeedbackAnalysis, FeedbackRecord
from deltascribe.personalization.generator import PromptPersonalizer
from deltascribe.personalization.models import GenerationContext, PersonalizedPrompt
from deltascribe.personalization.profile import ClinicianStyleProfile
from deltascribe.storage.repository import ExperimentStore, FeedbackStore, NoteStore
from deltascribe.tracking.autosave import AutoSaver
from deltascribe.tracking.classifier import DeltaClassifier, SectionTable
from deltascribe.tracking.models import DeltaChange, EditSession, NoteVersion
from deltascribe.tracking.tracker import ChangeObserver, EditSessionTracker


class DeltaScribeEngine:
    """Wires trackers, analysis, personalization and experiments to the stores.

    Every store is optional; without a note store, sessions are tracked in
    memory only.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        note_store: NoteStore | None = None,
        feedback_store: FeedbackStore | None = None,
        experiment_store: ExperimentStore | None = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings or Settings()
        self.note_store = note_store
        self.feedback_store = feedback_store
        self._timer_factory = timer_factory
        self._clock = clock
        self.classifier = DeltaClassifier(
            SectionTable(self.settings.section_patterns),
            context_length=self.settings.context_length,
        )
        self.analyzer = FeedbackPatternAnalyzer(self.settings)
        self.personalizer = PromptPersonalizer(self.settings)
        self.experiments = ExperimentController(experiment_store, self.settings)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> DeltaScribeEngine:
        """Engine backed by the SQLite database at ``settings.db_path``."""
        return cls(
            settings,
            note_store=NoteStore(settings.db_path),
            feedback_store=FeedbackStore(settings.db_path),
            experiment_store=ExperimentStore(settings.db_path),
            **kwargs,
        )

    # -- edit tracking -------------------------------------------------------

    def start_session(
        self,
        note_id: str,
        initial_content: str,
        *,
        clinical_context: dict[str, Any] | None = None,
        observers: Iterable[ChangeObserver] = (),
    ) -> EditSessionTracker:
        autosaver = None
        version_sink = None
        if self.note_store is not None:
            store = self.note_store
            if store.get_note(note_id) is None:
                store.create_note(note_id, initial_content)
            autosaver = AutoSaver.from_settings(
                lambda content: store.save_content(note_id, content),
                self.settings,
                timer_factory=self._timer_factory,
            )
            version_sink = store.append_version

        tracker = EditSessionTracker.start(
            note_id,
            initial_content,
            clinical_context=clinical_context,
            classifier=self.classifier,
            autosaver=autosaver,
            version_sink=version_sink,
            clock=self._clock,
        )
        for observer in observers:
            tracker.subscribe(observer)
        return tracker

    def record_mutation(
        self, handle: EditSessionTracker, new_content: str, *, keystrokes: int = 1
    ) -> list[DeltaChange]:
        return handle.record_mutation(new_content, keystrokes=keystrokes)

    def save_session(self, handle: EditSessionTracker) -> NoteVersion | None:
        """Manual save; raises PersistenceError so the caller can warn the clinician."""
        return handle.save()

    def close_session(self, handle: EditSessionTracker) -> EditSession:
        return handle.close()

    # -- feedback loop -------------------------------------------------------

    def submit_feedback(self, record: FeedbackRecord) -> None:
        if self.feedback_store is None:
            raise RuntimeError("No feedback store configured")
        self.feedback_store.add(record)

    def analyze_feedback(
        self, user_id: str, feedback: Sequence[FeedbackRecord] | None = None
    ) -> FeedbackAnalysis:
        """Analyze the given records, or the user's stored feedback when omitted.

        Raises:
            InsufficientDataError: fewer than ``min_feedback`` records.
        """
        if feedback is None:
            if self.feedback_store is None:
                raise RuntimeError("No feedback store configured")
            feedback = self.feedback_store.list_for_user(user_id)
        return self.analyzer.analyze(feedback, user_id=user_id, now=self._clock())

    def generate_personalized_prompt(
        self,
        analysis: FeedbackAnalysis,
        profile: ClinicianStyleProfile | None = None,
        context: GenerationContext | None = None,
    ) -> PersonalizedPrompt:
        return self.personalizer.personalize(analysis, profile, context)

    def create_experiment(
        self,
        base_prompt: str,
        context: GenerationContext | None = None,
        *,
        user_id: str = "default",
        analysis: FeedbackAnalysis | None = None,
    ) -> str:
        return self.experiments.create_experiment(
            base_prompt, context, user_id=user_id, analysis=analysis
        )

    def record_experiment_outcome(
        self,
        experiment_id: str,
        variant_id: str,
        rating: int | None,
        processing_time: float | None,
    ) -> None:
        self.experiments.record_outcome(experiment_id, variant_id, rating, processing_time)
