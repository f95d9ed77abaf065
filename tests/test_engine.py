"""Tests for the engine facade wiring tracking, feedback and experiments together."""

from __future__ import annotations

import pytest

from deltascribe.config import Settings
from deltascribe.engine import DeltaScribeEngine
from deltascribe.errors import InsufficientDataError, SessionClosedError
from deltascribe.tracking.models import ChangeType, DeltaChange
from tests.conftest import StepClock, TimerFactory, make_feedback


@pytest.fixture
def engine(settings: Settings, timer_factory: TimerFactory, clock: StepClock) -> DeltaScribeEngine:
    return DeltaScribeEngine.from_settings(settings, timer_factory=timer_factory, clock=clock)


def test_in_memory_engine_tracks_sessions(clock: StepClock) -> None:
    engine = DeltaScribeEngine(Settings(), clock=clock)
    handle = engine.start_session("note-1", "SUBJECTIVE: ok")
    engine.record_mutation(handle, "SUBJECTIVE: patient reports improved mood")
    session = engine.close_session(handle)

    assert session.total_changes >= 1
    assert session.changes[0].type == ChangeType.ADDITION
    assert session.changes[0].section is None
    with pytest.raises(SessionClosedError):
        engine.record_mutation(handle, "SUBJECTIVE: later")


def test_session_autosaves_and_versions(
    engine: DeltaScribeEngine, timer_factory: TimerFactory
) -> None:
    seen: list[DeltaChange] = []
    handle = engine.start_session("note-1", "Plan: rest", observers=[seen.append])

    engine.record_mutation(handle, "Plan: rest and fluids")
    timer_factory.last.fire()
    assert engine.note_store.get_note("note-1").content == "Plan: rest and fluids"

    engine.record_mutation(handle, "Plan: rest and fluids, recheck in 1 week")
    engine.close_session(handle)

    versions = engine.note_store.get_versions("note-1")
    assert len(versions) == 1
    assert versions[0].content == "Plan: rest and fluids, recheck in 1 week"
    assert len(seen) == versions[0].analytics.total_changes
    assert engine.note_store.get_note("note-1").original_content == "Plan: rest"


def test_manual_save_adds_version(engine: DeltaScribeEngine) -> None:
    handle = engine.start_session("note-2", "HPI: cough")
    engine.record_mutation(handle, "HPI: cough, fever")
    engine.save_session(handle)
    engine.record_mutation(handle, "HPI: cough, fever, chills")
    engine.close_session(handle)

    versions = engine.note_store.get_versions("note-2")
    assert [v.content for v in versions] == ["HPI: cough, fever", "HPI: cough, fever, chills"]
    assert engine.note_store.get_note("note-2").version_count == 2


def test_feedback_loop(engine: DeltaScribeEngine) -> None:
    with pytest.raises(InsufficientDataError):
        engine.analyze_feedback("dr_lee")

    for record in make_feedback([1, 2, 1], quality_issues=["too_long"]):
        engine.submit_feedback(record)

    analysis = engine.analyze_feedback("dr_lee")
    assert analysis.total_feedback_analyzed == 3

    prompt = engine.generate_personalized_prompt(analysis)
    assert prompt.personalizations[0].text.startswith("Be concise")


def test_analyze_explicit_records(engine: DeltaScribeEngine) -> None:
    analysis = engine.analyze_feedback("dr_lee", make_feedback([3, 3, 3, 3, 3, 4, 4, 4, 4, 4]))
    assert analysis.rating_trends.trend.value == "improving"


def test_experiment_outcomes(engine: DeltaScribeEngine) -> None:
    experiment_id = engine.create_experiment("Base prompt", user_id="dr_lee")
    engine.record_experiment_outcome(experiment_id, "control", 5, 1.2)
    control = engine.experiments.get(experiment_id).variant("control")
    assert control.feedback_count == 1
    assert control.note_count == 1
