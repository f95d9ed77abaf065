"""Tests for edit session state transitions and analytics."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from deltascribe.errors import SessionClosedError
from deltascribe.tracking.classifier import DeltaClassifier
from deltascribe.tracking.models import ChangeType, SessionState
from deltascribe.tracking.session import (
    UNKNOWN_SECTION,
    apply_mutation,
    begin_close,
    build_version,
    close_session,
    session_analytics,
    start_session,
)

START = datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture
def classifier() -> DeltaClassifier:
    return DeltaClassifier()


def test_start_session_sets_baseline() -> None:
    session = start_session("note-1", "HPI: cough", clinical_context={"specialty": "im"}, now=START)
    assert session.original_content == session.current_content == "HPI: cough"
    assert session.state == SessionState.OPEN
    assert session.total_changes == 0
    assert session.clinical_context == {"specialty": "im"}


def test_no_op_mutation_changes_nothing(classifier: DeltaClassifier) -> None:
    session = start_session("note-1", "HPI: cough", now=START)
    updated, deltas = apply_mutation(session, "HPI: cough", classifier, now=START, keystrokes=5)
    assert deltas == []
    assert updated.total_changes == 0
    assert updated.keystroke_count == 0
    assert updated is session


def test_mutation_returns_updated_copy(classifier: DeltaClassifier) -> None:
    session = start_session("note-1", "HPI: cough", now=START)
    updated, deltas = apply_mutation(
        session, "HPI: cough and fever", classifier, now=START + timedelta(seconds=5), keystrokes=9
    )
    assert len(deltas) == 1
    assert updated.current_content == "HPI: cough and fever"
    assert updated.total_changes == 1
    assert updated.keystroke_count == 9
    # The input value is left untouched.
    assert session.current_content == "HPI: cough"
    assert session.changes == []


def test_timestamps_never_decrease(classifier: DeltaClassifier) -> None:
    session = start_session("note-1", "Plan: rest", now=START)
    session, _ = apply_mutation(session, "Plan: rest, fluids", classifier, now=START + timedelta(minutes=5))
    session, _ = apply_mutation(session, "Plan: rest, fluids, review", classifier, now=START + timedelta(minutes=1))
    stamps = [c.timestamp for c in session.changes]
    assert stamps == sorted(stamps)


def test_closed_session_rejects_mutations(classifier: DeltaClassifier) -> None:
    session = close_session(start_session("note-1", "HPI: cough", now=START), now=START)
    with pytest.raises(SessionClosedError):
        apply_mutation(session, "HPI: fever", classifier)
    with pytest.raises(SessionClosedError):
        close_session(session)


def test_closing_session_rejects_mutations(classifier: DeltaClassifier) -> None:
    session = begin_close(start_session("note-1", "HPI: cough", now=START))
    assert session.state == SessionState.CLOSING
    with pytest.raises(SessionClosedError) as exc_info:
        apply_mutation(session, "HPI: fever", classifier)
    assert exc_info.value.state == "closing"


def test_close_sets_end_time() -> None:
    session = start_session("note-1", "HPI: cough", now=START)
    closed = close_session(session, now=START + timedelta(minutes=3))
    assert closed.state == SessionState.CLOSED
    assert closed.end_time == START + timedelta(minutes=3)


def test_end_to_end_addition_without_known_section(classifier: DeltaClassifier) -> None:
    session = start_session("note-1", "SUBJECTIVE: ok", now=START)
    session, _ = apply_mutation(
        session, "SUBJECTIVE: patient reports improved mood", classifier, now=START + timedelta(seconds=4)
    )
    closed = close_session(session, now=START + timedelta(seconds=10))
    assert closed.total_changes >= 1
    assert closed.changes[0].type == ChangeType.ADDITION
    assert closed.changes[0].section is None


def test_session_analytics(classifier: DeltaClassifier) -> None:
    session = start_session("note-1", "HPI:\nfoo\nAssessment:\nbar", now=START)
    session, _ = apply_mutation(
        session, "HPI:\nfoo\nAssessment:\nbaz", classifier, now=START + timedelta(seconds=20), keystrokes=3
    )
    session, _ = apply_mutation(
        session, "HPI:\nfoo\nAssessment:\nbaz\nstable", classifier, now=START + timedelta(seconds=40), keystrokes=7
    )
    session, _ = apply_mutation(
        session, "intro\nHPI:\nfoo\nAssessment:\nbaz\nstable", classifier, now=START + timedelta(seconds=50)
    )

    analytics = session_analytics(session, now=START + timedelta(minutes=1))
    assert analytics.total_changes == 3
    assert analytics.modifications == 1
    assert analytics.additions == 2
    assert analytics.deletions == 0
    assert analytics.changes_by_section == {"Assessment": 2, UNKNOWN_SECTION: 1}
    assert analytics.most_edited_section == "Assessment"
    assert analytics.keystrokes == 11
    assert analytics.edit_time == 60.0
    assert analytics.keystrokes_per_minute == 11.0


def test_analytics_for_empty_session() -> None:
    session = start_session("note-1", "", now=START)
    analytics = session_analytics(session, now=START)
    assert analytics.total_changes == 0
    assert analytics.average_words_per_change == 0.0
    assert analytics.keystrokes_per_minute == 0.0
    assert analytics.most_edited_section is None


def test_build_version_snapshots_closed_session(classifier: DeltaClassifier) -> None:
    session = start_session("note-1", "Plan: rest", now=START)
    session, _ = apply_mutation(session, "Plan: rest and fluids", classifier, now=START)
    closed = close_session(session, now=START + timedelta(minutes=2))
    version = build_version(closed)
    assert version.note_id == "note-1"
    assert version.session_id == closed.id
    assert version.content == "Plan: rest and fluids"
    assert version.timestamp == closed.end_time
    assert version.analytics.total_changes == 1
