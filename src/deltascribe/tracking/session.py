"""Pure functions over EditSession values.

Every function takes a session and returns an updated copy; nothing here
reads the wall clock unless the caller omits ``now``.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any

from deltascribe.errors import SessionClosedError
from deltascribe.tracking.classifier import DeltaClassifier
from deltascribe.tracking.models import (
    ChangeType,
    DeltaChange,
    EditSession,
    NoteVersion,
    SessionAnalytics,
    SessionState,
)

UNKNOWN_SECTION = "Unknown"


def start_session(
    note_id: str,
    initial_content: str,
    *,
    clinical_context: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> EditSession:
    """Open a new session whose baseline is ``initial_content``."""
    return EditSession(
        note_id=note_id,
        start_time=now or datetime.now(),
        original_content=initial_content,
        current_content=initial_content,
        clinical_context=clinical_context or {},
    )


def apply_mutation(
    session: EditSession,
    new_content: str,
    classifier: DeltaClassifier,
    *,
    now: datetime | None = None,
    keystrokes: int = 1,
) -> tuple[EditSession, list[DeltaChange]]:
    """Record a new snapshot, returning the updated session and the new deltas.

    Identical content is a no-op: no deltas, no counters advanced.
    """
    if not session.is_open:
        raise SessionClosedError(session.id, session.state.value)
    if new_content == session.current_content:
        return session, []

    now = now or datetime.now()
    if session.changes and now < session.changes[-1].timestamp:
        # Keep timestamps non-decreasing even if the clock steps backwards.
        now = session.changes[-1].timestamp

    keystroke_count = session.keystroke_count + max(0, keystrokes)
    deltas = classifier.classify(
        session.current_content,
        new_content,
        session_start=session.start_time,
        now=now,
        keystrokes=keystroke_count,
    )
    changes = [*session.changes, *deltas]
    updated = session.model_copy(
        update={
            "current_content": new_content,
            "changes": changes,
            "total_changes": len(changes),
            "keystroke_count": keystroke_count,
        }
    )
    return updated, deltas


def begin_close(session: EditSession) -> EditSession:
    """Move an open session to CLOSING so it stops accepting mutations."""
    if not session.is_open:
        raise SessionClosedError(session.id, session.state.value)
    return session.model_copy(update={"state": SessionState.CLOSING})


def close_session(session: EditSession, *, now: datetime | None = None) -> EditSession:
    """Finalize a session: set ``end_time`` and freeze it as CLOSED."""
    if session.state == SessionState.CLOSED:
        raise SessionClosedError(session.id, session.state.value)
    if session.state == SessionState.OPEN:
        session = begin_close(session)
    end_time = now or datetime.now()
    if end_time < session.start_time:
        end_time = session.start_time
    return session.model_copy(update={"state": SessionState.CLOSED, "end_time": end_time})


def session_analytics(session: EditSession, *, now: datetime | None = None) -> SessionAnalytics:
    """Aggregate counts over the session's changes. Safe to call mid-session."""
    changes = session.changes
    types = Counter(change.type for change in changes)
    by_section = Counter(change.section or UNKNOWN_SECTION for change in changes)

    end = session.end_time or now or datetime.now()
    edit_time = max(0.0, (end - session.start_time).total_seconds())
    minutes = edit_time / 60
    words = sum(change.metadata.word_count for change in changes)

    return SessionAnalytics(
        total_changes=len(changes),
        additions=types[ChangeType.ADDITION],
        deletions=types[ChangeType.DELETION],
        modifications=types[ChangeType.MODIFICATION],
        changes_by_section=dict(by_section),
        average_words_per_change=round(words / len(changes), 2) if changes else 0.0,
        keystrokes=session.keystroke_count,
        keystrokes_per_minute=round(session.keystroke_count / minutes, 2) if minutes > 0 else 0.0,
        edit_time=edit_time,
        most_edited_section=by_section.most_common(1)[0][0] if by_section else None,
    )


def build_version(session: EditSession, *, now: datetime | None = None) -> NoteVersion:
    """Snapshot the session's current content and analytics as a note version."""
    timestamp = session.end_time or now or datetime.now()
    return NoteVersion(
        note_id=session.note_id,
        session_id=session.id,
        content=session.current_content,
        timestamp=timestamp,
        changes=list(session.changes),
        analytics=session_analytics(session, now=timestamp),
    )
