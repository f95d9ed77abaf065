"""Persistent stores for notes, feedback and experiments.

Each store wraps database failures in ``PersistenceError`` so callers only
deal with one error type. Writes for the same note are last-write-wins.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from deltascribe.errors import PersistenceError
from deltascribe.experiments.models import PromptExperiment
from deltascribe.feedback.models import FeedbackRecord
from deltascribe.storage.database import get_session
from deltascribe.storage.models import (
    ExperimentRecord,
    FeedbackRow,
    NoteRecord,
    NoteVersionRecord,
)
from deltascribe.tracking.models import DeltaChange, NoteVersion, SessionAnalytics

logger = logging.getLogger(__name__)


class _SQLStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        try:
            with get_session(self._db_path) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Database error while trying to %s: %s", action, exc)
            raise PersistenceError(f"Failed to {action}: {exc}") from exc


class NoteStore(_SQLStore):
    """Notes keyed by note id: current content plus version history."""

    def create_note(self, note_id: str, content: str, *, created_by: str = "default") -> None:
        with self._session(f"create note {note_id}") as session:
            session.add(
                NoteRecord(
                    note_id=note_id,
                    content=content,
                    original_content=content,
                    created_by=created_by,
                )
            )
            session.commit()

    def get_note(self, note_id: str) -> NoteRecord | None:
        with self._session(f"load note {note_id}") as session:
            return session.get(NoteRecord, note_id)

    def save_content(self, note_id: str, content: str) -> None:
        """Lightweight update of the current content (used by auto-save)."""
        with self._session(f"auto-save note {note_id}") as session:
            note = session.get(NoteRecord, note_id)
            if note is None:
                note = NoteRecord(note_id=note_id, original_content=content)
            note.content = content
            note.is_edited = note.content != note.original_content
            note.last_modified = datetime.now()
            session.add(note)
            session.commit()

    def append_version(self, version: NoteVersion) -> None:
        """Store a version and make its content the note's current content."""
        with self._session(f"save version of note {version.note_id}") as session:
            note = session.get(NoteRecord, version.note_id)
            if note is None:
                note = NoteRecord(note_id=version.note_id, original_content=version.content)
            note.content = version.content
            note.is_edited = note.content != note.original_content
            note.last_modified = version.timestamp
            note.version_count += 1
            session.add(note)
            session.add(
                NoteVersionRecord(
                    id=version.id,
                    note_id=version.note_id,
                    session_id=version.session_id,
                    content=version.content,
                    timestamp=version.timestamp,
                    changes_json=json.dumps(
                        [c.model_dump(mode="json") for c in version.changes]
                    ),
                    analytics_json=version.analytics.model_dump_json(),
                )
            )
            session.commit()

    def get_versions(self, note_id: str) -> list[NoteVersion]:
        with self._session(f"load versions of note {note_id}") as session:
            rows = session.exec(
                select(NoteVersionRecord)
                .where(NoteVersionRecord.note_id == note_id)
                .order_by(NoteVersionRecord.timestamp)
            ).all()
        return [
            NoteVersion(
                id=row.id,
                note_id=row.note_id,
                session_id=row.session_id,
                content=row.content,
                timestamp=row.timestamp,
                changes=[DeltaChange.model_validate(c) for c in json.loads(row.changes_json)],
                analytics=SessionAnalytics.model_validate_json(row.analytics_json),
            )
            for row in rows
        ]


class FeedbackStore(_SQLStore):
    """Append-only feedback records keyed by user id."""

    def add(self, record: FeedbackRecord) -> None:
        with self._session(f"store feedback for {record.user_id}") as session:
            session.add(
                FeedbackRow(
                    user_id=record.user_id,
                    note_id=record.note_id,
                    rating=record.rating,
                    created_at=record.created_at,
                    payload_json=record.model_dump_json(),
                )
            )
            session.commit()

    def list_for_user(self, user_id: str, *, limit: int | None = None) -> list[FeedbackRecord]:
        """Return the user's feedback, oldest first (newest ``limit`` if given)."""
        with self._session(f"load feedback for {user_id}") as session:
            query = (
                select(FeedbackRow)
                .where(FeedbackRow.user_id == user_id)
                .order_by(FeedbackRow.created_at.desc(), FeedbackRow.id.desc())
            )
            if limit is not None:
                query = query.limit(limit)
            rows = session.exec(query).all()
        return [FeedbackRecord.model_validate_json(row.payload_json) for row in reversed(rows)]


class ExperimentStore(_SQLStore):
    """Prompt experiments keyed by id, listable per user."""

    def save(self, experiment: PromptExperiment) -> None:
        with self._session(f"save experiment {experiment.id}") as session:
            record = session.get(ExperimentRecord, experiment.id)
            if record is None:
                record = ExperimentRecord(
                    id=experiment.id,
                    user_id=experiment.user_id,
                    created_at=experiment.created_at,
                )
            record.status = experiment.status.value
            record.updated_at = datetime.now()
            record.payload_json = experiment.model_dump_json()
            session.add(record)
            session.commit()

    def get(self, experiment_id: str) -> PromptExperiment | None:
        with self._session(f"load experiment {experiment_id}") as session:
            record = session.get(ExperimentRecord, experiment_id)
            if record is None:
                return None
            return PromptExperiment.model_validate_json(record.payload_json)

    def list_for_user(self, user_id: str, *, status: str | None = None) -> list[PromptExperiment]:
        with self._session(f"list experiments for {user_id}") as session:
            query = select(ExperimentRecord).where(ExperimentRecord.user_id == user_id)
            if status is not None:
                query = query.where(ExperimentRecord.status == status)
            rows = session.exec(query.order_by(ExperimentRecord.created_at)).all()
        return [PromptExperiment.model_validate_json(row.payload_json) for row in rows]
