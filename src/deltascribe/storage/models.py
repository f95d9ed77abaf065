"""SQLModel database models.

Timestamps are stored as naive local times.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import NaiveDatetime
from sqlmodel import Field, SQLModel


class NoteRecord(SQLModel, table=True):
    """Current state of a note, keyed by note id."""

    note_id: str = Field(primary_key=True)
    content: str = ""
    original_content: str = ""
    is_edited: bool = False
    created_by: str = "default"
    created_at: NaiveDatetime = Field(default_factory=datetime.now)
    last_modified: NaiveDatetime = Field(default_factory=datetime.now)
    version_count: int = 0


class NoteVersionRecord(SQLModel, table=True):
    """Append-only version history entry written on every manual save."""

    id: str = Field(primary_key=True)
    note_id: str = Field(index=True, foreign_key="noterecord.note_id")
    session_id: str
    content: str
    timestamp: NaiveDatetime
    changes_json: str = "[]"
    analytics_json: str = "{}"


class FeedbackRow(SQLModel, table=True):
    """Persisted clinician feedback record."""

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    note_id: str | None = None
    rating: int
    created_at: NaiveDatetime = Field(default_factory=datetime.now, index=True)
    payload_json: str = "{}"


class ExperimentRecord(SQLModel, table=True):
    """Persisted prompt experiment."""

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    status: str = "active"  # active | concluded
    created_at: NaiveDatetime = Field(default_factory=datetime.now)
    updated_at: NaiveDatetime = Field(default_factory=datetime.now)
    payload_json: str = "{}"
