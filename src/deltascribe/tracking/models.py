"""Data models for edit tracking: diff operations, deltas, sessions and versions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OpKind(str, Enum):
    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeOperation:
    """One token-run produced by the diff engine. Never persisted."""

    kind: OpKind
    text: str


class ChangeType(str, Enum):
    ADDITION = "addition"
    DELETION = "deletion"
    MODIFICATION = "modification"


class SessionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ChangeContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    before: str = ""
    after: str = ""


class ChangeMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    word_count: int
    character_count: int
    elapsed_since_session_start: float  # seconds
    keystroke_count_at_event: int


class DeltaChange(BaseModel):
    """A classified, section-attributed unit of document change."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime
    type: ChangeType
    content: str
    previous_content: str = ""
    position: int
    context: ChangeContext
    section: str | None = None
    metadata: ChangeMetadata


class EditSession(BaseModel):
    """State of one document edit, threaded through the session functions.

    Instances are never mutated in place; every operation returns an updated copy.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    note_id: str
    start_time: datetime
    end_time: datetime | None = None
    original_content: str
    current_content: str
    changes: list[DeltaChange] = Field(default_factory=list)
    total_changes: int = 0
    keystroke_count: int = 0
    state: SessionState = SessionState.OPEN
    clinical_context: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN


class SessionAnalytics(BaseModel):
    """Aggregate counts over a session's changes."""

    total_changes: int = 0
    additions: int = 0
    deletions: int = 0
    modifications: int = 0
    changes_by_section: dict[str, int] = Field(default_factory=dict)
    average_words_per_change: float = 0.0
    keystrokes: int = 0
    keystrokes_per_minute: float = 0.0
    edit_time: float = 0.0  # seconds
    most_edited_section: str | None = None


class NoteVersion(BaseModel):
    """Immutable snapshot appended to a note's history on each save."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    note_id: str
    session_id: str
    content: str
    timestamp: datetime
    changes: list[DeltaChange] = Field(default_factory=list)
    analytics: SessionAnalytics
