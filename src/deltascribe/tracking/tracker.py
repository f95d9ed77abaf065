"""Stateful wrapper binding one EditSession to one open document."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from deltascribe.errors import SessionClosedError
from deltascribe.tracking.autosave import AutoSaver
from deltascribe.tracking.classifier import DeltaClassifier
from deltascribe.tracking.models import (
    DeltaChange,
    EditSession,
    NoteVersion,
    SessionAnalytics,
    SessionState,
)
from deltascribe.tracking.session import (
    apply_mutation,
    begin_close,
    build_version,
    close_session,
    session_analytics,
    start_session,
)

logger = logging.getLogger(__name__)

ChangeObserver = Callable[[DeltaChange], None]
VersionSink = Callable[[NoteVersion], None]


class EditSessionTracker:
    """Single-writer tracker for one open document.

    Mutations are processed synchronously in arrival order. Observers are
    notified once per delta. Persistence is delegated: an optional
    ``AutoSaver`` receives every new snapshot, and an optional version sink
    receives the finalized ``NoteVersion`` on close.
    """

    def __init__(
        self,
        session: EditSession,
        *,
        classifier: DeltaClassifier | None = None,
        autosaver: AutoSaver | None = None,
        version_sink: VersionSink | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._session = session
        self._classifier = classifier or DeltaClassifier()
        self._autosaver = autosaver
        self._version_sink = version_sink
        self._clock = clock
        self._observers: list[ChangeObserver] = []
        self._version: NoteVersion | None = None

    @classmethod
    def start(
        cls,
        note_id: str,
        initial_content: str,
        *,
        clinical_context: dict[str, Any] | None = None,
        clock: Callable[[], datetime] = datetime.now,
        **kwargs: Any,
    ) -> EditSessionTracker:
        session = start_session(
            note_id, initial_content, clinical_context=clinical_context, now=clock()
        )
        logger.debug("Started edit session %s for note %s", session.id, note_id)
        return cls(session, clock=clock, **kwargs)

    @property
    def session(self) -> EditSession:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    def subscribe(self, observer: ChangeObserver) -> Callable[[], None]:
        """Register a change observer; returns a function that unregisters it."""
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)

    def record_mutation(self, new_content: str, *, keystrokes: int = 1) -> list[DeltaChange]:
        """Feed a full-document snapshot; returns the deltas it produced.

        Raises:
            SessionClosedError: the session is closing or closed.
        """
        self._session, deltas = apply_mutation(
            self._session,
            new_content,
            self._classifier,
            now=self._clock(),
            keystrokes=keystrokes,
        )
        if not deltas:
            return []
        for delta in deltas:
            for observer in list(self._observers):
                observer(delta)
        if self._autosaver is not None:
            self._autosaver.schedule(new_content)
        return deltas

    def save(self) -> NoteVersion | None:
        """Manual save, bypassing the debounce.

        Writes the current content, then appends a version snapshot to the
        version sink when one is set. The session stays open.

        Raises:
            SessionClosedError: the session is no longer open.
            PersistenceError: the write failed; the clinician must be told.
        """
        if not self._session.is_open:
            raise SessionClosedError(self._session.id, self._session.state.value)
        if self._autosaver is not None:
            self._autosaver.save_now(self._session.current_content)
        if self._version_sink is None:
            return None
        version = build_version(self._session, now=self._clock())
        self._version_sink(version)
        return version

    def get_analytics(self) -> SessionAnalytics:
        return session_analytics(self._session, now=self._clock())

    def close(self) -> EditSession:
        """Stop accepting mutations, finalize the session and hand it off.

        The session is CLOSED before persistence starts, so a
        ``PersistenceError`` from the version sink leaves a finalized session
        that can be re-sent with ``persist_version``.
        """
        self._session = begin_close(self._session)
        if self._autosaver is not None:
            self._autosaver.close()
        self._session = close_session(self._session, now=self._clock())
        self._version = build_version(self._session)
        logger.info(
            "Closed edit session %s for note %s with %d changes",
            self._session.id,
            self._session.note_id,
            self._session.total_changes,
        )
        self.persist_version()
        return self._session

    def persist_version(self) -> NoteVersion | None:
        """Send the finalized version to the version sink, if one is set."""
        if self._version is None:
            raise RuntimeError("Call close() first")
        if self._version_sink is not None:
            self._version_sink(self._version)
        return self._version
