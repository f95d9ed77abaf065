"""Turn raw diff operations into typed, contextualized, section-attributed deltas."""

from __future__ import annotations

import bisect
import re
from datetime import datetime
from typing import Iterable, Mapping

from deltascribe.config import DEFAULT_SECTION_PATTERNS
from deltascribe.tracking.diff import diff
from deltascribe.tracking.models import (
    ChangeContext,
    ChangeMetadata,
    ChangeOperation,
    ChangeType,
    DeltaChange,
    OpKind,
)


def _word_count(text: str) -> int:
    return len(text.split())


class SectionTable:
    """Ordered section label -> header pattern table.

    A position belongs to the section whose header starts closest to it and
    strictly before it, so a header at the position itself does not count.
    When two headers start at the same offset the earlier table entry wins.
    """

    def __init__(self, patterns: Mapping[str, str]) -> None:
        self._patterns = [
            (label, re.compile(pattern, re.IGNORECASE)) for label, pattern in patterns.items()
        ]

    @classmethod
    def default(cls) -> SectionTable:
        return cls(DEFAULT_SECTION_PATTERNS)

    @property
    def labels(self) -> list[str]:
        return [label for label, _ in self._patterns]

    def headers(self, content: str) -> list[tuple[int, str]]:
        """Return (offset, label) for every header in ``content``, sorted by offset."""
        found: dict[int, str] = {}
        for label, pattern in self._patterns:
            for match in pattern.finditer(content):
                found.setdefault(match.start(), label)
        return sorted(found.items())

    def section_at(self, content: str, position: int) -> str | None:
        return _nearest_preceding(self.headers(content), position)


def _nearest_preceding(headers: list[tuple[int, str]], position: int) -> str | None:
    offsets = [offset for offset, _ in headers]
    index = bisect.bisect_left(offsets, position) - 1
    if index < 0:
        return None
    return headers[index][1]


class DeltaClassifier:
    """Classifies the difference between two snapshots of the same document.

    An adjacent insert+delete pair (a replaced hunk) collapses into a single
    modification only when both sides contain the same number of words;
    otherwise it yields an addition followed by a deletion.

    A deletion is attributed to the section of the text just before it. An
    addition or modification that begins with a header belongs to that header.
    """

    def __init__(self, sections: SectionTable | None = None, context_length: int = 50) -> None:
        self._sections = sections or SectionTable.default()
        self._context_length = context_length

    @property
    def sections(self) -> SectionTable:
        return self._sections

    def classify(
        self,
        previous: str,
        current: str,
        *,
        session_start: datetime,
        now: datetime,
        keystrokes: int = 0,
    ) -> list[DeltaChange]:
        """Diff two snapshots and return one delta per changed hunk."""
        return self.classify_operations(
            diff(previous, current),
            current,
            session_start=session_start,
            now=now,
            keystrokes=keystrokes,
        )

    def classify_operations(
        self,
        ops: Iterable[ChangeOperation],
        current: str,
        *,
        session_start: datetime,
        now: datetime,
        keystrokes: int = 0,
    ) -> list[DeltaChange]:
        ops = list(ops)
        headers = self._sections.headers(current)
        elapsed = max(0.0, (now - session_start).total_seconds())

        deltas: list[DeltaChange] = []
        offset = 0  # position in the new content
        i = 0
        while i < len(ops):
            op = ops[i]
            if op.kind == OpKind.EQUAL:
                offset += len(op.text)
                i += 1
                continue

            if op.kind == OpKind.INSERT:
                nxt = ops[i + 1] if i + 1 < len(ops) else None
                if (
                    nxt is not None
                    and nxt.kind == OpKind.DELETE
                    and _word_count(op.text) == _word_count(nxt.text)
                ):
                    change_type, content, previous_content = (
                        ChangeType.MODIFICATION, op.text, nxt.text,
                    )
                    i += 2
                else:
                    change_type, content, previous_content = ChangeType.ADDITION, op.text, ""
                    i += 1
                span = len(content)
            else:
                change_type, content, previous_content = ChangeType.DELETION, op.text, op.text
                span = 0
                i += 1

            deltas.append(
                DeltaChange(
                    timestamp=now,
                    type=change_type,
                    content=content,
                    previous_content=previous_content,
                    position=offset,
                    context=self._context(current, offset, offset + span),
                    section=_nearest_preceding(headers, offset + 1 if span else offset),
                    metadata=ChangeMetadata(
                        word_count=_word_count(content),
                        character_count=len(content),
                        elapsed_since_session_start=elapsed,
                        keystroke_count_at_event=keystrokes,
                    ),
                )
            )
            offset += span
        return deltas

    def _context(self, content: str, start: int, end: int) -> ChangeContext:
        n = self._context_length
        return ChangeContext(
            before=content[max(0, start - n):start],
            after=content[end:end + n],
        )
