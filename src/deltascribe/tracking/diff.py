"""Word-level diff between two document snapshots."""

from __future__ import annotations

import difflib
import re

from deltascribe.tracking.models import ChangeOperation, OpKind

# Words and the whitespace runs between them are separate tokens so that
# joining the tokens always reproduces the input exactly.
_TOKEN_RE = re.compile(r"\s+|\S+")


def tokenize(text: str) -> list[str]:
    """Split text into alternating word and whitespace tokens."""
    return _TOKEN_RE.findall(text)


def diff(old: str, new: str) -> list[ChangeOperation]:
    """Return the ordered operations that turn ``old`` into ``new``.

    Joining the text of every non-delete operation gives ``new``; joining the
    text of every non-insert operation gives ``old``. Within a replaced hunk
    the insert is emitted before the delete.
    """
    if old == new:
        return []

    old_tokens = tokenize(old)
    new_tokens = tokenize(new)
    matcher = difflib.SequenceMatcher(None, old_tokens, new_tokens, autojunk=False)

    ops: list[ChangeOperation] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            ops.append(ChangeOperation(OpKind.EQUAL, "".join(old_tokens[i1:i2])))
        elif tag == "insert":
            ops.append(ChangeOperation(OpKind.INSERT, "".join(new_tokens[j1:j2])))
        elif tag == "delete":
            ops.append(ChangeOperation(OpKind.DELETE, "".join(old_tokens[i1:i2])))
        else:  # replace
            ops.append(ChangeOperation(OpKind.INSERT, "".join(new_tokens[j1:j2])))
            ops.append(ChangeOperation(OpKind.DELETE, "".join(old_tokens[i1:i2])))
    return ops


def reconstruct(ops: list[ChangeOperation], *, side: str = "new") -> str:
    """Rebuild one side of a diff from its operations."""
    skip = OpKind.DELETE if side == "new" else OpKind.INSERT
    return "".join(op.text for op in ops if op.kind != skip)
