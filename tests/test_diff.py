"""Tests for the word-level diff engine."""

from __future__ import annotations

import random

import pytest

from deltascribe.tracking.diff import diff, reconstruct, tokenize
from deltascribe.tracking.models import OpKind

PIECES = ["HPI:", "cough", "fever", "Plan:", "x", " ", "  ", "\n", "\t", "\n\n", " \t\n", "\u00a0"]

PAIRS = [
    ("", ""),
    ("", "HPI: new note"),
    ("HPI: cough for 3 days", ""),
    ("same text", "same text"),
    ("SUBJECTIVE: ok", "SUBJECTIVE: patient reports improved mood"),
    ("HPI:\nfoo\nAssessment:\nbar", "HPI:\nfoo\nAssessment:\nbaz"),
    ("a  b\tc\n\nd", "a b c d e"),
    ("Plan: start lisinopril 10 mg", "Plan: continue lisinopril 20 mg daily"),
]


def test_tokenize_preserves_whitespace() -> None:
    """Tokens alternate words and whitespace runs and rejoin to the input."""
    text = "CC:  chest pain\n\nHPI: onset today"
    tokens = tokenize(text)
    assert "".join(tokens) == text
    assert tokens[:3] == ["CC:", "  ", "chest"]


@pytest.mark.parametrize("old,new", PAIRS)
def test_reconstructs_both_sides(old: str, new: str) -> None:
    """Insert/equal ops rebuild the new text, delete/equal ops rebuild the old."""
    ops = diff(old, new)
    if old == new:
        assert ops == []
        return
    assert reconstruct(ops, side="new") == new
    assert reconstruct(ops, side="old") == old


def test_identical_strings_produce_no_operations() -> None:
    assert diff("HPI: stable", "HPI: stable") == []


def test_replacement_emits_insert_before_delete() -> None:
    ops = diff("Assessment: bar", "Assessment: baz")
    kinds = [op.kind for op in ops]
    assert kinds == [OpKind.EQUAL, OpKind.INSERT, OpKind.DELETE]
    assert ops[1].text == "baz"
    assert ops[2].text == "bar"


def test_pure_insertion_and_deletion() -> None:
    inserted = diff("Plan: rest", "Plan: rest and fluids")
    assert [op.kind for op in inserted] == [OpKind.EQUAL, OpKind.INSERT]
    assert inserted[1].text == " and fluids"

    deleted = diff("Plan: rest and fluids", "Plan: rest")
    assert [op.kind for op in deleted] == [OpKind.EQUAL, OpKind.DELETE]


def _random_text(rng: random.Random) -> str:
    return "".join(rng.choice(PIECES) for _ in range(rng.randint(0, 12)))


def test_reconstructs_random_texts() -> None:
    """Mixed whitespace runs, including leading and trailing ones, survive the diff."""
    rng = random.Random(20240301)
    for _ in range(300):
        old = _random_text(rng)
        new = _random_text(rng) if rng.random() < 0.7 else f"  {old}\n"
        ops = diff(old, new)
        if old == new:
            assert ops == []
            continue
        assert reconstruct(ops, side="new") == new, (old, new)
        assert reconstruct(ops, side="old") == old, (old, new)
