"""Clinician style profile: stated and learned note preferences."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class NoteStyle(str, Enum):
    CONCISE = "concise"
    DETAILED = "detailed"
    STRUCTURED = "structured"
    NARRATIVE = "narrative"


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    CLINICAL = "clinical"
    CONVERSATIONAL = "conversational"


class NoteLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


STYLE_INSTRUCTIONS: dict[NoteStyle, str] = {
    NoteStyle.CONCISE: "Favor brief, focused statements over exhaustive description.",
    NoteStyle.DETAILED: "Document findings and reasoning thoroughly.",
    NoteStyle.STRUCTURED: "Organize content under clear section headers with short lists.",
    NoteStyle.NARRATIVE: "Write sections as flowing clinical prose.",
}

TONE_INSTRUCTIONS: dict[Tone, str] = {
    Tone.PROFESSIONAL: "Use professional language suitable for peer review.",
    Tone.CLINICAL: "Use terse clinical language and standard abbreviations.",
    Tone.CONVERSATIONAL: "Use plain, accessible language where clinically appropriate.",
}

LENGTH_INSTRUCTIONS: dict[NoteLength, str] = {
    NoteLength.SHORT: "Keep the whole note short.",
    NoteLength.MEDIUM: "Aim for a note of moderate length.",
    NoteLength.LONG: "A long, comprehensive note is acceptable.",
}


class ClinicianStyleProfile(BaseModel):
    """A clinician's documentation preferences."""

    user_id: str = "default"
    preferred_note_style: NoteStyle = NoteStyle.STRUCTURED
    preferred_tone: Tone = Tone.PROFESSIONAL
    average_note_length: NoteLength = NoteLength.MEDIUM
    specialty_focus: str | None = None
    custom_prompt_additions: list[str] = Field(default_factory=list)
    avoided_phrases: list[str] = Field(default_factory=list)
    confidence: float = 0.0  # 0.0 to 1.0, how settled these preferences are
    last_updated: datetime = Field(default_factory=datetime.now)

    @classmethod
    def default(cls, user_id: str = "default") -> ClinicianStyleProfile:
        return cls(user_id=user_id)

    def style_instructions(self) -> list[str]:
        """Instructions derived from the enumerated preferences."""
        return [
            STYLE_INSTRUCTIONS[self.preferred_note_style],
            TONE_INSTRUCTIONS[self.preferred_tone],
            LENGTH_INSTRUCTIONS[self.average_note_length],
        ]

    def to_prompt_fragment(self) -> str:
        """Convert this profile into a prompt fragment for note generation."""
        lines = []
        if self.specialty_focus:
            lines.append(f"- Specialty focus: {self.specialty_focus}")
        lines.extend(f"- {addition}" for addition in self.custom_prompt_additions)
        if self.avoided_phrases:
            phrases = ", ".join(f'"{p}"' for p in self.avoided_phrases)
            lines.append(f"- Never use these phrases: {phrases}")
        if not lines:
            return ""
        return "\n".join(["CLINICIAN PREFERENCES:", *lines])

    def save(self, directory: Path) -> None:
        """Persist the profile as a JSON file."""
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"style_{self.user_id}.json"
        path.write_text(self.model_dump_json(indent=2))

    @classmethod
    def load(cls, directory: Path, user_id: str = "default") -> ClinicianStyleProfile:
        """Load a profile from disk, or return default if not found."""
        path = directory / f"style_{user_id}.json"
        if path.exists():
            return cls.model_validate_json(path.read_text())
        return cls.default(user_id)
