"""Configuration loading from environment variables with validation."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Anchor all paths to the project root (two levels up from this file)
_PROJECT_DIR = Path(__file__).resolve().parent.parent.parent

# Ordered label -> header pattern table. Patterns are matched case-insensitively
# and must end in the colon that terminates a section header.
DEFAULT_SECTION_PATTERNS: dict[str, str] = {
    "Chief Complaint": r"\b(?:chief complaint|cc):",
    "HPI": r"\b(?:history of present illness|hpi):",
    "Assessment": r"\b(?:assessment|impression):",
    "Plan": r"\b(?:treatment plan|plan):",
    "Review of Systems": r"\b(?:review of systems|ros):",
    "Physical Exam": r"\b(?:physical exam|examination|pe):",
    "Social History": r"\b(?:social history|sh):",
    "Medications": r"\b(?:current medications|medications|meds):",
    "Allergies": r"\b(?:drug allergies|allergies):",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DELTASCRIBE_",
        case_sensitive=False,
    )

    # Anthropic (loaded separately, no prefix)
    anthropic_api_key: str = ""

    # Generation model settings
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.3

    # Storage paths (absolute, anchored to the project root)
    db_path: Path = _PROJECT_DIR / "data" / "deltascribe.db"
    style_profiles_dir: Path = _PROJECT_DIR / "data" / "style_profiles"

    # Logging
    log_level: str = "INFO"

    # Delta classification
    context_length: int = 50
    section_patterns: dict[str, str] = DEFAULT_SECTION_PATTERNS

    # Auto-save persistence
    autosave_quiet_period: float = 2.0  # seconds without a mutation
    autosave_retry_attempts: int = 3
    autosave_retry_delay: float = 1.0

    # Feedback analysis
    min_feedback: int = 3
    recent_window: int = 10
    trend_threshold: float = 0.2
    provider_min_samples: int = 3
    high_rating_threshold: int = 4
    recency_days: int = 7

    # Personalization
    severity_threshold: float = 0.7
    max_personalizations: int = 5

    # Experiments
    experiment_max_variants: int = 3
    experiment_target_note_count: int = 30
    experiment_confidence_threshold: float = 0.95


def get_settings() -> Settings:
    """Load settings from environment and .env file."""
    # Load .env from the project root regardless of cwd
    load_dotenv(_PROJECT_DIR / ".env")
    api_key = os.getenv("ANTHROPIC_API_KEY", "")
    return Settings(anthropic_api_key=api_key)
