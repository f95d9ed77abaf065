"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from deltascribe.config import Settings
from deltascribe.feedback.models import FeedbackRecord
from deltascribe.llm.client import ClaudeClient


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory structure."""
    (tmp_path / "style_profiles").mkdir()
    return tmp_path


@pytest.fixture
def settings(tmp_data_dir: Path) -> Settings:
    """Create test settings with temporary paths and no retry delays."""
    return Settings(
        anthropic_api_key="test-key-not-real",
        model="claude-sonnet-4-20250514",
        max_tokens=1024,
        temperature=0.3,
        db_path=tmp_data_dir / "test.db",
        style_profiles_dir=tmp_data_dir / "style_profiles",
        autosave_retry_delay=0.0,
    )


@pytest.fixture
def mock_claude_client(settings: Settings) -> ClaudeClient:
    """Create a ClaudeClient with a mocked Anthropic SDK."""
    client = ClaudeClient(settings)
    # Replace the internal Anthropic client with a mock
    mock_anthropic = MagicMock()
    client._client = mock_anthropic
    return client


def make_mock_response(text: str, input_tokens: int = 100, output_tokens: int = 200):
    """Helper to create a mock Anthropic API response."""
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text=text)]
    mock_response.usage.input_tokens = input_tokens
    mock_response.usage.output_tokens = output_tokens
    return mock_response


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function, args=None, kwargs=None) -> None:
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Run the callback, as a real timer would after its interval."""
        self.function(*self.args, **self.kwargs)


class TimerFactory:
    """Records every FakeTimer it creates."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None) -> FakeTimer:
        timer = FakeTimer(interval, function, args=args, kwargs=kwargs)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


@pytest.fixture
def timer_factory() -> TimerFactory:
    return TimerFactory()


class StepClock:
    """Deterministic clock advancing a fixed step on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start or datetime(2024, 3, 1, 9, 0, 0)
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current += self.step
        return now


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


BASE_TIME = datetime(2024, 3, 1, 9, 0, 0)


def make_feedback(
    ratings: list[int],
    *,
    user_id: str = "dr_lee",
    start: datetime = BASE_TIME,
    spacing: timedelta = timedelta(hours=1),
    **overrides,
) -> list[FeedbackRecord]:
    """Build one feedback record per rating with strictly increasing timestamps."""
    return [
        FeedbackRecord(
            user_id=user_id,
            note_id=f"note-{i}",
            rating=rating,
            created_at=start + spacing * i,
            **overrides,
        )
        for i, rating in enumerate(ratings)
    ]
