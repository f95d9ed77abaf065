"""Note generation backend built on the Anthropic Claude SDK."""

from __future__ import annotations

from dataclasses import dataclass

from anthropic import APIStatusError, Anthropic, AuthenticationError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from deltascribe.config import Settings


def _is_retryable(exc: BaseException) -> bool:
    """Retry rate limits (429) and server errors; never auth or other 4xx errors."""
    if isinstance(exc, AuthenticationError):
        return False
    if isinstance(exc, APIStatusError) and exc.status_code < 500:
        return exc.status_code == 429
    return True


@dataclass
class GeneratedNote:
    """A draft returned by the generation backend."""

    content: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0


class ClaudeClient:
    """Turns a (possibly personalized) system prompt plus encounter data into a note."""

    provider = "claude"

    def __init__(self, settings: Settings) -> None:
        self._client = Anthropic(api_key=settings.anthropic_api_key)
        self._model = settings.model
        self._max_tokens = settings.max_tokens
        self._temperature = settings.temperature
        self._total_input_tokens = 0
        self._total_output_tokens = 0

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
    )
    def generate_note(
        self,
        system_prompt: str,
        encounter_prompt: str,
        *,
        temperature: float | None = None,
    ) -> GeneratedNote:
        response = self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=temperature if temperature is not None else self._temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": encounter_prompt}],
        )
        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens
        return GeneratedNote(
            content=response.content[0].text,
            provider=self.provider,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    @property
    def usage_summary(self) -> dict:
        return {
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
        }
