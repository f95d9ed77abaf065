"""Jinja2-based prompt template loading and rendering."""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader

_TEMPLATE_DIR = Path(__file__).parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    trim_blocks=True,
    lstrip_blocks=True,
)

BASELINE_PROMPTS: dict[str, str] = {
    "soap": (
        "Generate a professional SOAP note based on the provided clinical information. "
        "Ensure proper medical terminology, clear organization, and Epic-compatible formatting. "
        "Preserve all SmartPhrases (@PHRASES@) and SmartLists ({Lists:123}) exactly as provided."
    ),
    "progress": (
        "Create a detailed progress note documenting the patient's current status, "
        "treatment response, and care plan. Use clinical language appropriate for "
        "medical documentation."
    ),
    "general": (
        "Generate a comprehensive clinical note based on the provided information. "
        "Use professional medical language, proper structure, and maintain Epic formatting. "
        "Include relevant clinical details while ensuring accuracy and clarity."
    ),
}


def baseline_prompt(template_type: str | None) -> str:
    """Return the standard system prompt for a template type."""
    return BASELINE_PROMPTS.get(template_type or "general", BASELINE_PROMPTS["general"])


def render(template_name: str, **context: object) -> str:
    """Render a prompt template with the given context variables."""
    template = _env.get_template(template_name)
    return template.render(**context)
