"""CLI entry point for the deltascribe edit tracking and personalization engine."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

console = Console()


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """Clinical note edit tracking and feedback-driven prompt personalization."""
    from deltascribe.config import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# ---------------------------------------------------------------------------
# track: replay document snapshots through an edit session
# ---------------------------------------------------------------------------


@main.command()
@click.argument("note_id")
@click.argument("snapshots", nargs=-1, required=True, type=click.Path(exists=True))
def track(note_id: str, snapshots: tuple[str, ...]) -> None:
    """Replay SNAPSHOTS (oldest first) as edits of NOTE_ID and save a version.

    The first file is the generated draft; each later file is the full
    document after one round of editing.
    """
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine

    settings = get_settings()
    engine = DeltaScribeEngine.from_settings(settings)
    contents = [Path(p).read_text() for p in snapshots]

    tracker = engine.start_session(note_id, contents[0])
    for content in contents[1:]:
        engine.record_mutation(tracker, content)
    session = engine.close_session(tracker)

    table = Table(title=f"Changes to {note_id}")
    table.add_column("#", width=3, justify="right")
    table.add_column("Type", width=12)
    table.add_column("Section", width=18)
    table.add_column("Pos", width=6, justify="right")
    table.add_column("Content", width=50)
    for i, change in enumerate(session.changes, 1):
        table.add_row(
            str(i),
            change.type.value,
            change.section or "[dim]Unknown[/dim]",
            str(change.position),
            change.content.strip()[:50],
        )
    console.print(table)

    analytics = tracker.get_analytics()
    console.print(
        f"\n{analytics.total_changes} changes: {analytics.additions} additions, "
        f"{analytics.deletions} deletions, {analytics.modifications} modifications"
    )
    if analytics.most_edited_section:
        console.print(f"Most edited section: [bold]{analytics.most_edited_section}[/bold]")


@main.command()
@click.argument("note_id")
def history(note_id: str) -> None:
    """Show the saved version history of NOTE_ID."""
    from deltascribe.config import get_settings
    from deltascribe.storage.repository import NoteStore

    settings = get_settings()
    versions = NoteStore(settings.db_path).get_versions(note_id)
    if not versions:
        console.print(f"[yellow]No saved versions for {note_id}.[/yellow]")
        return

    table = Table(title=f"Version history: {note_id}")
    table.add_column("Saved", width=19)
    table.add_column("Changes", width=8, justify="right")
    table.add_column("Edit time", width=10, justify="right")
    table.add_column("Sections", width=40)
    for version in versions:
        sections = ", ".join(f"{k}: {v}" for k, v in version.analytics.changes_by_section.items())
        table.add_row(
            version.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(version.analytics.total_changes),
            f"{version.analytics.edit_time:.0f}s",
            sections[:40],
        )
    console.print(table)


# ---------------------------------------------------------------------------
# feedback / analyze: ingest ratings and show the patterns behind them
# ---------------------------------------------------------------------------


@main.group()
def feedback() -> None:
    """Manage clinician feedback records."""


@feedback.command("import")
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--user", "-u", "user_id", default="default", help="User the feedback belongs to")
def import_feedback(file_path: str, user_id: str) -> None:
    """Import feedback records from a JSON list."""
    from pydantic import ValidationError

    from deltascribe.config import get_settings
    from deltascribe.feedback.models import FeedbackRecord
    from deltascribe.storage.repository import FeedbackStore

    settings = get_settings()
    store = FeedbackStore(settings.db_path)
    raw = json.loads(Path(file_path).read_text())

    imported = 0
    for item in raw:
        try:
            record = FeedbackRecord.model_validate({**item, "user_id": user_id})
        except ValidationError as e:
            console.print(f"  [red]Skipping invalid record: {e.errors()[0]['msg']}[/red]")
            continue
        store.add(record)
        imported += 1
    console.print(f"[green]Imported {imported} of {len(raw)} records for {user_id}[/green]")


@main.command()
@click.option("--user", "-u", "user_id", default="default", help="User to analyze")
def analyze(user_id: str) -> None:
    """Analyze a user's feedback for trends and recurring issues."""
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine
    from deltascribe.errors import InsufficientDataError

    settings = get_settings()
    engine = DeltaScribeEngine.from_settings(settings)
    try:
        analysis = engine.analyze_feedback(user_id)
    except InsufficientDataError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return

    trends = analysis.rating_trends
    console.print(
        Panel(
            f"[bold]{analysis.total_feedback_analyzed}[/bold] records | "
            f"average {trends.average_rating:.2f} | trend [bold]{trends.trend.value}[/bold] "
            f"({trends.older_average:.2f} -> {trends.recent_average:.2f}) | "
            f"confidence {analysis.confidence_score:.0%}",
            title=f"Feedback analysis: {user_id}",
        )
    )

    if analysis.issue_patterns:
        table = Table(title="Issue Patterns")
        table.add_column("Issue", width=22)
        table.add_column("Count", width=6, justify="right")
        table.add_column("Share", width=7, justify="right")
        table.add_column("Avg rating", width=10, justify="right")
        table.add_column("Severity", width=9, justify="right")
        for p in analysis.issue_patterns:
            table.add_row(
                p.issue,
                str(p.frequency),
                f"{p.percentage:.0f}%",
                f"{p.average_rating:.2f}" if p.average_rating is not None else "-",
                f"{p.severity:.2f}",
            )
        console.print(table)

    templates = analysis.content_analysis.templates
    if templates:
        table = Table(title="Templates")
        table.add_column("Template", width=20)
        table.add_column("Notes", width=6, justify="right")
        table.add_column("Avg rating", width=10, justify="right")
        table.add_column("Performance", width=18)
        for t in templates.values():
            table.add_row(t.template, str(t.count), f"{t.average_rating:.2f}", t.performance.value)
        console.print(table)

    temporal = analysis.temporal_patterns
    console.print(
        f"Review time vs rating correlation: {temporal.review_time_correlation:+.2f}"
    )
    provider = analysis.provider_analysis.recommended_provider
    if provider:
        console.print(f"Recommended provider: [bold]{provider}[/bold]")


@main.command()
@click.option("--user", "-u", "user_id", default="default", help="User to personalize for")
@click.option("--template", "-t", "template_type", default="general", help="Template type")
@click.option("--base-prompt", "-b", type=click.Path(exists=True),
              help="File holding the base prompt (defaults to the template baseline)")
def personalize(user_id: str, template_type: str, base_prompt: str | None) -> None:
    """Build the personalized prompt for a user's next note."""
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine
    from deltascribe.errors import InsufficientDataError
    from deltascribe.llm.prompts import baseline_prompt
    from deltascribe.personalization.models import GenerationContext
    from deltascribe.personalization.profile import ClinicianStyleProfile

    settings = get_settings()
    engine = DeltaScribeEngine.from_settings(settings)
    context = GenerationContext(
        template_type=template_type,
        base_prompt=Path(base_prompt).read_text() if base_prompt else None,
    )
    try:
        analysis = engine.analyze_feedback(user_id)
    except InsufficientDataError as e:
        console.print(f"[yellow]{e}. Falling back to the base prompt.[/yellow]")
        base = context.base_prompt or baseline_prompt(template_type)
        console.print(Panel(base, title="Base prompt"))
        return

    profile = ClinicianStyleProfile.load(settings.style_profiles_dir, user_id)
    result = engine.generate_personalized_prompt(analysis, profile, context)

    table = Table(title="Personalizations")
    table.add_column("Impact", width=6, justify="right")
    table.add_column("Type", width=9)
    table.add_column("Instruction", width=60)
    for p in result.personalizations:
        table.add_row(f"{p.impact:.2f}", p.type.value, p.text)
    console.print(table)
    console.print(
        Panel(
            result.prompt,
            subtitle=f"confidence {result.confidence_score:.0%} | "
            f"expected improvement {result.baseline_comparison:.1f}%",
        )
    )


# ---------------------------------------------------------------------------
# experiment: A/B comparison of prompt variants
# ---------------------------------------------------------------------------


@main.group()
def experiment() -> None:
    """Create and track prompt experiments."""


@experiment.command("create")
@click.option("--user", "-u", "user_id", default="default", help="User the experiment is for")
@click.option("--template", "-t", "template_type", default="general", help="Template type")
def create_experiment(user_id: str, template_type: str) -> None:
    """Start an experiment over the template's baseline prompt."""
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine
    from deltascribe.errors import InsufficientDataError
    from deltascribe.llm.prompts import baseline_prompt
    from deltascribe.personalization.models import GenerationContext

    settings = get_settings()
    engine = DeltaScribeEngine.from_settings(settings)
    try:
        analysis = engine.analyze_feedback(user_id)
    except InsufficientDataError:
        analysis = None

    experiment_id = engine.create_experiment(
        baseline_prompt(template_type),
        GenerationContext(template_type=template_type),
        user_id=user_id,
        analysis=analysis,
    )
    exp = engine.experiments.get(experiment_id)
    console.print(f"[green]Created experiment {experiment_id}[/green]")
    for variant in exp.variant_results:
        console.print(f"  - {variant.variant_id}")


@experiment.command("record")
@click.argument("experiment_id")
@click.argument("variant_id")
@click.option("--rating", "-r", type=click.IntRange(1, 5), help="Clinician rating (1-5)")
@click.option("--time", "processing_time", type=float, help="Generation time in seconds")
def record_outcome(
    experiment_id: str, variant_id: str, rating: int | None, processing_time: float | None
) -> None:
    """Record a generation and/or rating for one variant."""
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine
    from deltascribe.errors import DeltaScribeError

    if rating is None and processing_time is None:
        raise click.UsageError("Give --rating, --time or both.")

    settings = get_settings()
    engine = DeltaScribeEngine.from_settings(settings)
    try:
        engine.record_experiment_outcome(experiment_id, variant_id, rating, processing_time)
    except DeltaScribeError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise SystemExit(1)
    console.print(f"[green]Recorded outcome for {variant_id}[/green]")


@experiment.command("show")
@click.argument("experiment_id")
def show_experiment(experiment_id: str) -> None:
    """Show per-variant results for an experiment."""
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine

    settings = get_settings()
    engine = DeltaScribeEngine.from_settings(settings)
    summary = engine.experiments.summarize(experiment_id)

    table = Table(title=f"Experiment {experiment_id} ({summary.status.value})")
    table.add_column("Variant", width=24)
    table.add_column("Notes", width=6, justify="right")
    table.add_column("Ratings", width=8, justify="right")
    table.add_column("Avg rating", width=10, justify="right")
    table.add_column("Avg time", width=9, justify="right")
    for v in summary.variants:
        table.add_row(
            v.variant_id,
            str(v.note_count),
            str(v.feedback_count),
            f"{v.average_rating:.2f}",
            f"{v.average_processing_time:.1f}s",
        )
    console.print(table)
    if summary.leading_variant:
        improvement = (
            f" ({summary.leading_improvement:+.1f}% vs control)"
            if summary.leading_improvement is not None
            else ""
        )
        console.print(f"Leading: [bold]{summary.leading_variant}[/bold]{improvement}")


@experiment.command("conclude")
@click.argument("experiment_id")
@click.option("--winner", "-w", help="Variant chosen as the winner")
def conclude_experiment(experiment_id: str, winner: str | None) -> None:
    """Conclude an experiment, optionally recording the chosen winner."""
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine

    settings = get_settings()
    engine = DeltaScribeEngine.from_settings(settings)
    exp = engine.experiments.conclude(experiment_id, winner)
    console.print(f"[green]Experiment {experiment_id} concluded[/green]")
    if exp.winning_variant:
        console.print(f"Winner: [bold]{exp.winning_variant}[/bold]")


# ---------------------------------------------------------------------------
# profile: clinician style preferences
# ---------------------------------------------------------------------------


@main.command()
@click.option("--user", "-u", "user_id", default="default", help="User whose profile to edit")
@click.option("--style", type=click.Choice(["concise", "detailed", "structured", "narrative"]))
@click.option("--tone", type=click.Choice(["professional", "clinical", "conversational"]))
@click.option("--length", type=click.Choice(["short", "medium", "long"]))
@click.option("--add", "additions", multiple=True, help="Custom prompt addition (repeatable)")
@click.option("--avoid", "avoided", multiple=True, help="Phrase to avoid (repeatable)")
def profile(
    user_id: str,
    style: str | None,
    tone: str | None,
    length: str | None,
    additions: tuple[str, ...],
    avoided: tuple[str, ...],
) -> None:
    """Show or update a clinician's style profile."""
    from datetime import datetime

    from deltascribe.config import get_settings
    from deltascribe.personalization.profile import ClinicianStyleProfile

    settings = get_settings()
    prof = ClinicianStyleProfile.load(settings.style_profiles_dir, user_id)

    updates: dict = {}
    if style:
        updates["preferred_note_style"] = style
    if tone:
        updates["preferred_tone"] = tone
    if length:
        updates["average_note_length"] = length
    if additions:
        updates["custom_prompt_additions"] = [*prof.custom_prompt_additions, *additions]
    if avoided:
        updates["avoided_phrases"] = [*prof.avoided_phrases, *avoided]
    if updates:
        updates["last_updated"] = datetime.now()
        prof = ClinicianStyleProfile.model_validate({**prof.model_dump(), **updates})
        prof.save(settings.style_profiles_dir)
        console.print("[bold green]Style profile updated![/bold green]")

    console.print(f"\n[bold]Style Profile[/bold] for {user_id}\n")
    console.print(f"  Note style: {prof.preferred_note_style.value}")
    console.print(f"  Tone: {prof.preferred_tone.value}")
    console.print(f"  Length: {prof.average_note_length.value}")
    fragment = prof.to_prompt_fragment()
    if fragment:
        console.print(f"\n[dim]{fragment}[/dim]")


# ---------------------------------------------------------------------------
# generate: produce a note with the selected prompt strategy
# ---------------------------------------------------------------------------


@main.command()
@click.option("--user", "-u", "user_id", default="default", help="User generating the note")
@click.option("--encounter", "-e", type=click.Path(exists=True), required=True,
              help="File with the encounter transcript or data")
@click.option("--template", "-t", "template_type", default="general", help="Template type")
@click.option("--baseline", is_flag=True, help="Ignore experiments and personalization")
def generate(user_id: str, encounter: str, template_type: str, baseline: bool) -> None:
    """Generate a clinical note using experiments or personalization when available."""
    from deltascribe.config import get_settings
    from deltascribe.engine import DeltaScribeEngine
    from deltascribe.generation import NoteGenerationService, StrategyType
    from deltascribe.llm.client import ClaudeClient
    from deltascribe.personalization.models import GenerationContext

    settings = get_settings()
    _check_api_key(settings)
    engine = DeltaScribeEngine.from_settings(settings)
    service = NoteGenerationService(
        ClaudeClient(settings),
        engine.feedback_store,
        engine.experiments,
        analyzer=engine.analyzer,
        personalizer=engine.personalizer,
        profiles_dir=settings.style_profiles_dir,
    )

    with console.status("[bold green]Generating note..."):
        result = service.generate(
            user_id,
            Path(encounter).read_text(),
            GenerationContext(template_type=template_type),
            force=StrategyType.BASELINE if baseline else None,
        )

    subtitle = f"{result.strategy.value} prompt | {result.generation_time:.1f}s"
    if result.experiment_variant:
        subtitle += f" | variant {result.experiment_variant}"
    console.print(Panel(result.content, subtitle=subtitle))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_api_key(settings: object) -> None:
    """Exit with a helpful message if the API key is not set."""
    if not getattr(settings, "anthropic_api_key", ""):
        console.print(
            "[bold red]Error:[/bold red] ANTHROPIC_API_KEY not set.\n"
            "Add it to the .env file in the project root."
        )
        raise SystemExit(1)
