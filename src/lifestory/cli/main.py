"""
Command Line Interface for lifestory.

Generates a narrated biography from a user's exported activity, and
manages the AI cache, usage statistics and the stored API key.
"""

import json
import logging
import sys
import time
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.prompt import Confirm
from rich.table import Table

from lifestory import __version__
from lifestory.ai.usage_tracker import UsageTracker
from lifestory.biography.chapters import ChapterOptions
from lifestory.config import (
    AppConfig,
    ConfigError,
    find_api_key,
    get_config,
    load_config,
    store_api_key,
)
from lifestory.core.events import JsonFileEventStore
from lifestory.core.models import Biography, NarrativeStyle, NarrativeTone
from lifestory.jobs.models import BiographyJobPayload, GenerationOptions, JobState
from lifestory.jobs.worker import get_job_status, is_finished, submit_biography_job
from lifestory.services import build_cache, build_services, usage_path
from lifestory.utils.logging import LogContext, setup_logging

logger = logging.getLogger(__name__)

console = Console()

STATUS_POLL_SECONDS = 0.2


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def print_header(text: str) -> None:
    console.print(f"\n[bold cyan]{text}[/bold cyan]\n")


def print_success(text: str) -> None:
    console.print(f"[bold green]✓[/bold green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[bold yellow]![/bold yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[bold red]✗[/bold red] {text}")


def print_info_panel(title: str, content: str, border_style: str = "blue") -> None:
    console.print(Panel(content, title=title, border_style=border_style))


def create_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    )


def print_biography_summary(biography: Biography) -> None:
    """Chapter table plus headline numbers."""
    table = Table(title=biography.title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Chapter", style="cyan")
    table.add_column("Words", justify="right")
    table.add_column("Media", justify="right")

    for number, chapter in enumerate(biography.chapters, start=1):
        title = chapter.title if not chapter.is_fallback else f"{chapter.title} [yellow](fallback)[/yellow]"
        table.add_row(
            str(number),
            title,
            f"{chapter.word_count:,}",
            str(len(chapter.media_matches)),
        )

    console.print(table)
    console.print(
        f"\nChapters: {biography.metadata.total_chapters}  "
        f"Words: {biography.metadata.total_words:,}  "
        f"Cost: ${biography.metadata.cost:.4f}  "
        f"Time: {biography.metadata.generation_time_ms / 1000:.1f}s"
    )


def _config(ctx: click.Context) -> AppConfig:
    return ctx.obj["config"]


# =============================================================================
# MAIN CLI GROUP
# =============================================================================


@click.group()
@click.version_option(__version__, prog_name="lifestory")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Custom config file")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.pass_context
def cli(ctx, verbose, debug, config_path, quiet):
    """
    lifestory - Turn a person's digital activity into a written biography.

    Events are collected into a timeline, categorized and scored for
    sentiment, grouped into chapters and narrated by Gemini.
    """
    config = load_config(Path(config_path)) if config_path else get_config()
    config = config.model_copy(update={"debug": config.debug or debug, "verbose": config.verbose or verbose})

    level = "ERROR" if quiet and not (debug or verbose) else config.log_level
    log_file = config.paths.log_dir / "lifestory.log" if config.debug else None
    setup_logging(level=level, log_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["quiet"] = quiet


# =============================================================================
# GENERATE COMMAND - Main workflow
# =============================================================================


@cli.command()
@click.argument("user_id")
@click.option(
    "--style",
    type=click.Choice([s.value for s in NarrativeStyle]),
    default=NarrativeStyle.CHRONOLOGICAL.value,
    help="Narrative style",
)
@click.option(
    "--tone",
    type=click.Choice([t.value for t in NarrativeTone]),
    default=NarrativeTone.CONVERSATIONAL.value,
    help="Narrative tone",
)
@click.option("--data-dir", type=click.Path(file_okay=False), help="Directory holding <user_id>.json exports")
@click.option("--no-sentiment", is_flag=True, help="Skip sentiment analysis")
@click.option("--no-media", is_flag=True, help="Skip matching media to chapters")
@click.option("--no-ai-titles", is_flag=True, help="Use simple chapter titles instead of AI titles")
@click.option("--min-events", type=click.IntRange(min=1), default=5, show_default=True,
              help="Minimum events per chapter")
@click.option("--max-events", type=click.IntRange(min=1), default=50, show_default=True,
              help="Maximum events per chapter")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the biography as JSON")
@click.pass_context
def generate(ctx, user_id, style, tone, data_dir, no_sentiment, no_media, no_ai_titles,
             min_events, max_events, output):
    """
    Generate a biography for USER_ID.

    Example:
        lifestory generate alice --style thematic --tone nostalgic -o alice.json
    """
    config = _config(ctx)
    quiet = ctx.obj["quiet"]

    if find_api_key() is None:
        print_error("No Gemini API key configured.")
        print_info_panel(
            "Setup Required",
            "Set GEMINI_API_KEY or store a key with:\n  lifestory config set-key",
            border_style="yellow",
        )
        sys.exit(1)

    try:
        chapter_options = ChapterOptions(
            min_events_per_chapter=min_events,
            max_events_per_chapter=max_events,
            use_ai=not no_ai_titles,
        )
    except ValidationError as e:
        raise click.UsageError("--max-events must be at least --min-events") from e

    event_store = JsonFileEventStore(Path(data_dir)) if data_dir else None
    services = build_services(config, event_store=event_store)

    payload = BiographyJobPayload(
        user_id=user_id,
        style=NarrativeStyle(style),
        tone=NarrativeTone(tone),
        options=GenerationOptions(
            include_media=not no_media,
            include_sentiment=not no_sentiment,
            chapter_options=chapter_options,
        ),
    )

    if not quiet:
        print_header(f"Generating biography for {user_id}")

    response = submit_biography_job(services.queue, payload)
    logger.info(f"Submitted job {response.job_id}")

    services.worker.start()
    try:
        with LogContext(f"Biography job {response.job_id}", logger=logger), create_progress() as progress:
            task = progress.add_task("Writing biography...", total=100)
            while True:
                status = get_job_status(services.queue, response.job_id)
                progress.update(task, completed=status.progress)
                if is_finished(status):
                    break
                time.sleep(STATUS_POLL_SECONDS)
    finally:
        services.worker.stop(timeout=5.0)
        services.usage_tracker.save()

    if status.status != JobState.COMPLETED or status.result is None:
        print_error(f"Generation failed after {status.attempts_made} attempt(s): {status.failure_reason}")
        sys.exit(1)

    biography = status.result.biography
    if biography is None:
        print_error("Job completed without a biography")
        sys.exit(1)

    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(biography.model_dump_json(indent=2), encoding="utf-8")

    if not quiet:
        print_biography_summary(biography)
    print_success(f"Biography {biography.id} generated")
    if output:
        console.print(f"Saved to: [bold cyan]{output}[/bold cyan]")


# =============================================================================
# CACHE GROUP
# =============================================================================


@cli.group()
def cache():
    """Inspect or clear the AI response cache."""


@cache.command("stats")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def cache_stats(ctx, output_json):
    """Show cache statistics."""
    store = build_cache(_config(ctx))
    if store is None:
        print_warning("Caching is disabled")
        return

    stats = store.get_stats()
    if output_json:
        click.echo(json.dumps(stats, indent=2))
        return

    table = Table(title="AI Cache")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in stats.items():
        table.add_row(key, str(value))
    console.print(table)


@cache.command("clear")
@click.option("--pattern", help="Only delete keys matching this glob pattern")
@click.option("--force", is_flag=True, help="Skip confirmation")
@click.pass_context
def cache_clear(ctx, pattern, force):
    """Delete cached AI responses."""
    store = build_cache(_config(ctx))
    if store is None:
        print_warning("Caching is disabled")
        return
    if not force and not Confirm.ask("Delete cached AI responses?", default=False):
        return

    removed = store.delete_pattern(pattern) if pattern else store.clear()
    print_success(f"Removed {removed} cache entries")


# =============================================================================
# USAGE COMMAND
# =============================================================================


@cli.command()
@click.pass_context
def usage(ctx):
    """Show AI usage statistics."""
    config = _config(ctx)
    tracker = UsageTracker(storage_path=usage_path(config))
    summary = tracker.get_summary()

    print_header("AI Usage Statistics")
    table = Table(title="Usage Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Requests", f"{summary.total_requests:,}")
    table.add_row("Failed", f"{summary.failed_requests:,}")
    table.add_row("Success rate", f"{summary.success_rate():.0%}")
    table.add_row("Tokens", f"{summary.total_tokens:,}")
    table.add_row("Est. Cost", f"${summary.total_estimated_cost_usd:.4f}")
    console.print(table)

    if summary.by_operation:
        ops = Table(title="By Operation")
        ops.add_column("Operation", style="cyan")
        ops.add_column("Requests", justify="right")
        for operation, count in sorted(summary.by_operation.items()):
            ops.add_row(operation, str(count))
        console.print(ops)


# =============================================================================
# TEST-CONNECTION COMMAND
# =============================================================================


@cli.command("test-connection")
@click.pass_context
def test_connection(ctx):
    """Check that the Gemini API answers."""
    if find_api_key() is None:
        print_error("No Gemini API key configured")
        sys.exit(1)

    services = build_services(_config(ctx))
    with console.status("Contacting Gemini..."):
        ok = services.gateway.test_connection()

    if ok:
        print_success("Gemini API is reachable")
    else:
        print_error("Gemini API did not answer; check your key and network")
        sys.exit(1)


# =============================================================================
# CONFIG GROUP
# =============================================================================


@cli.group()
def config():
    """Manage configuration settings."""


@config.command()
@click.pass_context
def show(ctx):
    """Display current configuration."""
    cfg = _config(ctx)
    print_header("Current Configuration")

    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("API Key", "[CONFIGURED]" if find_api_key() else "[NOT SET]")
    table.add_row("Default model", cfg.ai.default_model)
    table.add_row("Narrative model", cfg.ai.narrative_model)
    table.add_row("Enrichment model", cfg.ai.enrichment_model)
    table.add_row("Temperature", str(cfg.ai.temperature))
    table.add_row("Cache", f"{cfg.cache.backend.value}" if cfg.cache.enabled else "disabled")
    table.add_row("Cache TTL", f"{cfg.ai.cache_ttl_seconds}s")
    table.add_row("Job attempts", str(cfg.jobs.attempts))
    table.add_row("Backoff", f"{cfg.jobs.backoff_delay_seconds}s (exponential)")
    table.add_row("Concurrency", str(cfg.jobs.concurrency))
    table.add_row("Data dir", str(cfg.paths.data_dir))
    table.add_row("Cache dir", str(cfg.paths.cache_dir))

    console.print(table)


@config.command("set-key")
@click.option("--api-key", prompt="Enter your Gemini API key", hide_input=True,
              help="Key to store (prompted when omitted)")
def set_key(api_key):
    """Store the Gemini API key in the system keyring."""
    if len(api_key.strip()) < 10:
        print_error("Invalid API key format")
        sys.exit(1)

    try:
        store_api_key(api_key)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    print_success("API key configured successfully")


# Entry point
if __name__ == "__main__":
    cli()
