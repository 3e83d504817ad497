"""Command-line interface for note-synth."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from note_synth import __version__
from note_synth.config import Config, load_config, validate_config
from note_synth.intelligence.dependencies import detect_cycle, topological_order
from note_synth.intelligence.gaps import MissingTaskError, detect_gaps
from note_synth.intelligence.quality import QualityEvaluator, summarize_quality
from note_synth.intelligence.strategic import StrategicScorer, apply_sorting_strategy
from note_synth.llm.client import LLMClient
from note_synth.models.reviews import LintLevel, ReviewDocument
from note_synth.models.scoring import SortingStrategy
from note_synth.reviews.aggregator import AggregatorConfig, ReviewAggregator
from note_synth.reviews.formatter import (
    digest_as_json,
    format_digest,
    format_lint_report,
    lint_report_as_json,
)
from note_synth.reviews.linter import has_errors, lint_review
from note_synth.reviews.parser import parse_review_file
from note_synth.server.app import create_app
from note_synth.store import TaskStore

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load(config_path: str | None) -> Config:
    return load_config(Path(config_path) if config_path else None)


def _load_store(path: str) -> TaskStore:
    try:
        return TaskStore.from_file(Path(path))
    except ValueError as e:
        console.print(f"[red]Invalid task file:[/red] {e}")
        sys.exit(1)


def _collect_reviews(paths: tuple[str, ...]) -> list[ReviewDocument]:
    """Parse review files, expanding directories to their Markdown files."""
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(sorted(path.rglob("*.md")))
        else:
            files.append(path)
    return [parse_review_file(f) for f in files]


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """note-synth - Task intelligence and review tooling."""
    setup_logging(verbose)


@cli.command("quality")
@click.argument("texts", nargs=-1, required=True)
@click.option("--ai", "use_ai", is_flag=True, help="Use the LLM when configured")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def quality(texts: tuple[str, ...], use_ai: bool, config_path: str | None) -> None:
    """Score the clarity of one or more task descriptions."""
    config = _load(config_path)
    items = [{"id": str(i + 1), "text": text} for i, text in enumerate(texts)]

    async def run():
        client = LLMClient.from_config(config) if use_ai else None
        evaluator = QualityEvaluator(
            client,
            chunk_size=config.scoring.quality_batch_size,
            chunk_delay_seconds=config.scoring.quality_batch_delay_seconds,
        )
        try:
            return await evaluator.evaluate_batch(items, force_heuristic=client is None)
        finally:
            if client is not None:
                await client.close()

    if use_ai and not config.llm.api_key:
        console.print("[yellow]No LLM API key configured - using heuristics[/yellow]")
    results = asyncio.run(run())

    table = Table(title="Task Quality")
    table.add_column("#", justify="right")
    table.add_column("Task")
    table.add_column("Score", justify="right")
    table.add_column("Badge")
    table.add_column("Suggestions")

    for item, result in zip(items, results):
        meta = result.metadata
        table.add_row(
            item["id"],
            item["text"],
            f"{meta.clarity_score:.2f}",
            f"[{meta.badge.color}]{meta.badge.value}[/{meta.badge.color}]",
            "; ".join(meta.improvement_suggestions) or "-",
        )
    console.print(table)

    summary = summarize_quality(results)
    console.print(
        f"Average {summary.average_score:.2f} | "
        f"[green]{summary.clear_count} clear[/green], "
        f"[yellow]{summary.review_count} review[/yellow], "
        f"[red]{summary.needs_work_count} needs work[/red]"
    )


@cli.command("gaps")
@click.argument("task_file", type=click.Path(exists=True))
def gaps(task_file: str) -> None:
    """Detect missing work between consecutive tasks in TASK_FILE."""
    store = _load_store(task_file)
    task_ids = list(store.tasks)

    try:
        analysis = detect_gaps(task_ids, store.tasks, store.relationships)
    except (MissingTaskError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not analysis.gaps:
        console.print(
            f"[green]✓ No gaps detected across {analysis.total_pairs_analyzed} task pairs[/green]"
        )
        return

    table = Table(title=f"Detected Gaps ({analysis.gaps_detected})")
    table.add_column("After")
    table.add_column("Before")
    table.add_column("Confidence", justify="right")
    table.add_column("Indicators")

    for gap in analysis.gaps:
        indicators = [
            name
            for name in ("time_gap", "action_type_jump", "no_dependency", "skill_jump")
            if getattr(gap.indicators, name)
        ]
        table.add_row(
            f"{gap.predecessor_task_id}: {store.tasks[gap.predecessor_task_id].text}",
            f"{gap.successor_task_id}: {store.tasks[gap.successor_task_id].text}",
            f"{gap.confidence:.2f}",
            ", ".join(indicators),
        )
    console.print(table)


@cli.command("cycles")
@click.argument("task_file", type=click.Path(exists=True))
def cycles(task_file: str) -> None:
    """Check TASK_FILE's depends_on graph for circular dependencies."""
    store = _load_store(task_file)

    if detect_cycle(store.plan):
        try:
            topological_order(store.plan)
        except ValueError as e:
            console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    order = topological_order(store.plan)
    console.print(f"[green]✓ No cycles among {len(store.plan)} tasks[/green]")
    if order:
        console.print("Execution order: " + " → ".join(order))


@cli.command("score")
@click.argument("task_file", type=click.Path(exists=True))
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in SortingStrategy]),
    default=SortingStrategy.BALANCED.value,
    help="Sorting strategy",
)
@click.option("--ai", "use_ai", is_flag=True, help="Estimate impact with the LLM when configured")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def score(task_file: str, strategy: str, use_ai: bool, config_path: str | None) -> None:
    """Score tasks in TASK_FILE for impact, effort and priority."""
    config = _load(config_path)
    store = _load_store(task_file)
    tasks = store.list_tasks()
    outcome = store.active_outcome()

    async def run():
        client = LLMClient.from_config(config) if use_ai else None
        rescored = {}

        async def keep(rescored_score):
            rescored[rescored_score.task_id] = rescored_score

        scorer = StrategicScorer(
            client, concurrency=config.scoring.max_concurrency, on_rescored=keep
        )
        try:
            scores = await scorer.score_tasks(tasks, outcome=outcome.text if outcome else None)
            if scorer.retry_queue.pending_count:
                console.print(
                    f"[dim]Retrying {scorer.retry_queue.pending_count} impact estimates...[/dim]"
                )
                await scorer.retry_queue.wait_idle()
            scores.update(rescored)
            return scores
        finally:
            if client is not None:
                await client.close()

    scores = asyncio.run(run())
    ordered = apply_sorting_strategy(
        list(scores.values()), SortingStrategy(strategy), {t.id: t.text for t in tasks}
    )

    table = Table(title=f"Strategic Scores ({strategy})")
    table.add_column("Task")
    table.add_column("Impact", justify="right")
    table.add_column("Effort (h)", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Quadrant")

    for s in ordered:
        marker = " [dim](pending)[/dim]" if s.is_placeholder else ""
        table.add_row(
            f"{s.task_id}: {store.tasks[s.task_id].text}{marker}",
            f"{s.impact:.1f}",
            f"{s.effort:g}",
            f"{s.confidence:.2f}",
            f"{s.priority:.2f}",
            s.quadrant.label,
        )
    console.print(table)

    hidden = len(scores) - len(ordered)
    if hidden:
        console.print(f"[dim]{hidden} tasks hidden by the {strategy} strategy[/dim]")


@cli.group("reviews")
def reviews_group() -> None:
    """Review document commands."""
    pass


@reviews_group.command("lint")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--output", type=click.Choice(["table", "json", "markdown"]), default="table")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def reviews_lint(paths: tuple[str, ...], output: str, config_path: str | None) -> None:
    """Lint Markdown review documents (exit 1 on errors)."""
    config = _load(config_path)
    documents = _collect_reviews(paths)
    results = {doc.source: lint_review(doc, config.reviews.disabled_rules) for doc in documents}
    violations = [v for vs in results.values() for v in vs]

    if output == "json":
        print(json.dumps(lint_report_as_json(results), indent=2))
    elif output == "markdown":
        print(format_lint_report(results))
    elif not violations:
        console.print(f"[green]✓ {len(documents)} review documents passed lint[/green]")
    else:
        table = Table(title="Review Lint")
        table.add_column("File")
        table.add_column("Line", justify="right")
        table.add_column("Level")
        table.add_column("Rule")
        table.add_column("Message")
        for v in violations:
            color = "red" if v.level is LintLevel.ERROR else "yellow"
            table.add_row(
                v.source or "-",
                str(v.line) if v.line else "-",
                f"[{color}]{v.level.value}[/{color}]",
                v.rule,
                v.message,
            )
        console.print(table)

    if has_errors(violations, config.reviews.fail_on_warnings):
        sys.exit(1)


@reviews_group.command("digest")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--output", type=click.Choice(["table", "json", "markdown"]), default="table")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def reviews_digest(paths: tuple[str, ...], output: str, config_path: str | None) -> None:
    """Consolidate recurring issues across review passes."""
    config = _load(config_path)
    aggregator = ReviewAggregator(
        AggregatorConfig(similarity_threshold=config.reviews.similarity_threshold)
    )
    digest = aggregator.aggregate(_collect_reviews(paths))

    if output == "json":
        print(json.dumps(digest_as_json(digest), indent=2))
        return
    if output == "markdown":
        print(format_digest(digest))
        return

    console.print(digest.summary)
    if not digest.issues:
        return

    table = Table(title="Consolidated Issues")
    table.add_column("Severity")
    table.add_column("Issue")
    table.add_column("Location")
    table.add_column("Seen", justify="right")
    for issue in digest.issues:
        location = issue.file_path or "-"
        if issue.file_path and issue.line_start is not None:
            location = f"{issue.file_path}:{issue.line_start}"
        table.add_row(issue.severity.value.upper(), issue.title, location, str(issue.recurrence))
    console.print(table)


@cli.group("config")
def config_group() -> None:
    """Configuration commands."""
    pass


@config_group.command("validate")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--offline", is_flag=True, help="Don't require an LLM API key")
def config_validate(config_path: str | None, offline: bool) -> None:
    """Validate configuration file."""
    try:
        config = _load(config_path)
        errors = validate_config(config, require_llm=not offline)

        if errors:
            console.print("[red]Configuration is invalid:[/red]")
            for error in errors:
                console.print(f"  • {error}")
            sys.exit(1)
        else:
            console.print("[green]✓ Configuration is valid[/green]")
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        sys.exit(1)


@config_group.command("show")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def config_show(config_path: str | None) -> None:
    """Show current configuration."""
    config = _load(config_path)

    console.print("\n[bold]Current Configuration[/bold]\n")

    table = Table(title="Settings")
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("llm.base_url", config.llm.base_url)
    table.add_row("llm.chat_model", config.llm.chat_model)
    table.add_row("llm.api_key", "set" if config.llm.api_key else "[red]missing[/red]")
    table.add_row("embeddings.model", config.embeddings.model)
    table.add_row("scoring.coverage_threshold", str(config.scoring.coverage_threshold))
    table.add_row("scoring.max_concurrency", str(config.scoring.max_concurrency))
    table.add_row("prioritization.max_iterations", str(config.prioritization.max_iterations))
    table.add_row(
        "prioritization.evaluator_models",
        ", ".join(config.prioritization.evaluator_models) or "(default)",
    )
    table.add_row("reviews.similarity_threshold", str(config.reviews.similarity_threshold))
    table.add_row("reviews.disabled_rules", ", ".join(config.reviews.disabled_rules) or "-")

    console.print(table)

    console.print(f"\n[bold]Server:[/bold] {config.server.host}:{config.server.port}")
    console.print(
        f"[bold]Request signing:[/bold] {'enabled' if config.server.signing_secret else 'disabled'}"
    )


@cli.command("serve")
@click.option("--port", type=int, default=None, help="Port to listen on")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def serve(port: int | None, host: str | None, config_path: str | None) -> None:
    """Start the HTTP API server."""
    config = _load(config_path)
    errors = validate_config(config, require_llm=False)
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {error}")
        sys.exit(1)
    if not config.llm.api_key:
        console.print("[yellow]No LLM API key - AI endpoints will be unavailable[/yellow]")

    app = create_app(config)

    host = host or config.server.host
    port = port or config.server.port
    console.print(f"🚀 Starting note-synth server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
