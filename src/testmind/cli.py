"""CLI entry point for TestMind."""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import Config, load_config
from .diff import DiffApplier, DiffGenerator, format_unified, parse_unified, summarize
from .errors import DiffParseError
from .healing import (
    FailureClassifier,
    HealingMetrics,
    SelfHealingOrchestrator,
    generate_healing_report,
    human_readable_guide,
)
from .llm.gemini import build_llm
from .locator.dom import HTMLSnapshotAdapter
from .log import configure_logging
from .models import FixContext, SelfHealingResult, TestFailure, TestRunRecord
from .tracing import init_tracing

console = Console()


@click.group()
@click.version_option()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """TestMind - self-healing for end-to-end test suites."""
    ctx.ensure_object(dict)

    config = load_config(Path(config_path) if config_path else None)
    configure_logging(config.log_level, config.log_json)
    ctx.obj["config"] = config

    # Initialize Langfuse tracing
    tracing = init_tracing(config)
    ctx.obj["tracing"] = tracing

    if config.langfuse.enabled:
        console.print("[dim]Langfuse tracing enabled[/]")


@main.command()
@click.argument("old", type=click.Path(exists=True, dir_okay=False))
@click.argument("new", type=click.Path(exists=True, dir_okay=False))
@click.option("--context", "-U", "context_lines", type=int, default=None, help="Lines of context per hunk")
@click.option("--stat", is_flag=True, help="Only print the change summary")
@click.pass_context
def diff(ctx: click.Context, old: str, new: str, context_lines: int | None, stat: bool) -> None:
    """Print a unified diff between two files."""
    config: Config = ctx.obj["config"]
    generator = DiffGenerator(config.diff.context_lines, config.diff.lookahead)
    file_diff = generator.compute_diff(
        Path(old).read_text(encoding="utf-8"),
        Path(new).read_text(encoding="utf-8"),
        context_lines=context_lines,
        file_path=new,
    )

    if stat or file_diff.is_empty:
        console.print(summarize(file_diff))
        return
    click.echo(format_unified(file_diff))


@main.command()
@click.argument("patch", type=click.Path(exists=True, dir_okay=False))
@click.option("--target", "-t", type=click.Path(dir_okay=False), help="Apply a single-file patch to this path")
@click.option("--fuzzy", is_flag=True, help="Compare lines ignoring whitespace differences")
@click.option("--allow-partial", is_flag=True, help="Apply non-conflicting hunks and skip the rest")
@click.option("--dry-run", is_flag=True, help="Validate only; do not write files")
@click.option("--no-backup", is_flag=True, help="Do not write backups before modifying files")
@click.pass_context
def apply(
    ctx: click.Context,
    patch: str,
    target: str | None,
    fuzzy: bool,
    allow_partial: bool,
    dry_run: bool,
    no_backup: bool,
) -> None:
    """Apply a unified diff, with validation and backups."""
    config: Config = ctx.obj["config"]

    try:
        diffs = parse_unified(Path(patch).read_text(encoding="utf-8"))
    except DiffParseError as e:
        raise click.ClickException(f"Invalid patch: {e}") from e
    if not diffs:
        raise click.ClickException("Patch contains no file diffs")

    applier = DiffApplier(
        create_backup=config.diff.create_backup and not no_backup,
        backup_dir=config.diff.backup_dir,
        validation_mode="fuzzy" if fuzzy else config.diff.validation_mode,
        allow_partial=allow_partial or config.diff.allow_partial,
        dry_run=dry_run or config.diff.dry_run,
    )

    if target:
        if len(diffs) != 1:
            raise click.ClickException("--target needs a patch for exactly one file")
        results = [applier.apply_file(diffs[0], target)]
    else:
        results = applier.apply_many(diffs)

    console.print(escape(applier.generate_report(results)))
    if any(not (r.success and r.applied) for r in results):
        ctx.exit(1)


@main.command()
@click.argument("original", type=click.Path(dir_okay=False))
@click.argument("backup", type=click.Path(exists=True, dir_okay=False))
@click.option("--discard", is_flag=True, help="Delete the backup after restoring")
def rollback(original: str, backup: str, discard: bool) -> None:
    """Restore ORIGINAL from a backup written by `apply`."""
    applier = DiffApplier()
    try:
        applier.rollback(original, backup)
    except OSError as e:
        raise click.ClickException(f"Rollback failed: {e}") from e
    if discard:
        applier.discard_backup(backup)
    console.print(f"[green]✓ Restored {escape(original)}[/]")


@main.command()
@click.argument("failures_path", metavar="FAILURES_JSON", type=click.Path(exists=True, dir_okay=False))
@click.option("--source", "-s", type=click.Path(exists=True, dir_okay=False), help="Test source file (single failure)")
@click.option("--html", type=click.Path(exists=True, dir_okay=False), help="HTML snapshot of the page under test")
@click.option("--auto-fix", is_flag=True, help="Apply high-confidence fixes")
@click.option("--threshold", type=click.FloatRange(0.0, 1.0), default=None, help="Auto-fix confidence threshold")
@click.option("--format", "-f", "output_format", type=click.Choice(["table", "json", "markdown"]), default="table")
@click.pass_context
def heal(
    ctx: click.Context,
    failures_path: str,
    source: str | None,
    html: str | None,
    auto_fix: bool,
    threshold: float | None,
    output_format: str,
) -> None:
    """Classify failures and suggest (or apply) fixes."""
    config: Config = ctx.obj["config"]
    if auto_fix:
        config.healing.enable_auto_fix = True
    if threshold is not None:
        config.healing.auto_fix_threshold = threshold

    records = _read_failures(Path(failures_path))
    if source and len(records) != 1:
        raise click.ClickException("--source can only be used with a single failure")

    failures: list[TestFailure] = []
    contexts: dict[str, FixContext] = {}
    for record in records:
        failure = failure_from_dict(record)
        source_path = Path(source) if source else Path(failure.test_file)
        if not source_path.is_file():
            console.print(f"[yellow]Skipping {escape(failure.test_id)}: source not found[/]")
            continue
        failures.append(failure)
        contexts[failure.test_id] = FixContext(
            test_code=source_path.read_text(encoding="utf-8"),
            failed_line=record.get("failed_line"),
            current_selector=failure.selector,
        )

    browser = HTMLSnapshotAdapter.from_file(html).context() if html else None
    metrics = HealingMetrics()
    orchestrator = SelfHealingOrchestrator(
        config=config,
        llm=build_llm(config, ctx.obj.get("tracing")),
        metrics=metrics,
        tracing=ctx.obj.get("tracing"),
    )

    with console.status(f"[yellow]Healing {len(failures)} failure(s)...[/]"):
        results = asyncio.run(orchestrator.heal_batch(failures, contexts, browser))

    tracing = ctx.obj.get("tracing")
    if tracing:
        tracing.flush()

    if output_format == "json":
        payload = {
            "results": {test_id: result_to_dict(r) for test_id, r in results.items()},
            "metrics": metrics.snapshot(),
        }
        click.echo(json.dumps(payload, indent=2, default=str))
        return
    if output_format == "markdown":
        click.echo(generate_healing_report(results))
        return

    _print_results(results)
    console.print(
        f"\n[bold]Healed {metrics.healed}/{metrics.attempts}[/] "
        f"[dim](avg {metrics.average_duration_ms:.0f}ms)[/]\n"
    )


@main.command()
@click.argument("failures_path", metavar="FAILURES_JSON", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def flaky(ctx: click.Context, failures_path: str) -> None:
    """Score run histories for flakiness."""
    config: Config = ctx.obj["config"]
    classifier = FailureClassifier(config=config.classifier)

    table = Table(title="Flakiness Analysis")
    table.add_column("Test", style="cyan", max_width=40)
    table.add_column("Flaky", style="yellow")
    table.add_column("Score", style="magenta")
    table.add_column("Pass rate", style="dim")
    table.add_column("Reasons", max_width=50)

    for record in _read_failures(Path(failures_path)):
        failure = failure_from_dict(record)
        analysis = classifier.get_flakiness_analysis(failure)
        table.add_row(
            failure.test_name,
            "yes" if analysis.is_flaky else "no",
            f"{analysis.score:.2f}",
            f"{analysis.pass_rate:.0%}" if analysis.pass_rate is not None else "-",
            "; ".join(analysis.reasons) or analysis.recommendation,
        )

    console.print(table)


def _read_failures(path: Path) -> list[dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid failure file {path}: {e}") from e
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise click.ClickException(f"{path} must hold a failure object or a list of them")
    return data


def failure_from_dict(data: dict[str, Any]) -> TestFailure:
    """Build a TestFailure from its JSON form."""
    try:
        runs = [
            TestRunRecord(
                timestamp=datetime.fromisoformat(run["timestamp"]),
                passed=bool(run["passed"]),
                duration_ms=float(run.get("duration_ms", 0)),
                error_message=run.get("error_message"),
            )
            for run in data.get("previous_runs", [])
        ]
        extra = {}
        if data.get("timestamp"):
            extra["timestamp"] = datetime.fromisoformat(data["timestamp"])
        return TestFailure(
            test_name=data["test_name"],
            test_file=data["test_file"],
            error_message=data["error_message"],
            stack_trace=data.get("stack_trace", ""),
            selector=data.get("selector"),
            expected_value=data.get("expected_value"),
            actual_value=data.get("actual_value"),
            timeout_ms=data.get("timeout_ms"),
            previous_runs=runs,
            **extra,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise click.ClickException(f"Malformed failure record: {e!r}") from e


def result_to_dict(result: SelfHealingResult) -> dict[str, Any]:
    """JSON-friendly summary of a healing result."""
    classification = result.classification
    return {
        "healed": result.healed,
        "strategy": result.strategy.value,
        "confidence": round(result.confidence, 4),
        "duration_ms": round(result.duration_ms, 2),
        "classification": {
            "failure_type": classification.failure_type.value,
            "confidence": round(classification.confidence, 4),
            "reasoning": classification.reasoning,
            "suggested_actions": classification.suggested_actions,
            "is_flaky": classification.is_flaky,
        },
        "new_locator": {
            "strategy": result.new_locator.strategy.value,
            "confidence": round(result.new_locator.confidence, 4),
            "metadata": result.new_locator.metadata,
        } if result.new_locator else None,
        "suggestions": [
            {
                "type": s.type.value,
                "description": s.description,
                "confidence": round(s.confidence, 4),
                "estimated_effort": s.estimated_effort.value,
                "diff": s.diff_text,
            }
            for s in result.suggestions
        ],
        "applied": result.apply_result.applied if result.apply_result else False,
        "backup_path": result.apply_result.backup_path if result.apply_result else None,
    }


def _print_results(results: dict[str, SelfHealingResult]) -> None:
    if not results:
        console.print("[yellow]No failures were healed[/]")
        return

    table = Table(title="Healing Results")
    table.add_column("Test", style="cyan", max_width=40)
    table.add_column("Type", style="yellow")
    table.add_column("Strategy", style="magenta")
    table.add_column("Healed")
    table.add_column("Confidence", style="dim")

    for test_id, result in sorted(results.items()):
        table.add_row(
            test_id,
            result.classification.failure_type.value,
            result.strategy.value,
            "[green]✓[/]" if result.healed else "[red]✗[/]",
            f"{result.confidence:.0%}",
        )
    console.print(table)

    for test_id, result in sorted(results.items()):
        if not result.suggestions:
            continue
        console.print(Panel(
            escape(human_readable_guide(result.suggestions[0])),
            title=escape(test_id),
            border_style="blue",
        ))
