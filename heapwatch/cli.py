"""CLI entry point for heapwatch."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from heapwatch.baseline.store import load_baseline
from heapwatch.cleanup.retention import format_cleanup_result, sweep_all_components, sweep_component
from heapwatch.errors import ConfigurationError
from heapwatch.models.config import HeapwatchConfig
from heapwatch.reporter.json_report import load_reports
from heapwatch.utils.formatting import format_bytes
from heapwatch.validation.config import validate_config
from heapwatch.validation.thresholds import format_validation_result, load_threshold_file

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "-c", "config_path", default=None, help="JSON config file (default: MEMLAB_* env vars)")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Optional[str]) -> None:
    """Heap snapshot leak detection for UI component tests"""
    try:
        cfg = HeapwatchConfig.load(config_path) if config_path else HeapwatchConfig.from_env()
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    setup_logging(verbose or cfg.debug)
    ctx.obj = cfg


@cli.command()
@click.option("--days", "-d", type=int, default=None, help="Retention window in days")
@click.option("--component", default=None, help="Only sweep this component")
@click.option("--dry-run", is_flag=True, help="Report what would be deleted without deleting")
@click.pass_obj
def cleanup(cfg: HeapwatchConfig, days: Optional[int], component: Optional[str], dry_run: bool) -> None:
    """Delete snapshot directories older than the retention window."""
    retention_days = days if days is not None else cfg.snapshot_retention_days
    if retention_days <= 0:
        console.print(f"[red]Retention days must be positive, got {retention_days}[/red]")
        sys.exit(1)

    if component:
        result = sweep_component(cfg.snapshot_dir, component, retention_days, dry_run, verbose=True)
    else:
        result = sweep_all_components(cfg.snapshot_dir, retention_days, dry_run, verbose=True)

    console.print(format_cleanup_result(result))
    if result.errors:
        sys.exit(1)


@cli.command()
@click.option("--threshold-file", "-t", default=None, help="Threshold JSON file to validate")
@click.pass_obj
def validate(cfg: HeapwatchConfig, threshold_file: Optional[str]) -> None:
    """Validate the threshold file and runtime configuration."""
    path = threshold_file or cfg.threshold_file
    result = load_threshold_file(path)
    console.print(format_validation_result(result))

    config_result = validate_config(cfg.model_copy(update={"threshold_file": str(path)}))
    for error in config_result.errors:
        console.print(f"[red]   x {error}[/red]")
    for warning in config_result.warnings:
        console.print(f"[yellow]   ! {warning}[/yellow]")

    if not (result.valid and config_result.valid):
        sys.exit(1)


@cli.group()
def baseline() -> None:
    """Inspect the leak baseline."""
    pass


@baseline.command("show")
@click.pass_obj
def baseline_show(cfg: HeapwatchConfig) -> None:
    """Show the current baseline entry for each component."""
    document = load_baseline(cfg.baseline_file)
    if document is None:
        console.print(f"[yellow]No baseline found at {cfg.baseline_file}[/yellow]")
        return

    table = Table(title=f"Baseline (updated {document.last_updated or 'never'})")
    table.add_column("Component", style="bold")
    table.add_column("Leaks", justify="right")
    table.add_column("Retained", justify="right")
    table.add_column("Status")
    table.add_column("Commit")
    for name in sorted(document.components):
        entry = document.components[name]
        table.add_row(
            name,
            str(entry.leak_count),
            format_bytes(entry.total_retained_bytes),
            "[green]pass[/green]" if entry.passed else "[red]fail[/red]",
            (entry.commit_hash or "")[:8],
        )
    console.print(table)
    console.print(f"History entries: {len(document.history)}")


@cli.command()
@click.pass_obj
def report(cfg: HeapwatchConfig) -> None:
    """Summarize the per-component JSON reports."""
    reports = load_reports(cfg.reports_dir)
    if not reports:
        console.print(f"[yellow]No reports found in {cfg.reports_dir}[/yellow]")
        return

    table = Table(title="Memory Leak Results")
    table.add_column("Component", style="bold")
    table.add_column("Leaks", justify="right")
    table.add_column("Retained", justify="right")
    table.add_column("Limit")
    table.add_column("Status")
    for r in reports:
        table.add_row(
            r.component,
            str(r.leak_count),
            format_bytes(r.total_retained_size),
            f"{r.threshold.max_leaked_objects} / {format_bytes(r.threshold.max_retained_bytes)}",
            "[green]PASS[/green]" if r.passed else "[red]FAIL[/red]",
        )
    console.print(table)

    failed = sum(1 for r in reports if not r.passed)
    if failed:
        console.print(f"[red]{failed} of {len(reports)} components failed[/red]")
        sys.exit(1)


@cli.command("config")
@click.pass_obj
def show_config(cfg: HeapwatchConfig) -> None:
    """Print the effective configuration."""
    table = Table(title="heapwatch configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in cfg.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


if __name__ == "__main__":
    cli()
