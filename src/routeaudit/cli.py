from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from routeaudit.config import AuditSettings, load_settings
from routeaudit.domain.models import AuditResults
from routeaudit.errors import AuditError, ConfigValidationError
from routeaudit.logconf import configure_logging
from routeaudit.matching.paths import paths_match_with_reason
from routeaudit.orchestrator.events import AuditEvent, EventType
from routeaudit.orchestrator.pipeline import AuditOptions, AuditOrchestrator, AuditRun, RerunReport

app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()

ConfigOpt = typer.Option(None, "--config", "-c", help="JSON config file layered over env/defaults")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Debug logging")


def _settings(config: Optional[Path], verbose: bool) -> AuditSettings:
    try:
        settings, warnings = load_settings(config)
    except ConfigValidationError as exc:
        console.print(f"[bold red]{exc.message}[/bold red]")
        for issue in exc.issues:
            console.print(f"  {issue.field}: {issue.message}")
        raise typer.Exit(code=1)

    configure_logging("DEBUG" if verbose else settings.logging.level, settings.logging.log_file)
    for w in warnings:
        console.print(f"[yellow]warning[/yellow] {w.field}: {w.message}")
    return settings


def _execute(orchestrator: AuditOrchestrator, run: Callable[[], AuditRun]) -> AuditRun:
    with Progress(
        TextColumn("[bold]{task.description:<14}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("starting", total=100)

        def on_event(event: AuditEvent) -> None:
            if event.type is EventType.PROGRESS:
                progress.update(
                    task,
                    completed=event.payload.get("overall_progress", 0),
                    description=event.phase.value if event.phase else "",
                )

        unsubscribe = orchestrator.subscribe(on_event)
        try:
            return run()
        except AuditError as exc:
            progress.stop()
            console.print(f"[bold red]Audit failed:[/bold red] {exc}")
            raise typer.Exit(code=1)
        finally:
            unsubscribe()


def _print_summary(audit: AuditRun) -> None:
    s = audit.results.summary
    table = Table(show_header=True, header_style="bold", title="Audit summary")
    table.add_column("METRIC")
    table.add_column("VALUE", justify="right")
    table.add_row("Backend routes", str(s.total_routes))
    table.add_row("Frontend calls", str(s.total_frontend_calls))
    table.add_row("Matched", str(s.matched_routes))
    table.add_row("Unmatched", str(s.unmatched_routes))
    table.add_row("Checks passed", str(s.passed_tests))
    table.add_row("Checks failed", str(s.failed_tests))
    table.add_row("Issues", str(s.issues))
    console.print(table)

    for step in audit.results.degraded_steps:
        console.print(f"[yellow]degraded[/yellow] {step}")
    console.print(f"Finished in {audit.execution_time:.2f}s")
    console.print(f"Reports: {audit.reports.summary.path.parent}")


@app.command()
def run(
    modules: Optional[List[str]] = typer.Option(None, "--modules", "-m", help="Restrict verification to these modules"),
    skip_db: bool = typer.Option(False, "--skip-db", help="Skip database verification"),
    skip_verification: bool = typer.Option(False, "--skip-verification", help="Skip all live verification"),
    use_cache: bool = typer.Option(False, "--use-cache", help="Reuse cached discovery/matching"),
    load_cache: Optional[Path] = typer.Option(None, "--load-cache", help="Cache file to load before the run"),
    save_cache: Optional[Path] = typer.Option(None, "--save-cache", help="Write the cache here after the run"),
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
) -> None:
    """Full audit: discovery, matching, verification, analysis, reporting."""
    settings = _settings(config, verbose)
    orchestrator = AuditOrchestrator.from_settings(settings)
    try:
        if load_cache is not None and not orchestrator.load_cache(load_cache):
            console.print(f"[yellow]Could not load cache from {load_cache}; scanning from scratch[/yellow]")

        opts = AuditOptions(
            modules=tuple(modules or ()),
            skip_verification=skip_verification,
            skip_database=skip_db,
            use_cache=use_cache or load_cache is not None,
        )
        audit = _execute(orchestrator, lambda: orchestrator.run_full_audit(opts))
        _print_summary(audit)

        if save_cache is not None:
            try:
                orchestrator.save_cache(save_cache)
            except AuditError as exc:
                console.print(f"[bold red]{exc}[/bold red]")
                raise typer.Exit(code=1)
            console.print(f"Cache saved to {save_cache}")
    finally:
        orchestrator.cleanup()


@app.command()
def quick(config: Optional[Path] = ConfigOpt, verbose: bool = VerboseOpt) -> None:
    """Discovery and matching only; nothing is probed."""
    settings = _settings(config, verbose)
    orchestrator = AuditOrchestrator.from_settings(settings)
    try:
        _print_summary(_execute(orchestrator, orchestrator.run_quick_audit))
    finally:
        orchestrator.cleanup()


@app.command()
def incremental(
    modules: List[str] = typer.Argument(..., help="Modules to re-verify"),
    load_cache: Optional[Path] = typer.Option(None, "--load-cache", help="Cache file from an earlier run"),
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
) -> None:
    settings = _settings(config, verbose)
    orchestrator = AuditOrchestrator.from_settings(settings)
    try:
        if load_cache is not None:
            orchestrator.load_cache(load_cache)
        audit = _execute(orchestrator, lambda: orchestrator.run_incremental_audit(modules))
        _print_summary(audit)
    finally:
        orchestrator.cleanup()


@app.command()
def rerun(
    results_json: Path = typer.Argument(..., help="detailed-results.json from an earlier run"),
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
) -> None:
    """Probe again every endpoint that failed in an earlier run."""
    try:
        previous = AuditResults.model_validate_json(results_json.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        raise typer.BadParameter(f"Cannot read audit results from {results_json}: {exc}")

    settings = _settings(config, verbose)
    orchestrator = AuditOrchestrator.from_settings(settings)
    try:
        report = orchestrator.rerun_failed_verifications(previous)
    finally:
        orchestrator.cleanup()
    _print_rerun(report)


def _print_rerun(report: RerunReport) -> None:
    if not report.entries:
        console.print("No failed verifications to re-run.")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("METHOD", no_wrap=True)
    table.add_column("PATH")
    table.add_column("BEFORE", justify="right")
    table.add_column("NOW", justify="right")
    table.add_column("FIXED", no_wrap=True)
    for e in report.entries:
        now = str(e.current.status_code) if e.current else (e.error or "-")
        table.add_row(
            e.route.method,
            e.route.path,
            str(e.previous.status_code),
            now,
            "[green]yes[/green]" if e.fixed else "[red]no[/red]",
        )
    console.print(table)
    console.print(f"{report.fixed}/{report.total} fixed, {report.still_failing} still failing")


@app.command()
def match(
    path1: str = typer.Argument(..., help="Frontend path"),
    path2: str = typer.Argument(..., help="Backend path"),
    method1: Optional[str] = typer.Option(None, "--method1", help="Method of the first path"),
    method2: Optional[str] = typer.Option(None, "--method2", help="Method of the second path"),
) -> None:
    """Explain whether two paths refer to the same route."""
    cmp = paths_match_with_reason(path1, path2, method1, method2)
    verdict = "[bold green]match[/bold green]" if cmp.match else "[bold red]no match[/bold red]"
    console.print(f"{verdict} ({cmp.reason})")
    if cmp.confidence:
        console.print(f"confidence: {cmp.confidence}")
    if cmp.details:
        console.print(f"details: {cmp.details}")
    if not cmp.match:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
