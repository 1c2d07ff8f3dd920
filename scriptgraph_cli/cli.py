"""Typer-based CLI for ScriptGraph script analysis."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import load_config, save_config
from .context import AnalysisContext
from .errors import ScriptGraphError
from .models import AnalysisResult, Severity
from .orchestrator import AnalysisOrchestrator, filter_issues
from .report import build_report, export_dot, issue_line, write_dot, write_report
from .rules import QualityRuleEngine

console = Console()

app = typer.Typer(
    help="🧭 ScriptGraph CLI: dependency graphs and quality checks for PowerShell scripts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

SEVERITY_CHOICES = ("All", "Error", "Warning", "Information")
_SEVERITY_STYLE = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFORMATION: "cyan",
}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"ScriptGraph CLI v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("scriptgraph_cli")
    package_logger.handlers.clear()
    package_logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging."),
):
    """ScriptGraph CLI: static analysis for collections of automation scripts."""
    _configure_logging(verbose)


def _normalize_severity(severity: str) -> str:
    for choice in SEVERITY_CHOICES:
        if choice.lower() == severity.strip().lower():
            return choice
    raise typer.BadParameter(f"Severity must be one of: {', '.join(SEVERITY_CHOICES)}")


def _run(
    directory: Path,
    config_file: Optional[Path],
    workers: Optional[int] = None,
    max_file_size: Optional[int] = None,
) -> tuple[AnalysisContext, AnalysisResult]:
    try:
        config = load_config(config_file).with_overrides(workers=workers, max_file_size=max_file_size)
        context = AnalysisContext.create(config)
        return context, AnalysisOrchestrator(context).run(directory)
    except ScriptGraphError as exc:
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)


def _print_summary(result: AnalysisResult, shown: int) -> None:
    table = Table(title="Analysis Summary", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Scripts", str(result.total_scripts))
    table.add_row("Issues", str(result.total_issues))
    for severity in sorted(Severity, key=lambda s: s.rank):
        style = _SEVERITY_STYLE[severity]
        table.add_row(f"[{style}]{severity.value}[/{style}]", str(result.count(severity)))
    table.add_row("Fixable", str(result.fixable_issues))
    table.add_row("Skipped (size)", str(result.skipped_large_files))
    table.add_row("Cycles", str(len(result.cycles)))
    table.add_row("Shown", str(shown))
    console.print(table)

    if result.top_issues:
        console.print("\n[bold]Top issues[/bold]")
        for rule, count in result.top_issues:
            console.print(f"  • {rule}: {count}")

    console.print(
        Panel(
            "\n".join(f"  • {line}" for line in result.summary),
            title="[bold]Summary[/bold]",
            border_style="red" if result.error_issues else "green",
        )
    )


@app.command("analyze")
def analyze(
    directory: Path = typer.Option(..., "--dir", "-d", help="Directory of scripts to analyze."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the JSON report to this file."),
    severity: str = typer.Option("All", "--severity", "-s", help="Error, Warning, Information or All."),
    fixable_only: bool = typer.Option(False, "--fixable-only", help="Only list fixable issues."),
    graph_out: Optional[Path] = typer.Option(None, "--graph-out", help="Write the dependency graph as DOT."),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Worker threads."),
    max_file_size: Optional[int] = typer.Option(None, "--max-file-size", min=1, help="Skip larger files (bytes)."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Path to a config.toml."),
    show_issues: bool = typer.Option(False, "--show-issues", help="Print every listed issue."),
):
    """Analyze a script directory: dependencies, cycles and quality rules.

    Exits with code 1 when any Error-level issue is found.

    Example:
      sg analyze --dir ./scripts --out report.json --severity Warning
    """
    severity = _normalize_severity(severity)
    context, result = _run(directory, config_file, workers, max_file_size)

    document = build_report(result, timestamp=context.clock(), severity=severity, fixable_only=fixable_only)
    if out is not None:
        write_report(document, out)
        console.print(f"Report written to {out}")
    if graph_out is not None and result.graph is not None:
        write_dot(result.graph, graph_out)
        console.print(f"Dependency graph written to {graph_out}")

    if show_issues:
        for issue in filter_issues(result.issues, severity, fixable_only):
            style = _SEVERITY_STYLE[issue.severity]
            console.print(f"[{style}]{escape(issue_line(issue))}[/{style}]", highlight=False)

    _print_summary(result, shown=len(document["Issues"]))

    if result.error_issues:
        raise typer.Exit(code=1)


@app.command("graph")
def graph(
    directory: Path = typer.Option(..., "--dir", "-d", help="Directory of scripts to analyze."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write DOT here instead of printing it."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Path to a config.toml."),
):
    """Export the script dependency graph (Graphviz DOT) and list cycles."""
    _, result = _run(directory, config_file)
    if result.graph is None:
        raise typer.Exit(code=1)

    if out is None:
        typer.echo(export_dot(result.graph), nl=False)
    else:
        write_dot(result.graph, out)
        console.print(f"Exported graph to {out}")

    if result.cycles:
        console.print(f"[yellow]⚠️  {len(result.cycles)} circular dependency chain(s):[/yellow]")
        for cycle in result.cycles:
            console.print(f"  • {cycle.path}", highlight=False)
    else:
        console.print("[green]No circular dependencies.[/green]")


@app.command("rules")
def rules():
    """List the registered quality rules."""
    table = Table(title="Quality Rules", show_header=True)
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Severity")
    table.add_column("Fixable")
    table.add_column("Description")
    for row in QualityRuleEngine().describe():
        table.add_row(row["name"], row["severity"], row["fixable"], row["description"])
    console.print(table)


@app.command("init-config")
def init_config(
    path: Optional[Path] = typer.Option(None, "--path", help="Config file to write (default: ~/.scriptgraph/config.toml)."),
):
    """Write the current analysis settings to a config file."""
    try:
        written = save_config(load_config(path), path)
    except ScriptGraphError as exc:
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    console.print(f"Configuration written to {written}")


if __name__ == "__main__":
    app()
