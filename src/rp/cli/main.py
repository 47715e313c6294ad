"""
CLI for the research pipeline.

Commands:
    rp run QUESTION - Run the pipeline on a business question
    rp sources - List the curated source catalog
    rp config - Show current configuration
    rp version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import orjson
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from rp import __version__
from rp.capabilities import Capabilities
from rp.cli.progress import TimelineProgress
from rp.config import Settings, clear_settings_cache, get_settings
from rp.coordinator import Orchestrator, PipelineResult, TimelineEmitter, build_run_input
from rp.exceptions import ConfigurationError, InputError
from rp.logging import setup_logging
from rp.retrieval import SourceCatalog
from rp.types import Attachment, RunInput, SectionStatus, UserProfile, generate_id, utc_now

app = typer.Typer(
    name="rp",
    help="Research pipeline - turn a business question into a cited consulting deliverable",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        error_console.print(f"[red]Invalid configuration:[/red] {e}")
        return None


async def _execute(
    orchestrator: Orchestrator,
    run_input: RunInput,
    run_id: str,
    stream: bool,
    timeout: float | None,
) -> PipelineResult:
    started_at = utc_now()
    start_time = asyncio.get_running_loop().time()
    state = None
    try:
        if stream:
            emitter = TimelineEmitter()
            with TimelineProgress(console, run_input.question) as progress:
                async for snapshot in orchestrator.stream(run_input, timeout=timeout, run_id=run_id):
                    for step in emitter.emit(snapshot):
                        progress.update(step)
                    state = snapshot
                if state is not None and state.termination is not None:
                    progress.mark_error(state.termination.message)
                else:
                    progress.mark_complete()
        else:
            with console.status("[bold green]Running research pipeline..."):
                state = await orchestrator.run(run_input, timeout=timeout, run_id=run_id)
    finally:
        await orchestrator.capabilities.aclose()

    return PipelineResult(
        run_state=state,
        duration_seconds=asyncio.get_running_loop().time() - start_time,
        started_at=started_at,
    )


@app.command()
def run(
    question: Annotated[str, typer.Argument(help="Business question to research")],
    role: Annotated[Optional[str], typer.Option("--role", help="Role of the person asking")] = None,
    company: Annotated[Optional[str], typer.Option("--company", help="Company of the person asking")] = None,
    locale: Annotated[Optional[str], typer.Option("--locale", help="Locale, e.g. en-US or fr-FR")] = None,
    timezone: Annotated[Optional[str], typer.Option("--timezone", help="IANA timezone")] = None,
    seniority: Annotated[Optional[str], typer.Option("--seniority", help="Seniority of the reader")] = None,
    trusted_only: Annotated[
        bool,
        typer.Option("--trusted-only", help="Use verified sources only"),
    ] = False,
    attach: Annotated[
        Optional[list[Path]],
        typer.Option("--attach", "-a", help="Text file to attach (repeatable)", exists=True, dir_okay=False),
    ] = None,
    stream: Annotated[bool, typer.Option("--stream", "-s", help="Show a live stage timeline")] = False,
    json_out: Annotated[
        Optional[Path],
        typer.Option("--json-out", help="Write the full result as JSON to this path"),
    ] = None,
    output_dir: Annotated[
        Optional[Path],
        typer.Option("--output-dir", "-o", help="Output directory"),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Whole-run timeout in seconds", min=1),
    ] = None,
) -> None:
    """Run the research pipeline on a question.

    Creates a run folder with:
    - report.md (deliverable or partial-run report)
    - result.json (full run state)
    - run.log (JSON lines)
    """
    settings = _get_settings_safe()
    if settings is None:
        raise typer.Exit(1)

    profile = UserProfile(
        role=role,
        company=company,
        locale=locale,
        timezone=timezone,
        seniority=seniority,
        trusted_sources_only=trusted_only,
    )
    attachments = [
        Attachment(filename=path.name, content=path.read_text(encoding="utf-8", errors="replace"))
        for path in attach or []
    ]
    try:
        run_input = build_run_input(question, profile, attachments)
    except InputError as e:
        error_console.print(f"[red]Invalid input:[/red] {e}")
        raise typer.Exit(2)

    run_id = generate_id("run")
    if output_dir is not None:
        run_output_dir = output_dir / run_id
        run_output_dir.mkdir(parents=True, exist_ok=True)
    else:
        run_output_dir = settings.get_run_output_dir(run_id)
    setup_logging(settings.LOG_LEVEL, log_file=run_output_dir / "run.log", console_output=not stream)

    try:
        orchestrator = Orchestrator(Capabilities.from_settings(settings), settings=settings)
    except ConfigurationError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print()
    console.print(
        Panel(
            f"[bold]Question:[/bold] {run_input.question}\n"
            f"[bold]Run ID:[/bold] {run_id}\n"
            f"[bold]Capabilities:[/bold] {', '.join(settings.available_capabilities) or 'none'}\n"
            f"[bold]Attachments:[/bold] {len(attachments)}",
            title="[bold cyan]Research Pipeline[/bold cyan]",
            border_style="cyan",
        )
    )

    result = asyncio.run(_execute(orchestrator, run_input, run_id, stream, timeout))

    report_path = run_output_dir / "report.md"
    report_path.write_text(result.to_report_markdown(), encoding="utf-8")
    payload = orjson.dumps(result.to_dict(), option=orjson.OPT_INDENT_2, default=str)
    (run_output_dir / "result.json").write_bytes(payload)
    if json_out is not None:
        json_out.parent.mkdir(parents=True, exist_ok=True)
        json_out.write_bytes(payload)

    console.print()
    deliverable = result.deliverable
    if deliverable is not None:
        pending = sum(1 for s in deliverable.sections if s.status is SectionStatus.PENDING)
        console.print(
            Panel(
                f"[bold]Sections:[/bold] {len(deliverable.sections)} ({pending} pending)\n"
                f"[bold]Citations:[/bold] {len(deliverable.citations.bibliography)}\n"
                f"[bold]Version:[/bold] {deliverable.version}\n"
                f"[bold]Stage errors:[/bold] {len(result.errors)}\n\n"
                f"[dim]Duration: {result.duration_seconds:.1f}s[/dim]",
                title=f"[bold green]{deliverable.executive_summary.headline}[/bold green]",
                border_style="green",
            )
        )
    else:
        termination = result.run_state.termination
        reason = termination.message if termination else "no deliverable produced"
        console.print(
            Panel(
                f"[bold]Stopped:[/bold] {reason}\n[bold]Stage errors:[/bold] {len(result.errors)}",
                title="[bold red]Partial run[/bold red]",
                border_style="red",
            )
        )
    console.print(f"\n[bold]Report saved to:[/bold] {report_path}")
    console.print()

    if deliverable is None:
        raise typer.Exit(1)


@app.command()
def sources() -> None:
    """List the curated source catalog."""
    settings = _get_settings_safe()
    if settings is None:
        raise typer.Exit(1)
    try:
        catalog = SourceCatalog(settings.SOURCE_CATALOG_PATH)
    except ConfigurationError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Source catalog ({len(catalog)} sources)", show_header=True)
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Trust", style="green")
    table.add_column("Access")
    table.add_column("Sectors", style="dim")
    for source in catalog.sources.values():
        table.add_row(
            source.id,
            source.name,
            source.trust_level.value,
            source.access.value,
            ", ".join(source.sectors),
        )
    console.print(table)


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with API keys redacted.
    Also shows which external capabilities are available.
    """
    console.print()
    console.print("[bold]Research Pipeline Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()
    if settings is None:
        error_console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)
    console.print(table)

    console.print()
    capabilities = settings.available_capabilities
    if capabilities:
        console.print(f"[bold]Available capabilities:[/bold] {', '.join(capabilities)}")
    else:
        console.print("[yellow]No external capabilities configured; runs use heuristic fallbacks.[/yellow]")
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"research-pipeline version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
