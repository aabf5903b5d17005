"""
Buildwright CLI.

Command-line interface for running generation sessions.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .core.config import Config, get_config
from .core.logging import setup_logging
from .events import Event, EventType
from .models.session import GenerationOptions, GenerationSession
from .orchestration import GenerationResult, Orchestrator, SessionManager
from .services.deployment import LocalDirectoryDeployer, slugify
from .services.research import HttpResearchService
from .storage import StorageBackend, create_storage

app = typer.Typer(
    name="buildwright",
    help="Multi-agent project generation from a single prompt",
    add_completion=False,
)

console = Console()

_PHASE_STYLE = {
    EventType.PHASE_STARTED: "bold blue",
    EventType.PHASE_COMPLETED: "green",
    EventType.PHASE_FAILED: "red",
    EventType.PHASE_SKIPPED: "dim",
}


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from . import __version__

        console.print(f"Buildwright v{__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Buildwright: prompt to deployed project."""


def build_orchestrator(config: Config, storage: StorageBackend, *, deploy: bool = True) -> Orchestrator:
    """Wire an orchestrator from configuration."""
    from .agents import create_language_model

    search = HttpResearchService(config.search) if config.search.endpoint else None
    return Orchestrator(
        create_language_model(config),
        config=config,
        storage=storage,
        search=search,
        deployer=LocalDirectoryDeployer(storage) if deploy else None,
    )


def _render_event(event: Event) -> None:
    payload = event.payload
    phase = event.metadata.phase or ""
    if event.type in _PHASE_STYLE:
        label = payload.get("label", phase)
        suffix = f": {payload['error']}" if payload.get("error") else ""
        console.print(f"[{_PHASE_STYLE[event.type]}]{event.type.value:<16} {label}{suffix}[/]")
    elif event.type == EventType.AGENT_PROGRESS:
        console.print(f"  [dim]{event.metadata.agent} {payload.get('progress')}% {payload.get('message', '')}[/dim]")
    elif event.type in (EventType.FILE_CREATED, EventType.FILE_UPDATED):
        console.print(f"  [cyan]{event.type.value}[/cyan] {payload.get('path')}")
    elif event.type == EventType.PLAN_VALIDATED:
        console.print(f"  plan coverage {payload.get('coverage_percent')}%")
    elif event.type == EventType.VERIFICATION_RESULT:
        verdict = "[green]passed[/green]" if payload.get("passed") else "[red]failed[/red]"
        console.print(f"  verification {verdict} ({len(payload.get('issues', []))} issues)")
    elif event.type == EventType.AGENT_ERROR:
        console.print(f"  [red]{event.metadata.agent}: {payload.get('error')}[/red]")
    elif event.type == EventType.BUDGET_WARNING:
        console.print(f"  [yellow]{event.metadata.agent} is nearing its call budget[/yellow]")


async def _answer(manager: SessionManager, event: Event, interactive: bool) -> None:
    payload = event.payload
    question = payload.get("question", "")
    options = payload.get("options") or []
    console.print(Panel.fit(question, title=f"{event.metadata.agent} asks", border_style="yellow"))
    if options:
        for index, option in enumerate(options, start=1):
            console.print(f"  {index}. {option}")
    if not interactive:
        console.print("[dim]Non-interactive mode: leaving the question unanswered[/dim]")
        return

    answer = await asyncio.to_thread(typer.prompt, "Answer")
    if options and answer.isdigit() and 1 <= int(answer) <= len(options):
        answer = options[int(answer) - 1]
    if not manager.submit_answer(event.session_id, payload["question_id"], answer):
        console.print("[yellow]The question was already resolved; answer ignored[/yellow]")


async def _follow(manager: SessionManager, session: GenerationSession, interactive: bool) -> GenerationResult:
    async for event in manager.feed(session.session_id):
        if event.type == EventType.USER_INPUT_REQUIRED:
            await _answer(manager, event, interactive)
        else:
            _render_event(event)
    return await manager.wait(session.session_id)


async def _write_files(storage: StorageBackend, project_name: str, files: dict[str, str]) -> None:
    root = f"projects/{slugify(project_name)}"
    for relative_path, content in files.items():
        await storage.store_text(f"{root}/{relative_path}", content)


def _show_result(result: GenerationResult, output: Path, project_name: str) -> None:
    table = Table(title="Generation Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Session", result.session_id)
    table.add_row("Status", result.status.value)
    table.add_row("Duration", f"{result.duration_seconds:.1f}s")
    table.add_row("Files", str(len(result.files)))
    if result.coverage:
        table.add_row("Plan Coverage", f"{result.coverage.coverage_percent}%")
    if result.verification:
        table.add_row("Verification", "[green]PASSED[/green]" if result.verification.passed else "[red]FAILED[/red]")
    table.add_row("Model Calls", str(result.usage.get("calls", 0)))
    table.add_row("Estimated Cost", f"${result.usage.get('estimated_cost_usd', 0.0):.4f}")
    if result.deployment_url:
        table.add_row("Deployment", result.deployment_url)
    console.print(table)

    if result.files:
        console.print(f"\n[bold]Generated files:[/bold] {output / 'projects' / slugify(project_name)}")
    if not result.success:
        console.print(f"\n[bold red]✗ Generation {result.status.value}[/bold red]")
        console.print(f"Error: {result.error}")
        if result.failed_phase:
            console.print(f"Failed at: {result.failed_phase.value}")


@app.command()
def run(
    prompt: str = typer.Argument(..., help="What to build"),
    name: str = typer.Option("project", "--name", "-n", help="Project name"),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    skip_research: bool = typer.Option(False, "--skip-research", help="Skip the research phase"),
    skip_deploy: bool = typer.Option(False, "--skip-deploy", help="Skip the deployment phase"),
    interactive: bool = typer.Option(True, "--interactive/--no-interactive", help="Prompt for clarifications"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Generate a project from a prompt."""
    config = get_config()
    if verbose:
        config.log_level = "DEBUG"
    if output_dir is not None:
        config.storage.base_path = output_dir
    setup_logging(config)

    console.print(Panel.fit("[bold blue]Buildwright[/bold blue]\nPrompt → Plan → Build → Deploy", border_style="blue"))
    console.print(f"\n[bold]Project:[/bold] {name}")
    console.print(f"[bold]Output:[/bold] {config.storage.base_path}\n")

    async def run_async() -> GenerationResult:
        storage = create_storage(config.storage)
        manager = SessionManager(build_orchestrator(config, storage, deploy=not skip_deploy))
        session = manager.start(
            prompt,
            name,
            GenerationOptions(skip_research=skip_research or None, skip_deployment=skip_deploy or None),
        )
        console.print(f"[dim]Session {session.session_id}[/dim]\n")
        try:
            result = await _follow(manager, session, interactive)
        finally:
            await manager.shutdown()
        await _write_files(storage, name, result.files)
        return result

    result = asyncio.run(run_async())
    _show_result(result, config.storage.base_path, name)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def resume(
    session_id: str = typer.Argument(..., help="Session to resume from its latest checkpoint"),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    interactive: bool = typer.Option(True, "--interactive/--no-interactive", help="Prompt for clarifications"),
) -> None:
    """Resume a session from its latest checkpoint."""
    config = get_config()
    if output_dir is not None:
        config.storage.base_path = output_dir
    setup_logging(config)

    async def run_async() -> tuple[GenerationResult, str]:
        storage = create_storage(config.storage)
        manager = SessionManager(build_orchestrator(config, storage))
        session = await manager.resume(session_id)
        console.print(f"[dim]Resuming {session.project_name} at {session.current_phase.value}[/dim]\n")
        try:
            result = await _follow(manager, session, interactive)
        finally:
            await manager.shutdown()
        await _write_files(storage, session.project_name, result.files)
        return result, session.project_name

    result, project_name = asyncio.run(run_async())
    _show_result(result, config.storage.base_path, project_name)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def checkpoints(
    session_id: Optional[str] = typer.Argument(None, help="Session to list checkpoints for"),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
) -> None:
    """List sessions with checkpoints, or the checkpoints of one session."""
    from .orchestration import CheckpointManager

    config = get_config()
    if output_dir is not None:
        config.storage.base_path = output_dir
    manager = CheckpointManager(create_storage(config.storage))

    if session_id is None:
        sessions = asyncio.run(manager.list_sessions())
        if not sessions:
            console.print("[dim]No checkpoints found[/dim]")
            return
        for sid in sessions:
            console.print(f"  • {sid}")
        return

    summaries = asyncio.run(manager.list_checkpoints(session_id))
    table = Table(title=f"Checkpoints for {session_id}")
    table.add_column("#", style="cyan")
    table.add_column("Phase")
    table.add_column("Next")
    table.add_column("Documents")
    table.add_column("Created")
    for summary in summaries:
        table.add_row(
            str(summary.sequence),
            summary.phase.value,
            summary.next_phase.value,
            str(summary.documents),
            summary.created_at.isoformat(timespec="seconds"),
        )
    console.print(table)


@app.command()
def config() -> None:
    """Show the current configuration."""
    cfg = get_config()

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Log Level", cfg.log_level)
    table.add_row("Storage Backend", cfg.storage.backend)
    table.add_row("Storage Path", str(cfg.storage.base_path))
    table.add_row("Agent Provider", cfg.agent.provider)
    table.add_row("Agent Model", cfg.agent.model)
    table.add_row("Max Iterations", str(cfg.orchestrator.max_iterations))
    table.add_row("Confidence Threshold", f"{cfg.orchestrator.confidence_threshold:.2f}")
    table.add_row("Max Fix Iterations", str(cfg.orchestrator.max_fix_iterations))
    table.add_row("Breaker Threshold", str(cfg.resilience.failure_threshold))
    table.add_row("Search Endpoint", cfg.search.endpoint or "(none)")
    table.add_row("Cost Ceiling", f"${cfg.budget.max_cost_usd:.2f}" if cfg.budget.max_cost_usd else "(none)")

    console.print(table)

    console.print("\n[dim]Configure via environment variables:[/dim]")
    console.print("  BUILDWRIGHT_LOG_LEVEL, BUILDWRIGHT_AGENT_PROVIDER, BUILDWRIGHT_AGENT_MODEL")
    console.print("  BUILDWRIGHT_SEARCH_ENDPOINT, BUILDWRIGHT_MAX_COST_USD")
    console.print("  OPENAI_API_KEY, ANTHROPIC_API_KEY")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
