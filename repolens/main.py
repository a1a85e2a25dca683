"""repolens CLI.

Commands:
    repolens research start   — Queue a research question about a repository
    repolens research status  — Show one workflow (status, answer or error)
    repolens research list    — Recent workflows for the session
    repolens research log     — Progress log of one workflow
    repolens transcript       — Entries appended to the conversation transcript
    repolens providers        — Capability providers and their states
    repolens worker           — Run the Shadows worker in the foreground
    repolens version          — Show version
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from repolens.research.models import ResearchDepth, WorkflowStatus
from repolens.utils import setup_logging
from repolens.utils.clock import ago

setup_logging()

app = typer.Typer(
    name="repolens",
    help="🔍 repolens — background research over code repositories",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
research_app = typer.Typer(help="Research workflows", no_args_is_help=True)
app.add_typer(research_app, name="research")
console = Console()

_STATUS_STYLE = {
    WorkflowStatus.PENDING: "yellow",
    WorkflowStatus.IN_PROGRESS: "cyan",
    WorkflowStatus.COMPLETED: "green",
    WorkflowStatus.FAILED: "red",
}


def _store(session: str | None):
    from repolens.research.store import WorkflowStore
    return WorkflowStore(session_id=session)


# ── repolens research start ───────────────────────────────────


@research_app.command("start")
def research_start(
    repository: str = typer.Argument(..., help="Repository in owner/name form"),
    question: str = typer.Argument(..., help="Question about the codebase"),
    depth: ResearchDepth = typer.Option(ResearchDepth.MEDIUM, "--depth", "-d", help="quick | medium | thorough"),
    task: str = typer.Option(None, "--task", "-t", help="Tracker item that receives the answer as a comment"),
    session: str = typer.Option(None, "--session", "-s", help="Conversation session id"),
):
    """🚀 Queue a research workflow (runs in the background worker)."""
    asyncio.run(_research_start(repository, question, depth, task, session))


async def _research_start(repository, question, depth, task, session) -> None:
    from shadows import Shadow

    from repolens.config import settings
    from repolens.research.engine import WorkflowEngine
    from repolens.research.transcript import Transcript
    from repolens.tasks.research import ShadowsScheduler, run_research_workflow
    from repolens.tools.capabilities import HttpCapabilityRegistry

    store = _store(session)
    transcript = Transcript(session_id=store.session_id)
    registry = HttpCapabilityRegistry()
    try:
        async with Shadow(name=settings.shadows_name, url=settings.redis_url) as shadow:
            shadow.register(run_research_workflow)
            engine = WorkflowEngine(store, registry, transcript, ShadowsScheduler(shadow))
            workflow_id = await engine.start_research(repository, question, depth, task)
    except ValueError as exc:
        console.print(f"[red]✖ {exc}[/]")
        raise typer.Exit(1)
    finally:
        await registry.close()
        await transcript.close()
        await store.close()

    console.print(
        Panel(
            f"[bold]Workflow:[/] {workflow_id}\n"
            f"[bold]Repository:[/] {repository}\n"
            f"[bold]Depth:[/] {depth.value}\n\n"
            f"[dim]Follow with:[/] repolens research log {workflow_id}",
            title="[bold cyan]🔍 Research queued[/]",
            border_style="cyan",
        )
    )


# ── repolens research status ──────────────────────────────────


@research_app.command("status")
def research_status(
    workflow_id: str = typer.Argument(..., help="Workflow id"),
    session: str = typer.Option(None, "--session", "-s", help="Conversation session id"),
):
    """📋 Show one workflow."""
    asyncio.run(_research_status(workflow_id, session))


async def _research_status(workflow_id: str, session: str | None) -> None:
    store = _store(session)
    try:
        workflow = await store.get(workflow_id)
    finally:
        await store.close()

    if workflow is None:
        console.print(f"[red]No workflow {workflow_id}[/]")
        raise typer.Exit(1)

    style = _STATUS_STYLE[workflow.status]
    header = Table(show_header=False, box=None, padding=(0, 2))
    header.add_column("Field", style="cyan")
    header.add_column("Value", style="white")
    header.add_row("Status", f"[{style}]{workflow.status.value}[/]")
    header.add_row("Repository", workflow.repository)
    header.add_row("Question", workflow.question)
    header.add_row("Depth", workflow.depth.value)
    if workflow.external_task_id:
        header.add_row("Tracker item", workflow.external_task_id)
    header.add_row("Updated", workflow.updated_at.strftime("%Y-%m-%d %H:%M:%S UTC"))
    console.print(Panel(header, title=f"[bold]Workflow {workflow.id}[/]", border_style=style))

    if workflow.results:
        console.print(Markdown(workflow.results))
    elif workflow.error:
        console.print(f"[red]❌ {workflow.error}[/]")


# ── repolens research list ────────────────────────────────────


@research_app.command("list")
def research_list(
    limit: int = typer.Option(20, "--limit", "-n", help="Max workflows to show"),
    session: str = typer.Option(None, "--session", "-s", help="Conversation session id"),
):
    """🗂 List recent workflows."""
    asyncio.run(_research_list(limit, session))


async def _research_list(limit: int, session: str | None) -> None:
    store = _store(session)
    try:
        workflows = await store.list(limit)
    finally:
        await store.close()

    if not workflows:
        console.print("[dim]No research workflows yet.[/]")
        return

    table = Table(title="Research workflows")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Repository", style="magenta")
    table.add_column("Depth")
    table.add_column("Question")
    table.add_column("Created", style="dim")
    for wf in workflows:
        style = _STATUS_STYLE[wf.status]
        table.add_row(
            wf.id,
            f"[{style}]{wf.status.value}[/]",
            wf.repository,
            wf.depth.value,
            wf.question[:60],
            ago(wf.created_at),
        )
    console.print(table)


# ── repolens research log ─────────────────────────────────────


@research_app.command("log")
def research_log(
    workflow_id: str = typer.Argument(..., help="Workflow id"),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of entries"),
    session: str = typer.Option(None, "--session", "-s", help="Conversation session id"),
):
    """📜 Show a workflow's progress log."""
    asyncio.run(_research_log(workflow_id, lines, session))


async def _research_log(workflow_id: str, lines: int, session: str | None) -> None:
    store = _store(session)
    try:
        entries = await store.get_log(workflow_id, n=lines)
    finally:
        await store.close()

    if not entries:
        console.print(f"[dim]No log entries for {workflow_id}.[/]")
        return
    for entry in entries:
        console.print(entry)


# ── repolens transcript ───────────────────────────────────────


@app.command()
def transcript(
    lines: int = typer.Option(20, "--lines", "-n", help="Number of entries"),
    session: str = typer.Option(None, "--session", "-s", help="Conversation session id"),
):
    """💬 Show the conversation transcript entries."""
    asyncio.run(_transcript(lines, session))


async def _transcript(lines: int, session: str | None) -> None:
    from repolens.research.transcript import Transcript

    log = Transcript(session_id=session)
    try:
        entries = await log.entries(lines)
    finally:
        await log.close()

    if not entries:
        console.print("[dim]Transcript is empty.[/]")
        return
    for entry in entries:
        style = "red" if entry.is_error else "green"
        console.print(
            Panel(
                Markdown(entry.text),
                title=f"[{style}]{entry.role}[/] · {entry.workflow_id or '-'}",
                border_style=style,
            )
        )


# ── repolens providers ────────────────────────────────────────


@app.command()
def providers():
    """🔌 List capability providers and their states."""
    asyncio.run(_providers())


async def _providers() -> None:
    import httpx

    from repolens.tools.capabilities import HttpCapabilityRegistry

    async with HttpCapabilityRegistry() as registry:
        try:
            snapshot = await registry.providers()
        except httpx.HTTPError as exc:
            console.print(f"[red]Registry unreachable: {exc}[/]")
            raise typer.Exit(1)

    if not snapshot:
        console.print("[yellow]No capability providers registered.[/]")
        return

    table = Table(title="Capability providers")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("State")
    for provider in snapshot.values():
        colour = "green" if provider.is_ready else "red" if provider.state == "failed" else "yellow"
        table.add_row(provider.id, provider.name, f"[{colour}]{provider.state}[/]")
    console.print(table)


# ── repolens worker ───────────────────────────────────────────


@app.command()
def worker(
    status: bool = typer.Option(False, "--status", help="Only report whether a worker is running"),
):
    """⚙ Run the background worker that executes research workflows."""
    from repolens.tasks.worker_process import main as worker_main
    from repolens.tasks.worker_process import read_pid

    if status:
        pid = read_pid()
        if pid:
            console.print(f"[green]Worker running (PID {pid})[/]")
        else:
            console.print("[yellow]No worker running.[/]")
        return
    worker_main([])


# ── repolens version ──────────────────────────────────────────


@app.command()
def version():
    """📦 Show repolens version."""
    from repolens import __version__
    console.print(f"[bold cyan]🔍 repolens[/] v{__version__}")


# ── Entry point ───────────────────────────────────────────────

if __name__ == "__main__":
    app()
