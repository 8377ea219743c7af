"""CLI commands for repatch using Typer and Rich.

Implements the operator commands:
- generate: Create a patch note and run the content pipeline
- status: Show patch note and render details
- watch: Poll a render until it finishes
- render: Start a render from stored highlights
- rerender: Discard the current video and render again
- list: List patch notes in a table
- reap: Fail renders that stopped reporting progress
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from repatch import validate_dependencies
from repatch.db import init_database
from repatch.orchestrator.controller import get_controller
from repatch.orchestrator.errors import RenderControllerError
from repatch.orchestrator.state import RENDER_STATES, RenderState, is_active
from repatch.orchestrator.status import job_from_row
from repatch.schemas.patch_note import CustomRange, PatchNoteFilters, ReleaseRef, RepoInfo
from repatch.schemas.render import StatusView
from repatch.services.github_client import close_github_client
from repatch.services.render_client import close_render_client
from repatch.workers.pipeline_tasks import fail_stale_renders, watch_render

app = typer.Typer(name="repatch", help="AI-written patch notes with rendered video summaries")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show pipeline logs"),
):
    """Repatch operator commands."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _require_render_settings() -> None:
    """Fail-fast render engine validation."""
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)


def _parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid patch note UUID: {value}")
        raise typer.Exit(code=1)


async def _close_clients() -> None:
    await close_render_client()
    await close_github_client()


@app.command()
def generate(
    repository: str = typer.Argument(..., help="owner/repo or GitHub URL"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch to read commits from"),
    preset: str = typer.Option("1week", "--preset", "-p", help="Time window: 1day, 1week or 1month"),
    since: Optional[datetime] = typer.Option(None, "--since", help="Custom range start"),
    until: Optional[datetime] = typer.Option(None, "--until", help="Custom range end"),
    release: Optional[list[str]] = typer.Option(None, "--release", "-r", help="Release tag (repeatable)"),
    include_tag: Optional[list[str]] = typer.Option(None, "--include-tag", help="Only commits a tag points at (repeatable)"),
    exclude_tag: Optional[list[str]] = typer.Option(None, "--exclude-tag", help="Drop commits this tag points at (repeatable)"),
    no_video: bool = typer.Option(False, "--no-video", help="Skip render engine validation"),
):
    """Generate patch notes for a repository.

    Creates a patch note and runs the content pipeline in the foreground:
    stats, AI summaries, content assembly, highlights and render start.
    """
    if not no_video:
        _require_render_settings()

    try:
        repo = RepoInfo.parse(repository, branch)
        tags = {"include_tags": include_tag or [], "exclude_tags": exclude_tag or []}
        if release:
            filters = PatchNoteFilters(mode="release", releases=[ReleaseRef(tag=t) for t in release], **tags)
        elif since or until:
            if not (since and until):
                raise ValueError("Custom ranges require both --since and --until.")
            filters = PatchNoteFilters(
                mode="custom", custom_range=CustomRange(since=since, until=until), **tags
            )
        else:
            filters = PatchNoteFilters(mode="preset", preset=preset, **tags)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    asyncio.run(_generate_async(repo, filters))


async def _generate_async(repo: RepoInfo, filters: PatchNoteFilters):
    """Async implementation of generate command."""
    await init_database()
    controller = get_controller()

    note = await controller.create_patch_note(repo, filters)
    console.print(f"[green]Created patch note:[/green] {note.id}")
    console.print()

    try:
        with console.status("[bold green]Starting pipeline...") as status:
            def callback_wrapper(msg: str):
                status.update(f"[bold green]{msg}")

            result = await controller.run_pipeline(
                note.id, repo, filters, progress_callback=callback_wrapper
            )

    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Pipeline interrupted. You can re-run it with the API process endpoint.[/yellow]")
        raise typer.Exit(code=130)

    except Exception as e:
        console.print()
        console.print(f"[red]✗ Pipeline failed:[/red] {str(e)}")
        raise typer.Exit(code=1)

    finally:
        await _close_clients()

    if result.pipeline_status.value == "failed":
        console.print(f"[red]✗ Pipeline failed:[/red] {result.error}")
        raise typer.Exit(code=1)

    label = "AI summary" if not result.used_fallback else "boilerplate summary"
    console.print(f"[green]✓[/green] Patch notes generated ({label}, {result.highlights} highlights)")
    if result.render_state == RenderState.QUEUED:
        console.print(f"[green]Render queued:[/green] {result.engine_job_id}")
        console.print(f"[yellow]Follow it with:[/yellow] python -m repatch watch {note.id}")
    elif result.render_state == RenderState.FAILED:
        console.print(f"[red]Render did not start:[/red] {result.error}")
        console.print(f"[yellow]You can retry with:[/yellow] python -m repatch render {note.id}")


@app.command()
def status(
    patch_note_id: str = typer.Argument(..., help="Patch note UUID"),
):
    """Show patch note and render details."""
    asyncio.run(_status_async(patch_note_id))


async def _status_async(patch_note_id_str: str):
    """Async implementation of status command."""
    job_key = _parse_uuid(patch_note_id_str)
    await init_database()
    controller = get_controller()

    try:
        note = await controller.store.get(job_key)
    except RenderControllerError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    runs = await controller.store.list_runs(job_key)
    latest_run = runs[0] if runs else None
    view = job_from_row(note).to_status()

    state_color = _get_state_color(view.state)
    info_lines = [
        f"[bold]ID:[/bold] {note.id}",
        f"[bold]Repository:[/bold] {note.repo_name}",
        f"[bold]Title:[/bold] {note.title or '-'}",
        f"[bold]Pipeline:[/bold] {note.pipeline_status}",
        f"[bold]Stage:[/bold] {note.processing_stage or '-'}",
        f"[bold]Render:[/bold] [{state_color}]{view.state.value}[/{state_color}] ({RENDER_STATES[view.state]})",
        f"[bold]Created:[/bold] {note.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"[bold]Updated:[/bold] {note.updated_at.strftime('%Y-%m-%d %H:%M:%S')}",
    ]

    if view.state == RenderState.RENDERING:
        info_lines.append(f"[bold]Progress:[/bold] {view.progress_percent}%")
    if view.video_url:
        info_lines.append(f"[bold]Video:[/bold] [green]{view.video_url}[/green]")
    if view.error:
        info_lines.append(f"[bold]Error:[/bold] [red]{view.error}[/red]")
    if note.video_top_changes:
        info_lines.append(f"[bold]Highlights:[/bold] {len(note.video_top_changes)}")

    if latest_run and latest_run.total_duration_seconds:
        duration = latest_run.total_duration_seconds
        if duration < 60:
            duration_str = f"{duration:.1f}s"
        else:
            mins = int(duration // 60)
            secs = duration % 60
            duration_str = f"{mins}m {secs:.1f}s"
        info_lines.append(f"[bold]Last Run Duration:[/bold] {duration_str}")

    panel = Panel(
        "\n".join(info_lines),
        title="[bold]Patch Note Status[/bold]",
        border_style="blue",
    )
    console.print(panel)


@app.command()
def watch(
    patch_note_id: str = typer.Argument(..., help="Patch note UUID"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds between polls"),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Give up after this many seconds"),
):
    """Poll a render until it completes or fails."""
    asyncio.run(_watch_async(patch_note_id, interval, timeout))


async def _watch_async(patch_note_id_str: str, interval: Optional[float], timeout: Optional[float]):
    """Async implementation of watch command."""
    job_key = _parse_uuid(patch_note_id_str)
    await init_database()
    controller = get_controller()

    try:
        with console.status("[bold green]Waiting for render...") as spinner:
            def on_status(view: StatusView):
                spinner.update(f"[bold green]{view.stage or view.state.value} ({view.progress_percent}%)")

            view = await watch_render(
                job_key, interval, timeout, controller=controller, on_status=on_status
            )
    except RenderControllerError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)
    finally:
        await _close_clients()

    if view.state == RenderState.COMPLETED:
        console.print(f"[green]✓[/green] Video ready: {view.video_url}")
    elif view.state == RenderState.FAILED:
        console.print(f"[red]✗ Render failed:[/red] {view.error}")
        raise typer.Exit(code=1)
    elif view.state == RenderState.IDLE:
        console.print("[yellow]No render has been started for this patch note[/yellow]")
    else:
        console.print(f"[yellow]Still {view.state.value} ({view.progress_percent}%)[/yellow]")


@app.command()
def render(
    patch_note_id: str = typer.Argument(..., help="Patch note UUID"),
    wait: bool = typer.Option(False, "--wait", "-w", help="Watch the render until it finishes"),
):
    """Start a render from the patch note's stored highlights."""
    _require_render_settings()
    asyncio.run(_render_async(patch_note_id, restart=False, wait=wait))


@app.command()
def rerender(
    patch_note_id: str = typer.Argument(..., help="Patch note UUID"),
    wait: bool = typer.Option(False, "--wait", "-w", help="Watch the render until it finishes"),
):
    """Discard the current video (or failure) and render again."""
    _require_render_settings()
    asyncio.run(_render_async(patch_note_id, restart=True, wait=wait))


async def _render_async(patch_note_id_str: str, restart: bool, wait: bool):
    """Async implementation of render and rerender commands."""
    job_key = _parse_uuid(patch_note_id_str)
    await init_database()
    controller = get_controller()

    try:
        if restart:
            handle = await controller.regenerate_video(job_key)
        else:
            handle = await controller.start_render(job_key)
        console.print(f"[green]Render queued:[/green] {handle.job_id} (bucket {handle.bucket})")

        if wait:
            with console.status("[bold green]Rendering..."):
                view = await watch_render(job_key, controller=controller)
            if view.state == RenderState.COMPLETED:
                console.print(f"[green]✓[/green] Video ready: {view.video_url}")
            elif view.state == RenderState.FAILED:
                console.print(f"[red]✗ Render failed:[/red] {view.error}")
                raise typer.Exit(code=1)
    except RenderControllerError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)
    finally:
        await _close_clients()


@app.command(name="list")
def list_patch_notes(
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows to show"),
):
    """List patch notes, newest first."""
    asyncio.run(_list_async(limit))


async def _list_async(limit: int):
    """Async implementation of list command."""
    await init_database()
    notes = await get_controller().store.list_recent(limit)

    if not notes:
        console.print("[yellow]No patch notes found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Repository")
    table.add_column("Pipeline")
    table.add_column("Render")
    table.add_column("Created")

    for note in notes:
        id_display = str(note.id)[:8] + "..."
        state = job_from_row(note).state
        state_color = _get_state_color(state)
        table.add_row(
            id_display,
            note.repo_name,
            note.pipeline_status,
            f"[{state_color}]{state.value}[/{state_color}]",
            note.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def reap(
    older_than: Optional[int] = typer.Option(
        None, "--older-than", help="Seconds without progress (default: render_engine.stale_after_seconds)"
    ),
):
    """Fail renders that stopped reporting progress."""
    asyncio.run(_reap_async(older_than))


async def _reap_async(older_than: Optional[int]):
    """Async implementation of reap command."""
    await init_database()
    failed = await fail_stale_renders(older_than)
    if not failed:
        console.print("[green]No stale renders[/green]")
        return
    for job_key in failed:
        console.print(f"[yellow]Failed stale render:[/yellow] {job_key}")


def _get_state_color(state: RenderState) -> str:
    """Get Rich color for a render state.

    Color coding:
    - completed: green
    - failed: red
    - queued/rendering: yellow
    - idle: dim
    """
    if state == RenderState.COMPLETED:
        return "green"
    elif state == RenderState.FAILED:
        return "red"
    elif is_active(state):
        return "yellow"
    else:
        return "dim"
