"""Feature management CLI commands.

Intake, status and review-history inspection for features.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from reviewgate.review.errors import ReviewGateError
from reviewgate.review.models import FindingSeverity, is_valid_status

app = typer.Typer(help="Feature management commands")
console = Console()

STATUS_COLORS = {
    "backlog": "dim",
    "in_progress": "yellow",
    "code_review": "magenta",
    "waiting_approval": "cyan",
    "verified": "green",
    "completed": "green bold",
}

REVIEW_STATUS_COLORS = {
    "pending": "dim",
    "reviewing": "magenta",
    "approved": "green",
    "rejected": "yellow",
    "failed": "red",
}

SEVERITY_COLORS = {
    FindingSeverity.ERROR: "red",
    FindingSeverity.WARNING: "yellow",
    FindingSeverity.INFO: "dim",
}


def _color(status: str | None, colors: dict[str, str]) -> str:
    if status is None:
        return "-"
    color = colors.get(status, "blue")
    return f"[{color}]{status}[/{color}]"


@app.command()
def create(
    title: Annotated[str, typer.Argument(help="Feature title")],
    description: Annotated[
        Optional[str],
        typer.Option("--description", "-d", help="Feature specification text"),
    ] = None,
    description_file: Annotated[
        Optional[Path],
        typer.Option(
            "--description-file",
            "-f",
            help="Read the feature specification from a file",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    feature_id: Annotated[
        Optional[str],
        typer.Option("--id", help="Explicit feature identifier"),
    ] = None,
    workdir: Annotated[
        Optional[Path],
        typer.Option("--workdir", "-w", help="Git working tree reviewed for this feature"),
    ] = None,
    skip_tests: Annotated[
        bool,
        typer.Option("--skip-tests", help="Mark the feature as shipping without tests"),
    ] = False,
) -> None:
    """Register a new feature in the backlog."""
    from reviewgate.main import run_with_context

    if description is not None and description_file is not None:
        console.print("[red]Use either --description or --description-file, not both[/red]")
        raise typer.Exit(code=1)
    spec_text = description_file.read_text(encoding="utf-8") if description_file else description

    async def _create(ctx):
        return await ctx.orchestrator.create_feature(
            title=title,
            description=spec_text or "",
            feature_id=feature_id,
            workdir=str(workdir.resolve()) if workdir else None,
            skip_tests=skip_tests,
        )

    try:
        feature = run_with_context(_create)
    except ReviewGateError as e:
        console.print(f"[red]Error creating feature:[/red] {e}")
        raise typer.Exit(code=1)

    panel = Panel(
        f"[green]Feature created successfully![/green]\n\n"
        f"[bold]ID:[/bold] {feature.id}\n"
        f"[bold]Title:[/bold] {escape(feature.title)}\n"
        f"[bold]Status:[/bold] {feature.status}\n"
        f"[bold]Workdir:[/bold] {feature.workdir or '-'}",
        title="Feature Created",
        border_style="green",
    )
    console.print(panel)


@app.command("list")
def list_features(
    status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="Filter by status"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List features, newest first."""
    from reviewgate.main import run_with_context

    if status is not None and not is_valid_status(status):
        console.print(f"[red]Invalid status:[/red] {status}")
        raise typer.Exit(code=1)

    async def _list(ctx):
        return await ctx.store.list_features(status)

    try:
        features = run_with_context(_list)
    except ReviewGateError as e:
        console.print(f"[red]Error listing features:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        output = [
            {
                "id": f.id,
                "title": f.title,
                "status": f.status,
                "review_status": f.review.status.value if f.review else None,
                "current_iteration": f.review.current_iteration if f.review else 0,
                "version": f.version,
                "created_at": f.created_at.isoformat(),
            }
            for f in features
        ]
        console.print_json(json.dumps(output))
        return

    if not features:
        console.print("[yellow]No features found[/yellow]")
        return

    table = Table(title="Features")
    table.add_column("ID", style="cyan", no_wrap=True, overflow="fold")
    table.add_column("Title", style="bold")
    table.add_column("Status")
    table.add_column("Review")
    table.add_column("Iteration", justify="right", style="dim")

    for f in features:
        spec = f.review
        table.add_row(
            f.id,
            escape(f.title),
            _color(f.status, STATUS_COLORS),
            _color(spec.status.value if spec else None, REVIEW_STATUS_COLORS),
            f"{spec.current_iteration}/{spec.max_iterations}" if spec else "-",
        )

    console.print(table)


@app.command()
def show(
    feature_id: Annotated[str, typer.Argument(help="Feature identifier")],
) -> None:
    """Show a feature's status and review summary."""
    from reviewgate.main import run_with_context

    async def _show(ctx):
        return await ctx.store.load_feature(feature_id)

    try:
        feature = run_with_context(_show)
    except ReviewGateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    spec = feature.review
    lines = [
        f"[bold]ID:[/bold] {feature.id}",
        f"[bold]Title:[/bold] {escape(feature.title)}",
        f"[bold]Status:[/bold] {_color(feature.status, STATUS_COLORS)}",
        f"[bold]Workdir:[/bold] {feature.workdir or '-'}",
        f"[bold]Version:[/bold] {feature.version}",
    ]
    if spec is not None:
        lines.append(
            f"[bold]Review:[/bold] {_color(spec.status.value, REVIEW_STATUS_COLORS)} "
            f"({spec.current_iteration}/{spec.max_iterations} iterations)"
        )
        if spec.is_blocked:
            lines.append("[red]Review cap reached: manual intervention required[/red]")
    if feature.description:
        lines.append("")
        lines.append(escape(feature.description))

    console.print(Panel("\n".join(lines), title="Feature", border_style="cyan"))


@app.command()
def history(
    feature_id: Annotated[str, typer.Argument(help="Feature identifier")],
    findings: Annotated[
        bool,
        typer.Option("--findings/--no-findings", help="List each iteration's findings"),
    ] = True,
) -> None:
    """Show the review iteration history of a feature."""
    from reviewgate.main import run_with_context

    async def _history(ctx):
        return await ctx.orchestrator.get_iteration_history(feature_id)

    try:
        review_history = run_with_context(_history)
    except ReviewGateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if not review_history.iterations:
        console.print(f"[yellow]Feature {feature_id} has not been reviewed yet[/yellow]")
        return

    table = Table(
        title=f"Review history: {feature_id} "
        f"({review_history.current_iteration}/{review_history.max_iterations})"
    )
    table.add_column("#", justify="right")
    table.add_column("Decision")
    table.add_column("Commit", style="cyan")
    table.add_column("Reviewer", style="dim")
    table.add_column("Findings", justify="right")
    table.add_column("Summary")

    decision_colors = {"approved": "green", "rejected": "yellow", "failed": "red"}
    for it in review_history.iterations:
        table.add_row(
            str(it.iteration_number),
            _color(it.decision.value, decision_colors),
            it.commit_sha[:10],
            it.reviewer,
            str(len(it.findings)),
            escape(it.summary or "-"),
        )
    console.print(table)

    if findings:
        for it in review_history.iterations:
            if not it.findings:
                continue
            console.print(f"\n[bold]Iteration {it.iteration_number} findings[/bold]")
            for finding in it.findings:
                color = SEVERITY_COLORS[finding.severity]
                location = f" ({finding.location})" if finding.location else ""
                console.print(
                    f"  [{color}]{finding.severity.value.upper()}[/{color}] "
                    f"\\[{finding.category.value}] {escape(finding.title)}{escape(location)}"
                )

    if review_history.blocked:
        console.print("\n[red]Review cap reached: manual intervention required[/red]")


@app.command()
def start(
    feature_id: Annotated[str, typer.Argument(help="Feature identifier")],
) -> None:
    """Move a feature from the backlog into implementation."""
    from reviewgate.main import run_with_context

    async def _start(ctx):
        return await ctx.orchestrator.start_feature(feature_id)

    try:
        feature = run_with_context(_start)
    except ReviewGateError as e:
        console.print(f"[red]Error starting feature:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Feature {feature.id} is now {feature.status}[/green]")
