"""Review cycle CLI commands.

Drive the review loop for one feature from the command line: a single
review, a fix cycle, the full loop until approval or the cap, and recovery
of a review interrupted by a crash.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from reviewgate.review.errors import IterationCapExceededError, ReviewGateError
from reviewgate.review.models import ReviewDecision, ReviewOutcome

app = typer.Typer(help="Review cycle commands")
console = Console()

DECISION_STYLES = {
    ReviewDecision.APPROVED: "green",
    ReviewDecision.REJECTED: "yellow",
    ReviewDecision.FAILED: "red",
}


def _print_outcome(outcome: ReviewOutcome) -> None:
    style = DECISION_STYLES[outcome.decision]
    lines = [
        f"[bold]Feature:[/bold] {outcome.feature_id}",
        f"[bold]Iteration:[/bold] {outcome.iteration_number}",
        f"[bold]Decision:[/bold] [{style}]{outcome.decision.value}[/{style}]",
        f"[bold]Feature status:[/bold] {outcome.feature_status}",
        f"[bold]Review status:[/bold] {outcome.review_status.value}",
    ]
    if not outcome.detail_persisted:
        lines.append("[yellow]Detail document could not be written[/yellow]")
    if outcome.stalled:
        lines.append("[red]Review cap reached: manual intervention required[/red]")
    console.print(
        Panel(
            "\n".join(lines),
            title=f"Review iteration {outcome.iteration_number}",
            border_style=style,
        )
    )


def _fail(prefix: str, error: ReviewGateError) -> None:
    console.print(f"[red]{prefix}:[/red] {escape(str(error))}")
    code = 2 if isinstance(error, IterationCapExceededError) else 1
    raise typer.Exit(code=code)


@app.command()
def run(
    feature_id: Annotated[str, typer.Argument(help="Feature identifier")],
    output_file: Annotated[
        Optional[Path],
        typer.Option(
            "--output-file",
            "-o",
            help="File holding the implementation run's output",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
) -> None:
    """Commit the feature's working tree and review it once."""
    from reviewgate.main import run_with_context

    output = output_file.read_text(encoding="utf-8") if output_file else None

    async def _run(ctx):
        return await ctx.orchestrator.on_implementation_complete(feature_id, output)

    try:
        outcome = run_with_context(_run)
    except ReviewGateError as e:
        _fail("Review failed", e)

    _print_outcome(outcome)


@app.command()
def fix(
    feature_id: Annotated[str, typer.Argument(help="Feature identifier")],
) -> None:
    """Let the implementer address the latest findings, then review again."""
    from reviewgate.main import run_with_context

    async def _fix(ctx):
        return await ctx.orchestrator.run_fix_cycle(feature_id)

    try:
        outcome = run_with_context(_fix)
    except ReviewGateError as e:
        _fail("Fix cycle failed", e)

    _print_outcome(outcome)


@app.command()
def loop(
    feature_id: Annotated[str, typer.Argument(help="Feature identifier")],
) -> None:
    """Review, fix and re-review until approved or the cap is reached."""
    from reviewgate.main import run_with_context

    async def _loop(ctx):
        return await ctx.orchestrator.run_review_loop(feature_id)

    try:
        outcomes = run_with_context(_loop)
    except ReviewGateError as e:
        _fail("Review loop failed", e)

    for outcome in outcomes:
        _print_outcome(outcome)

    if outcomes[-1].stalled:
        raise typer.Exit(code=2)


@app.command()
def recover(
    feature_id: Annotated[str, typer.Argument(help="Feature identifier")],
) -> None:
    """Resolve a review left in flight by a crashed process."""
    from reviewgate.main import run_with_context

    async def _recover(ctx):
        return await ctx.orchestrator.recover_interrupted_review(feature_id)

    try:
        outcome = run_with_context(_recover)
    except ReviewGateError as e:
        _fail("Recovery failed", e)

    if outcome is None:
        console.print(f"[green]No interrupted review recorded for {feature_id}[/green]")
        return
    _print_outcome(outcome)
