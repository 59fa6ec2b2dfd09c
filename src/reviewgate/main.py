"""Main CLI entry point for reviewgate.

Usage:
    reviewgate init-db
    reviewgate feature create "Add login" --workdir ./repo -d "Users can log in"
    reviewgate feature start <feature-id>
    reviewgate review run <feature-id>
    reviewgate serve --port 8000
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from reviewgate.cli import feature as feature_cli
from reviewgate.cli import review as review_cli
from reviewgate.config import ReviewGateConfig, load_config
from reviewgate.database.connection import get_engine, get_session_factory
from reviewgate.database.models.base import Base
from reviewgate.logging import setup_logging
from reviewgate.review.cycle import ReviewOrchestrator, build_orchestrator
from reviewgate.review.store import ReviewStore

app = typer.Typer(
    name="reviewgate",
    help="reviewgate: AI-gated iterative code review",
    no_args_is_help=True,
)

app.add_typer(feature_cli.app, name="feature", help="Manage features")
app.add_typer(review_cli.app, name="review", help="Run review cycles")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded reviewgate configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
    """

    def __init__(self, config: ReviewGateConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)
        self._orchestrator: ReviewOrchestrator | None = None

    @property
    def store(self) -> ReviewStore:
        return self.orchestrator.store

    @property
    def orchestrator(self) -> ReviewOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = build_orchestrator(self.config, self.session_factory)
        return self._orchestrator

    async def close(self) -> None:
        await self.engine.dispose()


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: ReviewGateConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


def run_with_context(coro_fn):
    """Run ``coro_fn(ctx)`` on a fresh event loop and dispose the engine after.

    Each CLI command owns one event loop; the engine's connections are
    bound to it and must be released before it closes.
    """
    ctx = get_app_context()

    async def _runner():
        try:
            return await coro_fn(ctx)
        finally:
            await ctx.close()

    return asyncio.run(_runner())


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default from config)"),
    ] = None,
) -> None:
    """Start the reviewgate web server (REST API and event stream)."""
    import uvicorn

    from reviewgate.web.app import create_app

    config = get_app_context().config
    bind_host = host or config.web.host
    bind_port = port or config.web.port

    console.print("[bold cyan]Starting reviewgate web server[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print()

    uvicorn.run(
        create_app(config),
        host=bind_host,
        port=bind_port,
        log_level="info",
    )


@app.command("init-db")
def init_db() -> None:
    """Create the review tables directly (development databases).

    Production databases are managed with ``alembic upgrade head``.
    """

    async def _init(ctx: AppContext) -> None:
        async with ctx.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    try:
        run_with_context(_init)
    except Exception as e:
        console.print(f"[red]Error creating tables:[/red] {e}")
        raise typer.Exit(code=1)

    console.print("[green]Database tables created[/green]")


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)

    try:
        initialize_context(config)
    except Exception as e:
        console.print(f"[red]Error initializing application:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
