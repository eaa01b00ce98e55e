"""Command-line interface for the orchestration engine."""

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from .config.loader import DEFAULT_CONFIG_PATH, list_profiles, load_config
from .config.factory import create_engine, create_llm_provider
from .settings import PATTERN_DIR, SESSION_LOG_DIR

app = typer.Typer(
    name="inquest",
    help="Answer questions about a running application with verified evidence.",
    add_completion=False,
)


@app.command()
def ask(
    query: Annotated[str, typer.Argument(help="Question about the running application")],
    profile: Annotated[
        str,
        typer.Option("--profile", "-p", help="Configuration profile (default: MODEL_PROFILE or dev)"),
    ] = None,
    channel: Annotated[
        str,
        typer.Option("--channel", help="Channel id forwarded to every tool call"),
    ] = None,
    project: Annotated[
        str,
        typer.Option("--project", help="Project checkout location for file tools and agents"),
    ] = None,
    no_verify: Annotated[
        bool,
        typer.Option("--no-verify", help="Skip answer verification"),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON"),
    ] = False,
):
    """
    Investigate a question and print a graded answer.

    Examples:

        # Ask with the default profile
        inquest ask "How many users are shown on the dashboard?"

        # Offline run against the mock oracle
        inquest ask "What errors are in the console?" --profile test

        # File tools scoped to a checkout
        inquest ask "Where is the login handler?" --project ./my-app --json
    """
    try:
        config = load_config(profile)
    except KeyError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if no_verify:
        config.verification.enabled = False

    asyncio.run(_ask_async(query, config, channel, project, as_json))


async def _ask_async(query, config, channel, project, as_json: bool):
    """Async implementation of ask."""
    from .orchestration.models import ExecutionContext, StepUpdate
    from .orchestration.tools import HTTPToolBackend, ToolRegistry

    try:
        llm = create_llm_provider(config.oracle)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    def on_step(update: StepUpdate) -> None:
        if update.type == "step" and not as_json:
            data = update.data
            typer.echo(f"  [{data['step']}] {data['action']} ({data['confidence']}%)", err=True)

    registry = ToolRegistry()
    async with llm, HTTPToolBackend(config.tool_server.url, config.tool_server.timeout) as backend:
        backend.bind(registry)
        engine = create_engine(config, llm, registry)
        result = await engine.run(
            query,
            ExecutionContext(channel_id=channel, project_location=project, on_step_update=on_step),
        )

    if as_json:
        output = {
            "sessionId": result.session_id,
            "answer": result.answer,
            "confidence": result.confidence,
            "quality": result.quality.value,
            "pattern": result.pattern,
            "steps": [
                {"step": a.step, "name": a.name, "params": a.params, "error": a.error}
                for a in result.action_history
            ],
            "errors": result.errors,
            "verification": result.verification.model_dump(by_alias=True) if result.verification else None,
        }
        typer.echo(json.dumps(output, indent=2, default=str))
        return

    typer.echo(f"\n{result.answer}\n")
    typer.echo(f"Quality: {result.quality.value} | Confidence: {result.confidence}% | Steps: {len(result.action_history)}")
    typer.echo(f"Session: {result.session_id}")
    if result.errors:
        typer.echo(f"Errors: {len(result.errors)}")


@app.command()
def report(
    session_id: Annotated[str, typer.Argument(help="Session id (e.g. session_1700000000000_ab12cd34e)")],
    log_dir: Annotated[
        Path,
        typer.Option("--log-dir", help="Directory holding session snapshots"),
    ] = SESSION_LOG_DIR,
):
    """Render the Markdown report of a past session."""
    from .orchestration.session_logger import load_session_log, render_report

    path = log_dir / f"{session_id}.json"
    try:
        log = load_session_log(path)
    except FileNotFoundError:
        typer.echo(f"Error: No session snapshot at {path}", err=True)
        raise typer.Exit(1)
    except (ValueError, ValidationError) as e:
        typer.echo(f"Error: Could not read {path}: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(render_report(log))


@app.command()
def patterns(
    failed: Annotated[
        bool,
        typer.Option("--failed", help="List failure patterns instead of successful ones"),
    ] = False,
    pattern_dir: Annotated[
        Path,
        typer.Option("--dir", help="Directory holding the pattern files"),
    ] = PATTERN_DIR,
):
    """List learned query patterns."""
    from .orchestration.pattern_store import PatternStore

    store = PatternStore(pattern_dir=pattern_dir)
    selected = store.failed if failed else store.successful
    stats = store.get_stats()

    typer.echo(
        f"{stats['successful_patterns']} successful, {stats['failed_patterns']} failed patterns "
        f"({stats['total_uses']} uses, {stats['average_confidence']}% average confidence)\n"
    )
    for p in selected:
        typer.echo(f"{p.id}  [{p.query_type.value}/{p.intent.value}]")
        typer.echo(f"   Example: {p.example_query}")
        typer.echo(f"   Tools: {' -> '.join(p.tool_sequence) or 'None'}")
        typer.echo(
            f"   Uses: {p.usage_count} | Success rate: {p.success_rate:.0%} | "
            f"Confidence: {p.average_confidence}%"
        )
        typer.echo()


@app.command()
def profiles():
    """List available configuration profiles."""
    names = list_profiles()
    if not names:
        typer.echo(f"No profiles found in {DEFAULT_CONFIG_PATH}")
        return

    typer.echo("Available profiles:\n")
    for name in names:
        config = load_config(name)
        typer.echo(f"  {name}")
        typer.echo(f"    Oracle: {config.oracle.backend} ({config.oracle.model or 'default model'})")
        typer.echo(f"    Max steps: {config.engine.max_steps}")
        typer.echo(f"    Verification: {'on' if config.verification.enabled else 'off'}")
        typer.echo()


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
