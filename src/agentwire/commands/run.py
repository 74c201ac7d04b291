"""agentwire run — send one prompt to the agent CLI and print the reply."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click

from agentwire.config.models import AgentOptions
from agentwire.config.parser import DEFAULT_CONFIG_NAME, ConfigError, load_options
from agentwire.errors import AgentWireError
from agentwire.query import query
from agentwire.types.messages import (
    AssistantMessage,
    Message,
    ResultMessage,
    TextBlock,
    ToolUseBlock,
)


@click.command()
@click.argument("prompt")
@click.option(
    "-c", "--config", "config_file", type=click.Path(), help="Config file path."
)
@click.option("--model", default=None, help="Model to use for this run.")
@click.option("--cli-path", default=None, help="Path to the agent executable.")
@click.option(
    "--permission-mode",
    type=click.Choice(["default", "acceptEdits", "plan", "bypassPermissions"]),
    default=None,
    help="Permission mode for tool use.",
)
@click.option("--max-turns", type=int, default=None, help="Maximum agent turns.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON frames.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def run(
    prompt: str,
    config_file: str | None,
    model: str | None,
    cli_path: str | None,
    permission_mode: str | None,
    max_turns: int | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """Run PROMPT once and print the agent's reply."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        options = _load(config_file)
        overrides: dict[str, Any] = {
            "model": model,
            "cli_path": cli_path,
            "permission_mode": permission_mode,
            "max_turns": max_turns,
        }
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            options = options.with_overrides(**overrides)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    try:
        failed = asyncio.run(_run_query(prompt, options, as_json))
    except AgentWireError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    if failed:
        raise SystemExit(1)


def _load(config_file: str | None) -> AgentOptions:
    """Explicit file, else ./agentwire.yaml when present, else defaults."""
    if config_file:
        return load_options(Path(config_file))
    if (Path.cwd() / DEFAULT_CONFIG_NAME).is_file():
        return load_options()
    return AgentOptions()


async def _run_query(prompt: str, options: AgentOptions, as_json: bool) -> bool:
    """Stream the reply to stdout.  Returns True if the run ended in error."""
    failed = False
    async for message in query(prompt, options):
        if as_json:
            click.echo(json.dumps(message.raw))
        else:
            _print_message(message)
        if isinstance(message, ResultMessage):
            failed = failed or message.is_error
    return failed


def _print_message(message: Message) -> None:
    if isinstance(message, AssistantMessage):
        for block in message.content:
            if isinstance(block, TextBlock):
                click.echo(block.text)
            elif isinstance(block, ToolUseBlock):
                click.echo(click.style(f"  → {block.name}", dim=True))
    elif isinstance(message, ResultMessage):
        cost = (
            f" · ${message.total_cost_usd:.4f}"
            if message.total_cost_usd is not None
            else ""
        )
        colour = "red" if message.is_error else "green"
        click.echo(
            click.style(
                f"[{message.subtype}] {message.num_turns} turn(s) "
                f"in {message.duration_ms} ms{cost}",
                fg=colour,
            ),
            err=True,
        )
