"""agentwire init — scaffold an agentwire.yaml in the current directory."""

from __future__ import annotations

from pathlib import Path

import click

from agentwire.config.parser import DEFAULT_CONFIG_NAME

ENV_EXAMPLE_FILENAME = ".env.example"

TEMPLATE_YAML = """\
# agentwire session options
# Every key maps onto an AgentOptions field; unknown keys are rejected.

# Model used for the session (default: the CLI's own default)
# model: claude-sonnet-4-5

# Working directory for the agent, relative to this file
cwd: .

# Permission mode: default | acceptEdits | plan | bypassPermissions
permission_mode: default

# Stop after this many agent turns
max_turns: 10

# Tools the agent may use without asking
allowed_tools:
  - Read
  - Grep

# Explicit path to the agent executable (searched on PATH when unset)
# cli_path: /usr/local/bin/claude

# Extra environment for the subprocess; .env beside this file is loaded too
# env:
#   ANTHROPIC_LOG: debug
"""

TEMPLATE_ENV_EXAMPLE = """\
# Environment for the agent CLI subprocess.
# Copy this file to .env and fill in your values.

ANTHROPIC_API_KEY=
"""


@click.command()
@click.option(
    "--force",
    is_flag=True,
    help=f"Overwrite existing {DEFAULT_CONFIG_NAME} if it exists.",
)
def init(force: bool) -> None:
    """Scaffold agentwire.yaml in the current directory."""
    cwd = Path.cwd()
    config_path = cwd / DEFAULT_CONFIG_NAME
    env_example_path = cwd / ENV_EXAMPLE_FILENAME

    if config_path.exists() and not force:
        raise click.ClickException(
            f"{DEFAULT_CONFIG_NAME} already exists. Use --force to overwrite."
        )

    try:
        config_path.write_text(TEMPLATE_YAML, encoding="utf-8")
    except OSError as exc:
        raise click.ClickException(
            f"Cannot write {DEFAULT_CONFIG_NAME}: {exc}"
        ) from exc
    click.echo(f"  Created {DEFAULT_CONFIG_NAME}")

    if not env_example_path.exists() or force:
        try:
            env_example_path.write_text(TEMPLATE_ENV_EXAMPLE, encoding="utf-8")
        except OSError as exc:
            raise click.ClickException(
                f"Cannot write {ENV_EXAMPLE_FILENAME}: {exc}"
            ) from exc
        click.echo(f"  Created {ENV_EXAMPLE_FILENAME}")
    else:
        click.echo(f"  Skipped {ENV_EXAMPLE_FILENAME} (already exists)")

    click.echo()
    click.echo("Next steps:")
    click.echo(f"  1. Edit {DEFAULT_CONFIG_NAME} to configure the session")
    click.echo("  2. Copy .env.example to .env and add your API key")
    click.echo('  3. Run `agentwire run "your prompt"`')
