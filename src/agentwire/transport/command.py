"""Argument vector and environment construction for the agent CLI."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Any

from agentwire.config.models import AgentOptions
from agentwire.errors import CLINotFoundError

#: Install locations checked when the CLI is not on PATH.
_CLI_CANDIDATES = (
    "~/.npm-global/bin/claude",
    "/usr/local/bin/claude",
    "~/.local/bin/claude",
    "~/node_modules/.bin/claude",
    "~/.yarn/bin/claude",
    "~/.claude/local/claude",
)

#: Identifies this client to the CLI.
_ENTRYPOINT = "sdk-py"


def find_cli() -> str:
    """Locate the agent CLI executable.

    Raises ``CLINotFoundError`` when neither PATH nor the well-known
    install locations contain it.
    """
    found = shutil.which("claude")
    if found:
        return found

    for candidate in _CLI_CANDIDATES:
        path = Path(candidate).expanduser()
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)

    msg = (
        "Agent CLI not found. Install it with "
        "`npm install -g @anthropic-ai/claude-code` or set cli_path."
    )
    raise CLINotFoundError(msg)


def build_command(
    options: AgentOptions,
    prompt: str | None = None,
    *,
    streaming: bool = True,
) -> list[str]:
    """Map *options* onto the CLI argument vector.

    A pure function of its inputs apart from the PATH lookup done when
    ``options.cli_path`` is unset.
    """
    cli = str(options.cli_path) if options.cli_path else find_cli()
    cmd = [cli, "--output-format", "stream-json", "--verbose"]

    system_prompt = options.system_prompt
    if system_prompt is None:
        cmd.extend(["--system-prompt", ""])
    elif isinstance(system_prompt, str):
        cmd.extend(["--system-prompt", system_prompt])
    elif system_prompt.get("type") == "preset" and "append" in system_prompt:
        cmd.extend(["--append-system-prompt", str(system_prompt["append"])])

    tools = options.tools
    if tools is not None:
        if isinstance(tools, list):
            cmd.extend(["--tools", ",".join(tools)])
        else:
            cmd.extend(["--tools", "default"])

    if options.allowed_tools:
        cmd.extend(["--allowedTools", ",".join(options.allowed_tools)])
    if options.disallowed_tools:
        cmd.extend(["--disallowedTools", ",".join(options.disallowed_tools)])
    if options.max_turns is not None:
        cmd.extend(["--max-turns", str(options.max_turns)])
    if options.max_budget_usd is not None:
        cmd.extend(["--max-budget-usd", str(options.max_budget_usd)])
    if options.model:
        cmd.extend(["--model", options.model])
    if options.fallback_model:
        cmd.extend(["--fallback-model", options.fallback_model])
    if options.betas:
        cmd.extend(["--betas", ",".join(options.betas)])
    if options.permission_prompt_tool_name:
        cmd.extend(["--permission-prompt-tool", options.permission_prompt_tool_name])
    if options.permission_mode:
        cmd.extend(["--permission-mode", options.permission_mode])
    if options.continue_conversation:
        cmd.append("--continue")
    if options.resume:
        cmd.extend(["--resume", options.resume])

    settings = _build_settings_value(options)
    if settings:
        cmd.extend(["--settings", settings])

    for directory in options.add_dirs:
        cmd.extend(["--add-dir", str(directory)])

    if options.mcp_servers is not None:
        if isinstance(options.mcp_servers, dict):
            external = _external_mcp_servers(options.mcp_servers)
            if external:
                cmd.extend(["--mcp-config", json.dumps({"mcpServers": external})])
        else:
            cmd.extend(["--mcp-config", str(options.mcp_servers)])

    if options.include_partial_messages:
        cmd.append("--include-partial-messages")
    if options.fork_session:
        cmd.append("--fork-session")
    if options.agents:
        cmd.extend(["--agents", json.dumps(options.agents)])
    if options.setting_sources is not None:
        cmd.extend(["--setting-sources", ",".join(options.setting_sources)])

    for plugin in options.plugins:
        if plugin.get("type") == "local":
            cmd.extend(["--plugin-dir", str(plugin["path"])])

    if options.max_thinking_tokens is not None:
        cmd.extend(["--max-thinking-tokens", str(options.max_thinking_tokens)])

    output_format = options.output_format
    if output_format and output_format.get("type") == "json_schema":
        schema = output_format.get("schema")
        if schema is not None:
            cmd.extend(["--json-schema", json.dumps(schema)])

    for flag, value in options.extra_args.items():
        cmd.append(f"--{flag}")
        if value is not None:
            cmd.append(value)

    if streaming:
        cmd.extend(["--input-format", "stream-json"])
    else:
        cmd.extend(["--print", "--", prompt or ""])

    return cmd


def build_env(options: AgentOptions) -> dict[str, str]:
    """Return the subprocess environment: os.environ overlaid with options.env."""
    env = {**os.environ, **options.env}
    env.setdefault("CLAUDE_CODE_ENTRYPOINT", _ENTRYPOINT)
    if options.enable_file_checkpointing:
        env["CLAUDE_CODE_ENABLE_SDK_FILE_CHECKPOINTING"] = "true"
    return env


def _build_settings_value(options: AgentOptions) -> str | None:
    """Merge ``settings`` and ``sandbox`` into the ``--settings`` value."""
    if options.settings is None and options.sandbox is None:
        return None
    if options.sandbox is None:
        return options.settings

    settings_obj: dict[str, Any] = {}
    if options.settings is not None:
        text = options.settings.strip()
        decoded: Any = None
        if text.startswith("{"):
            decoded = _loads_or_none(text)
        elif Path(text).is_file():
            decoded = _loads_or_none(Path(text).read_text(encoding="utf-8"))
        if isinstance(decoded, dict):
            settings_obj = decoded

    settings_obj["sandbox"] = options.sandbox
    return json.dumps(settings_obj)


def _loads_or_none(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def _external_mcp_servers(servers: dict[str, Any]) -> dict[str, Any]:
    """Drop in-process servers; the CLI reaches those over the control channel."""
    return {
        name: server
        for name, server in servers.items()
        if not (
            isinstance(server, dict)
            and (server.get("type") == "sdk" or "instance" in server)
        )
    }
