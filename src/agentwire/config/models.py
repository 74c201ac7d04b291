"""Pydantic v2 models for agent session options."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentwire.constants import DEFAULT_CONTROL_TIMEOUT

PermissionMode = Literal["default", "acceptEdits", "plan", "bypassPermissions"]


class HookMatcher(BaseModel):
    """A group of hook callbacks registered for one hook event."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    matcher: str | dict[str, Any] | None = Field(
        default=None,
        description="Tool-name pattern the agent uses to select these hooks",
    )
    hooks: list[Callable[..., Any]] = Field(
        default_factory=list,
        description="Callbacks invoked as (input, tool_use_id, context)",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Seconds the agent waits for the callbacks",
    )


class AgentOptions(BaseModel):
    """Everything needed to launch and talk to one agent CLI session."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    # Process launch
    cli_path: str | Path | None = Field(
        default=None,
        description="Explicit path to the agent executable (searched when unset)",
    )
    cwd: str | Path | None = Field(
        default=None,
        description="Working directory for the subprocess",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables layered over os.environ",
    )
    extra_args: dict[str, str | None] = Field(
        default_factory=dict,
        description="Additional --flag value pairs (None means a bare flag)",
    )
    user: str | None = Field(default=None, description="User to run the CLI as")
    max_buffer_size: int | None = Field(
        default=None,
        gt=0,
        description="Max bytes buffered while waiting for a newline",
    )
    stderr: Callable[[str], Any] | None = Field(
        default=None,
        description="Receives each stderr line from the subprocess",
    )

    # Agent behaviour (mapped onto CLI flags)
    system_prompt: str | dict[str, Any] | None = None
    tools: list[str] | dict[str, Any] | None = None
    allowed_tools: list[str] = Field(default_factory=list)
    disallowed_tools: list[str] = Field(default_factory=list)
    max_turns: int | None = Field(default=None, ge=1)
    max_budget_usd: float | None = Field(default=None, gt=0)
    model: str | None = None
    fallback_model: str | None = None
    betas: list[str] = Field(default_factory=list)
    permission_prompt_tool_name: str | None = None
    permission_mode: PermissionMode | None = None
    continue_conversation: bool = False
    resume: str | None = None
    settings: str | None = Field(
        default=None,
        description="Settings JSON string or path to a settings file",
    )
    sandbox: dict[str, Any] | None = None
    add_dirs: list[str | Path] = Field(default_factory=list)
    mcp_servers: dict[str, Any] | str | Path | None = Field(
        default=None,
        description="MCP server configs by name, or a path/JSON string",
    )
    include_partial_messages: bool = False
    fork_session: bool = False
    agents: dict[str, Any] | None = None
    setting_sources: list[str] | None = None
    plugins: list[dict[str, Any]] = Field(default_factory=list)
    max_thinking_tokens: int | None = Field(default=None, ge=0)
    output_format: dict[str, Any] | None = None
    enable_file_checkpointing: bool = False

    # Control protocol
    hooks: dict[str, list[HookMatcher]] | None = Field(
        default=None,
        description="Hook matchers keyed by hook event name",
    )
    can_use_tool: Callable[..., Any] | None = Field(
        default=None,
        description="Permission callback invoked as (tool_name, input, context)",
    )
    mcp_message_handler: Callable[..., Any] | None = Field(
        default=None,
        description="Raw MCP handler invoked as (server_name, message)",
    )
    skip_initialize: bool = False
    initialize_timeout: float | None = Field(default=None, gt=0)
    control_timeout: float = Field(default=DEFAULT_CONTROL_TIMEOUT, gt=0)

    @field_validator("extra_args", mode="before")
    @classmethod
    def _stringify_extra_args(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {k: (None if v is None else str(v)) for k, v in value.items()}

    @property
    def has_control_callbacks(self) -> bool:
        """Whether the agent may send control requests that need local answers."""
        return (
            bool(self.hooks)
            or self.can_use_tool is not None
            or self.mcp_message_handler is not None
            or bool(self.sdk_mcp_servers())
        )

    def sdk_mcp_servers(self) -> dict[str, Any]:
        """Return the in-process (``type: sdk``) MCP servers by name."""
        if not isinstance(self.mcp_servers, dict):
            return {}
        return {
            name: server["instance"]
            for name, server in self.mcp_servers.items()
            if isinstance(server, dict)
            and server.get("type") == "sdk"
            and server.get("instance") is not None
        }

    def with_overrides(self, **overrides: Any) -> AgentOptions:
        """Return a validated copy with *overrides* applied."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(overrides)
        return type(self).model_validate(data)
