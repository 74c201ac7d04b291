"""Pydantic v2 models for the messages an agent session yields."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    field_validator,
)

from agentwire.constants import Frame
from agentwire.errors import MessageParseError

# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


class _BlockBase(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TextBlock(_BlockBase):
    """Plain assistant or user text."""

    type: Literal["text"] = "text"
    text: str = ""


class ThinkingBlock(_BlockBase):
    """Extended-thinking output."""

    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str = ""


class ToolUseBlock(_BlockBase):
    """A tool invocation requested by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)

    @field_validator("input", mode="before")
    @classmethod
    def _coerce_input(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class ToolResultBlock(_BlockBase):
    """The outcome of a tool invocation."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: Any = None
    is_error: bool | None = None


class UnknownBlock(BaseModel):
    """A content block whose ``type`` this package does not model.

    All of the block's fields are kept as extra attributes.
    """

    model_config = ConfigDict(extra="allow")

    type: str


_KNOWN_BLOCKS = frozenset({"text", "thinking", "tool_use", "tool_result"})


def _block_discriminator(v: Any) -> str | None:
    """Route a raw block to its model; unrecognised types become ``unknown``."""
    block_type = v.get("type") if isinstance(v, dict) else getattr(v, "type", None)
    if not isinstance(block_type, str):
        return None
    return block_type if block_type in _KNOWN_BLOCKS else "unknown"


ContentBlock = Annotated[
    Annotated[TextBlock, Tag("text")]
    | Annotated[ThinkingBlock, Tag("thinking")]
    | Annotated[ToolUseBlock, Tag("tool_use")]
    | Annotated[ToolResultBlock, Tag("tool_result")]
    | Annotated[UnknownBlock, Tag("unknown")],
    Discriminator(_block_discriminator),
]
"""Discriminated union of all content block types."""


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class _MessageBase(BaseModel):
    """Common fields shared by every parsed message."""

    model_config = ConfigDict(extra="forbid")

    raw: dict[str, Any] = Field(
        default_factory=dict,
        repr=False,
        exclude=True,
        description="The frame the message was parsed from",
    )


class UserMessage(_MessageBase):
    """A user turn, including tool results fed back to the model."""

    type: Literal["user"] = "user"
    content: str | list[ContentBlock] = ""
    uuid: str | None = None
    parent_tool_use_id: str | None = None
    tool_use_result: Any = None


class AssistantMessage(_MessageBase):
    """A model turn."""

    type: Literal["assistant"] = "assistant"
    content: list[ContentBlock] = Field(default_factory=list)
    model: str | None = None
    parent_tool_use_id: str | None = None
    error: str | None = None


class SystemMessage(_MessageBase):
    """Session metadata emitted by the CLI (init, compaction, ...)."""

    type: Literal["system"] = "system"
    subtype: str = Field(description="System event kind")
    data: dict[str, Any] = Field(default_factory=dict)


class ResultMessage(_MessageBase):
    """Final summary of a turn, with cost and usage."""

    type: Literal["result"] = "result"
    subtype: str
    duration_ms: int
    duration_api_ms: int
    is_error: bool
    num_turns: int
    session_id: str
    total_cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    result: str | None = None
    structured_output: Any = None


class StreamEvent(_MessageBase):
    """A partial-message event (only with ``include_partial_messages``)."""

    type: Literal["stream_event"] = "stream_event"
    uuid: str
    session_id: str
    event: dict[str, Any]
    parent_tool_use_id: str | None = None


class UnknownMessage(_MessageBase):
    """A frame whose ``type`` this package does not model."""

    type: str


Message = (
    UserMessage
    | AssistantMessage
    | SystemMessage
    | ResultMessage
    | StreamEvent
    | UnknownMessage
)

_RESULT_FIELDS = (
    "subtype",
    "duration_ms",
    "duration_api_ms",
    "is_error",
    "num_turns",
    "session_id",
)
_STREAM_EVENT_FIELDS = ("uuid", "session_id", "event")


def parse_message(frame: Frame) -> Message:
    """Turn one ordinary frame into a typed message.

    Raises:
        MessageParseError: If the frame lacks a ``type`` or a required field,
            or a field has the wrong shape.
    """
    if not isinstance(frame, dict):
        msg = f"Invalid message data type (expected dict, got {type(frame).__name__})"
        raise MessageParseError(msg, frame)

    msg_type = frame.get("type")
    if not isinstance(msg_type, str):
        msg = "Message missing type field"
        raise MessageParseError(msg, frame)

    try:
        if msg_type == "user":
            return _parse_user(frame)
        if msg_type == "assistant":
            return _parse_assistant(frame)
        if msg_type == "system":
            return _parse_system(frame)
        if msg_type == "result":
            _require(frame, _RESULT_FIELDS, "Result message")
            return ResultMessage.model_validate(
                {**_pick(frame, ResultMessage), "raw": frame}
            )
        if msg_type == "stream_event":
            _require(frame, _STREAM_EVENT_FIELDS, "Stream event")
            return StreamEvent.model_validate(
                {**_pick(frame, StreamEvent), "raw": frame}
            )
    except ValidationError as exc:
        msg = f"Invalid {msg_type} message: {_first_error(exc)}"
        raise MessageParseError(msg, frame) from exc

    return UnknownMessage(type=msg_type, raw=frame)


def _parse_user(frame: Frame) -> UserMessage:
    message = frame.get("message") or {}
    return UserMessage.model_validate(
        {
            "content": message.get("content", ""),
            "uuid": frame.get("uuid"),
            "parent_tool_use_id": frame.get("parent_tool_use_id"),
            "tool_use_result": frame.get("tool_use_result"),
            "raw": frame,
        }
    )


def _parse_assistant(frame: Frame) -> AssistantMessage:
    message = frame.get("message") or {}
    content = message.get("content")
    return AssistantMessage.model_validate(
        {
            "content": content if isinstance(content, list) else [],
            "model": message.get("model"),
            "parent_tool_use_id": frame.get("parent_tool_use_id"),
            "error": message.get("error") or frame.get("error"),
            "raw": frame,
        }
    )


def _parse_system(frame: Frame) -> SystemMessage:
    subtype = frame.get("subtype")
    if not isinstance(subtype, str):
        msg = "System message missing subtype"
        raise MessageParseError(msg, frame)
    data = {k: v for k, v in frame.items() if k not in ("type", "subtype")}
    return SystemMessage(subtype=subtype, data=data, raw=frame)


def _require(frame: Frame, fields: tuple[str, ...], what: str) -> None:
    for name in fields:
        if name not in frame:
            msg = f"{what} missing field: {name}"
            raise MessageParseError(msg, frame)


def _pick(frame: Frame, model: type[BaseModel]) -> dict[str, Any]:
    """Select the frame keys that *model* declares, minus ``type`` and ``raw``."""
    return {
        k: v
        for k, v in frame.items()
        if k in model.model_fields and k not in ("type", "raw")
    }


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err["loc"])
    return f"{loc}: {err['msg']}" if loc else err["msg"]
