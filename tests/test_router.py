"""Tests for the message router's frame classification and reader task."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from agentwire.config.models import HookMatcher
from agentwire.errors import (
    CLIConnectionError,
    CLIJSONDecodeError,
    MessageParseError,
    ProcessError,
)
from agentwire.protocol.dispatcher import InboundDispatcher
from agentwire.protocol.hooks import HookRegistry
from agentwire.protocol.router import MessageRouter
from agentwire.types.permissions import PermissionResultAllow
from fake_transport import FakeTransport, assistant_frame, result_frame, wait_until


async def _drain(router: MessageRouter) -> list[dict[str, Any]]:
    frames: list[dict[str, Any]] = []
    while (frame := await router.next_message()) is not None:
        frames.append(frame)
    return frames


def _router(
    transport: FakeTransport, *, close_input_on_result: bool = False, **callbacks: Any
) -> MessageRouter:
    dispatcher = InboundDispatcher(transport, **callbacks)
    router = MessageRouter(
        transport, dispatcher, close_input_on_result=close_input_on_result
    )
    router.start()
    return router


class TestClassification:
    async def test_ordinary_frames_in_order_with_control_elided(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        future = router.pending.register("req_1")

        transport.push(
            {"type": "system", "subtype": "init"},
            {
                "type": "control_response",
                "response": {"subtype": "success", "request_id": "req_1", "response": {}},
            },
            assistant_frame("one"),
            {"type": "control_cancel_request", "request_id": "req_x"},
            assistant_frame("two"),
            result_frame(),
        )
        transport.end()

        frames = await _drain(router)
        assert [f["type"] for f in frames] == ["system", "assistant", "assistant", "result"]
        assert frames[1]["message"]["content"][0]["text"] == "one"
        assert frames[2]["message"]["content"][0]["text"] == "two"
        assert await future == {}
        await router.close()

    async def test_inbound_request_answered_not_surfaced(self) -> None:
        transport = FakeTransport()
        router = _router(
            transport, can_use_tool=lambda name, data, ctx: PermissionResultAllow()
        )
        transport.push(
            {
                "type": "control_request",
                "request_id": "in_1",
                "request": {"subtype": "can_use_tool", "tool_name": "Bash", "input": {"c": 1}},
            },
            assistant_frame(),
        )
        transport.end()

        frames = await _drain(router)
        assert [f["type"] for f in frames] == ["assistant"]
        (reply,) = transport.control_responses()
        assert reply["response"]["request_id"] == "in_1"
        assert reply["response"]["response"] == {
            "behavior": "allow",
            "updatedInput": {"c": 1},
        }
        await router.close()

    async def test_slow_handler_does_not_block_ordinary_messages(self) -> None:
        transport = FakeTransport()
        release = asyncio.Event()

        async def _slow(name: str, data: dict[str, Any], ctx: Any) -> PermissionResultAllow:
            await release.wait()
            return PermissionResultAllow()

        router = _router(transport, can_use_tool=_slow)
        transport.push(
            {
                "type": "control_request",
                "request_id": "in_1",
                "request": {"subtype": "can_use_tool", "tool_name": "Bash", "input": {}},
            },
            assistant_frame("after"),
        )

        frame = await asyncio.wait_for(router.next_message(), timeout=1)
        assert frame is not None and frame["type"] == "assistant"
        assert transport.control_responses() == []

        release.set()
        await wait_until(lambda: transport.control_responses())
        transport.end()
        assert await router.next_message() is None
        await router.close()

    async def test_response_before_registration_is_kept(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        transport.reply_success("req_early", {"v": 1})
        transport.push(assistant_frame())
        await router.next_message()

        assert await router.pending.register("req_early") == {"v": 1}
        transport.end()
        await router.close()

    async def test_missing_type_is_fatal(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        transport.push(assistant_frame(), {"no_type": True}, assistant_frame())

        assert (await router.next_message())["type"] == "assistant"
        with pytest.raises(MessageParseError):
            await router.next_message()
        assert await router.next_message() is None
        await router.close()


class TestCloseInputOnResult:
    async def test_closes_once_and_still_delivers(self) -> None:
        transport = FakeTransport()
        router = _router(transport, close_input_on_result=True)
        transport.push(assistant_frame(), result_frame(), result_frame())
        transport.end()

        frames = await _drain(router)
        assert [f["type"] for f in frames] == ["assistant", "result", "result"]
        assert transport.close_input_calls == 1
        await router.close()

    async def test_flag_unset_leaves_input_open(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        transport.push(result_frame())
        transport.end()

        await _drain(router)
        assert transport.close_input_calls == 0
        await router.close()


class TestStreamEnd:
    async def test_clean_end_is_permanent(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        transport.end()
        assert await router.next_message() is None
        assert await router.next_message() is None
        await router.close()

    async def test_fatal_error_raised_once_after_frames(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        transport.push(assistant_frame(), result_frame())
        transport.end(ProcessError(1, "boom"))

        assert (await router.next_message())["type"] == "assistant"
        assert (await router.next_message())["type"] == "result"
        with pytest.raises(ProcessError) as exc_info:
            await router.next_message()
        assert exc_info.value.exit_code == 1
        assert await router.next_message() is None
        await router.close()

    async def test_pending_failed_with_fatal_error(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        future = router.pending.register("req_1")
        transport.end(CLIJSONDecodeError("bad", "{x"))

        with pytest.raises(CLIJSONDecodeError):
            await future
        with pytest.raises(CLIJSONDecodeError):
            await router.next_message()
        await router.close()

    async def test_pending_failed_on_clean_end(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        future = router.pending.register("req_1")
        transport.end()

        with pytest.raises(CLIConnectionError, match="Stream ended"):
            await future
        await router.close()

    async def test_in_flight_handlers_answered_before_end(self) -> None:
        transport = FakeTransport()

        async def _hook(data: Any, tool_use_id: Any, ctx: Any) -> dict[str, Any]:
            await asyncio.sleep(0.01)
            return {"continue_": True}

        hooks = HookRegistry.build({"PreToolUse": [HookMatcher(hooks=[_hook])]})
        router = _router(transport, hooks=hooks)
        transport.push(
            {
                "type": "control_request",
                "request_id": "in_1",
                "request": {"subtype": "hook_callback", "callback_id": "hook_0"},
            }
        )
        transport.end()

        assert await router.next_message() is None
        (reply,) = transport.control_responses()
        assert reply["response"]["response"] == {"continue": True}
        await router.close()


class TestClose:
    async def test_close_fails_pending_and_stops(self) -> None:
        transport = FakeTransport()
        router = _router(transport)
        future = router.pending.register("req_1")
        assert router.running

        await router.close()

        assert not router.running
        assert router.dispatcher is None
        with pytest.raises(CLIConnectionError):
            await future
        assert await router.next_message() is None

    async def test_close_cancels_inbound_handlers(self) -> None:
        transport = FakeTransport()
        never = asyncio.Event()

        async def _stuck(name: str, data: Any, ctx: Any) -> None:
            await never.wait()

        router = _router(transport, can_use_tool=_stuck)
        transport.push(
            {
                "type": "control_request",
                "request_id": "in_1",
                "request": {"subtype": "can_use_tool", "tool_name": "X", "input": {}},
            }
        )
        await wait_until(lambda: router.inbound_tasks)
        await router.close()
        assert not router.inbound_tasks

    async def test_close_twice(self) -> None:
        router = _router(FakeTransport())
        await router.close()
        await router.close()

    async def test_close_wakes_blocked_consumer(self) -> None:
        router = _router(FakeTransport())
        consumer = asyncio.create_task(router.next_message())
        await asyncio.sleep(0)
        assert not consumer.done()

        await router.close()

        assert await asyncio.wait_for(consumer, timeout=1) is None
