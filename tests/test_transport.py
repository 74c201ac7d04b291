"""Tests for the subprocess transport (process spawning is mocked)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentwire.config.models import AgentOptions
from agentwire.errors import (
    BufferOverflowError,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ProcessError,
)
from agentwire.transport.base import Transport
from agentwire.transport.subprocess_cli import SubprocessCLITransport

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _reader(data: bytes = b"") -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    reader.feed_eof()
    return reader


def _make_stdin() -> MagicMock:
    stdin = MagicMock()
    stdin.write = MagicMock()
    stdin.drain = AsyncMock()
    stdin.close = MagicMock()
    stdin.wait_closed = AsyncMock()
    stdin.is_closing = MagicMock(return_value=False)
    return stdin


def _make_process(
    stdout: bytes = b"",
    stderr: bytes = b"",
    returncode: int = 0,
) -> MagicMock:
    proc = MagicMock()
    proc.pid = 4242
    proc.returncode = None
    proc.stdin = _make_stdin()
    proc.stdout = _reader(stdout)
    proc.stderr = _reader(stderr)

    async def _wait() -> int:
        proc.returncode = returncode
        return returncode

    proc.wait = AsyncMock(side_effect=_wait)
    proc.terminate = MagicMock()
    proc.kill = MagicMock()
    return proc


def _lines(*frames: dict[str, Any]) -> bytes:
    return b"".join(json.dumps(f).encode() + b"\n" for f in frames)


@pytest.fixture
def cli_path(tmp_path: Path) -> Path:
    path = tmp_path / "claude"
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    return path


async def _collect(transport: SubprocessCLITransport) -> list[dict[str, Any]]:
    return [frame async for frame in transport.read_messages()]


# ------------------------------------------------------------------ #
# Tests
# ------------------------------------------------------------------ #


class TestConnect:
    async def test_satisfies_protocol(self, cli_path: Path) -> None:
        transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
        assert isinstance(transport, Transport)

    async def test_spawns_with_streaming_argv(self, cli_path: Path) -> None:
        proc = _make_process()
        options = AgentOptions(cli_path=cli_path, cwd="/tmp", env={"X": "1"})
        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=proc)
        ) as spawn:
            transport = SubprocessCLITransport(None, options)
            await transport.connect()

        args, kwargs = spawn.call_args
        assert args[0] == str(cli_path)
        assert args[-2:] == ("--input-format", "stream-json")
        assert kwargs["cwd"] == "/tmp"
        assert kwargs["env"]["X"] == "1"
        assert kwargs["start_new_session"] is True
        assert transport.is_streaming
        assert transport.pid == 4242
        proc.stdin.close.assert_not_called()
        await transport.close()

    async def test_connect_twice_is_noop(self, cli_path: Path) -> None:
        proc = _make_process()
        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=proc)
        ) as spawn:
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
            await transport.connect()
        assert spawn.await_count == 1
        await transport.close()

    async def test_missing_cli_path(self, tmp_path: Path) -> None:
        transport = SubprocessCLITransport(
            None, AgentOptions(cli_path=tmp_path / "nope")
        )
        with pytest.raises(CLINotFoundError, match="not found"):
            await transport.connect()

    async def test_file_not_found_on_spawn(self, cli_path: Path) -> None:
        with patch(
            "asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError("gone")),
        ):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            with pytest.raises(CLINotFoundError):
                await transport.connect()

    async def test_os_error_on_spawn(self, cli_path: Path) -> None:
        with patch(
            "asyncio.create_subprocess_exec",
            AsyncMock(side_effect=PermissionError("denied")),
        ):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            with pytest.raises(CLIConnectionError, match="denied"):
                await transport.connect()

    async def test_single_shot_writes_prompt_and_closes_stdin(
        self, cli_path: Path
    ) -> None:
        proc = _make_process()
        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=proc)
        ) as spawn:
            transport = SubprocessCLITransport("what is 2+2", AgentOptions(cli_path=cli_path))
            await transport.connect()

        args, _ = spawn.call_args
        assert args[-3:] == ("--print", "--", "what is 2+2")
        proc.stdin.write.assert_called_once_with(b"what is 2+2")
        proc.stdin.close.assert_called_once()
        assert not transport.is_streaming
        await transport.close()


class TestWrite:
    async def test_writes_one_json_line(self, cli_path: Path) -> None:
        proc = _make_process()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()

        await transport.write({"type": "user", "text": "a\nb"})
        data = proc.stdin.write.call_args[0][0]
        assert data.endswith(b"\n")
        assert data.count(b"\n") == 1
        assert json.loads(data) == {"type": "user", "text": "a\nb"}
        await transport.close()

    async def test_write_after_close_input_is_noop(self, cli_path: Path) -> None:
        proc = _make_process()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()

        await transport.close_input()
        await transport.close_input()
        await transport.write({"type": "user"})
        proc.stdin.write.assert_not_called()
        proc.stdin.close.assert_called_once()
        await transport.close()

    async def test_write_before_connect_is_noop(self, cli_path: Path) -> None:
        transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
        await transport.write({"type": "user"})

    async def test_broken_pipe(self, cli_path: Path) -> None:
        proc = _make_process()
        proc.stdin.drain = AsyncMock(side_effect=BrokenPipeError("closed"))
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()

        with pytest.raises(CLIConnectionError):
            await transport.write({"type": "user"})
        await transport.close()


class TestReadMessages:
    async def test_yields_frames_then_ends(self, cli_path: Path) -> None:
        stdout = _lines({"type": "system", "subtype": "init"}, {"type": "result"})
        proc = _make_process(stdout=stdout)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
            frames = await _collect(transport)

        assert [f["type"] for f in frames] == ["system", "result"]
        await transport.close()

    async def test_residual_without_newline_flushed(self, cli_path: Path) -> None:
        proc = _make_process(stdout=b'{"type":"a"}\n{"type":"b"}')
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
            frames = await _collect(transport)
        assert frames == [{"type": "a"}, {"type": "b"}]
        await transport.close()

    async def test_same_iterator_every_call(self, cli_path: Path) -> None:
        proc = _make_process(stdout=_lines({"type": "a"}))
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
            first = transport.read_messages()
            assert transport.read_messages() is first
            assert await _collect(transport) == [{"type": "a"}]
            assert await _collect(transport) == []
        await transport.close()

    async def test_nonzero_exit_after_all_frames(self, cli_path: Path) -> None:
        proc = _make_process(
            stdout=_lines({"type": "assistant"}, {"type": "result"}),
            stderr=b"warming up\nfatal: bad thing\n",
            returncode=2,
        )
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()

            seen: list[str] = []
            with pytest.raises(ProcessError) as exc_info:
                async for frame in transport.read_messages():
                    seen.append(frame["type"])

        assert seen == ["assistant", "result"]
        assert exc_info.value.exit_code == 2
        assert "fatal: bad thing" in exc_info.value.stderr
        assert "code 2" in str(exc_info.value)
        await transport.close()

    async def test_invalid_json_is_fatal(self, cli_path: Path) -> None:
        proc = _make_process(stdout=b'{"type":"a"}\n{broken\n{"type":"b"}\n')
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
            seen: list[dict[str, Any]] = []
            with pytest.raises(CLIJSONDecodeError):
                async for frame in transport.read_messages():
                    seen.append(frame)
        assert seen == [{"type": "a"}]
        await transport.close()

    async def test_non_object_record_is_fatal(self, cli_path: Path) -> None:
        proc = _make_process(stdout=b"[1, 2]\n")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
            with pytest.raises(CLIJSONDecodeError, match="JSON object"):
                await _collect(transport)
        await transport.close()

    async def test_buffer_limit_from_options(self, cli_path: Path) -> None:
        proc = _make_process(stdout=b'{"text":"' + b"z" * 200)
        options = AgentOptions(cli_path=cli_path, max_buffer_size=64)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, options)
            await transport.connect()
            with pytest.raises(BufferOverflowError):
                await _collect(transport)
        await transport.close()


class TestStderr:
    async def test_callback_receives_lines(self, cli_path: Path) -> None:
        lines: list[str] = []
        proc = _make_process(stderr=b"one\n\ntwo\n")
        options = AgentOptions(cli_path=cli_path, stderr=lines.append)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, options)
            await transport.connect()
            await _collect(transport)
        assert lines == ["one", "two"]
        await transport.close()

    async def test_async_callback(self, cli_path: Path) -> None:
        lines: list[str] = []

        async def _sink(line: str) -> None:
            lines.append(line)

        proc = _make_process(stderr=b"hello\n")
        options = AgentOptions(cli_path=cli_path, stderr=_sink)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, options)
            await transport.connect()
            await _collect(transport)
        assert lines == ["hello"]
        await transport.close()


class TestClose:
    async def test_terminates_running_process(self, cli_path: Path) -> None:
        proc = _make_process()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()

        await transport.close()
        proc.terminate.assert_called_once()
        proc.kill.assert_not_called()
        assert transport.pid is None

    async def test_kills_after_timeout(self, cli_path: Path) -> None:
        proc = _make_process()
        hang = asyncio.Event()

        async def _wait() -> int:
            if proc.kill.called:
                proc.returncode = -9
                return -9
            await hang.wait()
            return 0

        proc.wait = AsyncMock(side_effect=_wait)
        with (
            patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)),
            patch("agentwire.transport.subprocess_cli._SIGTERM_WAIT", 0.01),
        ):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
            await transport.close()

        proc.terminate.assert_called_once()
        proc.kill.assert_called_once()

    async def test_close_is_idempotent(self, cli_path: Path) -> None:
        proc = _make_process()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
            await transport.connect()
        await transport.close()
        await transport.close()
        proc.terminate.assert_called_once()

    async def test_close_without_connect(self, cli_path: Path) -> None:
        transport = SubprocessCLITransport(None, AgentOptions(cli_path=cli_path))
        await transport.close()
