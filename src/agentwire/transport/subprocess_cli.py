"""Subprocess transport — runs the agent CLI with JSONL on stdin/stdout."""

from __future__ import annotations

import asyncio
import collections
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from agentwire.config.models import AgentOptions
from agentwire.constants import DEFAULT_MAX_BUFFER_SIZE, Frame
from agentwire.errors import (
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ProcessError,
)
from agentwire.helpers import format_stderr_preview, maybe_await
from agentwire.transport.command import build_command, build_env
from agentwire.transport.framer import JSONLineFramer

logger = logging.getLogger(__name__)

#: Bytes requested from stdout per read.
_READ_CHUNK_SIZE = 65_536

#: Seconds to wait after SIGTERM before SIGKILL.
_SIGTERM_WAIT = 3.0

#: Seconds to wait for stderr to reach EOF after the process exits.
_STDERR_DRAIN_WAIT = 1.0

#: Stderr lines kept for the process-exit error message.
_STDERR_TAIL_LINES = 50


class SubprocessCLITransport:
    """Owns the agent subprocess and both of its pipes.

    Satisfies the ``Transport`` protocol.

    Two modes:

    * **single-shot** (``prompt`` is a string): the prompt is written to
      stdin and stdin is closed right after spawn.  ``write()`` is a no-op.
    * **streaming** (``prompt`` is ``None``): stdin stays open until
      ``close_input()`` so frames can be written for the whole session.
    """

    def __init__(self, prompt: str | None, options: AgentOptions) -> None:
        self._prompt = prompt
        self._options = options
        self._is_streaming = prompt is None
        self._framer = JSONLineFramer(
            options.max_buffer_size or DEFAULT_MAX_BUFFER_SIZE
        )

        self._process: asyncio.subprocess.Process | None = None
        self._stdin: asyncio.StreamWriter | None = None
        self._write_lock = asyncio.Lock()
        self._frames: AsyncIterator[Frame] | None = None

        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_tail: collections.deque[str] = collections.deque(
            maxlen=_STDERR_TAIL_LINES
        )

    @property
    def is_streaming(self) -> bool:
        return self._is_streaming

    @property
    def pid(self) -> int | None:
        """PID of the running subprocess, if any."""
        if self._process is not None and self._process.returncode is None:
            return self._process.pid
        return None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Spawn the subprocess.  Calling it again while connected is a no-op."""
        if self._process is not None:
            return

        cli_path = self._options.cli_path
        if cli_path is not None and not Path(cli_path).exists():
            msg = f"Agent CLI not found at: {cli_path}"
            raise CLINotFoundError(msg)

        cmd = build_command(
            self._options, self._prompt, streaming=self._is_streaming
        )
        kwargs: dict[str, Any] = {}
        if self._options.user:
            kwargs["user"] = self._options.user

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._options.cwd) if self._options.cwd else None,
                env=build_env(self._options),
                start_new_session=True,
                **kwargs,
            )
        except FileNotFoundError as exc:
            msg = f"Agent CLI not found: {cmd[0]}"
            raise CLINotFoundError(msg) from exc
        except OSError as exc:
            msg = f"Failed to start agent CLI: {exc}"
            raise CLIConnectionError(msg) from exc

        self._process = proc
        self._stdin = proc.stdin
        logger.info(
            "spawned agent CLI (pid %d, streaming=%s)", proc.pid, self._is_streaming
        )

        if proc.stderr is not None:
            self._stderr_task = asyncio.create_task(self._read_stderr(proc.stderr))

        if not self._is_streaming:
            await self._send_single_shot_prompt()

    async def close_input(self) -> None:
        """Close stdin so the CLI sees end-of-input.  Idempotent."""
        stdin = self._stdin
        self._stdin = None
        if stdin is None:
            return
        stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError, OSError):
            await stdin.wait_closed()
        logger.debug("closed agent stdin")

    async def close(self) -> None:
        """Terminate the subprocess and release its pipes.  Safe to repeat."""
        await self.close_input()

        proc = self._process
        self._process = None
        if proc is not None and proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=_SIGTERM_WAIT)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
            logger.info("terminated agent CLI (pid %d)", proc.pid)

        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
        self._stderr_task = None

    # ------------------------------------------------------------------ #
    # Writing
    # ------------------------------------------------------------------ #

    async def write(self, frame: Frame) -> None:
        """Serialize *frame* as one JSON line on stdin.

        A no-op once input has been closed (or in single-shot mode).
        """
        line = json.dumps(frame) + "\n"
        async with self._write_lock:
            stdin = self._stdin
            if stdin is None or stdin.is_closing():
                logger.debug(
                    "dropping write after input close: %s", frame.get("type")
                )
                return
            try:
                stdin.write(line.encode())
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                msg = f"Failed to write to agent stdin: {exc}"
                raise CLIConnectionError(msg) from exc

    async def _send_single_shot_prompt(self) -> None:
        stdin = self._stdin
        if stdin is None:
            return
        try:
            stdin.write((self._prompt or "").encode())
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            msg = f"Failed to write prompt to agent stdin: {exc}"
            raise CLIConnectionError(msg) from exc
        finally:
            await self.close_input()

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #

    def read_messages(self) -> AsyncIterator[Frame]:
        """Return the frame sequence for this connection.

        Every call returns the same iterator; once it is exhausted (or has
        raised) it stays exhausted.
        """
        if self._frames is None:
            self._frames = self._iter_frames()
        return self._frames

    async def _iter_frames(self) -> AsyncIterator[Frame]:
        proc = self._process
        if proc is None or proc.stdout is None:
            return

        while True:
            chunk = await proc.stdout.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            self._framer.feed(chunk)
            for value in self._framer.drain():
                yield _as_frame(value)

        for value in self._framer.flush():
            yield _as_frame(value)

        returncode = await proc.wait()
        if self._stderr_task is not None:
            with contextlib.suppress(asyncio.CancelledError, TimeoutError):
                await asyncio.wait_for(self._stderr_task, timeout=_STDERR_DRAIN_WAIT)
        logger.info("agent CLI exited with code %d", returncode)

        if returncode != 0:
            stderr = format_stderr_preview("\n".join(self._stderr_tail))
            raise ProcessError(returncode, stderr)

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        callback = self._options.stderr
        while True:
            try:
                line_bytes = await stream.readline()
            except ValueError:
                # Over the StreamReader limit; skip the line.
                logger.warning("agent stderr line exceeded buffer limit, skipping")
                continue
            if not line_bytes:
                return
            line = line_bytes.decode(errors="replace").rstrip()
            if not line:
                continue
            self._stderr_tail.append(line)
            logger.debug("agent stderr: %s", line)
            if callback is not None:
                try:
                    await maybe_await(callback(line))
                except Exception:
                    logger.exception("stderr callback failed")


def _as_frame(value: Any) -> Frame:
    if not isinstance(value, dict):
        text = json.dumps(value)
        msg = f"Expected a JSON object from CLI output, got {type(value).__name__}"
        raise CLIJSONDecodeError(msg, text)
    return value
