"""
Command channel: newline-delimited JSON over a worker's standard streams.
"""

# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from workerbridge.exceptions import ChannelClosedError, ProtocolError
from workerbridge.logging_config import WORKER_OUTPUT_LOGGER
from workerbridge.supervisor.protocol import (
    Command,
    ErrorMessage,
    EventMessage,
    ReadyMessage,
    ResponseMessage,
    parse_message,
)

logger = logging.getLogger(__name__)
worker_output = logging.getLogger(WORKER_OUTPUT_LOGGER)


@dataclass
class PendingCommand:
    """An in-flight command awaiting its correlated response."""

    correlation_id: int
    command: Command
    future: asyncio.Future
    submitted_at: float = field(default_factory=time.monotonic)


def _consume_exception(fut: asyncio.Future) -> None:
    # Abandoned callers never await the future; keep asyncio quiet about it.
    if not fut.cancelled():
        fut.exception()


class CommandChannel:
    """Owns the worker's stdio once spawned.

    Outbound commands get a correlation id (strictly increasing, starting
    at 1) and are written as one JSON line each. Inbound lines are parsed
    and dispatched by ``type``: responses resolve exactly the matching
    pending future, everything else goes to the supervisor callbacks.
    """

    def __init__(
        self,
        stdin: asyncio.StreamWriter,
        stdout: asyncio.StreamReader | None = None,
        stderr: asyncio.StreamReader | None = None,
        *,
        on_ready: Callable[[], None] | None = None,
        on_event: Callable[[Any], None] | None = None,
        on_worker_error: Callable[[str], None] | None = None,
        on_diagnostic: Callable[[str], None] | None = None,
        name: str = "worker",
    ) -> None:
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr
        self._on_ready = on_ready
        self._on_event = on_event
        self._on_worker_error = on_worker_error
        self._on_diagnostic = on_diagnostic
        self.name = name

        self._ids = itertools.count(1)
        self._pending: dict[int, PendingCommand] = {}
        self._readers: list[asyncio.Task] = []
        self.closed = False
        self.protocol_errors = 0

    # ── Properties ────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, correlation_id: int) -> bool:
        return correlation_id in self._pending

    # ── Outbound ──────────────────────────────────────────────

    def send(self, command: Command) -> PendingCommand:
        """Assign a correlation id, write the command line, register the future.

        Raises:
            ChannelClosedError: the channel was closed or the pipe is gone.
        """
        if self.closed or self._stdin.is_closing():
            raise ChannelClosedError(f"Channel to {self.name} is closed")

        correlation_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        entry = PendingCommand(correlation_id=correlation_id, command=command, future=future)
        self._pending[correlation_id] = entry

        line = command.to_json(correlation_id) + "\n"
        try:
            self._stdin.write(line.encode("utf-8"))
        except (ConnectionError, RuntimeError) as exc:
            self._pending.pop(correlation_id, None)
            future.cancel()
            raise ChannelClosedError(f"Failed to write to {self.name}: {exc}") from exc

        logger.debug("-> %s id=%d type=%s", self.name, correlation_id, command.type)
        return entry

    def send_nowait(self, command: Command) -> bool:
        """Fire-and-forget write without a correlation id. Best effort."""
        if self.closed or self._stdin.is_closing():
            return False
        try:
            self._stdin.write((command.to_json() + "\n").encode("utf-8"))
        except (ConnectionError, RuntimeError) as exc:
            logger.debug("Fire-and-forget '%s' to %s failed: %s", command.type, self.name, exc)
            return False
        logger.debug("-> %s type=%s (no id)", self.name, command.type)
        return True

    async def drain(self) -> None:
        """Flush buffered writes; a broken pipe is left to the exit watcher."""
        with suppress(ConnectionError):
            await self._stdin.drain()

    # ── Inbound ───────────────────────────────────────────────

    def on_line(self, raw: str) -> None:
        """Handle one newline-terminated line from the worker's stdout."""
        try:
            message = parse_message(raw)
        except ProtocolError as exc:
            self.protocol_errors += 1
            logger.warning("Protocol error from %s: %s | line=%.200s", self.name, exc, exc.line)
            return

        if message is None:
            text = raw.rstrip("\r\n")
            if text.strip():
                logger.debug("%s stdout: %s", self.name, text)
                worker_output.info("[stdout] %s", text)
            return

        if isinstance(message, ResponseMessage):
            entry = self._pending.pop(message.id, None)
            if entry is None:
                logger.debug("Response for unknown id %d from %s ignored", message.id, self.name)
                return
            if not entry.future.done():
                entry.future.set_result(message.response)
        elif isinstance(message, ReadyMessage):
            logger.info("%s signalled ready", self.name)
            if self._on_ready is not None:
                self._on_ready()
        elif isinstance(message, EventMessage):
            if self._on_event is not None:
                self._on_event(message.event)
        elif isinstance(message, ErrorMessage):
            logger.error("%s reported error: %s", self.name, message.message)
            if self._on_worker_error is not None:
                self._on_worker_error(message.message)
        else:
            logger.warning("Unknown message type '%s' from %s ignored", message.type, self.name)

    def on_stderr_line(self, raw: str) -> None:
        text = raw.rstrip("\r\n")
        if not text:
            return
        worker_output.warning("[stderr] %s", text)
        if self._on_diagnostic is not None:
            self._on_diagnostic(text)

    def on_close(self) -> None:
        """Fail every pending command with ChannelClosedError. Idempotent."""
        self.closed = True
        self.fail_pending(ChannelClosedError(f"Channel to {self.name} closed"))

    def fail_pending(self, exc: BaseException) -> int:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if not entry.future.done():
                entry.future.set_exception(exc)
        if pending:
            logger.info("Failed %d pending command(s) on %s: %s", len(pending), self.name, exc)
        return len(pending)

    # ── Reader tasks ──────────────────────────────────────────

    def start(self) -> None:
        """Spawn the stdout / stderr reader tasks."""
        loop = asyncio.get_running_loop()
        if self._stdout is not None:
            self._readers.append(
                loop.create_task(self._read_stdout(), name=f"{self.name}-stdout"),
            )
        if self._stderr is not None:
            self._readers.append(
                loop.create_task(self._read_stderr(), name=f"{self.name}-stderr"),
            )

    async def _read_stdout(self) -> None:
        assert self._stdout is not None
        try:
            while True:
                try:
                    raw = await self._stdout.readline()
                except ValueError:
                    # StreamReader limit exceeded; the offending data is discarded
                    logger.warning("Over-long line from %s skipped", self.name)
                    continue
                if not raw:
                    break
                try:
                    self.on_line(raw.decode("utf-8", errors="replace"))
                except Exception:
                    logger.exception("Failed to dispatch line from %s", self.name)
        except ConnectionError as exc:
            logger.debug("stdout of %s lost: %s", self.name, exc)
        finally:
            logger.debug("stdout of %s reached EOF", self.name)
            self.on_close()

    async def _read_stderr(self) -> None:
        assert self._stderr is not None
        try:
            while True:
                try:
                    raw = await self._stderr.readline()
                except ValueError:
                    logger.warning("Over-long stderr line from %s skipped", self.name)
                    continue
                if not raw:
                    break
                try:
                    self.on_stderr_line(raw.decode("utf-8", errors="replace"))
                except Exception:
                    logger.exception("Failed to forward stderr line from %s", self.name)
        except ConnectionError as exc:
            logger.debug("stderr of %s lost: %s", self.name, exc)

    async def aclose(self, timeout: float = 1.0) -> None:
        """Close stdin, let readers reach EOF, then fail leftovers."""
        if not self._stdin.is_closing():
            with suppress(ConnectionError, RuntimeError):
                self._stdin.close()
        readers = [t for t in self._readers if not t.done()]
        if readers:
            _done, still_running = await asyncio.wait(readers, timeout=timeout)
            for task in still_running:
                task.cancel()
            for task in still_running:
                with suppress(asyncio.CancelledError):
                    await task
        self._readers.clear()
        self.on_close()
