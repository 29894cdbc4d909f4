"""
Process handle for the supervised worker process.
"""

# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress

from workerbridge.exceptions import StartupFailedError
from workerbridge.supervisor.environment import EnvironmentDescriptor

logger = logging.getLogger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024  # 16MB; default asyncio limit is 64KB


class WorkerProcessHandle:
    """
    Handle for one spawned worker process.

    A handle is never reused for a different process: a restart retires
    this handle and installs a new one.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        descriptor: EnvironmentDescriptor,
    ) -> None:
        self.process = process
        self.descriptor = descriptor
        self.started_at = time.monotonic()
        self.retiring = False

    @classmethod
    async def spawn(
        cls,
        descriptor: EnvironmentDescriptor,
        env: Mapping[str, str],
        *,
        limit: int = STREAM_LIMIT,
    ) -> WorkerProcessHandle:
        """Start the worker with all three standard streams piped.

        Raises:
            StartupFailedError: the OS refused to start the interpreter.
        """
        cmd = [descriptor.interpreter_path, descriptor.entry_script_path]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=descriptor.working_dir,
                env=dict(env),
                limit=limit,
            )
        except OSError as e:
            logger.error("Failed to spawn worker for '%s': %s", descriptor.id, e)
            raise StartupFailedError(
                f"Could not start {descriptor.interpreter_path}: {e}",
                environment_id=descriptor.id,
            ) from e

        logger.info(
            "Worker started: env=%s PID=%s cmd=%s", descriptor.id, process.pid, cmd,
        )
        return cls(process, descriptor)

    # ── Introspection ──────────────────────────────────────────

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    @property
    def environment_id(self) -> str:
        return self.descriptor.id

    @property
    def stdin(self) -> asyncio.StreamWriter | None:
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.process.stderr

    async def wait(self) -> int:
        return await self.process.wait()

    # ── Shutdown ───────────────────────────────────────────────

    async def stop(
        self,
        *,
        request_exit: Callable[[], bool | Awaitable[bool]] | None = None,
        exit_grace: float = 1.0,
        terminate_grace: float = 1.0,
    ) -> int | None:
        """
        Retire the process.

        Shutdown flow:
        1. Ask the worker to exit via *request_exit* (best effort); an
           awaitable result is awaited, bounded by *exit_grace*
        2. Wait *exit_grace*; if still alive, send SIGTERM
        3. Wait *terminate_grace*; if still alive, send SIGKILL

        Each wait ends early when the process exits.

        Returns:
            The exit code, or None if it could not be collected.
        """
        self.retiring = True

        if not self.alive:
            logger.debug("Worker already exited: PID %s (code=%s)", self.pid, self.returncode)
            return self.returncode

        logger.info("Stopping worker: env=%s PID=%s", self.environment_id, self.pid)

        # Step 1: graceful exit request
        if request_exit is not None:
            try:
                sent = request_exit()
                if inspect.isawaitable(sent):
                    async with asyncio.timeout(exit_grace):
                        sent = await sent
            except Exception:
                logger.warning("Exit request failed for PID %s", self.pid, exc_info=True)
                sent = False
            if not sent:
                logger.debug("Exit request not delivered to PID %s", self.pid)

        # Step 2: grace period
        try:
            async with asyncio.timeout(exit_grace):
                await self.process.wait()
            logger.info("Worker exited gracefully: PID %s (code=%s)", self.pid, self.returncode)
            return self.returncode
        except TimeoutError:
            logger.warning("Worker did not exit gracefully, sending SIGTERM: PID %s", self.pid)

        # Step 3: SIGTERM
        with suppress(ProcessLookupError):
            self.process.terminate()
        try:
            async with asyncio.timeout(terminate_grace):
                await self.process.wait()
            logger.info("Worker terminated: PID %s (code=%s)", self.pid, self.returncode)
            return self.returncode
        except TimeoutError:
            logger.error("Worker did not respond to SIGTERM, sending SIGKILL: PID %s", self.pid)

        # Step 4: SIGKILL
        await self.kill()
        return self.returncode

    async def kill(self) -> None:
        """Force kill the process with SIGKILL."""
        if not self.alive:
            return
        self.retiring = True
        logger.warning("Killing worker: PID %s", self.pid)
        with suppress(ProcessLookupError):
            self.process.kill()
        await self.process.wait()
