"""
Process Supervisor - Manages the lifecycle of the worker process.
"""

# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from collections import deque
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from workerbridge.config.models import SupervisorConfig
from workerbridge.exceptions import (
    ChannelClosedError,
    StartupFailedError,
)
from workerbridge.logging_config import bind_environment
from workerbridge.supervisor.channel import CommandChannel, PendingCommand
from workerbridge.supervisor.diagnostics import unexpected_exit_error
from workerbridge.supervisor.environment import (
    EnvironmentDescriptor,
    EnvironmentResolver,
    detect_packaged,
)
from workerbridge.supervisor.events import (
    KIND_EVENT,
    KIND_STATUS,
    KIND_STDERR,
    KIND_UNEXPECTED_EXIT,
    KIND_WORKER_ERROR,
    DiagnosticLine,
    EventRouter,
    StatusNotification,
)
from workerbridge.supervisor.process_handle import WorkerProcessHandle
from workerbridge.supervisor.protocol import EXIT_COMMAND_TYPE, Command

logger = logging.getLogger(__name__)

SANITIZED_VARIABLES = ("PYTHONPATH", "PYTHONHOME", "CONDA_PREFIX")


# ── State ──────────────────────────────────────────────────────────


class SupervisorState(Enum):
    """Lifecycle state of the supervised worker."""
    STOPPED = "stopped"          # No process (initial and terminal)
    STARTING = "starting"        # Spawned, waiting for "ready"
    READY = "ready"              # Accepting commands
    RESTARTING = "restarting"    # Retiring the old process for a new environment
    STOPPING = "stopping"        # Shutdown in progress


@dataclass
class QueuedCommand:
    """A command submitted before the worker was ready.

    ``future`` resolves to the :class:`PendingCommand` once the command
    has been written to the worker.
    """
    command: Command
    future: asyncio.Future
    queued_at: float = field(default_factory=time.monotonic)


def _consume_exception(fut: asyncio.Future) -> None:
    if not fut.cancelled():
        fut.exception()


def build_worker_env(
    base_env: Mapping[str, str],
    descriptor: EnvironmentDescriptor,
    environment_variable: str = "WORKER_ENVIRONMENT",
) -> dict[str, str]:
    """Derive the worker's environment variables from *base_env*.

    Host interpreter search paths and virtual environment markers are
    removed so the worker only sees its own interpreter's packages.
    """
    env = dict(base_env)
    for key in SANITIZED_VARIABLES:
        env.pop(key, None)
    env["PYTHONNOUSERSITE"] = "1"
    env["VIRTUAL_ENV"] = ""
    env["PYTHONUNBUFFERED"] = "1"
    if descriptor.interpreter_home:
        env["PYTHONHOME"] = descriptor.interpreter_home
    env[environment_variable] = descriptor.id
    return env


# ── Process Supervisor ─────────────────────────────────────────────


class ProcessSupervisor:
    """
    Supervisor for the single worker process.

    Responsibilities:
    - Resolve and spawn the worker for a required environment
    - Readiness handshake (with a soft, non-fatal warning threshold)
    - Environment-switch restarts without losing queued commands
    - Command submission with response correlation
    - Graceful/forced shutdown and unexpected-exit diagnostics
    """

    def __init__(
        self,
        config: SupervisorConfig | None = None,
        resolver: EnvironmentResolver | None = None,
        router: EventRouter | None = None,
        *,
        packaged: bool | None = None,
        platform: str | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config or SupervisorConfig()
        self.resolver = resolver or EnvironmentResolver()
        self.router = router or EventRouter()
        self.packaged = (
            detect_packaged(self.resolver.config) if packaged is None else packaged
        )
        self.platform = platform or sys.platform
        self._base_env = base_env

        self.state = SupervisorState.STOPPED
        self.current_environment_id: str | None = None
        self.shutting_down = False
        self.restart_count = 0
        self.last_exit_code: int | None = None

        self._handle: WorkerProcessHandle | None = None
        self._channel: CommandChannel | None = None
        self._queue: deque[QueuedCommand] = deque()
        self._ready_future: asyncio.Future | None = None
        self._soft_timer: asyncio.TimerHandle | None = None
        self._watcher: asyncio.Task | None = None
        self._switch_lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self._spawns = 0
        self._started_at = 0.0

    # ── Properties ─────────────────────────────────────────────────

    @property
    def ready(self) -> bool:
        return self.state is SupervisorState.READY

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def pending_count(self) -> int:
        return self._channel.pending_count if self._channel is not None else 0

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self, environment_id: str | None = None) -> bool:
        """Start the worker (if needed) and wait for readiness.

        Args:
            environment_id: Environment to run; defaults to the active one,
                then ``default_environment``.

        Returns:
            True if a process was spawned, False if it was already ready.
        """
        env_id = (
            environment_id
            or self.current_environment_id
            or self.config.default_environment
        )
        return await self.ensure_environment(env_id)

    async def ensure_environment(self, required_id: str) -> bool:
        """
        Make sure the worker runs *required_id* and is ready.

        No-op when that environment is already active and ready. Otherwise
        the running process (if any) is retired, the grace interval is
        waited, and the new environment is resolved, spawned and awaited.
        Calls are serialised, so back-to-back calls with the same id
        restart only once.

        Raises:
            EnvironmentNotFoundError: no interpreter for *required_id*.
            StartupFailedError: spawn failed or the worker died before ready.
            ChannelClosedError: the supervisor is shutting down.
        """
        async with self._switch_lock:
            return await self._ensure_locked(required_id)

    async def _ensure_locked(self, required_id: str) -> bool:
        """Body of :meth:`ensure_environment`; the caller holds ``_switch_lock``."""
        if self.shutting_down:
            raise ChannelClosedError("Supervisor is shutting down")

        if (
            self.state is SupervisorState.READY
            and self.current_environment_id == required_id
            and self._handle is not None
            and self._handle.alive
        ):
            return False

        previous = self.current_environment_id
        self.current_environment_id = required_id

        if self._handle is not None:
            logger.info(
                "Switching worker environment: %s -> %s", previous, required_id,
            )
            self.state = SupervisorState.RESTARTING
            await self._retire_current()
            await asyncio.sleep(self.config.restart_delay_sec)
            if self.shutting_down:
                raise ChannelClosedError("Supervisor is shutting down")

        try:
            await self._spawn(required_id)
            await self._wait_until_ready()
        except Exception as e:
            if not self.shutting_down:
                await self._abort_start(e)
            raise
        return True

    async def _switch_and_send(self, required_id: str, command: Command) -> PendingCommand:
        """
        Bring up *required_id* and write *command* before releasing the lock.

        A switch queued behind this one cannot replace the worker between
        readiness and the write.
        """
        async with self._switch_lock:
            await self._ensure_locked(required_id)
            if self.state is not SupervisorState.READY or self._channel is None:
                raise ChannelClosedError(
                    f"Worker is not available (state={self.state.value})",
                )
            return self._channel.send(command)

    async def _spawn(self, environment_id: str) -> None:
        """Resolve, spawn and wire up a new worker. State becomes STARTING."""
        self.state = SupervisorState.STARTING
        loop = asyncio.get_running_loop()

        descriptor = self.resolver.resolve(environment_id, self.packaged, self.platform)
        base_env = os.environ if self._base_env is None else self._base_env
        env = build_worker_env(base_env, descriptor, self.config.environment_variable)

        self._ready_future = loop.create_future()
        self._ready_future.add_done_callback(_consume_exception)

        handle = await WorkerProcessHandle.spawn(
            descriptor, env, limit=self.config.stream_limit_bytes,
        )
        if self.shutting_down:
            await handle.kill()
            raise ChannelClosedError("Supervisor is shutting down")

        channel = CommandChannel(
            handle.stdin,
            handle.stdout,
            handle.stderr,
            on_ready=lambda: self._on_ready(handle),
            on_event=lambda event: self._on_event(handle, event),
            on_worker_error=lambda message: self._on_worker_error(handle, message),
            on_diagnostic=lambda line: self._on_diagnostic(handle, line),
            name=f"worker[{environment_id}]",
        )
        self._handle = handle
        self._channel = channel
        if self._spawns:
            self.restart_count += 1
        self._spawns += 1
        bind_environment(environment_id)

        channel.start()
        self._watcher = loop.create_task(
            self._watch_process(handle, channel), name=f"worker-watch-{handle.pid}",
        )
        self._started_at = loop.time()
        self._soft_timer = loop.call_later(
            self.config.soft_ready_warning_sec, self._soft_ready_warning, handle,
        )

    async def _wait_until_ready(self) -> None:
        fut = self._ready_future
        if fut is None:
            raise StartupFailedError("Worker was not started")
        # Shielded: an abandoned waiter must not cancel the shared readiness
        await asyncio.shield(fut)

    async def _abort_start(self, exc: BaseException) -> None:
        """Clean up after a failed start and fail queued commands with *exc*."""
        self._cancel_soft_timer()
        handle, channel = self._handle, self._channel
        self._handle = None
        self._channel = None
        self.state = SupervisorState.STOPPED
        if handle is not None and handle.alive:
            await handle.kill()
        if channel is not None:
            await channel.aclose()
        self._fail_queued(exc)
        logger.error(
            "Worker start failed for '%s': %s", self.current_environment_id, exc,
        )

    async def _retire_current(self) -> None:
        """Shut down the current handle completely before a replacement."""
        handle, channel = self._handle, self._channel
        if handle is None:
            return
        handle.retiring = True
        self._cancel_soft_timer()
        if self._ready_future is not None and not self._ready_future.done():
            self._ready_future.set_exception(
                StartupFailedError(
                    "Worker was retired before it became ready",
                    environment_id=handle.environment_id,
                ),
            )

        async def request_exit() -> bool:
            if not channel.send_nowait(Command(EXIT_COMMAND_TYPE)):
                return False
            await channel.drain()
            return True

        code = await handle.stop(
            request_exit=request_exit if channel is not None else None,
            exit_grace=self.config.exit_grace_sec,
            terminate_grace=self.config.terminate_grace_sec,
        )
        if channel is not None:
            await channel.aclose()
        if self._watcher is not None:
            with suppress(asyncio.CancelledError):
                await self._watcher
            self._watcher = None
        self._handle = None
        self._channel = None
        self.last_exit_code = code
        logger.info("Worker retired: env=%s code=%s", handle.environment_id, code)

    async def shutdown(self) -> None:
        """
        Stop the worker and fail everything outstanding. Idempotent.

        Shutdown flow:
        1. Send {"type": "exit"} (best effort) and wait exit_grace_sec
        2. SIGTERM, wait terminate_grace_sec
        3. SIGKILL
        """
        if self.shutting_down:
            await self._stopped.wait()
            return

        logger.info("Shutting down worker supervisor")
        self.shutting_down = True
        self.state = SupervisorState.STOPPING
        self._cancel_soft_timer()

        closed = ChannelClosedError("Supervisor shut down")
        if self._ready_future is not None and not self._ready_future.done():
            self._ready_future.set_exception(
                StartupFailedError(
                    "Worker was terminated during startup",
                    environment_id=self.current_environment_id,
                ),
            )
        self._fail_queued(closed)

        try:
            await self._retire_current()
        finally:
            self.state = SupervisorState.STOPPED
            self._stopped.set()
            self.router.publish(
                KIND_STATUS, StatusNotification(ready=False, message="Worker stopped").to_dict(),
            )
            logger.info("Worker supervisor stopped")

    # ── Commands ───────────────────────────────────────────────────

    def _required_environment(self, command: Command) -> str:
        return (
            command.environment
            or self.current_environment_id
            or self.config.default_environment
        )

    async def submit(self, command: Command) -> Any:
        """
        Send *command* to the worker and wait for its response.

        Switches environment first when the command requires a different
        one, and starts the worker if it is stopped. Commands submitted
        before readiness are queued in order. There is no timeout at this
        layer; an abandoned caller leaves the correlation entry in place.

        Raises:
            ChannelClosedError: the channel closed before a response arrived,
                or the supervisor is shut down.
            EnvironmentNotFoundError / StartupFailedError: the worker could
                not be started for the required environment.
        """
        if self.shutting_down:
            raise ChannelClosedError("Supervisor is shutting down")

        required = self._required_environment(command)
        if self.state is SupervisorState.STOPPED or required != self.current_environment_id:
            # A caller timing out must not interrupt a half-finished switch
            entry = await asyncio.shield(self._switch_and_send(required, command))
        elif self.state is SupervisorState.READY and self._channel is not None:
            entry = self._channel.send(command)
        elif self.state in (SupervisorState.STARTING, SupervisorState.RESTARTING):
            entry = await self._enqueue(command)
        else:
            raise ChannelClosedError(
                f"Worker is not available (state={self.state.value})",
            )
        return await asyncio.shield(entry.future)

    async def _enqueue(self, command: Command) -> PendingCommand:
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume_exception)
        self._queue.append(QueuedCommand(command=command, future=fut))
        logger.debug(
            "Queued '%s' until worker is ready (queued: %d)", command.type, len(self._queue),
        )
        return await asyncio.shield(fut)

    def _drain_queue(self) -> None:
        """Write every queued command, in submission order."""
        channel = self._channel
        drained = 0
        while self._queue:
            queued = self._queue.popleft()
            if queued.future.done():
                continue
            if channel is None:
                queued.future.set_exception(ChannelClosedError("Worker is gone"))
                continue
            try:
                queued.future.set_result(channel.send(queued.command))
                drained += 1
            except ChannelClosedError as e:
                queued.future.set_exception(e)
        if drained:
            logger.info("Drained %d queued command(s)", drained)

    def _fail_queued(self, exc: BaseException) -> None:
        count = 0
        while self._queue:
            queued = self._queue.popleft()
            if not queued.future.done():
                queued.future.set_exception(exc)
                count += 1
        if count:
            logger.info("Failed %d queued command(s): %s", count, exc)

    # ── Channel callbacks ──────────────────────────────────────────

    def _on_ready(self, handle: WorkerProcessHandle) -> None:
        if handle is not self._handle or self.state is not SupervisorState.STARTING:
            logger.debug("Ignoring ready from stale worker PID %s", handle.pid)
            return
        self._cancel_soft_timer()
        self.state = SupervisorState.READY
        elapsed = asyncio.get_running_loop().time() - self._started_at
        logger.info(
            "Worker ready: env=%s PID=%s (%.2fs)", handle.environment_id, handle.pid, elapsed,
        )
        if self._ready_future is not None and not self._ready_future.done():
            self._ready_future.set_result(None)
        self.router.publish(
            KIND_STATUS, StatusNotification(ready=True, pid=handle.pid).to_dict(),
        )
        self._drain_queue()

    def _on_event(self, handle: WorkerProcessHandle, event: Any) -> None:
        if handle is self._handle:
            self.router.publish(KIND_EVENT, event)

    def _on_worker_error(self, handle: WorkerProcessHandle, message: str) -> None:
        if handle is self._handle:
            self.router.publish(
                KIND_WORKER_ERROR,
                {"message": message, "environment": handle.environment_id},
            )

    def _on_diagnostic(self, handle: WorkerProcessHandle, line: str) -> None:
        self.router.publish(KIND_STDERR, DiagnosticLine(line).to_dict())

    def _soft_ready_warning(self, handle: WorkerProcessHandle) -> None:
        self._soft_timer = None
        if handle is not self._handle or self.state is not SupervisorState.STARTING:
            return
        elapsed_ms = int((asyncio.get_running_loop().time() - self._started_at) * 1000)
        logger.warning(
            "Worker PID %s not ready after %.1fs; still waiting",
            handle.pid, elapsed_ms / 1000,
        )
        self.router.publish(
            KIND_STATUS,
            StatusNotification(
                ready=False,
                pid=handle.pid,
                message="Worker is taking longer than expected to start; still waiting",
                elapsed_ms=elapsed_ms,
            ).to_dict(),
        )

    def _cancel_soft_timer(self) -> None:
        if self._soft_timer is not None:
            self._soft_timer.cancel()
            self._soft_timer = None

    # ── Exit watcher ───────────────────────────────────────────────

    async def _watch_process(
        self, handle: WorkerProcessHandle, channel: CommandChannel,
    ) -> None:
        code = await handle.wait()
        if handle.retiring or self.shutting_down or handle is not self._handle:
            logger.debug("Worker PID %s exited during retirement (code=%s)", handle.pid, code)
            return

        try:
            await self._handle_unexpected_exit(handle, channel, code)
        except Exception:
            logger.exception("Failed to handle exit of worker PID %s", handle.pid)

    async def _handle_unexpected_exit(
        self,
        handle: WorkerProcessHandle,
        channel: CommandChannel,
        code: int,
    ) -> None:
        env_id = handle.environment_id
        was_starting = self.state is SupervisorState.STARTING
        self._cancel_soft_timer()
        self._handle = None
        self._channel = None
        self._watcher = None
        self.state = SupervisorState.STOPPED
        self.last_exit_code = code

        if self._ready_future is not None and not self._ready_future.done():
            self._ready_future.set_exception(
                StartupFailedError(
                    f"Worker exited with code {code} before signalling ready",
                    environment_id=env_id,
                    exit_code=code,
                ),
            )
        self._fail_queued(ChannelClosedError(f"Worker exited with code {code}"))
        await channel.aclose()

        if code > 0:
            error = unexpected_exit_error(code, env_id)
            logger.error(
                "Worker exited unexpectedly: env=%s PID=%s code=%d category=%s",
                env_id, handle.pid, code, error.exit_category.value,
            )
            if self.router.has_subscribers:
                self.router.publish(
                    KIND_UNEXPECTED_EXIT,
                    {
                        "exitCode": code,
                        "category": error.exit_category.value,
                        "title": error.title,
                        "details": error.details,
                        "environment": env_id,
                    },
                )
        elif code < 0:
            logger.warning(
                "Worker terminated by signal %d: env=%s PID=%s", -code, env_id, handle.pid,
            )
        else:
            logger.info("Worker exited: env=%s PID=%s code=0", env_id, handle.pid)

        message = "Worker exited during startup" if was_starting else f"Worker exited with code {code}"
        self.router.publish(
            KIND_STATUS, StatusNotification(ready=False, message=message).to_dict(),
        )

    # ── Status ─────────────────────────────────────────────────────

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the supervisor for the boundary layer."""
        return {
            "state": self.state.value,
            "ready": self.ready,
            "pid": self.pid,
            "environment": self.current_environment_id,
            "pending": self.pending_count,
            "queued": self.queued_count,
            "restart_count": self.restart_count,
            "last_exit_code": self.last_exit_code,
            "shutting_down": self.shutting_down,
        }
