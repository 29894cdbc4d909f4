"""Unit tests for WorkerProcessHandle — spawn failures and stop escalation."""

# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.helpers.mocks import make_mock_process
from workerbridge.exceptions import StartupFailedError
from workerbridge.supervisor.environment import EnvironmentDescriptor
from workerbridge.supervisor.process_handle import WorkerProcessHandle

DESCRIPTOR = EnvironmentDescriptor("envA", "/opt/py/bin/python", "/opt/worker/subprocess_api.py")


def _stubborn_process(exits_on: str | None) -> MagicMock:
    """Process whose wait() only returns after the named signal method is called."""
    proc = make_mock_process()
    exited = asyncio.Event()
    codes = {"terminate": -15, "kill": -9}

    async def wait():
        await exited.wait()
        return proc.returncode

    def signal(name):
        def _send():
            if exits_on == name or name == "kill":
                proc.returncode = codes[name]
                exited.set()
        return _send

    proc.wait = AsyncMock(side_effect=wait)
    proc.terminate = MagicMock(side_effect=signal("terminate"))
    proc.kill = MagicMock(side_effect=signal("kill"))
    return proc


class TestSpawn:
    @pytest.mark.asyncio
    async def test_spawn_pipes_all_streams_in_script_dir(self):
        proc = make_mock_process(pid=99)
        with patch(
            "workerbridge.supervisor.process_handle.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=proc),
        ) as create:
            handle = await WorkerProcessHandle.spawn(DESCRIPTOR, {"A": "1"}, limit=1024)

        args, kwargs = create.call_args
        assert args == ("/opt/py/bin/python", "/opt/worker/subprocess_api.py")
        assert kwargs["stdin"] == asyncio.subprocess.PIPE
        assert kwargs["stdout"] == asyncio.subprocess.PIPE
        assert kwargs["stderr"] == asyncio.subprocess.PIPE
        assert kwargs["cwd"] == DESCRIPTOR.working_dir
        assert kwargs["env"] == {"A": "1"}
        assert kwargs["limit"] == 1024
        assert handle.pid == 99
        assert handle.alive

    @pytest.mark.asyncio
    async def test_os_error_becomes_startup_failed(self):
        with patch(
            "workerbridge.supervisor.process_handle.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=PermissionError("denied")),
        ):
            with pytest.raises(StartupFailedError) as exc_info:
                await WorkerProcessHandle.spawn(DESCRIPTOR, {})
        assert exc_info.value.environment_id == "envA"
        assert "Missing worker dependencies" in exc_info.value.details()


class TestStop:
    @pytest.mark.asyncio
    async def test_graceful_exit_needs_no_signal(self):
        proc = make_mock_process()

        async def wait():
            proc.returncode = 0
            return 0

        proc.wait = AsyncMock(side_effect=wait)
        request_exit = MagicMock(return_value=True)
        handle = WorkerProcessHandle(proc, DESCRIPTOR)

        code = await handle.stop(request_exit=request_exit, exit_grace=0.5, terminate_grace=0.5)

        assert code == 0
        assert handle.retiring
        request_exit.assert_called_once()
        proc.terminate.assert_not_called()
        proc.kill.assert_not_called()

    @pytest.mark.asyncio
    async def test_escalates_to_sigterm(self):
        proc = _stubborn_process(exits_on="terminate")
        handle = WorkerProcessHandle(proc, DESCRIPTOR)

        code = await handle.stop(request_exit=MagicMock(return_value=True), exit_grace=0.05, terminate_grace=0.5)

        assert code == -15
        proc.terminate.assert_called_once()
        proc.kill.assert_not_called()

    @pytest.mark.asyncio
    async def test_escalates_to_sigkill(self):
        proc = _stubborn_process(exits_on=None)
        handle = WorkerProcessHandle(proc, DESCRIPTOR)

        code = await handle.stop(exit_grace=0.05, terminate_grace=0.05)

        assert code == -9
        proc.terminate.assert_called_once()
        proc.kill.assert_called_once()
        assert not handle.alive

    @pytest.mark.asyncio
    async def test_failing_exit_request_still_escalates(self):
        proc = _stubborn_process(exits_on="terminate")
        handle = WorkerProcessHandle(proc, DESCRIPTOR)

        code = await handle.stop(
            request_exit=MagicMock(side_effect=BrokenPipeError()),
            exit_grace=0.05,
            terminate_grace=0.5,
        )
        assert code == -15

    @pytest.mark.asyncio
    async def test_async_exit_request_is_awaited(self):
        proc = make_mock_process()
        flushed = []

        async def wait():
            proc.returncode = 0
            return 0

        proc.wait = AsyncMock(side_effect=wait)

        async def request_exit():
            flushed.append(True)
            return True

        handle = WorkerProcessHandle(proc, DESCRIPTOR)

        assert await handle.stop(request_exit=request_exit, exit_grace=0.5) == 0
        assert flushed == [True]
        proc.terminate.assert_not_called()

    @pytest.mark.asyncio
    async def test_stalled_exit_request_still_escalates(self):
        proc = _stubborn_process(exits_on="terminate")
        handle = WorkerProcessHandle(proc, DESCRIPTOR)

        async def request_exit():
            await asyncio.sleep(10)
            return True

        code = await handle.stop(request_exit=request_exit, exit_grace=0.05, terminate_grace=0.5)

        assert code == -15
        proc.terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_already_exited(self):
        proc = make_mock_process(returncode=1)
        handle = WorkerProcessHandle(proc, DESCRIPTOR)
        request_exit = MagicMock()

        assert await handle.stop(request_exit=request_exit) == 1
        request_exit.assert_not_called()
        proc.terminate.assert_not_called()

    @pytest.mark.asyncio
    async def test_process_vanished_during_terminate(self):
        proc = _stubborn_process(exits_on=None)
        proc.terminate.side_effect = ProcessLookupError()
        handle = WorkerProcessHandle(proc, DESCRIPTOR)

        code = await handle.stop(exit_grace=0.01, terminate_grace=0.01)
        assert code == -9
