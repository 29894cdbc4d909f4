"""Unit tests for server/routes/commands.py — command submission endpoints."""
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from workerbridge.config import ServerConfig, SupervisorConfig, WorkerBridgeConfig
from workerbridge.exceptions import (
    ChannelClosedError,
    ConfigValidationError,
    EnvironmentNotFoundError,
    StartupFailedError,
    UnexpectedExitError,
)
from workerbridge.supervisor.diagnostics import ExitCategory


def _make_test_app(supervisor: MagicMock | None = None, timeout: float = 5.0):
    from fastapi import FastAPI
    from server.routes.commands import create_commands_router

    app = FastAPI()
    app.state.config = WorkerBridgeConfig(
        supervisor=SupervisorConfig(model_environments={"retinaface": "retinaface"}),
        server=ServerConfig(command_timeout_sec=timeout),
    )
    if supervisor is None:
        supervisor = MagicMock()
        supervisor.submit = AsyncMock(return_value={"status": "success"})
        supervisor.get_status.return_value = {"state": "ready", "ready": True}
    app.state.supervisor = supervisor
    app.include_router(create_commands_router(), prefix="/api")
    return app


async def _post(app, body: dict):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post("/api/commands", json=body)


def _failing(exc: BaseException) -> MagicMock:
    supervisor = MagicMock()
    supervisor.submit = AsyncMock(side_effect=exc)
    return supervisor


# ── POST /commands ───────────────────────────────────────


class TestSubmitCommand:
    async def test_success(self):
        app = _make_test_app()
        resp = await _post(app, {"type": "get_models"})

        assert resp.status_code == 200
        assert resp.json() == {"response": {"status": "success"}}
        command = app.state.supervisor.submit.await_args.args[0]
        assert command.type == "get_models"
        assert command.data is None
        assert command.environment is None

    async def test_explicit_environment(self):
        app = _make_test_app()
        await _post(app, {"type": "detect", "data": {"model": "retinaface"}, "environment": "envB"})

        command = app.state.supervisor.submit.await_args.args[0]
        assert command.environment == "envB"

    async def test_model_selects_environment(self):
        app = _make_test_app()
        await _post(app, {"type": "detect", "data": {"model": "RetinaFace_R50", "img": "x"}})

        command = app.state.supervisor.submit.await_args.args[0]
        assert command.environment == "retinaface"
        assert command.data == {"model": "RetinaFace_R50", "img": "x"}

    async def test_unmatched_model_uses_current(self):
        app = _make_test_app()
        await _post(app, {"type": "detect", "data": {"model": "yolo"}})

        assert app.state.supervisor.submit.await_args.args[0].environment is None

    async def test_invalid_body(self):
        app = _make_test_app()
        resp = await _post(app, {"data": {}})
        assert resp.status_code == 422


class TestErrorMapping:
    async def test_timeout(self):
        supervisor = MagicMock()

        async def never(command):
            await asyncio.sleep(10)

        supervisor.submit = never
        app = _make_test_app(supervisor, timeout=0.05)
        resp = await _post(app, {"type": "slow"})

        assert resp.status_code == 504
        assert resp.json()["kind"] == "timeout"
        assert resp.json()["command"] == "slow"

    async def test_environment_not_found(self):
        exc = EnvironmentNotFoundError("envZ", tried=["/a/python", "/b/python"])
        resp = await _post(_make_test_app(_failing(exc)), {"type": "x"})

        assert resp.status_code == 500
        body = resp.json()
        assert body["kind"] == "configuration"
        assert body["tried"] == ["/a/python", "/b/python"]
        assert "envZ" in body["error"]

    async def test_startup_failed(self):
        exc = StartupFailedError("Worker exited with code 1", environment_id="envA", exit_code=1)
        resp = await _post(_make_test_app(_failing(exc)), {"type": "x"})

        assert resp.status_code == 503
        body = resp.json()
        assert body["kind"] == "startup"
        assert "Missing worker dependencies" in body["details"]

    async def test_channel_closed(self):
        resp = await _post(_make_test_app(_failing(ChannelClosedError("gone"))), {"type": "x"})
        assert resp.status_code == 503
        assert resp.json()["kind"] == "channel_closed"

    async def test_config_error(self):
        resp = await _post(_make_test_app(_failing(ConfigValidationError("bad"))), {"type": "x"})
        assert resp.status_code == 500
        assert resp.json()["kind"] == "configuration"

    async def test_other_bridge_error(self):
        exc = UnexpectedExitError(1, ExitCategory.GENERIC, title="t", details="d")
        resp = await _post(_make_test_app(_failing(exc)), {"type": "x"})
        assert resp.status_code == 500
        assert resp.json()["kind"] == "unexpected_exit"


# ── GET /status ──────────────────────────────────────────


class TestStatus:
    async def test_status(self):
        app = _make_test_app()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/status")

        assert resp.status_code == 200
        assert resp.json() == {"state": "ready", "ready": True}


@pytest.mark.parametrize(
    "body,expected",
    [
        ({"type": "a", "environment": "envX"}, "envX"),
        ({"type": "a", "data": {"model": "retinaface"}}, "retinaface"),
        ({"type": "a", "data": {"model": 3}}, None),
        ({"type": "a"}, None),
    ],
)
def test_select_environment(body, expected):
    from server.routes.commands import CommandRequest, select_environment

    request = MagicMock()
    request.app.state.config = WorkerBridgeConfig(
        supervisor=SupervisorConfig(model_environments={"retinaface": "retinaface"}),
    )
    assert select_environment(request, CommandRequest(**body)) == expected
