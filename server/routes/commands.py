from __future__ import annotations
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from workerbridge.config.models import resolve_model_environment
from workerbridge.exceptions import (
    ChannelClosedError,
    ConfigError,
    EnvironmentNotFoundError,
    StartupFailedError,
    WorkerBridgeError,
)
from workerbridge.supervisor.protocol import Command

logger = logging.getLogger("workerbridge.routes.commands")


class CommandRequest(BaseModel):
    type: str
    data: dict[str, Any] | None = None
    environment: str | None = None


def _error(status_code: int, message: str, kind: str, command: str, **extra: Any) -> JSONResponse:
    body: dict[str, Any] = {"error": message, "kind": kind, "command": command}
    body.update(extra)
    return JSONResponse(body, status_code=status_code)


def select_environment(request: Request, body: CommandRequest) -> str | None:
    """Explicit ``environment`` wins; otherwise apply model→environment rules."""
    if body.environment:
        return body.environment
    model = (body.data or {}).get("model")
    if not isinstance(model, str):
        return None
    return resolve_model_environment(request.app.state.config.supervisor, model)


def create_commands_router() -> APIRouter:
    router = APIRouter()

    @router.post("/commands")
    async def submit_command(body: CommandRequest, request: Request):
        supervisor = request.app.state.supervisor
        timeout = request.app.state.config.server.command_timeout_sec
        command = Command(
            type=body.type,
            data=body.data,
            environment=select_environment(request, body),
        )

        try:
            response = await asyncio.wait_for(supervisor.submit(command), timeout=timeout)
        except TimeoutError:
            logger.warning("Command '%s' timed out after %.1fs", command.type, timeout)
            return _error(
                504, f"Command timed out after {timeout:g}s", "timeout", command.type,
            )
        except EnvironmentNotFoundError as e:
            return _error(500, str(e), e.category, command.type, tried=e.tried)
        except StartupFailedError as e:
            return _error(503, str(e), e.category, command.type, details=e.details())
        except ChannelClosedError as e:
            return _error(503, str(e), e.category, command.type)
        except ConfigError as e:
            return _error(500, str(e), e.category, command.type)
        except WorkerBridgeError as e:
            logger.exception("Command '%s' failed", command.type)
            return _error(500, str(e), e.category, command.type)

        return {"response": response}

    @router.get("/status")
    async def worker_status(request: Request):
        return request.app.state.supervisor.get_status()

    return router
