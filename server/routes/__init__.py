from __future__ import annotations
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from fastapi import APIRouter

from server.routes.commands import create_commands_router
from server.routes.system import create_system_router
from server.routes.websocket_route import create_websocket_router


def create_router() -> APIRouter:
    router = APIRouter()
    api = APIRouter(prefix="/api")

    api.include_router(create_commands_router())
    api.include_router(create_system_router())

    router.include_router(api)
    router.include_router(create_websocket_router())

    return router
