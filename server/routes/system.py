from __future__ import annotations
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from fastapi import APIRouter, Request

from workerbridge import __version__


def create_system_router() -> APIRouter:
    router = APIRouter()

    @router.get("/system/health")
    async def health_check(request: Request):
        """Simple health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "worker_ready": request.app.state.supervisor.ready,
        }

    return router
