from __future__ import annotations
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger("workerbridge.routes.websocket")


def create_websocket_router() -> APIRouter:
    """Create the WebSocket router streaming worker notifications."""
    router = APIRouter()

    @router.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        ws_manager = websocket.app.state.ws_manager
        await ws_manager.connect(websocket)
        try:
            while True:
                # Client messages carry no meaning; reading detects disconnects
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected normally")
        except Exception:
            logger.warning("WebSocket connection lost unexpectedly", exc_info=True)
        finally:
            ws_manager.disconnect(websocket)

    return router
