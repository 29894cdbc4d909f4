from __future__ import annotations
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of WorkerBridge server, licensed under Apache-2.0.
# See LICENSE for the full license text.


import json
import logging
from collections import deque
from typing import Any

from fastapi import WebSocket

from workerbridge.supervisor.events import EventRouter, Subscription

logger = logging.getLogger("workerbridge.websocket")


class WebSocketManager:
    """Bridges EventRouter notifications to connected WebSocket clients.

    Every connection is its own router subscriber. Notifications published
    while no client is connected are kept (bounded, oldest dropped) and
    flushed to the next client that connects.
    """

    _MAX_QUEUE_SIZE = 50  # prevent unbounded growth

    def __init__(self, router: EventRouter) -> None:
        self.router = router
        self.active_connections: list[WebSocket] = []
        self._subscriptions: dict[int, Subscription] = {}
        self._notification_queue: deque[dict[str, Any]] = deque(maxlen=self._MAX_QUEUE_SIZE)
        router.on_undelivered = self.queue_notification

    # ── Connection Management ───────────────────────────────

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection and subscribe it to the router."""
        await websocket.accept()
        self.active_connections.append(websocket)
        # Flush any queued notifications to the new client
        await self.flush_notification_queue(websocket)

        async def _deliver(kind: str, data: Any) -> None:
            await websocket.send_text(_encode({"type": kind, "data": data}))

        self._subscriptions[id(websocket)] = self.router.subscribe(_deliver)
        logger.info("WebSocket connected. Total: %d", len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection and drop its subscription."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        sub = self._subscriptions.pop(id(websocket), None)
        if sub is not None:
            self.router.unsubscribe(sub)
        logger.info(
            "WebSocket disconnected. Total: %d", len(self.active_connections)
        )

    # ── Notifications ───────────────────────────────────────

    def queue_notification(self, kind: str, data: Any) -> None:
        """Keep a notification for the next client (nobody is connected)."""
        self._notification_queue.append({"type": kind, "data": data})

    @property
    def queued_notifications(self) -> int:
        return len(self._notification_queue)

    async def flush_notification_queue(self, websocket: WebSocket) -> None:
        """Send queued notifications to a newly connected client."""
        while self._notification_queue:
            event = self._notification_queue.popleft()
            try:
                await websocket.send_text(_encode(event))
            except Exception:
                logger.warning("Failed to flush queued notification", exc_info=True)
                self._notification_queue.appendleft(event)
                break


def _encode(message: dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, default=str)
