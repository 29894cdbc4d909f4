# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of WorkerBridge, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Fan-out of worker events and status changes to boundary subscribers.

Each subscriber owns a bounded queue and a delivery task, so a slow or
failing subscriber never blocks the others or the channel reader.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)

# ── Message kinds ──────────────────────────────────────────────
KIND_STATUS = "status"
KIND_EVENT = "event"
KIND_STDERR = "stderr"
KIND_WORKER_ERROR = "worker_error"
KIND_UNEXPECTED_EXIT = "unexpected_exit"

DEFAULT_QUEUE_SIZE = 100

SubscriberCallback = Callable[[str, Any], Union[None, Awaitable[None]]]


# ── Boundary notifications ─────────────────────────────────────


@dataclass
class StatusNotification:
    """Readiness / status change of the worker."""

    ready: bool
    pid: int | None = None
    message: str | None = None
    elapsed_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ready": self.ready}
        if self.pid is not None:
            data["pid"] = self.pid
        if self.message is not None:
            data["message"] = self.message
        if self.elapsed_ms is not None:
            data["elapsedMs"] = self.elapsed_ms
        return data


@dataclass
class DiagnosticLine:
    """One raw line from the worker's error stream."""

    data: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {"type": "stderr", "data": self.data, "timestamp": self.timestamp}


# ── Router ─────────────────────────────────────────────────────


class Subscription:
    """A registered subscriber with its own queue and delivery task."""

    def __init__(self, sub_id: int, callback: SubscriberCallback, maxsize: int) -> None:
        self.id = sub_id
        self.callback = callback
        self.queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.task: asyncio.Task | None = None

    def offer(self, kind: str, data: Any) -> None:
        """Enqueue without blocking; the oldest message goes when full."""
        try:
            self.queue.put_nowait((kind, data))
        except asyncio.QueueFull:
            with suppress(asyncio.QueueEmpty):
                self.queue.get_nowait()
            self.dropped += 1
            self.queue.put_nowait((kind, data))

    async def _pump(self) -> None:
        while True:
            kind, data = await self.queue.get()
            try:
                result = self.callback(kind, data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber %d failed on '%s' message", self.id, kind)


class EventRouter:
    """Deliver every published message to every current subscriber.

    Messages published while nobody is subscribed are handed to
    ``on_undelivered`` if one is set, otherwise they are discarded.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self.on_undelivered: Callable[[str, Any], None] | None = None

    @property
    def has_subscribers(self) -> bool:
        return bool(self._subscriptions)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: SubscriberCallback) -> Subscription:
        """Register *callback* (plain or coroutine function) for all kinds."""
        sub = Subscription(next(self._ids), callback, self.queue_size)
        sub.task = asyncio.get_running_loop().create_task(
            sub._pump(), name=f"event-subscriber-{sub.id}",
        )
        self._subscriptions[sub.id] = sub
        logger.debug("Subscriber %d registered (total: %d)", sub.id, len(self._subscriptions))
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is None:
            return
        if subscription.task is not None:
            subscription.task.cancel()
        logger.debug(
            "Subscriber %d removed (total: %d)", subscription.id, len(self._subscriptions),
        )

    def publish(self, kind: str, data: Any) -> None:
        """Fan *data* out to every subscriber. Never blocks."""
        if not self._subscriptions:
            if self.on_undelivered is not None:
                self.on_undelivered(kind, data)
            return
        for sub in list(self._subscriptions.values()):
            sub.offer(kind, data)

    async def aclose(self) -> None:
        """Cancel every delivery task and drop all subscriptions."""
        subs = list(self._subscriptions.values())
        self._subscriptions.clear()
        tasks = [s.task for s in subs if s.task is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
