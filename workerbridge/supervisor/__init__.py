# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
"""
Worker process supervisor package.

Runs one long-lived worker process per supervisor and talks to it with
newline-delimited JSON over the worker's standard streams.
"""

from __future__ import annotations

from workerbridge.supervisor.channel import CommandChannel, PendingCommand
from workerbridge.supervisor.environment import (
    EnvironmentDescriptor,
    EnvironmentResolver,
    detect_packaged,
)
from workerbridge.supervisor.events import EventRouter, Subscription
from workerbridge.supervisor.manager import ProcessSupervisor, SupervisorState
from workerbridge.supervisor.process_handle import WorkerProcessHandle
from workerbridge.supervisor.protocol import Command, parse_message

__all__ = [
    "Command",
    "CommandChannel",
    "EnvironmentDescriptor",
    "EnvironmentResolver",
    "EventRouter",
    "PendingCommand",
    "ProcessSupervisor",
    "Subscription",
    "SupervisorState",
    "WorkerProcessHandle",
    "detect_packaged",
    "parse_message",
]
