from __future__ import annotations
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of WorkerBridge, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Unified exception hierarchy for WorkerBridge.

All domain-specific exceptions derive from :class:`WorkerBridgeError`,
enabling callers to catch the entire family with a single clause::

    try:
        response = await supervisor.submit(command)
    except WorkerBridgeError as e:
        logger.error("Worker error: %s", e)

Each supervisor error carries a ``category`` string that the boundary
layer uses to pick a diagnostic presentation.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from workerbridge.supervisor.diagnostics import ExitCategory


class WorkerBridgeError(Exception):
    """Base exception for all WorkerBridge errors."""

    category: str = "generic"


# ── Configuration ────────────────────────────────────────────


class ConfigError(WorkerBridgeError):
    """Configuration errors."""

    category = "configuration"


class ConfigValidationError(ConfigError):
    """Configuration validation failure."""


# ── Supervisor / Channel ─────────────────────────────────────


class SupervisorError(WorkerBridgeError):
    """Worker process and command channel errors."""


class EnvironmentNotFoundError(SupervisorError, ConfigError):
    """No valid interpreter / entry script candidate could be located."""

    category = "configuration"

    def __init__(
        self,
        environment_id: str,
        *,
        tried: list[str] | None = None,
    ) -> None:
        self.environment_id = environment_id
        self.tried = list(tried or [])
        message = f"No usable interpreter found for environment '{environment_id}'"
        if self.tried:
            message += f" (tried {len(self.tried)} candidates)"
        super().__init__(message)


STARTUP_FAILURE_CAUSES: tuple[str, ...] = (
    "Missing worker dependencies",
    "Incompatible system architecture",
    "Corrupted worker environment",
)


class StartupFailedError(SupervisorError):
    """Worker could not be spawned, or died before signalling readiness."""

    category = "startup"

    def __init__(
        self,
        message: str,
        *,
        environment_id: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.environment_id = environment_id
        self.exit_code = exit_code
        self.likely_causes = STARTUP_FAILURE_CAUSES

    def details(self) -> str:
        """Operator-facing text listing the likely causes."""
        causes = "\n".join(f"• {cause}" for cause in self.likely_causes)
        return (
            f"Failed to initialize the worker: {self}\n\n"
            f"This may be caused by:\n{causes}\n\n"
            "Check the worker output log for detailed error messages."
        )


class ProtocolError(SupervisorError):
    """A structured-looking line from the worker could not be decoded."""

    category = "protocol"

    def __init__(self, message: str, *, line: str = "") -> None:
        super().__init__(message)
        self.line = line


class UnexpectedExitError(SupervisorError):
    """Worker exited with a positive code outside a shutdown sequence."""

    category = "unexpected_exit"

    def __init__(
        self,
        exit_code: int,
        exit_category: ExitCategory,
        *,
        title: str,
        details: str,
        environment_id: str | None = None,
    ) -> None:
        super().__init__(f"{title} (exit code {exit_code})")
        self.exit_code = exit_code
        self.exit_category = exit_category
        self.title = title
        self.details = details
        self.environment_id = environment_id


class ChannelClosedError(SupervisorError):
    """The command channel closed before a response arrived."""

    category = "channel_closed"
