"""
Wire protocol between the supervisor and the worker: newline-delimited JSON.
"""

# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from workerbridge.exceptions import ProtocolError

# ── Constants ──────────────────────────────────────────────────
STRUCTURED_PREFIXES = ("{", "[")
EXIT_COMMAND_TYPE = "exit"


# ── Outbound ──────────────────────────────────────────────────


@dataclass
class Command:
    """Command from the supervisor to the worker.

    ``environment`` selects the runtime environment the command must run
    under. It is consumed by the supervisor and never written to the wire.
    """

    type: str
    data: dict[str, Any] | None = None
    environment: str | None = None

    def to_payload(self, correlation_id: int | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.data is not None:
            payload["data"] = self.data
        if correlation_id is not None:
            payload["id"] = correlation_id
        return payload

    def to_json(self, correlation_id: int | None = None) -> str:
        """Serialize to a JSON line (without the trailing newline)."""
        return json.dumps(self.to_payload(correlation_id), default=str)


# ── Inbound ──────────────────────────────────────────────────


@dataclass
class ReadyMessage:
    """``{"type": "ready"}``: the worker finished initializing."""


@dataclass
class ResponseMessage:
    """Reply to a prior command, correlated by ``id``."""

    id: int
    response: Any = None


@dataclass
class EventMessage:
    """Unsolicited progress / completion notification."""

    event: Any = None


@dataclass
class ErrorMessage:
    """Worker-reported fault not tied to any command id."""

    message: str = ""


@dataclass
class UnknownMessage:
    type: str
    raw: dict[str, Any] = field(default_factory=dict)


WorkerMessage = Union[ReadyMessage, ResponseMessage, EventMessage, ErrorMessage, UnknownMessage]


def is_structured(line: str) -> bool:
    """Return True if *line* looks like protocol traffic rather than stray output."""
    stripped = line.lstrip()
    return bool(stripped) and stripped[0] in STRUCTURED_PREFIXES


def parse_message(line: str) -> WorkerMessage | None:
    """Decode one line of worker stdout.

    Returns ``None`` for incidental output (anything whose first
    non-whitespace character is not ``{`` or ``[``).

    Raises:
        ProtocolError: the line looks structured but is not a valid message.
    """
    if not is_structured(line):
        return None

    text = line.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Invalid JSON from worker: {exc}", line=text) from exc

    if not isinstance(data, dict):
        raise ProtocolError("Worker message is not a JSON object", line=text)

    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        raise ProtocolError("Worker message has no string 'type'", line=text)

    if msg_type == "ready":
        return ReadyMessage()
    if msg_type == "response":
        msg_id = data.get("id")
        # bool is a subclass of int; reject it explicitly
        if not isinstance(msg_id, int) or isinstance(msg_id, bool):
            raise ProtocolError(f"Malformed response id: {msg_id!r}", line=text)
        return ResponseMessage(id=msg_id, response=data.get("response"))
    if msg_type == "event":
        return EventMessage(event=data.get("event"))
    if msg_type == "error":
        message = data.get("message", "")
        return ErrorMessage(message=message if isinstance(message, str) else str(message))
    return UnknownMessage(type=msg_type, raw=data)
