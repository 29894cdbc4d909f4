# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any


def _parse_data(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("--data must be a JSON object")
    return data


async def _send_once(command, config, timeout: float) -> Any:
    from workerbridge.supervisor import EnvironmentResolver, ProcessSupervisor, detect_packaged

    supervisor = ProcessSupervisor(
        config.supervisor,
        EnvironmentResolver(config.resolver),
        packaged=detect_packaged(config.resolver),
    )
    try:
        return await asyncio.wait_for(supervisor.submit(command), timeout=timeout)
    finally:
        await supervisor.shutdown()
        await supervisor.router.aclose()


def cmd_send(args: argparse.Namespace) -> None:
    """Start a supervisor, submit one command, print the response."""
    from workerbridge.config import load_config, resolve_model_environment
    from workerbridge.exceptions import WorkerBridgeError
    from workerbridge.supervisor import Command

    try:
        data = _parse_data(args.data)
    except ValueError as e:
        print(f"Error: invalid --data: {e}", file=sys.stderr)
        sys.exit(2)

    config = load_config()
    environment = args.environment
    if environment is None and data and isinstance(data.get("model"), str):
        environment = resolve_model_environment(config.supervisor, data["model"])
    command = Command(type=args.type, data=data, environment=environment)
    timeout = args.timeout or config.server.command_timeout_sec

    try:
        response = asyncio.run(_send_once(command, config, timeout))
    except TimeoutError:
        print(f"Error: no response within {timeout:g}s", file=sys.stderr)
        sys.exit(1)
    except WorkerBridgeError as e:
        print(f"Error ({e.category}): {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(response, ensure_ascii=False, indent=2, default=str))
