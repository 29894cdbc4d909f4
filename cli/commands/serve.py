# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import logging

logger = logging.getLogger("workerbridge")


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the WorkerBridge server."""
    import uvicorn

    from server.app import create_app
    from workerbridge.config import load_config
    from workerbridge.logging_config import setup_worker_output_logging
    from workerbridge.paths import get_worker_log_dir

    config = load_config()
    host = args.host or config.server.host
    port = args.port or config.server.port

    setup_worker_output_logging(get_worker_log_dir())

    environment = None
    if not args.no_autostart:
        environment = args.environment or config.supervisor.default_environment

    display_host = "localhost" if host == "0.0.0.0" else host
    print(f"WorkerBridge listening on http://{display_host}:{port}/ (events: ws://{display_host}:{port}/ws)")

    app = create_app(config, startup_environment=environment)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        timeout_keep_alive=65,
        ws_ping_interval=25,
        ws_ping_timeout=5,
    )
