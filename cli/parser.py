# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import os
import sys

from dotenv import load_dotenv


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workerbridge",
        description="WorkerBridge - Supervised Worker Process Bridge",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override runtime data directory (default: ~/.workerbridge or WORKERBRIDGE_DATA_DIR)",
    )
    sub = parser.add_subparsers(dest="command")

    # ── Serve ─────────────────────────────────────────────
    p_serve = sub.add_parser("serve", help="Run the HTTP/WebSocket server")
    p_serve.add_argument("--host", default=None, help="Bind address (default: from config)")
    p_serve.add_argument("--port", type=int, default=None, help="Port (default: from config)")
    p_serve.add_argument(
        "--environment", default=None,
        help="Environment to start at boot (default: supervisor.default_environment)",
    )
    p_serve.add_argument(
        "--no-autostart", action="store_true",
        help="Do not start the worker until the first command arrives",
    )
    p_serve.set_defaults(func=_lazy_serve)

    # ── Resolve ───────────────────────────────────────────
    p_resolve = sub.add_parser("resolve", help="Show which interpreter an environment resolves to")
    p_resolve.add_argument("--environment", "-e", required=True, help="Environment id")
    mode = p_resolve.add_mutually_exclusive_group()
    mode.add_argument(
        "--packaged", dest="packaged", action="store_true", default=None,
        help="Use the packaged layout",
    )
    mode.add_argument(
        "--dev", dest="packaged", action="store_false",
        help="Use the development layout",
    )
    p_resolve.add_argument(
        "--platform", default=None,
        help="Platform string to resolve for (default: this platform)",
    )
    p_resolve.set_defaults(func=_lazy_resolve)

    # ── Send ──────────────────────────────────────────────
    p_send = sub.add_parser("send", help="Start a worker, send one command, print the response")
    p_send.add_argument("type", help="Command type")
    p_send.add_argument("--data", default=None, help="Command data as a JSON object")
    p_send.add_argument("--environment", "-e", default=None, help="Environment id")
    p_send.add_argument(
        "--timeout", type=float, default=None,
        help="Seconds to wait for the response (default: server.command_timeout_sec)",
    )
    p_send.set_defaults(func=_lazy_send)

    return parser


def cli_main(argv: list[str] | None = None) -> None:
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    # Apply --data-dir override before any command
    if args.data_dir:
        os.environ["WORKERBRIDGE_DATA_DIR"] = args.data_dir

    from workerbridge.config import load_config
    from workerbridge.exceptions import ConfigError
    from workerbridge.logging_config import setup_logging
    from workerbridge.paths import get_log_dir

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    setup_logging(
        level=os.environ.get("WORKERBRIDGE_LOG_LEVEL", config.system.log_level),
        log_dir=get_log_dir(),
        json_file=config.system.json_log_file,
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()
        sys.exit(1)


# ── Lazy import wrappers ──────────────────────────────────


def _lazy_serve(args: argparse.Namespace) -> None:
    from cli.commands.serve import cmd_serve

    cmd_serve(args)


def _lazy_resolve(args: argparse.Namespace) -> None:
    from cli.commands.resolve_cmd import cmd_resolve

    cmd_resolve(args)


def _lazy_send(args: argparse.Namespace) -> None:
    from cli.commands.send import cmd_send

    cmd_send(args)
