# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of WorkerBridge, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Centralized logging configuration for WorkerBridge.

Uses structlog in stdlib-compatible mode so that plain
``logging.getLogger()`` calls gain structured logging capabilities
(context binding, JSON output, etc.).

Provides:
- setup_logging(): structlog + stdlib unified setup (console + file)
- setup_worker_output_logging(): daily-rotated log of the worker's own output
- bind_environment(): bind the active worker environment into log context
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path

import orjson
import structlog

WORKER_OUTPUT_LOGGER = "workerbridge.worker"


def bind_environment(environment_id: str) -> None:
    """Bind the active worker environment via structlog contextvars."""
    structlog.contextvars.bind_contextvars(environment=environment_id)


# ── Shared Processors ──────────────────────────────────────────


def _build_shared_processors() -> list:
    """Build the shared processor chain used by both structlog and stdlib."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _orjson_serializer(obj: object, **_kw) -> str:  # noqa: ANN001
    return orjson.dumps(obj, default=str).decode("utf-8")


# ── Main Setup ─────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: Path | None = None,
    json_file: bool = True,
) -> None:
    """Configure logging for the entire WorkerBridge process.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, etc.).
        log_dir: Directory for log files. If None, file logging is disabled.
        json_file: Whether to use JSON format for the file handler.
    """
    shared_processors = _build_shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    # foreign_pre_chain: processes stdlib LogRecords through structlog pipeline
    # so that contextvars (environment etc.) and timestamps are merged in.
    foreign_pre_chain = list(shared_processors)

    console_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(),
        ],
        foreign_pre_chain=foreign_pre_chain,
    )
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG)
    console.setFormatter(console_formatter)
    root.addHandler(console)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "workerbridge.log"

        if json_file:
            renderer = structlog.processors.JSONRenderer(serializer=_orjson_serializer)
        else:
            renderer = structlog.dev.ConsoleRenderer(colors=False)
        file_formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=foreign_pre_chain,
        )

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        root.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ── Worker Output Logging ────────────────────────────────────────────


def setup_worker_output_logging(log_dir: Path, level: str = "DEBUG") -> logging.Logger:
    """Attach a daily-rotated file sink to the worker output logger.

    The supervisor writes the worker's stderr lines and any non-protocol
    stdout lines to this logger. Records still propagate to the root
    logger so they also show up on the console.

    Directory structure created:
        {log_dir}/
        |-- worker.log
        |-- worker.log.20260214
        +-- ...
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "worker.log"

    worker_logger = logging.getLogger(WORKER_OUTPUT_LOGGER)
    worker_logger.setLevel(getattr(logging, level.upper(), logging.DEBUG))

    for handler in list(worker_logger.handlers):
        if isinstance(handler, TimedRotatingFileHandler):
            worker_logger.removeHandler(handler)
            handler.close()

    handler = TimedRotatingFileHandler(
        filename=log_path,
        when="midnight",
        interval=1,
        backupCount=30,  # Keep 30 days
        encoding="utf-8",
        utc=False,
    )
    handler.suffix = "%Y%m%d"
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    worker_logger.addHandler(handler)

    logging.getLogger(__name__).info("Worker output logging configured -> %s", log_path)
    return worker_logger
