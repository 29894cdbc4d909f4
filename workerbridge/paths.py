# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of WorkerBridge, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Centralized path resolution for WorkerBridge.

All modules import directory paths from here instead of computing them ad-hoc.
Runtime data directory can be overridden via WORKERBRIDGE_DATA_DIR environment variable.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: where the code lives (immutable, git-tracked)
PROJECT_DIR = Path(__file__).resolve().parent.parent

# Default runtime data directory
_DEFAULT_DATA_DIR = Path.home() / ".workerbridge"


def get_data_dir() -> Path:
    """Return the runtime data directory, respecting WORKERBRIDGE_DATA_DIR env var."""
    env_val = os.environ.get("WORKERBRIDGE_DATA_DIR")
    if env_val:
        return Path(env_val).expanduser().resolve()
    return _DEFAULT_DATA_DIR


def get_log_dir() -> Path:
    return get_data_dir() / "logs"


def get_worker_log_dir() -> Path:
    """Directory holding the worker's stderr / stray stdout logs."""
    return get_log_dir() / "worker"
