# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
"""Global test fixtures for WorkerBridge.

Provides filesystem isolation, config cache management and a stub
worker wiring for supervisor tests.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from tests.helpers.filesystem import create_test_data_dir
from tests.helpers.mocks import make_stub_resolver


# ── Fixtures ──────────────────────────────────────────────


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create an isolated WorkerBridge runtime data directory.

    - Redirects ``WORKERBRIDGE_DATA_DIR`` to a temp directory
    - Invalidates the config cache before and after the test
    """
    from workerbridge.config import invalidate_cache

    d = create_test_data_dir(tmp_path)
    monkeypatch.setenv("WORKERBRIDGE_DATA_DIR", str(d))
    invalidate_cache()

    yield d

    invalidate_cache()


@pytest.fixture
def stub_resolver():
    """Resolver mapping every environment id to the stub worker script."""
    return make_stub_resolver()


@pytest.fixture
def worker_env(tmp_path: Path) -> dict[str, str]:
    """Base environment for stub workers, with a received-lines log file."""
    env = dict(os.environ)
    env["STUB_LOG_FILE"] = str(tmp_path / "stub_received.log")
    return env


@pytest.fixture
def fast_supervisor_config():
    """Supervisor config with short grace intervals for subprocess tests."""
    from workerbridge.config import SupervisorConfig

    return SupervisorConfig(
        default_environment="envA",
        exit_grace_sec=1.0,
        terminate_grace_sec=1.0,
        restart_delay_sec=0.05,
        soft_ready_warning_sec=30.0,
    )
