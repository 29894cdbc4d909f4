"""Tests for workerbridge/paths.py."""
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from pathlib import Path

import pytest

from workerbridge import paths


class TestDataDir:
    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("WORKERBRIDGE_DATA_DIR", str(tmp_path / "data"))
        assert paths.get_data_dir() == (tmp_path / "data").resolve()
        assert paths.get_log_dir() == (tmp_path / "data").resolve() / "logs"
        assert paths.get_worker_log_dir() == (tmp_path / "data").resolve() / "logs" / "worker"

    def test_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("WORKERBRIDGE_DATA_DIR", raising=False)
        assert paths.get_data_dir() == Path.home() / ".workerbridge"

    def test_project_dir_contains_package(self):
        assert (paths.PROJECT_DIR / "workerbridge" / "paths.py").is_file()
