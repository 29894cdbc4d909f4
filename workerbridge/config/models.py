# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of WorkerBridge, licensed under Apache-2.0.
# See LICENSE for the full license text.

"""Central configuration module for WorkerBridge.

Defines Pydantic models for the unified config.json and provides
load / save / resolve helpers with a module-level singleton cache.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError, model_validator

from workerbridge.exceptions import ConfigValidationError

logger = logging.getLogger("workerbridge.config")

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class SystemConfig(BaseModel):
    log_level: str = "INFO"
    json_log_file: bool = True


class ResolverConfig(BaseModel):
    """On-disk layout used to locate worker interpreters and scripts."""

    packaged: bool | None = None  # None = auto-detect
    resources_root: str | None = None  # packaged mode: bundle resources dir
    project_dir: str | None = None  # development mode: source checkout
    dist_folder: str = "pythondist"
    worker_folder: str = "python"
    entry_script: str = "subprocess_api.py"
    launcher_script: str = "multi_env_launcher.py"
    standalone_folder: str = "python-standalone"
    standalone_python_names: list[str] = ["python3.10", "python3"]
    env_folder_suffix: str = "-env"
    conda_env_prefix: str = "workerbridge-"
    conda_shared_env: str = "workerbridge-shared"
    conda_search_dirs: list[str] = []  # tried before the well-known locations


class SupervisorConfig(BaseModel):
    """Worker lifecycle timings and spawn settings."""

    default_environment: str = "default"
    soft_ready_warning_sec: float = 30.0  # warn once, keep waiting
    exit_grace_sec: float = 1.0  # after the "exit" command
    terminate_grace_sec: float = 1.0  # after SIGTERM, before SIGKILL
    restart_delay_sec: float = 1.0  # between retiring and respawning
    environment_variable: str = "WORKER_ENVIRONMENT"
    stream_limit_bytes: int = 16 * 1024 * 1024  # default asyncio limit is 64KB
    model_environments: dict[str, str] = {}  # model-name substring → environment id

    @model_validator(mode="after")
    def _validate_intervals(self) -> SupervisorConfig:
        for name in (
            "soft_ready_warning_sec",
            "exit_grace_sec",
            "terminate_grace_sec",
            "restart_delay_sec",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.stream_limit_bytes <= 0:
            raise ValueError("stream_limit_bytes must be positive")
        return self


class ServerConfig(BaseModel):
    """Boundary server configuration."""

    host: str = "127.0.0.1"
    port: int = 18600
    command_timeout_sec: float = 300.0
    subscriber_queue_size: int = 100

    @model_validator(mode="after")
    def _validate_limits(self) -> ServerConfig:
        if self.command_timeout_sec <= 0:
            raise ValueError("command_timeout_sec must be positive")
        if self.subscriber_queue_size <= 0:
            raise ValueError("subscriber_queue_size must be positive")
        return self


class WorkerBridgeConfig(BaseModel):
    version: int = 1
    system: SystemConfig = SystemConfig()
    resolver: ResolverConfig = ResolverConfig()
    supervisor: SupervisorConfig = SupervisorConfig()
    server: ServerConfig = ServerConfig()


# ---------------------------------------------------------------------------
# Singleton cache
# ---------------------------------------------------------------------------

_config: WorkerBridgeConfig | None = None
_config_path: Path | None = None
_config_mtime: float = 0.0


def invalidate_cache() -> None:
    """Reset the module-level singleton cache."""
    global _config, _config_path, _config_mtime
    _config = None
    _config_path = None
    _config_mtime = 0.0


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def get_config_path(data_dir: Path | None = None) -> Path:
    """Return the path to config.json inside *data_dir*.

    If *data_dir* is not given, it is resolved via ``workerbridge.paths.get_data_dir``
    (imported lazily to avoid circular imports).
    """
    if data_dir is None:
        from workerbridge.paths import get_data_dir

        data_dir = get_data_dir()
    return data_dir / "config.json"


# ---------------------------------------------------------------------------
# Load / Save
# ---------------------------------------------------------------------------


def load_config(path: Path | None = None) -> WorkerBridgeConfig:
    """Load configuration from disk, returning cached instance when possible.

    If *path* is ``None``, :func:`get_config_path` determines the location.
    When the file does not exist the default configuration is returned.

    The cache is automatically invalidated when the file's mtime changes,
    so manual edits are picked up without a restart.
    """
    global _config, _config_path, _config_mtime

    if path is None:
        path = get_config_path()

    if _config is not None and _config_path == path:
        try:
            disk_mtime = path.stat().st_mtime
        except OSError:
            disk_mtime = 0.0
        if disk_mtime == _config_mtime:
            return _config
        logger.debug("Config file changed on disk (mtime %.3f → %.3f); reloading", _config_mtime, disk_mtime)

    if path.is_file():
        logger.debug("Loading config from %s", path)
        try:
            raw_text = path.read_text(encoding="utf-8")
            data: dict[str, Any] = json.loads(raw_text)
            config = WorkerBridgeConfig.model_validate(data)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse %s: %s", path, exc)
            raise ConfigValidationError(f"Invalid JSON in {path}: {exc}") from exc
        except ValidationError as exc:
            logger.error("Invalid configuration in %s: %s", path, exc)
            raise ConfigValidationError(f"Invalid configuration in {path}: {exc}") from exc
        except Exception as exc:
            logger.error("Failed to load config from %s: %s", path, exc)
            raise
    else:
        logger.info("Config file not found at %s; using defaults", path)
        config = WorkerBridgeConfig()

    _config = config
    _config_path = path
    try:
        _config_mtime = path.stat().st_mtime
    except OSError:
        _config_mtime = 0.0
    return config


def save_config(config: WorkerBridgeConfig, path: Path | None = None) -> None:
    """Persist *config* to disk as pretty-printed JSON (mode 0o600).

    Updates the module-level singleton cache so subsequent :func:`load_config`
    calls return the freshly saved config.
    """
    global _config, _config_path, _config_mtime

    if path is None:
        path = get_config_path()

    path.parent.mkdir(parents=True, exist_ok=True)

    payload = config.model_dump(mode="json")
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    path.write_text(text, encoding="utf-8")
    os.chmod(path, 0o600)

    logger.debug("Config saved to %s", path)

    _config = config
    _config_path = path
    try:
        _config_mtime = path.stat().st_mtime
    except OSError:
        _config_mtime = 0.0


# ---------------------------------------------------------------------------
# Resolution helpers
# ---------------------------------------------------------------------------


def resolve_model_environment(
    config: SupervisorConfig,
    model: str | None,
) -> str | None:
    """Map a model name to an environment id via ``model_environments``.

    Matching is a case-insensitive substring test, checked in config order.
    Returns ``None`` when no rule matches.
    """
    if not model:
        return None
    lowered = model.lower()
    for needle, environment_id in config.model_environments.items():
        if needle.lower() in lowered:
            return environment_id
    return None
