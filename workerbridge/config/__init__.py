# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from workerbridge.config.models import (
    ResolverConfig,
    ServerConfig,
    SupervisorConfig,
    SystemConfig,
    WorkerBridgeConfig,
    get_config_path,
    invalidate_cache,
    load_config,
    resolve_model_environment,
    save_config,
)

__all__ = [
    "ResolverConfig",
    "ServerConfig",
    "SupervisorConfig",
    "SystemConfig",
    "WorkerBridgeConfig",
    "get_config_path",
    "invalidate_cache",
    "load_config",
    "resolve_model_environment",
    "save_config",
]
