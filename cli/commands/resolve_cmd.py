# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import json
import sys


def cmd_resolve(args: argparse.Namespace) -> None:
    """Print the descriptor an environment id resolves to."""
    from workerbridge.config import load_config
    from workerbridge.exceptions import EnvironmentNotFoundError
    from workerbridge.supervisor import EnvironmentResolver, detect_packaged

    config = load_config()
    resolver = EnvironmentResolver(config.resolver)
    packaged = detect_packaged(config.resolver) if args.packaged is None else args.packaged

    try:
        descriptor = resolver.resolve(args.environment, packaged, args.platform)
    except EnvironmentNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        for path in e.tried:
            print(f"  tried: {path}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(descriptor.to_dict(), ensure_ascii=False, indent=2))
