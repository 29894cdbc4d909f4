"""Unit tests for cli/commands/send.py."""
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from cli.commands.send import _parse_data, cmd_send
from workerbridge.exceptions import EnvironmentNotFoundError


def _args(**kwargs) -> argparse.Namespace:
    defaults = {"type": "get_models", "data": None, "environment": None, "timeout": None}
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


class TestParseData:
    def test_none(self):
        assert _parse_data(None) is None

    def test_object(self):
        assert _parse_data('{"model": "retinaface"}') == {"model": "retinaface"}

    def test_not_an_object(self):
        with pytest.raises(ValueError):
            _parse_data("[1, 2]")

    def test_not_json(self):
        with pytest.raises(ValueError):
            _parse_data("{nope")


class TestCmdSend:
    def test_prints_response(self, data_dir: Path, capsys):
        with patch(
            "cli.commands.send._send_once", new=AsyncMock(return_value={"models": ["a"]}),
        ) as mock_send:
            cmd_send(_args())

        assert json.loads(capsys.readouterr().out) == {"models": ["a"]}
        command, _config, timeout = mock_send.await_args.args
        assert command.type == "get_models"
        assert command.environment is None
        assert timeout == 5.0

    def test_model_rule_selects_environment(self, data_dir: Path):
        with patch("cli.commands.send._send_once", new=AsyncMock(return_value=None)) as mock_send:
            cmd_send(_args(type="detect", data='{"model": "RetinaFace"}', timeout=1.0))

        command, _config, timeout = mock_send.await_args.args
        assert command.environment == "retinaface"
        assert timeout == 1.0

    def test_explicit_environment_wins(self, data_dir: Path):
        with patch("cli.commands.send._send_once", new=AsyncMock(return_value=None)) as mock_send:
            cmd_send(_args(data='{"model": "retinaface"}', environment="envB"))

        assert mock_send.await_args.args[0].environment == "envB"

    def test_bad_data_exits_2(self, data_dir: Path):
        with pytest.raises(SystemExit) as exc_info:
            cmd_send(_args(data="[]"))
        assert exc_info.value.code == 2

    def test_bridge_error_exits_1(self, data_dir: Path, capsys):
        failing = AsyncMock(side_effect=EnvironmentNotFoundError("envZ"))
        with patch("cli.commands.send._send_once", new=failing), pytest.raises(SystemExit) as exc_info:
            cmd_send(_args(environment="envZ"))

        assert exc_info.value.code == 1
        assert "configuration" in capsys.readouterr().err

    def test_timeout_exits_1(self, data_dir: Path, capsys):
        with patch(
            "cli.commands.send._send_once", new=AsyncMock(side_effect=TimeoutError()),
        ), pytest.raises(SystemExit) as exc_info:
            cmd_send(_args(timeout=0.5))

        assert exc_info.value.code == 1
        assert "0.5s" in capsys.readouterr().err
