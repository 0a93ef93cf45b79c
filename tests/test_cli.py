"""Tests for the command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from hookrelay import __version__
from hookrelay.cli import app

runner = CliRunner()


def _write_config(tmp_path: Path, body: str = "") -> Path:
    cfg = tmp_path / "hookrelay.toml"
    cfg.write_text('bans_path = "bans.json"\n' + body)
    return cfg


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_bans_empty(tmp_path: Path):
    cfg = _write_config(tmp_path)
    result = runner.invoke(app, ["bans", "--config", str(cfg)])
    assert result.exit_code == 0
    assert "no banned hooks" in result.output


def test_bans_lists_persisted_ids(tmp_path: Path):
    cfg = _write_config(tmp_path)
    (tmp_path / "bans.json").write_text('["111", "222"]')
    result = runner.invoke(app, ["bans", "--config", str(cfg)])
    assert result.exit_code == 0
    assert result.output.split() == ["111", "222"]


def test_config_masks_tracking_id(tmp_path: Path):
    cfg = _write_config(tmp_path, '[analytics]\nga_id = "UA-123-1"\n')
    result = runner.invoke(app, ["config", "--config", str(cfg)])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["analytics"]["ga_id"] == "***"
    assert data["limits"]["max_queue_size"] == 100
    assert data["config_path"] == str(cfg)


def test_invalid_config_exits_1(tmp_path: Path):
    cfg = _write_config(tmp_path, "[server]\nport = 0\n")
    result = runner.invoke(app, ["config", "--config", str(cfg)])
    assert result.exit_code == 1
