"""Tests for the command line entry point."""

import asyncio
import json
import logging
import logging.handlers

import pytest
import yaml

from pulsecore import main as cli
from pulsecore.core.config import LoggingConfig
from pulsecore.core.database import CSV_HEADER
from pulsecore.core.logging_setup import setup_logging
from pulsecore.diagnostics.ping_probe import PingRunner


def _pulsecore_handlers():
    return [h for h in logging.getLogger().handlers if getattr(h, "_pulsecore", False)]


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    level = root.level
    for handler in _pulsecore_handlers():
        root.removeHandler(handler)
    yield
    for handler in _pulsecore_handlers():
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)


class FakeRunner(PingRunner):
    async def run(self, count, target, cancel=None):
        return "time=5.0 ms\ntime=7.0 ms\n0% packet loss"


def test_export_command_writes_csv(tmp_path):
    db = tmp_path / "h.db"
    out = tmp_path / "out.csv"

    code = asyncio.run(cli.main(["-c", str(tmp_path / "none.yaml"), "--db", str(db), "--export", str(out)]))

    assert code == 0
    assert out.read_text().splitlines() == [CSV_HEADER]


def test_ping_command_prints_result(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(cli, "SubprocessPingRunner", lambda *args: FakeRunner())

    code = asyncio.run(cli.main(["-c", str(tmp_path / "none.yaml"), "--ping", "1.1.1.1", "--count", "2"]))

    assert code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["avg_ms"] == 6.0
    assert result["samples"] == [5.0, 7.0]


def test_ping_command_reports_failure(tmp_path):
    code = asyncio.run(cli.main(["-c", str(tmp_path / "none.yaml"), "--ping=-bad"]))
    assert code == 1


def test_generate_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert asyncio.run(cli.main(["--generate-config"])) == 0

    data = yaml.safe_load((tmp_path / "config" / "config.yaml").read_text())
    assert data["telemetry"]["prune_every_ticks"] == 180



def test_setup_logging_is_idempotent(tmp_path):
    config = LoggingConfig(level="WARNING", file_path=str(tmp_path / "logs" / "pulsecore.log"))

    setup_logging(config)
    setup_logging(config)

    handlers = _pulsecore_handlers()
    assert logging.getLogger().level == logging.WARNING
    assert len(handlers) == 2
    assert sum(isinstance(h, logging.handlers.RotatingFileHandler) for h in handlers) == 1
    assert (tmp_path / "logs").is_dir()


def test_verbose_forces_debug():
    setup_logging(LoggingConfig(level="ERROR"), verbose=True)
    assert logging.getLogger().level == logging.DEBUG
