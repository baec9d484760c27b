"""Tests for logging setup."""
import logging
import pytest

from backup_batcher.infra.common import logger as logger_module
from backup_batcher.infra.common.logger import get_logger, resolve_level, setup_logging


@pytest.fixture(autouse=True)
def saved_logging():
    """Restore root and AWS logger state changed by forced reconfiguration."""
    root = logging.getLogger()
    names = ("botocore", "boto3")
    saved = (root.level, list(root.handlers), logger_module._configured_level)
    saved_levels = {name: logging.getLogger(name).level for name in names}
    yield
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]
    logger_module._configured_level = saved[2]
    for name, level in saved_levels.items():
        logging.getLogger(name).setLevel(level)


def test_resolve_level():
    """Test level names are case-insensitive and numbers pass through."""
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(" Warning ") == logging.WARNING
    assert resolve_level(logging.ERROR) == logging.ERROR

    with pytest.raises(ValueError, match="Unknown log level"):
        resolve_level("loud")


def test_level_from_environment(monkeypatch):
    """Test LOG_LEVEL picks the level while AWS loggers stay at WARNING."""
    monkeypatch.setenv("LOG_LEVEL", "debug")

    level = setup_logging(force=True)

    assert level == logging.DEBUG
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("botocore").level == logging.WARNING


def test_explicit_level_wins_over_environment(monkeypatch):
    """Test a level passed by the caller ignores LOG_LEVEL."""
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    assert setup_logging("error", force=True) == logging.ERROR
    assert logging.getLogger("boto3").level == logging.ERROR


def test_unknown_environment_level_falls_back(monkeypatch, capsys):
    """Test a bad LOG_LEVEL logs at INFO and says so."""
    monkeypatch.setenv("LOG_LEVEL", "loud")

    level = setup_logging(force=True)

    assert level == logging.INFO
    assert "Ignoring unknown LOG_LEVEL='loud'" in capsys.readouterr().out


def test_setup_runs_once(monkeypatch):
    """Test later calls keep the first configuration unless forced."""
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    setup_logging("warning", force=True)

    assert setup_logging("debug") == logging.WARNING
    assert get_logger("backup_batcher.test").getEffectiveLevel() == logging.WARNING
