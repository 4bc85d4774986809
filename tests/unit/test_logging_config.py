from __future__ import annotations

import logging
from pathlib import Path

import pytest

from selfupgrade import logging_config


def _flush_managed_handlers() -> None:
    for handler in logging.getLogger().handlers:
        if getattr(handler, logging_config._HANDLER_TAG, False):  # type: ignore[attr-defined]
            handler.flush()


@pytest.fixture(autouse=True)
def reset_logging():
    logging_config._reset_for_tests()
    try:
        yield
    finally:
        logging_config._reset_for_tests()


def test_logging_writes_to_configured_directory(tmp_path, monkeypatch):
    monkeypatch.setenv("SELFUPGRADE_LOG_DIR", str(tmp_path))

    log_path = logging_config.ensure_logging()
    assert log_path == tmp_path / "upgrade.log"
    assert logging_config.get_log_verbosity() == logging_config.LogVerbosity.INFO
    logging.getLogger("selfupgrade.swapper").debug("moving files")
    logging.getLogger("selfupgrade.swapper").error("rollback failed")
    _flush_managed_handlers()

    contents = log_path.read_text(encoding="utf-8")
    assert "moving files" not in contents
    assert "rollback failed" in contents


def test_log_file_variable_wins_over_directory(tmp_path, monkeypatch):
    target = tmp_path / "custom" / "run.log"
    monkeypatch.setenv("SELFUPGRADE_LOG_DIR", str(tmp_path / "ignored"))
    monkeypatch.setenv("SELFUPGRADE_LOG_FILE", str(target))

    assert logging_config.ensure_logging() == target
    assert target.exists()


def test_logging_configuration_is_idempotent(tmp_path, monkeypatch):
    monkeypatch.setenv("SELFUPGRADE_LOG_DIR", str(tmp_path))

    first_path = logging_config.ensure_logging()
    second_path = logging_config.ensure_logging()

    assert first_path == second_path
    managed_handlers = [
        handler
        for handler in logging.getLogger().handlers
        if getattr(handler, logging_config._HANDLER_TAG, False)  # type: ignore[attr-defined]
    ]

    # Only the file handler should be installed during tests (stderr is not a tty).
    assert len(managed_handlers) == 1
    assert isinstance(managed_handlers[0], logging.FileHandler)
    assert Path(managed_handlers[0].baseFilename) == first_path


def test_can_raise_verbosity_from_text(tmp_path, monkeypatch):
    monkeypatch.setenv("SELFUPGRADE_LOG_DIR", str(tmp_path))

    log_path = logging_config.ensure_logging()
    logging_config.set_log_verbosity("VERBOSE")
    logging.getLogger("tests.logging").debug("debug message")
    logging.getLogger("tests.logging").info("info message")
    _flush_managed_handlers()

    contents = log_path.read_text(encoding="utf-8")
    assert "debug message" in contents
    assert "info message" in contents
    assert logging_config.get_log_verbosity() == logging_config.LogVerbosity.VERBOSE


def test_unknown_verbosity_is_rejected():
    with pytest.raises(ValueError, match="Unsupported log verbosity"):
        logging_config.set_log_verbosity("chatty")


def test_disabling_file_logging_suppresses_output(tmp_path, monkeypatch):
    monkeypatch.setenv("SELFUPGRADE_LOG_DIR", str(tmp_path))

    log_path = logging_config.ensure_logging()
    logging_config.set_log_verbosity(logging_config.LogVerbosity.DISABLED)
    _flush_managed_handlers()
    initial_size = log_path.stat().st_size

    logging.getLogger("tests.logging").critical("critical message")
    _flush_managed_handlers()

    assert log_path.stat().st_size == initial_size


@pytest.mark.skipif(str(Path.home()) in {"/", "."}, reason="home directory is the filesystem root")
def test_home_directory_is_redacted(tmp_path, monkeypatch):
    monkeypatch.setenv("SELFUPGRADE_LOG_DIR", str(tmp_path))

    log_path = logging_config.ensure_logging()
    logging.getLogger("tests.logging").warning("install at %s", Path.home() / "apps" / "tool")
    _flush_managed_handlers()

    contents = log_path.read_text(encoding="utf-8")
    assert f"{logging_config.USER_HOME_PLACEHOLDER}/apps" in contents.replace("\\", "/")
