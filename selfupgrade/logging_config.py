"""Log file setup for upgrade runs.

An upgrade that goes wrong usually has to be diagnosed after the fact, so every
run appends to a log file.  ``SELFUPGRADE_LOG_FILE`` names the file directly;
otherwise ``upgrade.log`` is created in ``SELFUPGRADE_LOG_DIR`` or under
``~/.selfupgrade/logs``.  Paths inside the user's home directory are written
with the home part replaced by a placeholder.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

_LOG_FILE_ENV = "SELFUPGRADE_LOG_FILE"
_LOG_DIR_ENV = "SELFUPGRADE_LOG_DIR"
_LOG_FILENAME = "upgrade.log"
_HANDLER_TAG = "_selfupgrade_logging_handler"
_RECORD_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

USER_HOME_PLACEHOLDER = "<user_home>"


class LogVerbosity(str, Enum):
    """How much of an upgrade run ends up in the log file."""

    DISABLED = "disabled"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    VERBOSE = "verbose"

    @property
    def level(self) -> int:
        if self is LogVerbosity.DISABLED:
            return logging.CRITICAL + 1
        if self is LogVerbosity.VERBOSE:
            return logging.DEBUG
        return getattr(logging, self.name)


@dataclass
class _LoggingState:
    verbosity: LogVerbosity = LogVerbosity.INFO
    log_path: Path | None = None
    file_handler: logging.FileHandler | None = None


_STATE = _LoggingState()


class _HomeRedactingFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(_RECORD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        homes = {os.path.normpath(str(Path.home()))}
        for env_var in ("HOME", "USERPROFILE"):
            if os.environ.get(env_var):
                homes.add(os.path.normpath(os.path.expanduser(os.environ[env_var])))
        homes -= {os.sep, ".", ""}
        flags = re.IGNORECASE if os.name == "nt" else 0
        # Longest first so nested home paths are replaced whole.
        self._homes = [re.compile(re.escape(home), flags) for home in sorted(homes, key=len, reverse=True)]

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        for home in self._homes:
            text = home.sub(USER_HOME_PLACEHOLDER, text)
        return text


def ensure_logging() -> Path:
    """Attach the upgrade log handlers to the root logger and return the log path.

    Safe to call repeatedly; handlers are only installed the first time.
    """

    if _STATE.log_path is not None:
        return _STATE.log_path

    log_path = _log_path_from_environment()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = _HomeRedactingFormatter()
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(_STATE.verbosity.level)
    _attach(root, file_handler, formatter)

    if _stderr_is_interactive() and not _has_stderr_handler(root):
        console = logging.StreamHandler()
        console.setLevel(logging.INFO)
        _attach(root, console, formatter)

    _STATE.log_path = log_path
    _STATE.file_handler = file_handler
    logging.getLogger(__name__).info(
        "Upgrade log at %s (verbosity=%s)", log_path, _STATE.verbosity.value
    )
    return log_path


def set_log_verbosity(verbosity: LogVerbosity | str) -> None:
    """Change what reaches the log file; accepts a :class:`LogVerbosity` or its name."""

    if not isinstance(verbosity, LogVerbosity):
        try:
            verbosity = LogVerbosity(str(verbosity).lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported log verbosity: {verbosity}") from exc

    _STATE.verbosity = verbosity
    ensure_logging()
    if _STATE.file_handler is not None:
        _STATE.file_handler.setLevel(verbosity.level)
    logging.getLogger(__name__).debug("Log verbosity is now %s", verbosity.value)


def get_log_verbosity() -> LogVerbosity:
    return _STATE.verbosity


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_TAG, True)
    root.addHandler(handler)


def _log_path_from_environment() -> Path:
    explicit = os.environ.get(_LOG_FILE_ENV)
    if explicit:
        return Path(explicit).expanduser()
    directory = os.environ.get(_LOG_DIR_ENV)
    if directory:
        return Path(directory).expanduser() / _LOG_FILENAME
    return Path.home() / ".selfupgrade" / "logs" / _LOG_FILENAME


def _stderr_is_interactive() -> bool:
    try:
        return bool(sys.stderr and sys.stderr.isatty())
    except (AttributeError, OSError, ValueError):
        return False


def _has_stderr_handler(root: logging.Logger) -> bool:
    return any(
        isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stderr
        for handler in root.handlers
    )


def _reset_for_tests() -> None:
    """Detach and close the handlers added by :func:`ensure_logging`."""

    global _STATE

    root = logging.getLogger()
    for handler in [handler for handler in root.handlers if getattr(handler, _HANDLER_TAG, False)]:
        root.removeHandler(handler)
        handler.close()
    _STATE = _LoggingState()


__all__ = [
    "LogVerbosity",
    "ensure_logging",
    "get_log_verbosity",
    "set_log_verbosity",
]
