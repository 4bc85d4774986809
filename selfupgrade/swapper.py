"""Per-path replacement of managed install paths with rollback support."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from selfupgrade.errors import FatalUpgradeError, SwapError


_LOGGER = logging.getLogger(__name__)

MoveFunc = Callable[[str, str], object]


@dataclass
class _SwapRecord:
    relative: str
    backed_up: bool = False
    install_attempted: bool = False
    installed: bool = False


class FileSwapper:
    """Replace managed paths in the install directory with staged content.

    Every original is parked in ``backup_dir`` before anything new is moved in,
    so a failure at any point can be undone by moving the originals back.  The
    swap never observes cancellation: once started it either commits or rolls
    back.

    ``backup_dir`` must live on the install directory's filesystem.  Originals
    are parked and restored with ``rename`` (atomic, never copies), while staged
    content is installed with ``move`` because staging may sit elsewhere.
    """

    def __init__(self, *, move: MoveFunc = shutil.move, rename: MoveFunc = os.replace) -> None:
        self._move_impl = move
        self._rename_impl = rename

    def swap(
        self,
        install_dir: Path,
        managed_paths: Sequence[str],
        staging_dir: Path,
        backup_dir: Path,
        journal: list[str] | None = None,
    ) -> Path:
        try:
            backup_dir.mkdir(parents=True)
        except OSError as exc:
            raise SwapError(f"Unable to create backup directory {backup_dir}: {exc}", cause=exc) from exc

        records: dict[str, _SwapRecord] = {}
        try:
            for relative in managed_paths:
                current = install_dir / relative
                if not os.path.lexists(current):
                    _LOGGER.debug("Managed path %s is not installed; nothing to back up", relative)
                    continue
                record = records.setdefault(relative, _SwapRecord(relative))
                if journal is not None:
                    journal.append(relative)
                self._rename(current, backup_dir / relative)
                record.backed_up = True

            for relative in managed_paths:
                staged = staging_dir / relative
                if not os.path.lexists(staged):
                    _LOGGER.info("Release does not ship %s; leaving it absent", relative)
                    continue
                record = records.setdefault(relative, _SwapRecord(relative))
                if journal is not None and relative not in journal:
                    journal.append(relative)
                record.install_attempted = True
                self._move(staged, install_dir / relative)
                record.installed = True
        except Exception as exc:
            _LOGGER.error("Swap failed; rolling back %s managed path(s): %s", len(records), exc)
            self._rollback(install_dir, backup_dir, staging_dir, list(records.values()), exc)
            raise SwapError(f"Failed to install upgraded files: {exc}", cause=exc) from exc

        _LOGGER.info("Swap committed for %s managed path(s)", len(records))
        _discard_tree(backup_dir)
        return backup_dir

    def _move(self, source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        _LOGGER.debug("Moving %s -> %s", source, destination)
        self._move_impl(str(source), str(destination))

    def _rename(self, source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        _LOGGER.debug("Renaming %s -> %s", source, destination)
        self._rename_impl(str(source), str(destination))

    def _rollback(
        self,
        install_dir: Path,
        backup_dir: Path,
        staging_dir: Path,
        records: list[_SwapRecord],
        cause: BaseException,
    ) -> None:
        rollback_error: BaseException | None = None
        for record in reversed(records):
            target = install_dir / record.relative
            try:
                if record.install_attempted and os.path.lexists(target):
                    _remove_path(target)
                if record.backed_up:
                    self._rename(backup_dir / record.relative, target)
                _LOGGER.info("Restored %s from backup", record.relative)
            except Exception as exc:
                _LOGGER.critical("Failed to restore %s during rollback: %s", record.relative, exc)
                if rollback_error is None:
                    rollback_error = exc

        shutil.rmtree(staging_dir, ignore_errors=True)

        if rollback_error is not None:
            _LOGGER.critical(
                "Rollback incomplete; original files remain in %s", backup_dir
            )
            raise FatalUpgradeError(
                f"Rollback failed after swap error ({cause}); manual recovery required "
                f"from {backup_dir}",
                cause=cause,
                rollback_error=rollback_error,
                backup_dir=backup_dir,
            ) from rollback_error

        _discard_tree(backup_dir)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _discard_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.warning("Unable to remove %s during cleanup", path, exc_info=True)


__all__ = ["FileSwapper"]
