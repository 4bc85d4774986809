from __future__ import annotations

import errno
import os
import shutil
from pathlib import Path

import pytest

from selfupgrade import FatalUpgradeError, FileSwapper, SwapError
from tests.unit.upgrade_test_utils import (
    MANAGED_FILES,
    ORIGINAL_INSTALL,
    RELEASE_FILES,
    make_install,
    snapshot_tree,
    write_tree,
)


@pytest.fixture
def layout(tmp_path: Path) -> tuple[Path, Path, Path]:
    install_dir = make_install(tmp_path)
    staging_dir = write_tree(tmp_path / "work" / "staging", RELEASE_FILES)
    backup_dir = tmp_path / "work" / "backup"
    return install_dir, staging_dir, backup_dir


def _failing_move(should_fail, delegate=shutil.move):
    calls: list[tuple[str, str]] = []

    def move(source: str, destination: str):
        calls.append((source, destination))
        if should_fail(Path(source), Path(destination)):
            raise OSError(28, "No space left on device")
        return delegate(source, destination)

    move.calls = calls  # type: ignore[attr-defined]
    return move


def _failing_rename(should_fail):
    return _failing_move(should_fail, delegate=os.replace)


def test_swap_replaces_managed_paths_and_commits(layout) -> None:
    install_dir, staging_dir, backup_dir = layout

    FileSwapper().swap(install_dir, MANAGED_FILES, staging_dir, backup_dir)

    installed = snapshot_tree(install_dir)
    for relative, content in RELEASE_FILES.items():
        assert installed[relative] == content
    assert installed["settings.json"] == ORIGINAL_INSTALL["settings.json"]
    assert not backup_dir.exists()


def test_swap_records_touched_paths_in_journal(layout) -> None:
    install_dir, staging_dir, backup_dir = layout
    journal: list[str] = []

    FileSwapper().swap(install_dir, MANAGED_FILES, staging_dir, backup_dir, journal)

    assert journal == list(MANAGED_FILES)


def test_path_missing_from_release_is_left_absent(layout) -> None:
    install_dir, staging_dir, backup_dir = layout
    shutil.rmtree(staging_dir / "vendor")

    FileSwapper().swap(install_dir, MANAGED_FILES, staging_dir, backup_dir)

    assert not (install_dir / "vendor").exists()
    assert (install_dir / "dist" / "index.js").read_bytes() == RELEASE_FILES["dist/index.js"]


def test_new_managed_path_is_added(tmp_path: Path) -> None:
    original = {key: value for key, value in ORIGINAL_INSTALL.items() if not key.startswith("vendor/")}
    install_dir = make_install(tmp_path, original)
    staging_dir = write_tree(tmp_path / "staging", RELEASE_FILES)

    FileSwapper().swap(install_dir, MANAGED_FILES, staging_dir, tmp_path / "backup")

    assert (install_dir / "vendor" / "dep.js").read_bytes() == RELEASE_FILES["vendor/dep.js"]


@pytest.mark.parametrize("stage", ["backup", "install"])
def test_failure_on_second_path_rolls_back_everything(layout, stage: str) -> None:
    install_dir, staging_dir, backup_dir = layout
    before = snapshot_tree(install_dir)

    if stage == "backup":
        swapper = FileSwapper(rename=_failing_rename(lambda src, dst: src == install_dir / "dist"))
    else:
        swapper = FileSwapper(move=_failing_move(lambda src, dst: dst == install_dir / "dist"))

    with pytest.raises(SwapError) as excinfo:
        swapper.swap(install_dir, MANAGED_FILES, staging_dir, backup_dir)

    assert isinstance(excinfo.value.cause, OSError)
    assert excinfo.value.phase.value == "installing"
    assert snapshot_tree(install_dir) == before
    assert not backup_dir.exists()
    assert not staging_dir.exists()


def test_rollback_failure_raises_fatal_error_and_keeps_backup(layout) -> None:
    install_dir, staging_dir, backup_dir = layout

    swapper = FileSwapper(
        move=_failing_move(lambda src, dst: dst == install_dir / "dist"),
        rename=_failing_rename(lambda src, dst: src == backup_dir / "vendor"),
    )

    with pytest.raises(FatalUpgradeError) as excinfo:
        swapper.swap(install_dir, MANAGED_FILES, staging_dir, backup_dir)

    error = excinfo.value
    assert not isinstance(error, SwapError)
    assert error.retryable is False
    assert error.backup_dir == backup_dir
    assert isinstance(error.rollback_error, OSError)
    assert (backup_dir / "vendor" / "dep.js").read_bytes() == ORIGINAL_INSTALL["vendor/dep.js"]


def test_backup_directory_creation_failure_touches_nothing(layout) -> None:
    install_dir, staging_dir, backup_dir = layout
    backup_dir.mkdir(parents=True)
    before = snapshot_tree(install_dir)

    with pytest.raises(SwapError):
        FileSwapper().swap(install_dir, MANAGED_FILES, staging_dir, backup_dir)

    assert snapshot_tree(install_dir) == before


def test_interrupted_install_move_keeps_originals_intact(layout) -> None:
    install_dir, staging_dir, backup_dir = layout
    before = snapshot_tree(install_dir)

    def move(source: str, destination: str):
        # A cross-filesystem move that copied, started deleting its source, then died.
        if Path(destination) == install_dir / "dist":
            shutil.copytree(source, destination)
            (Path(source) / "chunk-1.js").unlink()
            raise PermissionError(13, "Permission denied")
        return shutil.move(source, destination)

    with pytest.raises(SwapError) as excinfo:
        FileSwapper(move=move).swap(install_dir, MANAGED_FILES, staging_dir, backup_dir)

    assert isinstance(excinfo.value.cause, PermissionError)
    assert snapshot_tree(install_dir) == before
    assert not backup_dir.exists()


def test_originals_are_only_ever_renamed_into_the_backup(layout) -> None:
    install_dir, staging_dir, backup_dir = layout
    before = snapshot_tree(install_dir)
    move = _failing_move(lambda src, dst: False)

    def rename(source: str, destination: str):
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    with pytest.raises(SwapError) as excinfo:
        FileSwapper(move=move, rename=rename).swap(install_dir, MANAGED_FILES, staging_dir, backup_dir)

    assert excinfo.value.cause.errno == errno.EXDEV
    assert move.calls == []
    assert snapshot_tree(install_dir) == before
