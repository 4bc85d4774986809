"""Archive extraction into a staging directory with entry validation."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath

from selfupgrade import constants
from selfupgrade.cancellation import CancellationToken
from selfupgrade.errors import ExtractCancelled, ExtractError, UnsafeArchiveEntry, UpgradeError


_LOGGER = logging.getLogger(__name__)

__all__ = ["Extractor", "resolve_package_root"]


class Extractor:
    """Unpack tar (optionally compressed) and zip artifacts safely."""

    def extract(
        self,
        archive_path: Path,
        directory: Path,
        cancel_token: CancellationToken | None = None,
    ) -> Path:
        """Unpack ``archive_path`` into a new staging directory under ``directory``.

        The staging directory is deleted if extraction fails for any reason.
        """

        _LOGGER.info("Extracting artifact %s", archive_path)
        directory.mkdir(parents=True, exist_ok=True)
        staging_dir = Path(tempfile.mkdtemp(prefix="staging-", dir=directory))
        try:
            self._extract_into(archive_path, staging_dir, cancel_token)
            _verify_links(staging_dir)
        except BaseException:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        _LOGGER.debug("Artifact extracted to %s", staging_dir)
        return staging_dir

    def _extract_into(
        self,
        archive_path: Path,
        staging_dir: Path,
        cancel_token: CancellationToken | None,
    ) -> None:
        try:
            if zipfile.is_zipfile(archive_path):
                with zipfile.ZipFile(archive_path) as archive:
                    _ArchiveWriter(staging_dir, cancel_token).write_zip(archive)
                return
            with tarfile.open(archive_path, mode="r:*") as archive:
                _ArchiveWriter(staging_dir, cancel_token).write_tar(archive)
        except UpgradeError:
            raise
        except (tarfile.TarError, zipfile.BadZipFile, EOFError, zlib.error, OSError) as exc:
            raise ExtractError(f"Failed to extract artifact {archive_path.name}: {exc}", cause=exc) from exc


def resolve_package_root(staging_dir: Path) -> Path:
    """Return the directory holding the package contents within ``staging_dir``.

    npm tarballs place everything under ``package/``; other archives are used
    as-is.
    """

    candidate = staging_dir / constants.PACKAGE_ROOT_DIRNAME
    if candidate.is_dir():
        return candidate
    return staging_dir


def _verify_links(staging_dir: Path) -> None:
    """Reject any extracted link that resolves outside the installable root.

    Links are checked again once every entry exists because a later link can
    change what an earlier one points at.
    """

    package_root = resolve_package_root(staging_dir).resolve()
    for current, dirnames, filenames in os.walk(staging_dir):
        for name in (*dirnames, *filenames):
            path = Path(current) / name
            if not path.is_symlink():
                continue
            relative = path.relative_to(staging_dir).as_posix()
            try:
                resolved = path.resolve()
            except (OSError, RuntimeError) as exc:
                raise UnsafeArchiveEntry(relative, f"link cannot be resolved: {exc}") from exc
            if not _is_within(resolved, package_root):
                raise UnsafeArchiveEntry(relative, "link resolves outside the package root")


class _ArchiveWriter:
    def __init__(self, root: Path, cancel_token: CancellationToken | None) -> None:
        self._root = root.resolve()
        self._cancel_token = cancel_token
        self._entries = 0
        self._total_bytes = 0

    def write_tar(self, archive: tarfile.TarFile) -> None:
        for member in archive:
            self._check_cancelled()
            destination = self._destination_for(member.name)
            if destination is None:
                continue
            if member.isdir():
                destination.mkdir(parents=True, exist_ok=True)
                continue
            if member.issym() or member.islnk():
                self._write_link(member, destination, archive)
                continue
            if not member.isfile():
                raise UnsafeArchiveEntry(member.name, "special files are not allowed")
            self._account(member.name, member.size)
            source = archive.extractfile(member)
            if source is None:
                raise ExtractError(f"Archive member {member.name} has no data")
            destination.parent.mkdir(parents=True, exist_ok=True)
            with source, destination.open("wb") as target:
                shutil.copyfileobj(source, target)
            destination.chmod((member.mode & 0o777) | stat.S_IRUSR | stat.S_IWUSR)
            _LOGGER.debug("Extracted archive member %s", member.name)
        self._log_summary()

    def write_zip(self, archive: zipfile.ZipFile) -> None:
        for member in archive.infolist():
            self._check_cancelled()
            destination = self._destination_for(member.filename)
            if destination is None:
                continue
            if member.is_dir():
                destination.mkdir(parents=True, exist_ok=True)
                continue
            mode = member.external_attr >> 16
            if stat.S_ISLNK(mode):
                raise UnsafeArchiveEntry(member.filename, "symbolic links are not allowed in zip artifacts")
            self._account(member.filename, member.file_size)
            destination.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as source, destination.open("wb") as target:
                shutil.copyfileobj(source, target)
            if mode & 0o777:
                destination.chmod((mode & 0o777) | stat.S_IRUSR | stat.S_IWUSR)
            _LOGGER.debug("Extracted archive member %s", member.filename)
        self._log_summary()

    def _destination_for(self, name: str) -> Path | None:
        if not name or name in {".", "./"}:
            return None
        normalised = name.replace("\\", "/")
        posix = PurePosixPath(normalised)
        if posix.is_absolute() or normalised.startswith("/") or _has_drive(normalised):
            raise UnsafeArchiveEntry(name, "absolute paths are not allowed")
        if ".." in posix.parts:
            raise UnsafeArchiveEntry(name, "parent directory traversal is not allowed")
        destination = (self._root / Path(*posix.parts)).resolve()
        if destination == self._root:
            return None
        if not _is_within(destination, self._root):
            raise UnsafeArchiveEntry(name, "entry resolves outside the staging directory")
        return destination

    def _write_link(self, member: tarfile.TarInfo, destination: Path, archive: tarfile.TarFile) -> None:
        target = member.linkname.replace("\\", "/")
        if PurePosixPath(target).is_absolute() or _has_drive(target):
            raise UnsafeArchiveEntry(member.name, "link target is absolute")
        if member.issym():
            resolved = (destination.parent / target).resolve()
        else:
            resolved = (self._root / target).resolve()
        if not _is_within(resolved, self._root):
            raise UnsafeArchiveEntry(member.name, "link target escapes the staging directory")

        destination.parent.mkdir(parents=True, exist_ok=True)
        if member.issym():
            os.symlink(target, destination)
        else:
            if not resolved.is_file():
                raise ExtractError(f"Hard link {member.name} refers to a missing file {target}")
            shutil.copy2(resolved, destination)
        _LOGGER.debug("Extracted link %s -> %s", member.name, target)

    def _account(self, name: str, size: int) -> None:
        self._entries += 1
        if self._entries > constants.MAX_ARCHIVE_ENTRIES:
            _LOGGER.error(
                "Archive entry count %s exceeded limit %s",
                self._entries,
                constants.MAX_ARCHIVE_ENTRIES,
            )
            raise ExtractError("Artifact contained too many entries")
        if size > constants.MAX_ARCHIVE_FILE_SIZE:
            _LOGGER.error(
                "Archive member %s exceeded file size limit (%s > %s)",
                name,
                size,
                constants.MAX_ARCHIVE_FILE_SIZE,
            )
            raise ExtractError("Artifact contained an oversized file")
        self._total_bytes += size
        if self._total_bytes > constants.MAX_ARCHIVE_TOTAL_BYTES:
            _LOGGER.error(
                "Archive expanded to %s bytes which exceeds limit %s",
                self._total_bytes,
                constants.MAX_ARCHIVE_TOTAL_BYTES,
            )
            raise ExtractError("Artifact expanded beyond safe limits")

    def _check_cancelled(self) -> None:
        if self._cancel_token is not None and self._cancel_token.cancelled:
            raise ExtractCancelled("Extraction was cancelled")

    def _log_summary(self) -> None:
        _LOGGER.info("Extracted %s files totalling %s bytes", self._entries, self._total_bytes)


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def _has_drive(name: str) -> bool:
    return len(name) >= 2 and name[1] == ":" and name[0].isalpha()
