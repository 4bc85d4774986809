"""Exception hierarchy raised by the upgrade engine."""

from __future__ import annotations

from pathlib import Path

from selfupgrade.models import UpgradePhase


class UpgradeError(RuntimeError):
    """Base class for every failure surfaced by the upgrade engine.

    Each error records the :class:`UpgradePhase` in which it occurred and the
    underlying cause (when there is one) so callers can report or escalate
    without inspecting the exception chain.
    """

    phase: UpgradePhase = UpgradePhase.CHECKING
    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        phase: UpgradePhase | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        if phase is not None:
            self.phase = phase


class ConfigError(ValueError):
    """Raised when the install configuration is incomplete or invalid."""


class InvalidVersionFormat(UpgradeError, ValueError):
    """Raised when a version identifier is not valid semantic versioning."""


class ConcurrentUpgrade(UpgradeError):
    """Raised when ``upgrade()`` is called while another session is active."""


class RegistryError(UpgradeError):
    """Base class for registry lookup failures."""


class RegistryUnreachable(RegistryError):
    pass


class PackageNotFound(RegistryError):
    pass


class MalformedMetadata(RegistryError):
    pass


class DownloadError(UpgradeError):
    phase = UpgradePhase.DOWNLOADING


class DownloadIncomplete(DownloadError):
    pass


class DownloadCancelled(DownloadError):
    pass


class IntegrityMismatch(DownloadError):
    """Raised when the downloaded artifact does not match its published digest."""


class ExtractError(UpgradeError):
    phase = UpgradePhase.EXTRACTING


class UnsafeArchiveEntry(ExtractError):
    """Raised when an archive entry would land outside the staging directory."""

    def __init__(self, entry: str, reason: str) -> None:
        super().__init__(f"Unsafe archive entry {entry!r}: {reason}")
        self.entry = entry


class ExtractCancelled(ExtractError):
    pass


class SwapError(UpgradeError):
    """Raised after a failed swap has been rolled back successfully."""

    phase = UpgradePhase.INSTALLING


class FatalUpgradeError(UpgradeError):
    """Raised when rolling back a failed swap also fails.

    The install directory may be inconsistent.  ``backup_dir`` is left on disk
    so the original files can be recovered by hand.
    """

    phase = UpgradePhase.INSTALLING
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        rollback_error: BaseException | None = None,
        backup_dir: Path | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.rollback_error = rollback_error
        self.backup_dir = backup_dir


__all__ = [
    "ConcurrentUpgrade",
    "ConfigError",
    "DownloadCancelled",
    "DownloadError",
    "DownloadIncomplete",
    "ExtractCancelled",
    "ExtractError",
    "FatalUpgradeError",
    "IntegrityMismatch",
    "InvalidVersionFormat",
    "MalformedMetadata",
    "PackageNotFound",
    "RegistryError",
    "RegistryUnreachable",
    "SwapError",
    "UnsafeArchiveEntry",
    "UpgradeError",
]
