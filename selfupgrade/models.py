"""Data models shared across the upgrade engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class UpgradePhase(str, Enum):
    """Lifecycle stage reported through status events."""

    CHECKING = "checking"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    INSTALLING = "installing"
    DONE = "done"
    ERROR = "error"


class OrchestratorState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    UPGRADING = "upgrading"


@dataclass(frozen=True)
class RegistryMetadata:
    """Latest published version of a package and where to fetch it."""

    version: str
    artifact_url: str
    integrity: str | None = None


@dataclass(frozen=True)
class UpgradeCheckResult:
    """Outcome of comparing the installed version against the registry."""

    current_version: str
    latest_version: str
    has_update: bool
    artifact_url: str | None = None
    integrity: str | None = None


@dataclass(frozen=True)
class StatusEvent:
    """Progress notification delivered to status subscribers."""

    phase: UpgradePhase
    message: str | None = None
    error: BaseException | None = None


@dataclass
class UpgradeSession:
    """Mutable bookkeeping for a single ``upgrade()`` call.

    ``root`` holds downloads and staging.  ``backup_root`` sits next to the
    install directory so originals are parked on the same filesystem; it is
    the same directory as ``root`` unless a separate temp root is configured.
    """

    session_id: str
    root: Path
    backup_root: Path
    phase: UpgradePhase = UpgradePhase.CHECKING
    archive_path: Path | None = None
    staging_dir: Path | None = None
    swapped: list[str] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def backup_dir(self) -> Path:
        return self.backup_root / "backup"

    @property
    def download_dir(self) -> Path:
        return self.root / "download"

    @property
    def extract_dir(self) -> Path:
        return self.root / "extract"


__all__ = [
    "OrchestratorState",
    "RegistryMetadata",
    "StatusEvent",
    "UpgradeCheckResult",
    "UpgradePhase",
    "UpgradeSession",
]
