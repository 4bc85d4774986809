"""Public API for the self-upgrade engine."""

from __future__ import annotations

from selfupgrade.archive import Extractor, resolve_package_root
from selfupgrade.cancellation import CancellationToken
from selfupgrade.config import InstallConfig, load_install_config
from selfupgrade.constants import DEFAULT_CHANNEL, DEFAULT_REGISTRY
from selfupgrade.downloader import Downloader
from selfupgrade.errors import (
    ConcurrentUpgrade,
    ConfigError,
    DownloadCancelled,
    DownloadError,
    DownloadIncomplete,
    ExtractCancelled,
    ExtractError,
    FatalUpgradeError,
    IntegrityMismatch,
    InvalidVersionFormat,
    MalformedMetadata,
    PackageNotFound,
    RegistryError,
    RegistryUnreachable,
    SwapError,
    UnsafeArchiveEntry,
    UpgradeError,
)
from selfupgrade.models import (
    OrchestratorState,
    RegistryMetadata,
    StatusEvent,
    UpgradeCheckResult,
    UpgradePhase,
)
from selfupgrade.orchestrator import UpgradeOrchestrator
from selfupgrade.registry import RegistryClient
from selfupgrade.status import StatusEmitter
from selfupgrade.swapper import FileSwapper
from selfupgrade.versioning import Ordering, compare_versions, has_update

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_CHANNEL",
    "DEFAULT_REGISTRY",
    "CancellationToken",
    "ConcurrentUpgrade",
    "ConfigError",
    "DownloadCancelled",
    "DownloadError",
    "DownloadIncomplete",
    "Downloader",
    "ExtractCancelled",
    "ExtractError",
    "Extractor",
    "FatalUpgradeError",
    "FileSwapper",
    "InstallConfig",
    "IntegrityMismatch",
    "InvalidVersionFormat",
    "MalformedMetadata",
    "Ordering",
    "OrchestratorState",
    "PackageNotFound",
    "RegistryClient",
    "RegistryError",
    "RegistryMetadata",
    "RegistryUnreachable",
    "StatusEmitter",
    "StatusEvent",
    "SwapError",
    "UnsafeArchiveEntry",
    "UpgradeCheckResult",
    "UpgradeError",
    "UpgradeOrchestrator",
    "UpgradePhase",
    "compare_versions",
    "has_update",
    "load_install_config",
    "resolve_package_root",
]
