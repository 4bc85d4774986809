"""Orchestrator coordinating update checks and installs for one install dir."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, TypeVar
from urllib.parse import urlparse

from selfupgrade.archive import Extractor, resolve_package_root
from selfupgrade.cancellation import CancellationToken
from selfupgrade.config import InstallConfig
from selfupgrade.constants import SESSION_DIR_PREFIX
from selfupgrade.downloader import Downloader
from selfupgrade.errors import (
    ConcurrentUpgrade,
    DownloadCancelled,
    ExtractCancelled,
    FatalUpgradeError,
    UpgradeError,
)
from selfupgrade.hashing import verify_integrity
from selfupgrade.models import (
    OrchestratorState,
    StatusEvent,
    UpgradeCheckResult,
    UpgradePhase,
    UpgradeSession,
)
from selfupgrade.registry import RegistryClient
from selfupgrade.status import StatusEmitter, StatusHandler
from selfupgrade.swapper import FileSwapper
from selfupgrade.versioning import has_update


_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

_STATUS_TOPIC = "status"
_SUPPORTED_SCHEMES = {"http", "https", "file"}


class UpgradeOrchestrator:
    """Check for and install newer releases of a single managed install.

    ``check()`` is read-only and may run any number of times concurrently.
    ``upgrade()`` is exclusive per instance: a second call while one is in
    flight fails with :class:`ConcurrentUpgrade` instead of queueing.
    """

    def __init__(
        self,
        config: InstallConfig,
        *,
        registry: RegistryClient | None = None,
        downloader: Downloader | None = None,
        extractor: Extractor | None = None,
        swapper: FileSwapper | None = None,
        emitter: StatusEmitter | None = None,
    ) -> None:
        self._config = config
        self._registry = registry or RegistryClient(
            channel=config.channel, timeout=config.timeout, user_agent=config.user_agent
        )
        self._downloader = downloader or Downloader(user_agent=config.user_agent)
        self._extractor = extractor or Extractor()
        self._swapper = swapper or FileSwapper()
        self._emitter = emitter or StatusEmitter()
        self._upgrade_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._active_checks = 0

    @property
    def config(self) -> InstallConfig:
        return self._config

    @property
    def state(self) -> OrchestratorState:
        if self._upgrade_lock.locked():
            return OrchestratorState.UPGRADING
        with self._state_lock:
            if self._active_checks:
                return OrchestratorState.CHECKING
        return OrchestratorState.IDLE

    def subscribe(self, event: str, handler: StatusHandler) -> Callable[[], None]:
        """Register ``handler`` for ``"status"`` events; returns the unsubscribe callable."""

        if event != _STATUS_TOPIC:
            raise ValueError(f"Unsupported event {event!r}; only {_STATUS_TOPIC!r} is available")
        return self._emitter.subscribe(handler)

    async def check(self) -> UpgradeCheckResult:
        """Compare the installed version with the latest registry release."""

        config = self._config
        with self._state_lock:
            self._active_checks += 1
        try:
            metadata = await asyncio.to_thread(
                self._registry.resolve_latest, config.registry_base, config.name
            )
            update_available = has_update(config.version, metadata.version)
        finally:
            with self._state_lock:
                self._active_checks -= 1

        if update_available:
            _LOGGER.info("Update available: %s -> %s", config.version, metadata.version)
            return UpgradeCheckResult(
                current_version=config.version,
                latest_version=metadata.version,
                has_update=True,
                artifact_url=metadata.artifact_url,
                integrity=metadata.integrity,
            )
        _LOGGER.debug("Current version %s is up to date", config.version)
        return UpgradeCheckResult(
            current_version=config.version,
            latest_version=metadata.version,
            has_update=False,
        )

    async def upgrade(
        self,
        artifact_url: str,
        *,
        integrity: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Download, unpack and install the artifact at ``artifact_url``.

        On failure the install directory is left as it was, an ``error``
        status event is emitted and the originating error is re-raised.
        """

        if not self._upgrade_lock.acquire(blocking=False):
            raise ConcurrentUpgrade("An upgrade is already in progress for this install")
        try:
            session_id = uuid.uuid4().hex[:12]
            backup_root = self._session_root_for(self._config, session_id)
            session = UpgradeSession(
                session_id=session_id,
                root=self._session_root_for(self._config, session_id, self._config.temp_root),
                backup_root=backup_root,
            )
            await self._run_session(session, artifact_url, integrity, cancel_token or CancellationToken())
        finally:
            self._upgrade_lock.release()

    async def _run_session(
        self,
        session: UpgradeSession,
        artifact_url: str,
        integrity: str | None,
        token: CancellationToken,
    ) -> None:
        config = self._config
        cancelled_during_install = False
        _LOGGER.info("Starting upgrade session %s for %s", session.session_id, config.name)
        try:
            self._enter(session, UpgradePhase.CHECKING, f"Preparing upgrade of {config.name}")
            self._preflight(artifact_url)
            try:
                session.root.mkdir(parents=True)
            except OSError as exc:
                raise UpgradeError(
                    f"Unable to create upgrade work directory {session.root}: {exc}", cause=exc
                ) from exc

            self._enter(session, UpgradePhase.DOWNLOADING, f"Downloading {artifact_url}")
            session.archive_path = await self._run_abortable(
                token, self._downloader.fetch, artifact_url, session.download_dir, token
            )
            if integrity:
                await self._run_abortable(token, verify_integrity, session.archive_path, integrity)

            self._enter(session, UpgradePhase.EXTRACTING, "Extracting release artifact")
            session.staging_dir = await self._run_abortable(
                token, self._extractor.extract, session.archive_path, session.extract_dir, token
            )
            package_root = resolve_package_root(session.staging_dir)

            self._enter(
                session,
                UpgradePhase.INSTALLING,
                f"Installing {', '.join(config.files)}",
            )
            cancelled_during_install = await self._run_uninterruptible(
                self._swapper.swap,
                config.install_dir,
                config.files,
                package_root,
                session.backup_dir,
                session.swapped,
            )
        except asyncio.CancelledError as exc:
            self._fail(session, self._cancellation_error(session, exc))
            raise
        except UpgradeError as exc:
            self._fail(session, exc)
            raise
        except Exception as exc:
            error = UpgradeError(
                f"Unexpected failure during {session.phase.value}: {exc}",
                cause=exc,
                phase=session.phase,
            )
            self._fail(session, error)
            raise error from exc

        self._close_session(session)
        session.phase = UpgradePhase.DONE
        _LOGGER.info("Upgrade session %s installed %s", session.session_id, artifact_url)
        self._emitter.emit(StatusEvent(UpgradePhase.DONE, message="Upgrade installed"))
        if cancelled_during_install:
            raise asyncio.CancelledError()

    def _enter(self, session: UpgradeSession, phase: UpgradePhase, message: str) -> None:
        session.phase = phase
        _LOGGER.debug("Session %s entering %s", session.session_id, phase.value)
        self._emitter.emit(StatusEvent(phase, message=message))

    def _preflight(self, artifact_url: str) -> None:
        if not isinstance(artifact_url, str) or not artifact_url.strip():
            raise UpgradeError("An artifact URL is required to upgrade")
        scheme = urlparse(artifact_url).scheme.lower()
        if scheme not in _SUPPORTED_SCHEMES:
            raise UpgradeError(f"Unsupported artifact URL scheme: {artifact_url!r}")
        if not self._config.install_dir.is_dir():
            raise UpgradeError(f"Install directory {self._config.install_dir} does not exist")

    async def _run_abortable(
        self, token: CancellationToken, func: Callable[..., _T], *args: Any
    ) -> _T:
        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            token.cancel()
            # The worker thread removes its own partial output once it sees the token;
            # the session root must outlive it even if further cancellations arrive.
            await _wait_uncancellable(task)
            if not task.cancelled() and task.exception() is not None:
                _LOGGER.debug("Aborted stage finished with an error", exc_info=task.exception())
            raise

    async def _run_uninterruptible(self, func: Callable[..., Any], *args: Any) -> bool:
        """Run ``func`` to completion even if the calling task is cancelled.

        Returns ``True`` when a cancellation arrived while ``func`` was running.
        """

        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            _LOGGER.warning("Cancellation requested while installing; finishing the swap first")
            await _wait_uncancellable(task)
            task.result()
            return True
        return False

    def _fail(self, session: UpgradeSession, error: UpgradeError) -> None:
        session.error = error
        fatal = isinstance(error, FatalUpgradeError)
        self._close_session(session, keep_backup=fatal)
        if fatal:
            _LOGGER.critical(
                "Managed paths touched before rollback failed: %s",
                ", ".join(session.swapped) or "none",
            )
        _LOGGER.error(
            "Upgrade session %s failed during %s: %s",
            session.session_id,
            session.phase.value,
            error,
        )
        self._emitter.emit(StatusEvent(UpgradePhase.ERROR, message=str(error), error=error))

    def _cancellation_error(self, session: UpgradeSession, exc: BaseException) -> UpgradeError:
        if session.phase is UpgradePhase.EXTRACTING:
            return ExtractCancelled("Upgrade was cancelled during extraction", cause=exc)
        return DownloadCancelled("Upgrade was cancelled during download", cause=exc)

    def _close_session(self, session: UpgradeSession, *, keep_backup: bool = False) -> None:
        for root in dict.fromkeys((session.root, session.backup_root)):
            if not root.exists():
                continue
            if keep_backup and root == session.backup_root:
                for child in root.iterdir():
                    if child != session.backup_dir:
                        _discard(child)
                continue
            _discard(root)
        if keep_backup:
            _LOGGER.critical("Original files preserved for manual recovery in %s", session.backup_dir)

    @staticmethod
    def _session_root_for(config: InstallConfig, session_id: str, base: Path | None = None) -> Path:
        # Without a base the root sits next to the install dir, on its filesystem.
        parent = base or config.install_dir.parent
        safe_name = re.sub(r"[^A-Za-z0-9._-]+", "-", config.name).strip("-") or "package"
        return parent / f"{SESSION_DIR_PREFIX}{safe_name}-{session_id}"


async def _wait_uncancellable(task: asyncio.Future) -> None:
    """Wait for ``task`` to finish, absorbing cancellation of the caller."""

    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            continue


def _discard(path: Path) -> None:
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.warning("Unable to remove upgrade work files at %s", path, exc_info=True)


__all__ = ["UpgradeOrchestrator"]
