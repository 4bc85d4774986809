"""Install configuration loaded from JSON files, the environment and overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Mapping

from selfupgrade import constants
from selfupgrade.errors import ConfigError


_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallConfig:
    """Everything the orchestrator needs to know about one managed install."""

    registry_base: str
    name: str
    version: str
    install_dir: Path
    files: tuple[str, ...]
    channel: str = constants.DEFAULT_CHANNEL
    temp_root: Path | None = None
    timeout: float = constants.REGISTRY_TIMEOUT_SECONDS
    user_agent: str = field(default=constants.DEFAULT_USER_AGENT)

    def __post_init__(self) -> None:
        for attribute in ("registry_base", "name", "version", "channel"):
            value = getattr(self, attribute)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"Install configuration requires a non-empty {attribute}")
        object.__setattr__(self, "install_dir", Path(self.install_dir))
        if self.temp_root is not None:
            object.__setattr__(self, "temp_root", Path(self.temp_root))
        object.__setattr__(self, "files", _normalise_managed_paths(self.files))
        if self.timeout <= 0:
            raise ConfigError("Registry timeout must be positive")


def _normalise_managed_paths(files: Any) -> tuple[str, ...]:
    if isinstance(files, str) or not files:
        raise ConfigError("Install configuration requires at least one managed path")
    normalised: list[str] = []
    for raw in files:
        if not isinstance(raw, str) or not raw.strip():
            raise ConfigError(f"Invalid managed path: {raw!r}")
        text = raw.strip().replace("\\", "/").rstrip("/")
        posix = PurePosixPath(text)
        if posix.is_absolute() or (len(text) >= 2 and text[1] == ":"):
            raise ConfigError(f"Managed path must be relative: {raw!r}")
        parts = [part for part in posix.parts if part != "."]
        if not parts or ".." in parts:
            raise ConfigError(f"Managed path must stay inside the install directory: {raw!r}")
        relative = "/".join(parts)
        if relative in normalised:
            raise ConfigError(f"Managed path listed twice: {raw!r}")
        normalised.append(relative)
    for relative in normalised:
        for other in normalised:
            if other != relative and other.startswith(f"{relative}/"):
                raise ConfigError(f"Managed paths overlap: {relative!r} contains {other!r}")
    return tuple(normalised)


def load_install_config(path: str | Path | None = None, **overrides: Any) -> InstallConfig:
    """Build an :class:`InstallConfig` from layered sources.

    Precedence, lowest first: JSON file (``path`` or ``SELFUPGRADE_CONFIG``),
    ``SELFUPGRADE_*`` environment variables, then keyword ``overrides`` whose
    value is not ``None``.  A missing version is read from the install
    directory's ``package.json``.
    """

    data: dict[str, Any] = {"registry_base": constants.DEFAULT_REGISTRY}
    config_path = path if path is not None else os.environ.get(constants.CONFIG_PATH_ENV)
    if config_path:
        data.update(_read_config_file(Path(config_path).expanduser()))
    data.update(_read_environment())
    data.update({key: value for key, value in overrides.items() if value is not None})

    if not data.get("install_dir"):
        raise ConfigError("Install configuration requires an install_dir")
    install_dir = Path(data["install_dir"]).expanduser()
    data["install_dir"] = install_dir

    if not data.get("version"):
        version = read_manifest_version(install_dir)
        if version is None:
            raise ConfigError(
                f"No version configured and none found in {install_dir / constants.MANIFEST_FILENAME}"
            )
        data["version"] = version

    if "files" not in data:
        raise ConfigError("Install configuration requires the list of managed files")
    data["files"] = tuple(data["files"])

    known = set(InstallConfig.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        _LOGGER.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
    try:
        return InstallConfig(**{key: value for key, value in data.items() if key in known})
    except TypeError as exc:
        raise ConfigError(f"Incomplete install configuration: {exc}") from exc


def read_manifest_version(install_dir: Path) -> str | None:
    """Return the ``version`` recorded in ``install_dir/package.json``."""

    manifest = install_dir / constants.MANIFEST_FILENAME
    try:
        payload = json.loads(manifest.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError):
        _LOGGER.debug("Unable to read manifest %s", manifest, exc_info=True)
        return None
    version = payload.get("version") if isinstance(payload, Mapping) else None
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


def _read_config_file(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Configuration file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ConfigError(f"Configuration file {path} must contain a JSON object")
    _LOGGER.debug("Loaded install configuration from %s", path)
    return payload


def _read_environment() -> dict[str, Any]:
    mapping = {
        constants.REGISTRY_ENV: "registry_base",
        constants.NAME_ENV: "name",
        constants.VERSION_ENV: "version",
        constants.INSTALL_DIR_ENV: "install_dir",
        constants.CHANNEL_ENV: "channel",
        constants.TEMP_ROOT_ENV: "temp_root",
    }
    values: dict[str, Any] = {}
    for env_var, key in mapping.items():
        value = os.environ.get(env_var)
        if value:
            values[key] = value
    files = os.environ.get(constants.FILES_ENV)
    if files:
        values["files"] = tuple(part for part in files.split(os.pathsep) if part)
    return values


__all__ = ["InstallConfig", "load_install_config", "read_manifest_version"]
