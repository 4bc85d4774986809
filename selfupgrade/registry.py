"""Registry client resolving the latest published release of a package."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from selfupgrade.constants import DEFAULT_CHANNEL, DEFAULT_USER_AGENT, REGISTRY_TIMEOUT_SECONDS
from selfupgrade.errors import MalformedMetadata, PackageNotFound, RegistryUnreachable
from selfupgrade.models import RegistryMetadata


_LOGGER = logging.getLogger(__name__)


def build_package_url(registry_base: str, name: str) -> str:
    """Return the metadata URL for ``name`` under ``registry_base``."""

    base = registry_base if registry_base.endswith("/") else f"{registry_base}/"
    return f"{base}{quote(name, safe='')}"


class RegistryClient:
    """Fetch npm-style package documents and pick the release for a channel."""

    def __init__(
        self,
        *,
        channel: str = DEFAULT_CHANNEL,
        timeout: float = REGISTRY_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._channel = channel
        self._timeout = timeout
        self._user_agent = user_agent

    def resolve_latest(self, registry_base: str, name: str) -> RegistryMetadata:
        url = build_package_url(registry_base, name)
        _LOGGER.debug("Querying registry %s for %s (channel=%s)", url, name, self._channel)
        document = self._request_json(url, name)
        metadata = self._parse_document(document, name)
        _LOGGER.info(
            "Registry reports %s@%s (artifact=%s, integrity=%s)",
            name,
            metadata.version,
            metadata.artifact_url,
            "present" if metadata.integrity else "missing",
        )
        return metadata

    def _request_json(self, url: str, name: str) -> Any:
        request = Request(
            url,
            headers={"Accept": "application/json", "User-Agent": self._user_agent},
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:  # nosec - registry over HTTPS
                raw = response.read()
        except HTTPError as exc:
            if exc.code == 404:
                raise PackageNotFound(
                    f"Package {name!r} was not found in the registry", cause=exc
                ) from exc
            raise RegistryUnreachable(
                f"Registry responded with HTTP {exc.code} for {url}", cause=exc
            ) from exc
        except (URLError, OSError) as exc:
            raise RegistryUnreachable(f"Failed to reach registry at {url}: {exc}", cause=exc) from exc

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedMetadata(
                f"Registry response for {name!r} is not valid JSON", cause=exc
            ) from exc

    def _parse_document(self, document: Any, name: str) -> RegistryMetadata:
        if not isinstance(document, Mapping):
            raise MalformedMetadata(f"Registry document for {name!r} is not an object")

        dist_tags = document.get("dist-tags")
        if not isinstance(dist_tags, Mapping):
            raise MalformedMetadata(f"Registry document for {name!r} has no dist-tags")
        version = dist_tags.get(self._channel)
        if not isinstance(version, str) or not version.strip():
            raise MalformedMetadata(
                f"Registry document for {name!r} has no {self._channel!r} dist-tag"
            )
        version = version.strip()

        versions = document.get("versions")
        entry = versions.get(version) if isinstance(versions, Mapping) else None
        dist = entry.get("dist") if isinstance(entry, Mapping) else None
        if not isinstance(dist, Mapping):
            raise MalformedMetadata(
                f"Registry document for {name!r} does not describe version {version}"
            )

        tarball = dist.get("tarball")
        if not isinstance(tarball, str) or not tarball.strip():
            raise MalformedMetadata(f"Version {version} of {name!r} has no artifact URL")

        return RegistryMetadata(
            version=version,
            artifact_url=tarball.strip(),
            integrity=_extract_integrity(dist),
        )


def _extract_integrity(dist: Mapping[str, Any]) -> str | None:
    for key in ("integrity", "shasum"):
        value = dist.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


__all__ = ["RegistryClient", "build_package_url"]
