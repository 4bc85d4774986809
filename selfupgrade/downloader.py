"""Streaming download of release artifacts to local temporary storage."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from selfupgrade.cancellation import CancellationToken
from selfupgrade.constants import DEFAULT_USER_AGENT, DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT_SECONDS
from selfupgrade.errors import DownloadCancelled, DownloadError, DownloadIncomplete


_LOGGER = logging.getLogger(__name__)

__all__ = ["Downloader"]


class Downloader:
    """Stream an artifact body into a freshly created temporary file."""

    def __init__(
        self,
        *,
        timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._chunk_size = chunk_size

    def fetch(
        self,
        url: str,
        directory: Path,
        cancel_token: CancellationToken | None = None,
    ) -> Path:
        """Download ``url`` into ``directory`` and return the local file path.

        The partial file is removed whenever the download does not complete.
        """

        directory.mkdir(parents=True, exist_ok=True)
        fd, raw_path = tempfile.mkstemp(prefix="artifact-", suffix=_suffix_for(url), dir=directory)
        target_path = Path(raw_path)
        _LOGGER.info("Downloading artifact from %s", url)
        try:
            with os.fdopen(fd, "wb") as destination:
                written, expected = self._stream(url, destination, cancel_token)
            if expected is not None and written != expected:
                raise DownloadIncomplete(
                    f"Downloaded {written} bytes from {url} but {expected} were declared"
                )
        except BaseException:
            _remove_partial(target_path)
            raise
        _LOGGER.debug("Downloaded %s bytes to %s", written, target_path)
        return target_path

    def _stream(
        self,
        url: str,
        destination,
        cancel_token: CancellationToken | None,
    ) -> tuple[int, int | None]:
        request = Request(url, headers={"User-Agent": self._user_agent})
        written = 0
        try:
            with urlopen(request, timeout=self._timeout) as response:  # nosec - artifact over HTTPS
                expected = _declared_size(response)
                while True:
                    if cancel_token is not None and cancel_token.cancelled:
                        raise DownloadCancelled(f"Download of {url} was cancelled")
                    chunk = response.read(self._chunk_size)
                    if not chunk:
                        break
                    destination.write(chunk)
                    written += len(chunk)
        except HTTPError as exc:
            raise DownloadError(f"Failed to download {url}: HTTP {exc.code}", cause=exc) from exc
        except (URLError, OSError) as exc:
            raise DownloadError(f"Failed to download {url}: {exc}", cause=exc) from exc
        return written, expected


def _declared_size(response) -> int | None:
    headers = getattr(response, "headers", None)
    raw = headers.get("Content-Length") if headers is not None else None
    if raw is None:
        return None
    try:
        size = int(raw)
    except ValueError:
        _LOGGER.debug("Ignoring unparsable Content-Length %r", raw)
        return None
    return size if size >= 0 else None


def _suffix_for(url: str) -> str:
    name = os.path.basename(urlparse(url).path)
    for suffix in (".tar.gz", ".tgz", ".tar.bz2", ".tar.xz", ".tar", ".zip"):
        if name.lower().endswith(suffix):
            return suffix
    return ".bin"


def _remove_partial(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.warning("Unable to remove partial download at %s", path, exc_info=True)
