"""Hashing helpers for artifact integrity verification."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re
from pathlib import Path

from selfupgrade.errors import IntegrityMismatch


_LOGGER = logging.getLogger(__name__)

_SRI_ALGORITHMS = ("sha512", "sha384", "sha256", "sha1")
_HEX_LENGTHS = {40: "sha1", 64: "sha256", 96: "sha384", 128: "sha512"}
_HEX_PATTERN = re.compile(r"[0-9a-fA-F]+")


def calculate_digest(path: Path, algorithm: str) -> bytes:
    digest = hashlib.new(algorithm)
    with path.open("rb") as source:
        for chunk in iter(lambda: source.read(65536), b""):
            digest.update(chunk)
    return digest.digest()


def parse_integrity(text: str) -> tuple[str, bytes]:
    """Return ``(algorithm, digest)`` for an SRI string or bare hex digest.

    When an SRI value lists several hashes the strongest supported one wins.
    """

    candidates: dict[str, bytes] = {}
    for token in text.split():
        algorithm, sep, encoded = token.partition("-")
        if sep and algorithm.lower() in _SRI_ALGORITHMS:
            encoded = encoded.split("?", 1)[0]
            try:
                candidates.setdefault(algorithm.lower(), base64.b64decode(encoded, validate=True))
            except (binascii.Error, ValueError):
                continue
            continue
        if _HEX_PATTERN.fullmatch(token) and len(token) in _HEX_LENGTHS:
            candidates.setdefault(_HEX_LENGTHS[len(token)], bytes.fromhex(token))

    for algorithm in _SRI_ALGORITHMS:
        if algorithm in candidates:
            return algorithm, candidates[algorithm]
    raise ValueError(f"Unsupported integrity value: {text!r}")


def verify_integrity(path: Path, integrity: str) -> None:
    """Raise :class:`IntegrityMismatch` unless ``path`` matches ``integrity``."""

    try:
        algorithm, expected = parse_integrity(integrity)
    except ValueError as exc:
        raise IntegrityMismatch(str(exc), cause=exc) from exc

    actual = calculate_digest(path, algorithm)
    if not hmac.compare_digest(actual, expected):
        raise IntegrityMismatch(
            f"Artifact {algorithm} mismatch: expected {expected.hex()} but received {actual.hex()}"
        )
    _LOGGER.info("Verified %s digest of %s", algorithm, path.name)


__all__ = ["calculate_digest", "parse_integrity", "verify_integrity"]
