"""Constants shared across the upgrade engine modules."""

from __future__ import annotations

DEFAULT_REGISTRY = "https://registry.npmjs.org"
DEFAULT_CHANNEL = "latest"
DEFAULT_USER_AGENT = "selfupgrade"
REGISTRY_TIMEOUT_SECONDS = 10.0
DOWNLOAD_TIMEOUT_SECONDS = 60.0
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# npm tarballs nest their contents under this directory.
PACKAGE_ROOT_DIRNAME = "package"
MANIFEST_FILENAME = "package.json"

SESSION_DIR_PREFIX = ".selfupgrade-"

MAX_ARCHIVE_TOTAL_BYTES = 500 * 1024 * 1024  # 500 MiB
MAX_ARCHIVE_FILE_SIZE = 250 * 1024 * 1024  # 250 MiB per file
MAX_ARCHIVE_ENTRIES = 20000

CONFIG_PATH_ENV = "SELFUPGRADE_CONFIG"
REGISTRY_ENV = "SELFUPGRADE_REGISTRY"
NAME_ENV = "SELFUPGRADE_NAME"
VERSION_ENV = "SELFUPGRADE_VERSION"
INSTALL_DIR_ENV = "SELFUPGRADE_INSTALL_DIR"
FILES_ENV = "SELFUPGRADE_FILES"
CHANNEL_ENV = "SELFUPGRADE_CHANNEL"
TEMP_ROOT_ENV = "SELFUPGRADE_TEMP_ROOT"
