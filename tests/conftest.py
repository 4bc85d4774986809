from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


_ensure_project_root_on_path()


@pytest.fixture(autouse=True)
def _isolated_upgrade_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep tests away from real user logs and ambient configuration."""

    log_dir = tmp_path_factory.mktemp("logs")
    monkeypatch.setenv("SELFUPGRADE_LOG_DIR", str(log_dir))
    monkeypatch.delenv("SELFUPGRADE_LOG_FILE", raising=False)
    for name in (
        "SELFUPGRADE_CONFIG",
        "SELFUPGRADE_REGISTRY",
        "SELFUPGRADE_NAME",
        "SELFUPGRADE_VERSION",
        "SELFUPGRADE_INSTALL_DIR",
        "SELFUPGRADE_FILES",
        "SELFUPGRADE_CHANNEL",
        "SELFUPGRADE_TEMP_ROOT",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
