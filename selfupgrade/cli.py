"""Command line entry point for checking and applying upgrades."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from selfupgrade.config import InstallConfig, load_install_config
from selfupgrade.errors import ConfigError, FatalUpgradeError, UpgradeError
from selfupgrade.logging_config import LogVerbosity, ensure_logging, set_log_verbosity
from selfupgrade.models import StatusEvent, UpgradePhase
from selfupgrade.orchestrator import UpgradeOrchestrator


_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2

_PHASE_LABELS = {
    UpgradePhase.CHECKING: "Checking",
    UpgradePhase.DOWNLOADING: "Downloading",
    UpgradePhase.EXTRACTING: "Extracting",
    UpgradePhase.INSTALLING: "Installing",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="selfupgrade",
        description="Check for and apply upgrades to an installed application.",
    )
    parser.add_argument("--config", type=Path, help="JSON file with the install configuration.")
    parser.add_argument("--registry", dest="registry_base", help="Registry base URL.")
    parser.add_argument("--name", help="Package name in the registry.")
    parser.add_argument(
        "--current-version",
        dest="version",
        help="Installed version (default: read from the install's package.json).",
    )
    parser.add_argument("--install-dir", type=Path, help="Install directory to upgrade.")
    parser.add_argument(
        "--file",
        dest="files",
        action="append",
        help="Managed path relative to the install directory (repeatable).",
    )
    parser.add_argument("--channel", help="Registry dist-tag to follow (default: latest).")
    parser.add_argument(
        "--verbosity",
        choices=[level.value for level in LogVerbosity],
        help="Log file verbosity.",
    )
    parser.add_argument(
        "command",
        choices=("check", "update"),
        nargs="?",
        default="update",
        help="'check' only reports; 'update' installs a newer release when available.",
    )
    return parser.parse_args(argv)


def _print_status(event: StatusEvent) -> None:
    label = _PHASE_LABELS.get(event.phase)
    if label is not None and event.message:
        print(f"{label}: {event.message}")


async def _run_check(orchestrator: UpgradeOrchestrator) -> int:
    result = await orchestrator.check()
    if result.has_update:
        print(f"Update available: v{result.current_version} -> v{result.latest_version}")
    else:
        print(f"{orchestrator.config.name} is already up to date (v{result.current_version})")
    return EXIT_OK


async def _run_update(orchestrator: UpgradeOrchestrator) -> int:
    config: InstallConfig = orchestrator.config
    print("Checking for updates...")
    result = await orchestrator.check()
    if not result.has_update or result.artifact_url is None:
        print(f"{config.name} is already up to date (v{config.version})")
        return EXIT_OK

    print(f"Updating from v{config.version} to v{result.latest_version}...")
    unsubscribe = orchestrator.subscribe("status", _print_status)
    try:
        await orchestrator.upgrade(result.artifact_url, integrity=result.integrity)
    finally:
        unsubscribe()
    print(f"Successfully updated to v{result.latest_version}")
    print("Restart the application to use the new version.")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    ensure_logging()
    if args.verbosity:
        set_log_verbosity(args.verbosity)

    try:
        config = load_install_config(
            args.config,
            registry_base=args.registry_base,
            name=args.name,
            version=args.version,
            install_dir=args.install_dir,
            files=args.files,
            channel=args.channel,
        )
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FAILED

    orchestrator = UpgradeOrchestrator(config)
    runner = _run_check if args.command == "check" else _run_update
    try:
        return asyncio.run(runner(orchestrator))
    except FatalUpgradeError as exc:
        _LOGGER.critical("Upgrade left the installation inconsistent: %s", exc)
        print(f"Update failed and could not be rolled back: {exc}", file=sys.stderr)
        print("Reinstall the application to recover.", file=sys.stderr)
        return EXIT_FATAL
    except UpgradeError as exc:
        print(f"Update failed: {exc}", file=sys.stderr)
        return EXIT_FAILED


__all__ = ["main", "parse_args"]
