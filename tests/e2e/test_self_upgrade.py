from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from selfupgrade import DownloadError, UpgradeCheckResult, UpgradeError, UpgradeOrchestrator
from tests.unit.upgrade_test_utils import (
    ORIGINAL_INSTALL,
    RELEASE_FILES,
    RecordingSubscriber,
    build_npm_tarball,
    build_registry_document,
    leftover_work_dirs,
    make_config,
    make_install,
    publish_to_file_registry,
    snapshot_tree,
)


pytestmark = [pytest.mark.e2e]

scenarios("features/self_upgrade.feature")


@dataclass
class UpgradeWorld:
    root: Path
    install_dir: Path | None = None
    name: str = "app"
    version: str = "0.0.0"
    original: dict = field(default_factory=dict)
    registry_base: str | None = None
    orchestrator: UpgradeOrchestrator | None = None
    subscriber: RecordingSubscriber = field(default_factory=RecordingSubscriber)
    check_result: UpgradeCheckResult | None = None
    error: UpgradeError | None = None

    def build_orchestrator(self) -> UpgradeOrchestrator:
        if self.orchestrator is None:
            assert self.install_dir is not None and self.registry_base is not None
            config = make_config(
                self.install_dir,
                registry_base=self.registry_base,
                name=self.name,
                version=self.version,
            )
            self.orchestrator = UpgradeOrchestrator(config)
            self.orchestrator.subscribe("status", self.subscriber)
        return self.orchestrator


@pytest.fixture
def world(tmp_path: Path) -> UpgradeWorld:
    return UpgradeWorld(root=tmp_path)


@given(parsers.parse('an install of "{name}" at version "{version}"'))
def existing_install(world: UpgradeWorld, name: str, version: str) -> None:
    world.name = name
    world.version = version
    world.install_dir = make_install(world.root)
    world.original = snapshot_tree(world.install_dir)


@given(parsers.parse('the registry publishes version "{version}"'))
def registry_with_release(world: UpgradeWorld, version: str) -> None:
    tarball = build_npm_tarball(world.root / "artifacts", RELEASE_FILES, name=f"app-{version}.tgz")
    document = build_registry_document(version, tarball.as_uri())
    world.registry_base = publish_to_file_registry(world.root / "registry", world.name, document)


@given(parsers.parse('the registry publishes version "{version}" without a downloadable artifact'))
def registry_with_missing_artifact(world: UpgradeWorld, version: str) -> None:
    missing = (world.root / "artifacts" / f"app-{version}.tgz").as_uri()
    document = build_registry_document(version, missing)
    world.registry_base = publish_to_file_registry(world.root / "registry", world.name, document)


@when("I check for updates")
def check_for_updates(world: UpgradeWorld) -> None:
    world.check_result = asyncio.run(world.build_orchestrator().check())


@when("I upgrade to the reported release")
def upgrade_to_reported_release(world: UpgradeWorld) -> None:
    assert world.check_result is not None and world.check_result.artifact_url is not None
    orchestrator = world.build_orchestrator()
    try:
        asyncio.run(
            orchestrator.upgrade(world.check_result.artifact_url, integrity=world.check_result.integrity)
        )
    except UpgradeError as exc:
        world.error = exc


@then(parsers.parse('an update to "{version}" is reported'))
def update_reported(world: UpgradeWorld, version: str) -> None:
    assert world.check_result is not None
    assert world.check_result.has_update is True
    assert world.check_result.latest_version == version


@then("no update is reported")
def no_update_reported(world: UpgradeWorld) -> None:
    assert world.check_result is not None
    assert world.check_result.has_update is False
    assert world.check_result.artifact_url is None


@then("the upgrade succeeds")
def upgrade_succeeds(world: UpgradeWorld) -> None:
    assert world.error is None


@then("the upgrade fails with a download error")
def upgrade_fails_downloading(world: UpgradeWorld) -> None:
    assert isinstance(world.error, DownloadError)


@then(parsers.parse('the status events are "{phases}"'))
def status_events(world: UpgradeWorld, phases: str) -> None:
    assert world.subscriber.phases == [phase.strip() for phase in phases.split(",")]


@then("the install contains the new release files")
def install_has_release(world: UpgradeWorld) -> None:
    assert world.install_dir is not None
    for relative, content in RELEASE_FILES.items():
        assert (world.install_dir / relative).read_bytes() == content


@then("unmanaged files are preserved")
def unmanaged_files_preserved(world: UpgradeWorld) -> None:
    assert world.install_dir is not None
    assert (world.install_dir / "settings.json").read_bytes() == ORIGINAL_INSTALL["settings.json"]


@then("the install is unchanged")
def install_unchanged(world: UpgradeWorld) -> None:
    assert world.install_dir is not None
    assert snapshot_tree(world.install_dir) == world.original


@then("no upgrade work directories remain")
def no_work_directories(world: UpgradeWorld) -> None:
    assert leftover_work_dirs(world.root) == []
