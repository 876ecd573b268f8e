"""パイプラインテスト共通のフィクスチャ."""

from __future__ import annotations

from pathlib import Path

import pytest

from git_windows_runner.pipeline import PublishPipeline
from tests.fakes import (
    FakeArtifactSource,
    FakeBuilder,
    FakePackager,
    FakeRegistry,
    FakeStateStore,
    FakeVersionSource,
)


@pytest.fixture
def version_source() -> FakeVersionSource:
    return FakeVersionSource(["v2.45.0-rc1", "v2.45.0", "v2.44.1"])


@pytest.fixture
def artifact_source() -> FakeArtifactSource:
    return FakeArtifactSource({"cmd/git.exe": b"MZ-git", "etc/gitconfig": b"[core]\n"})


@pytest.fixture
def state_store() -> FakeStateStore:
    return FakeStateStore()


@pytest.fixture
def builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def packager(tmp_path: Path) -> FakePackager:
    return FakePackager(tmp_path / "packages")


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_pipeline(
    tmp_path: Path,
    version_source: FakeVersionSource,
    artifact_source: FakeArtifactSource,
    builder: FakeBuilder,
    packager: FakePackager,
    registry: FakeRegistry,
    state_store: FakeStateStore,
    sleeps: list[float],
):
    def _make(**overrides) -> PublishPipeline:
        kwargs = {
            "version_source": version_source,
            "artifact_source": artifact_source,
            "builder": builder,
            "packager": packager,
            "registry": registry,
            "state_store": state_store,
            "work_dir": tmp_path / "work",
            "credential": "nuget-key",
            "sleep": sleeps.append,
        }
        kwargs.update(overrides)
        return PublishPipeline(**kwargs)

    return _make
