"""NuGet パッケージの作成と公開（dotnet CLI 経由）."""

from __future__ import annotations

import shutil
from pathlib import Path

from loguru import logger

from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.exceptions import CommandError, PublishError
from git_windows_runner.core.process import run_command

from .base import Packager, Registry


def stage_payload(payload: Path, repo_dir: Path, payload_dir: str) -> Path:
    """ペイロードを対象リポジトリ内の payload_dir に置き換えコピーする."""
    dest = repo_dir / payload_dir
    if dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(payload, dest)
    logger.info(f"Staged payload into {dest}")
    return dest


class NuGetPackager(Packager):
    """対象リポジトリの .csproj を `dotnet pack` する."""

    def __init__(self, repo_dir: Path, project: str, payload_dir: str, output_dir: Path) -> None:
        self.repo_dir = Path(repo_dir)
        self.project = project
        self.payload_dir = payload_dir
        self.output_dir = Path(output_dir)

    def pack(self, path: Path, version: str, cancel_token: CancellationToken) -> Path:
        stage_payload(path, self.repo_dir, self.payload_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        project_path = self.repo_dir / self.project
        logger.info(f"Packing {project_path.name} as version {version}")
        try:
            run_command(
                [
                    "dotnet",
                    "pack",
                    str(project_path),
                    "--configuration",
                    "Release",
                    f"-p:PackageVersion={version}",
                    "--output",
                    str(self.output_dir),
                ],
                cwd=self.repo_dir,
                cancel_token=cancel_token,
            )
        except CommandError as e:
            raise PublishError(f"dotnet pack failed: {e}") from e

        packages = sorted(self.output_dir.glob(f"*.{version}.nupkg"))
        if not packages:
            raise PublishError(f"No .nupkg for version {version} found in {self.output_dir}")
        logger.info(f"Packed {packages[0].name}")
        return packages[0]


class NuGetRegistry(Registry):
    def __init__(self, source: str = "https://api.nuget.org/v3/index.json") -> None:
        self.source = source

    def push(self, package_path: Path, credential: str, cancel_token: CancellationToken) -> None:
        if not credential:
            raise PublishError("NuGet API key is not set (NUGET__TOKEN)")

        logger.info(f"Pushing {package_path.name} to {self.source}")
        try:
            run_command(
                [
                    "dotnet",
                    "nuget",
                    "push",
                    str(package_path),
                    "--api-key",
                    credential,
                    "--source",
                    self.source,
                ],
                cancel_token=cancel_token,
                secrets=[credential],
            )
        except CommandError as e:
            raise PublishError(f"dotnet nuget push failed for {package_path.name}: {e}") from e
        logger.info(f"Push complete: {package_path.name}")
