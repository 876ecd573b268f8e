"""CI orchestrator: resolve the latest stable Git, and publish a new package only when content changed."""

from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path

import httpx
from loguru import logger

from git_windows_runner.adapters.base import ArtifactSource
from git_windows_runner.adapters.builders import create_builder
from git_windows_runner.adapters.git_state import GitSidecarStateStore, clone_repository
from git_windows_runner.adapters.github import (
    ARCHIVE_URL_TEMPLATE,
    GitHubArchiveSource,
    GitHubReleaseAssetSource,
    GitHubTagsSource,
    create_client,
)
from git_windows_runner.adapters.nuget import NuGetPackager, NuGetRegistry
from git_windows_runner.config import RunnerConfig, load_config, resolve_package_version
from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.exceptions import RunCancelledError
from git_windows_runner.pipeline import PipelineError, PipelineResult, PublishPipeline


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _artifact_source(config: RunnerConfig, client: httpx.Client) -> ArtifactSource:
    upstream = config.upstream
    if upstream.artifact_kind == "release_asset":
        return GitHubReleaseAssetSource(
            upstream.owner, upstream.repo, client, name_patterns=list(upstream.asset_patterns)
        )
    return GitHubArchiveSource(
        upstream.owner, upstream.repo, client, url_template=upstream.url_template or ARCHIVE_URL_TEMPLATE
    )


def _install_signal_handlers(cancel_token: CancellationToken) -> None:
    def _handler(signum: int, _frame: object) -> None:
        logger.warning(f"Received signal {signum}; cancelling run")
        cancel_token.cancel()

    signal.signal(signal.SIGINT, _handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handler)


def orchestrate(
    config: RunnerConfig,
    work_dir: Path,
    package_version: str | None = None,
    dry_run: bool = False,
    cancel_token: CancellationToken | None = None,
) -> PipelineResult:
    cancel_token = cancel_token or CancellationToken()
    creds = config.credentials
    target = config.target
    if not target.repo_url:
        raise ValueError("target.repo_url is not set")
    if not dry_run and not creds.nuget_token:
        raise ValueError("publish requested but NUGET__TOKEN is not set")

    repo_dir = clone_repository(
        target.repo_url,
        work_dir / "target",
        username=creds.git_username,
        token=creds.git_token,
        cancel_token=cancel_token,
    )

    with create_client(token=creds.github_token) as client:
        pipeline = PublishPipeline(
            version_source=GitHubTagsSource(
                config.upstream.owner, config.upstream.repo, client, cancel_token=cancel_token
            ),
            artifact_source=_artifact_source(config, client),
            builder=create_builder(config.builder),
            packager=NuGetPackager(
                repo_dir=repo_dir,
                project=target.project,
                payload_dir=target.payload_dir,
                output_dir=work_dir / "packages",
            ),
            registry=NuGetRegistry(source=target.nuget_source),
            state_store=GitSidecarStateStore(
                repo_dir,
                state_file=target.state_file,
                author_name=creds.git_name,
                author_email=creds.git_email,
                cancel_token=cancel_token,
            ),
            work_dir=work_dir / "runs",
            credential=creds.nuget_token or "",
            retry_policy=config.retry,
            package_version=lambda v: resolve_package_version(package_version, v.normalized),
            prune=list(target.prune),
            cancel_token=cancel_token,
            dry_run=dry_run,
        )
        return pipeline.run()


def main() -> None:
    p = argparse.ArgumentParser(description="Build and publish Git for Windows when upstream content changes")
    p.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent / "runner.yml",
        help="runner.yml path",
    )
    p.add_argument(
        "--work-dir",
        type=Path,
        default=None,
        help="base working directory (default: <repo root>/ci_work)",
    )
    p.add_argument(
        "--package-version",
        default=None,
        help="Package version (default: BUILD_VERSION, 3.0.<GITHUB_RUN_NUMBER>, or upstream version)",
    )
    p.add_argument("--dry-run", action="store_true", help="Stop after the publish decision")
    p.add_argument("--log-level", default="INFO", help="loguru level (DEBUG, INFO, ...)")

    args = p.parse_args()
    _configure_logging(args.log_level)

    cancel_token = CancellationToken()
    _install_signal_handlers(cancel_token)

    work_dir = args.work_dir or (_repo_root() / "ci_work")
    try:
        config = load_config(args.config)
        result = orchestrate(
            config,
            work_dir=work_dir,
            package_version=args.package_version,
            dry_run=args.dry_run,
            cancel_token=cancel_token,
        )
    except PipelineError as e:
        logger.error(f"Run failed at stage '{e.stage}': {e.cause}")
        sys.exit(e.result.exit_code)
    except RunCancelledError:
        logger.error("Run cancelled")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Run failed before the pipeline started: {e}")
        sys.exit(1)

    logger.info(f"Complete! final state: {result.state.value}")
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
