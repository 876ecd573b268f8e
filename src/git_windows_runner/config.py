"""runner.yml の読み込みと設定値の検証."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from loguru import logger

from git_windows_runner.core.retry import RetryPolicy

BUILDER_KINDS = ("msys2", "mxe", "prebuilt")
ARTIFACT_KINDS = ("source_archive", "release_asset")


@dataclass(frozen=True)
class UpstreamConfig:
    owner: str = "git"
    repo: str = "git"
    artifact_kind: str = "source_archive"
    asset_patterns: tuple[str, ...] = ()
    url_template: str | None = None


@dataclass(frozen=True)
class BuilderConfig:
    kind: str = "msys2"
    msys_root: Path = Path("C:/msys64")
    mxe_root: Path = Path("/opt/mxe")
    mxe_target: str = "x86_64-w64-mingw32.static"
    jobs: int | None = None
    install_if_missing: bool = True


@dataclass(frozen=True)
class TargetConfig:
    repo_url: str = ""
    project: str = ""
    payload_dir: str = "win-x64/git"
    state_file: str = "hash.txt"
    nuget_source: str = "https://api.nuget.org/v3/index.json"
    prune: tuple[str, ...] = ()


@dataclass(frozen=True)
class Credentials:
    github_token: str | None = None
    nuget_token: str | None = None
    git_username: str | None = None
    git_token: str | None = None
    git_name: str | None = None
    git_email: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Credentials:
        env = os.environ if environ is None else environ
        return cls(
            github_token=env.get("GH__TOKEN") or None,
            nuget_token=env.get("NUGET__TOKEN") or None,
            git_username=env.get("GH__USERNAME") or None,
            git_token=env.get("GIT__TOKEN") or None,
            git_name=env.get("GIT__NAME") or None,
            git_email=env.get("GIT__EMAIL") or None,
        )


@dataclass(frozen=True)
class RunnerConfig:
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    builder: BuilderConfig = field(default_factory=BuilderConfig)
    target: TargetConfig = field(default_factory=TargetConfig)
    credentials: Credentials = field(default_factory=Credentials)


def _section(config: dict, name: str) -> dict:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Section '{name}' must be a mapping, got {type(value).__name__}")
    return value


def parse_config(raw: dict, environ: Mapping[str, str] | None = None) -> RunnerConfig:
    """辞書から RunnerConfig を組み立てる.

    Args:
        raw: yaml.safe_load の結果
        environ: 認証情報を読む環境変数（既定: os.environ）

    Raises:
        ValueError: 不正な値が含まれている場合
    """
    upstream = _section(raw, "upstream")
    retry = _section(raw, "retry")
    builder = _section(raw, "builder")
    target = _section(raw, "target")

    upstream_cfg = UpstreamConfig(
        owner=upstream.get("owner", "git"),
        repo=upstream.get("repo", "git"),
        artifact_kind=upstream.get("artifact_kind", "source_archive"),
        asset_patterns=tuple(upstream.get("asset_patterns", [])),
        url_template=upstream.get("url_template"),
    )
    if upstream_cfg.artifact_kind not in ARTIFACT_KINDS:
        raise ValueError(
            f"Unknown artifact_kind '{upstream_cfg.artifact_kind}'. Valid kinds: {ARTIFACT_KINDS}"
        )
    if upstream_cfg.artifact_kind == "release_asset" and not upstream_cfg.asset_patterns:
        raise ValueError("artifact_kind 'release_asset' requires asset_patterns")

    retry_policy = RetryPolicy(
        max_attempts=int(retry.get("max_attempts", 3)),
        initial_delay=float(retry.get("initial_delay", 2.0)),
        backoff_multiplier=float(retry.get("backoff_multiplier", 2.0)),
    )

    builder_cfg = BuilderConfig(
        kind=builder.get("kind", "msys2"),
        msys_root=Path(builder.get("msys_root", "C:/msys64")),
        mxe_root=Path(builder.get("mxe_root", "/opt/mxe")),
        mxe_target=builder.get("mxe_target", "x86_64-w64-mingw32.static"),
        jobs=builder.get("jobs"),
        install_if_missing=bool(builder.get("install_if_missing", True)),
    )
    if builder_cfg.kind not in BUILDER_KINDS:
        raise ValueError(f"Unknown builder kind '{builder_cfg.kind}'. Valid kinds: {BUILDER_KINDS}")

    target_cfg = TargetConfig(
        repo_url=target.get("repo_url", ""),
        project=target.get("project", ""),
        payload_dir=target.get("payload_dir", "win-x64/git"),
        state_file=target.get("state_file", "hash.txt"),
        nuget_source=target.get("nuget_source", "https://api.nuget.org/v3/index.json"),
        prune=tuple(target.get("prune", [])),
    )

    return RunnerConfig(
        upstream=upstream_cfg,
        retry=retry_policy,
        builder=builder_cfg,
        target=target_cfg,
        credentials=Credentials.from_env(environ),
    )


def load_config(config_yml: Path, environ: Mapping[str, str] | None = None) -> RunnerConfig:
    """runner.yml を読み込んで RunnerConfig を返す.

    Args:
        config_yml: 設定ファイルのパス

    Returns:
        RunnerConfig

    Raises:
        FileNotFoundError: ファイルが存在しない場合
        ValueError: 設定内容が不正な場合
    """
    if not config_yml.exists():
        raise FileNotFoundError(f"Config file not found: {config_yml}")

    with open(config_yml, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{config_yml} must contain a YAML mapping")

    config = parse_config(raw, environ)
    logger.info(
        f"Loaded config from {config_yml}: upstream={config.upstream.owner}/{config.upstream.repo}, "
        f"builder={config.builder.kind}"
    )
    return config


def resolve_package_version(
    explicit: str | None,
    upstream_version: str,
    environ: Mapping[str, str] | None = None,
) -> str:
    """パッケージバージョンを決定する.

    優先順: 明示指定 > BUILD_VERSION > 3.0.<GITHUB_RUN_NUMBER> > 上流バージョン
    """
    env = os.environ if environ is None else environ
    if explicit:
        return explicit
    if env.get("BUILD_VERSION"):
        return env["BUILD_VERSION"]
    if env.get("GITHUB_RUN_NUMBER"):
        return f"3.0.{env['GITHUB_RUN_NUMBER']}"
    return upstream_version
