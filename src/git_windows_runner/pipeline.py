"""公開パイプライン（オーケストレーター）.

最新安定版の解決 → 成果物の取得 → フィンガープリント → 公開判定 →
（必要なら）ビルド → パッケージ作成 → push → 状態の永続化 を順に実行する。
各ステージは前のステージの結果に依存するため、並列化せず1つずつ完了を待つ。
どのステージの失敗も実行全体を中断し、ステージをまたいだ再試行は行わない。
"""

from __future__ import annotations

import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from loguru import logger

from git_windows_runner.adapters.base import (
    ArtifactSource,
    Builder,
    Packager,
    Registry,
    StateStore,
    VersionSource,
)
from git_windows_runner.core.archive import prune_payload
from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.exceptions import RunCancelledError, RunnerError, StatePersistError
from git_windows_runner.core.fingerprint import compute_fingerprint
from git_windows_runner.core.gate import PublishDecision, decide
from git_windows_runner.core.retry import RetryPolicy, call_with_retry, fetch_with_retry
from git_windows_runner.core.version import VersionTag, resolve_latest_stable


class PipelineState(str, Enum):
    INIT = "init"
    VERSION_RESOLVED = "version_resolved"
    ARTIFACT_FETCHED = "artifact_fetched"
    FINGERPRINT_COMPUTED = "fingerprint_computed"
    SKIPPED = "skipped"
    BUILT = "built"
    PACKAGED = "packaged"
    PUSHED = "pushed"
    STATE_PERSISTED = "state_persisted"
    FAILED = "failed"


SUCCESS_STATES = frozenset({PipelineState.SKIPPED, PipelineState.STATE_PERSISTED})


@dataclass
class PipelineResult:
    state: PipelineState = PipelineState.INIT
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.INIT])
    version: VersionTag | None = None
    previous_fingerprint: str | None = None
    fingerprint: str | None = None
    decision: PublishDecision | None = None
    package_version: str | None = None
    package_name: str | None = None
    dry_run: bool = False
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        if self.state == PipelineState.FAILED:
            return False
        return self.state in SUCCESS_STATES or self.dry_run

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        if isinstance(self.error, RunCancelledError):
            return 130
        return 1


class PipelineError(RunnerError):
    """ステージの失敗によりパイプラインが FAILED で終了したことを表す.

    Attributes:
        stage: 失敗したステージ名
        cause: 元の例外
        result: 失敗時点までの実行結果
    """

    def __init__(self, stage: str, cause: BaseException, result: PipelineResult) -> None:
        self.stage = stage
        self.cause = cause
        self.result = result
        super().__init__(f"Pipeline failed at stage '{stage}': {cause}")


class PublishPipeline:
    """1回の実行で1度だけ公開判定を行うパイプライン."""

    def __init__(
        self,
        version_source: VersionSource,
        artifact_source: ArtifactSource,
        builder: Builder,
        packager: Packager,
        registry: Registry,
        state_store: StateStore,
        work_dir: Path,
        credential: str = "",
        retry_policy: RetryPolicy | None = None,
        package_version: Callable[[VersionTag], str] | None = None,
        prune: list[str] | tuple[str, ...] = (),
        cancel_token: CancellationToken | None = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.version_source = version_source
        self.artifact_source = artifact_source
        self.builder = builder
        self.packager = packager
        self.registry = registry
        self.state_store = state_store
        self.work_dir = Path(work_dir)
        self.credential = credential
        self.retry_policy = retry_policy or RetryPolicy()
        self.package_version = package_version or (lambda v: v.normalized)
        self.prune = list(prune)
        self.cancel_token = cancel_token or CancellationToken()
        self.dry_run = dry_run
        self.sleep = sleep

    def _advance(self, result: PipelineResult, state: PipelineState) -> None:
        logger.info(f"[{result.state.value} -> {state.value}]")
        result.state = state
        result.history.append(state)

    def _fail(self, result: PipelineResult, stage: str, error: BaseException) -> PipelineError:
        result.error = error
        result.state = PipelineState.FAILED
        result.history.append(PipelineState.FAILED)
        logger.error(f"Stage '{stage}' failed: {error}")
        return PipelineError(stage, error, result)

    def run(self) -> PipelineResult:
        """パイプラインを実行する.

        Returns:
            SKIPPED / STATE_PERSISTED（dry run の場合は FINGERPRINT_COMPUTED）の結果

        Raises:
            PipelineError: いずれかのステージが失敗した場合（result.state は FAILED）
        """
        result = PipelineResult(dry_run=self.dry_run)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix="run-", dir=self.work_dir, ignore_cleanup_errors=True
        ) as tmp:
            self._run_stages(result, Path(tmp))
        return result

    def _run_stages(self, result: PipelineResult, run_dir: Path) -> None:
        stage = "read_state"
        try:
            self.cancel_token.raise_if_cancelled()
            result.previous_fingerprint = self.state_store.read_fingerprint()

            stage = "resolve_version"
            self.cancel_token.raise_if_cancelled()
            version = resolve_latest_stable(self.version_source)
            result.version = version
            self._advance(result, PipelineState.VERSION_RESOLVED)

            stage = "fetch_artifact"
            artifact = self._fetch(version, run_dir)
            self._advance(result, PipelineState.ARTIFACT_FETCHED)

            stage = "fingerprint"
            self.cancel_token.raise_if_cancelled()
            if self.prune:
                prune_payload(artifact, self.prune)
            result.fingerprint = compute_fingerprint(artifact)
            self._advance(result, PipelineState.FINGERPRINT_COMPUTED)

            result.decision = decide(result.previous_fingerprint, result.fingerprint)
            if result.decision == PublishDecision.SKIP:
                logger.info(f"Content unchanged for {version.name} ({result.fingerprint[:12]}); skipping publish")
                self._advance(result, PipelineState.SKIPPED)
                return

            if result.previous_fingerprint is None:
                logger.info("No recorded fingerprint; publishing")
            else:
                logger.info(
                    f"Fingerprint changed {result.previous_fingerprint[:12]} -> {result.fingerprint[:12]}; publishing"
                )
            if self.dry_run:
                logger.info(f"Dry run: would build and publish {version.name}")
                return

            stage = "build"
            self.cancel_token.raise_if_cancelled()
            executable = self.builder.build(artifact, self.cancel_token)
            self._advance(result, PipelineState.BUILT)

            stage = "pack"
            self.cancel_token.raise_if_cancelled()
            result.package_version = self.package_version(version)
            package = self.packager.pack(
                self.builder.payload_root(executable), result.package_version, self.cancel_token
            )
            result.package_name = package.name
            self._advance(result, PipelineState.PACKAGED)

            stage = "push"
            self.cancel_token.raise_if_cancelled()
            self.registry.push(package, self.credential, self.cancel_token)
            self._advance(result, PipelineState.PUSHED)
        except Exception as e:
            raise self._fail(result, stage, e) from e

        # push 後の失敗はパッケージを取り消さない。次回実行で再公開される
        stage = "persist_state"
        try:
            self.cancel_token.raise_if_cancelled()
            self._persist(version, result.fingerprint)
        except RunCancelledError as e:
            raise self._fail(result, stage, e) from e
        except Exception as e:
            raise self._fail(result, stage, StatePersistError(result.fingerprint, e)) from e
        self._advance(result, PipelineState.STATE_PERSISTED)

    def _fetch(self, version: VersionTag, run_dir: Path) -> Path:
        # リリース情報の問い合わせも一時的な失敗は再試行する
        url, filename = call_with_retry(
            lambda: (
                self.artifact_source.artifact_url(version),
                self.artifact_source.artifact_filename(version),
            ),
            f"artifact location of {version.name}",
            policy=self.retry_policy,
            cancel_token=self.cancel_token,
            sleep=self.sleep,
        )
        destination = run_dir / filename
        logger.info(f"Fetching {url}")
        fetch_with_retry(
            lambda partial: self.artifact_source.download(url, partial, self.cancel_token),
            destination,
            policy=self.retry_policy,
            cancel_token=self.cancel_token,
            sleep=self.sleep,
        )
        return self.artifact_source.unpack(destination, run_dir / "extracted")

    def _persist(self, version: VersionTag, fingerprint: str) -> None:
        self.state_store.write_fingerprint(fingerprint)
        if not self.state_store.has_pending_changes():
            logger.info("No pending changes in state store; nothing to commit")
            return
        self.state_store.commit_and_push(f"Automated update for {version.name}")
