"""Integration tests for the publish pipeline.

This module runs the whole pipeline against in-memory collaborators:
- First publish and idempotent re-run
- Republish on content change
- Stage failures and state atomicity
- Cancellation and dry run
"""

import io
import zipfile
from pathlib import Path

import httpx
import pytest

from git_windows_runner.adapters.github import GitHubReleaseAssetSource
from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.exceptions import (
    FetchExhaustedError,
    NoStableVersionFoundError,
    PublishError,
    RunCancelledError,
    StatePersistError,
)
from git_windows_runner.core.gate import PublishDecision
from git_windows_runner.core.retry import RetryPolicy
from git_windows_runner.pipeline import PipelineError, PipelineState
from tests.fakes import FakeArtifactSource, FakeBuilder, FakeRegistry, FakeStateStore, FakeVersionSource

RELEASE_PATH = "/repos/git-for-windows/git/releases/tags/v2.45.0"

FAST_RETRY = RetryPolicy(max_attempts=3, initial_delay=1, backoff_multiplier=2)


@pytest.mark.integration
class TestPublishFlow:
    """公開フローの統合テスト."""

    def test_first_run_publishes(self, make_pipeline, builder, packager, registry, state_store) -> None:
        """記録がない初回実行でビルド・公開・状態保存まで完了すること."""
        result = make_pipeline().run()

        assert result.state == PipelineState.STATE_PERSISTED
        assert result.history == [
            PipelineState.INIT,
            PipelineState.VERSION_RESOLVED,
            PipelineState.ARTIFACT_FETCHED,
            PipelineState.FINGERPRINT_COMPUTED,
            PipelineState.BUILT,
            PipelineState.PACKAGED,
            PipelineState.PUSHED,
            PipelineState.STATE_PERSISTED,
        ]
        assert result.version.name == "v2.45.0"
        assert result.previous_fingerprint is None
        assert result.decision == PublishDecision.PUBLISH
        assert result.exit_code == 0

        assert builder.calls == 1
        assert packager.calls[0][1] == "2.45.0"
        assert registry.pushed == ["Git.Windows.2.45.0.nupkg"]
        assert state_store.committed == result.fingerprint
        assert state_store.commits == ["Automated update for v2.45.0"]

    def test_second_identical_run_is_noop(self, make_pipeline, builder, packager, registry, state_store) -> None:
        """同じ内容での再実行はビルドもpushも状態更新もしないこと."""
        first = make_pipeline().run()
        second = make_pipeline().run()

        assert second.state == PipelineState.SKIPPED
        assert second.decision == PublishDecision.SKIP
        assert second.fingerprint == first.fingerprint
        assert second.exit_code == 0
        assert builder.calls == 1
        assert len(packager.calls) == 1
        assert registry.pushed == ["Git.Windows.2.45.0.nupkg"]
        assert state_store.commits == ["Automated update for v2.45.0"]

    def test_content_change_republishes(self, make_pipeline, artifact_source, registry, state_store) -> None:
        first = make_pipeline().run()

        artifact_source.files["cmd/git.exe"] = b"MZ-git-rebuilt"
        second = make_pipeline().run()

        assert second.state == PipelineState.STATE_PERSISTED
        assert second.previous_fingerprint == first.fingerprint
        assert second.fingerprint != first.fingerprint
        assert len(registry.pushed) == 2
        assert state_store.committed == second.fingerprint

    def test_version_source_queried_once_per_run(self, make_pipeline, version_source) -> None:
        make_pipeline().run()
        assert version_source.calls == 1

    def test_run_directory_is_cleaned_up(self, make_pipeline, tmp_path: Path) -> None:
        make_pipeline().run()
        assert list((tmp_path / "work").iterdir()) == []

    def test_payload_root_is_packed(self, make_pipeline, packager) -> None:
        make_pipeline().run()
        assert packager.calls[0][0].name == "extracted"

    def test_package_version_callable(self, make_pipeline, packager, registry) -> None:
        result = make_pipeline(package_version=lambda version: "3.0.7").run()

        assert result.package_version == "3.0.7"
        assert result.package_name == "Git.Windows.3.0.7.nupkg"
        assert packager.calls[0][1] == "3.0.7"
        assert registry.pushed == ["Git.Windows.3.0.7.nupkg"]

    def test_pruned_files_do_not_affect_fingerprint(self, make_pipeline) -> None:
        """削除対象のファイルはフィンガープリントに含まれないこと."""
        pruned = make_pipeline(prune=["etc/gitconfig"]).run()
        plain = make_pipeline(
            artifact_source=FakeArtifactSource({"cmd/git.exe": b"MZ-git"}),
            state_store=FakeStateStore(),
        ).run()

        assert pruned.fingerprint == plain.fingerprint

    def test_transient_fetch_failures_recovered(self, make_pipeline, sleeps) -> None:
        source = FakeArtifactSource({"cmd/git.exe": b"MZ"}, transient_failures=2)

        result = make_pipeline(artifact_source=source, retry_policy=FAST_RETRY).run()

        assert result.state == PipelineState.STATE_PERSISTED
        assert source.downloads == 3
        assert sleeps == [1, 2]

    def test_dry_run_stops_after_decision(self, make_pipeline, builder, registry, state_store) -> None:
        result = make_pipeline(dry_run=True).run()

        assert result.state == PipelineState.FINGERPRINT_COMPUTED
        assert result.decision == PublishDecision.PUBLISH
        assert result.succeeded
        assert result.exit_code == 0
        assert builder.calls == 0
        assert registry.pushed == []
        assert state_store.committed is None


@pytest.mark.integration
class TestPipelineFailures:
    """ステージ失敗時の統合テスト."""

    def test_no_stable_version(self, make_pipeline, artifact_source) -> None:
        pipeline = make_pipeline(version_source=FakeVersionSource(["v3.0.0-rc1", "v3.0.0-beta2"]))

        with pytest.raises(PipelineError) as exc_info:
            pipeline.run()

        error = exc_info.value
        assert error.stage == "resolve_version"
        assert isinstance(error.cause, NoStableVersionFoundError)
        assert error.result.state == PipelineState.FAILED
        assert error.result.exit_code == 1
        assert artifact_source.downloads == 0

    def test_fetch_exhausted(self, make_pipeline, builder, sleeps) -> None:
        """3回とも失敗したら1s, 2s待機後に fetch_artifact で失敗し、ビルドしないこと."""
        source = FakeArtifactSource({"cmd/git.exe": b"MZ"}, transient_failures=100)

        with pytest.raises(PipelineError) as exc_info:
            make_pipeline(artifact_source=source, retry_policy=FAST_RETRY).run()

        assert exc_info.value.stage == "fetch_artifact"
        assert isinstance(exc_info.value.cause, FetchExhaustedError)
        assert source.downloads == 3
        assert sleeps == [1, 2]
        assert builder.calls == 0

    def test_push_failure_leaves_state_untouched(self, make_pipeline, state_store) -> None:
        """push失敗時はフィンガープリントを記録しないこと."""
        with pytest.raises(PipelineError) as exc_info:
            make_pipeline(registry=FakeRegistry(fail=True)).run()

        assert exc_info.value.stage == "push"
        assert isinstance(exc_info.value.cause, PublishError)
        assert exc_info.value.result.history[-2] == PipelineState.PACKAGED
        assert state_store.committed is None
        assert state_store.working is None

    def test_persist_failure_self_heals(self, make_pipeline, registry, state_store) -> None:
        """push成功後に状態保存が失敗しても、次回実行で再公開されて整合すること."""
        # 1. push は成功するがコミットに失敗
        state_store.fail_commit = True
        with pytest.raises(PipelineError) as exc_info:
            make_pipeline().run()

        error = exc_info.value
        assert error.stage == "persist_state"
        assert isinstance(error.cause, StatePersistError)
        assert "next run will republish" in str(error.cause)
        assert error.result.state == PipelineState.FAILED
        assert PipelineState.PUSHED in error.result.history
        assert registry.pushed == ["Git.Windows.2.45.0.nupkg"]
        assert state_store.committed is None

        # 2. 次回実行では記録がないため再公開される
        state_store.fail_commit = False
        result = make_pipeline().run()

        assert result.state == PipelineState.STATE_PERSISTED
        assert len(registry.pushed) == 2
        assert state_store.committed == result.fingerprint

    def test_cancelled_before_start(self, make_pipeline, version_source) -> None:
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PipelineError) as exc_info:
            make_pipeline(cancel_token=token).run()

        assert isinstance(exc_info.value.cause, RunCancelledError)
        assert exc_info.value.result.exit_code == 130
        assert version_source.calls == 0

    def test_cancelled_during_build(self, make_pipeline, packager, state_store) -> None:
        """ビルド中のキャンセルで以降のステージに進まないこと."""
        token = CancellationToken()

        class CancellingBuilder(FakeBuilder):
            def build(self, source_path, cancel_token):
                exe = super().build(source_path, cancel_token)
                token.cancel()
                return exe

        with pytest.raises(PipelineError) as exc_info:
            make_pipeline(builder=CancellingBuilder(), cancel_token=token).run()

        assert exc_info.value.stage == "pack"
        assert exc_info.value.result.exit_code == 130
        assert packager.calls == []
        assert state_store.committed is None

    def test_cancelled_after_push_does_not_persist(self, make_pipeline, state_store) -> None:
        """push直後のキャンセルでは状態を記録せず、終了コードは130になること."""
        token = CancellationToken()

        class CancellingRegistry(FakeRegistry):
            def push(self, package_path, credential, cancel_token):
                super().push(package_path, credential, cancel_token)
                token.cancel()

        cancelling = CancellingRegistry()
        with pytest.raises(PipelineError) as exc_info:
            make_pipeline(registry=cancelling, cancel_token=token).run()

        error = exc_info.value
        assert error.stage == "persist_state"
        assert isinstance(error.cause, RunCancelledError)
        assert error.result.state == PipelineState.FAILED
        assert error.result.exit_code == 130
        assert cancelling.pushed == ["Git.Windows.2.45.0.nupkg"]
        assert state_store.working is None
        assert state_store.commits == []


def _mingit_zip() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("cmd/git.exe", b"MZ-mingit")
        zf.writestr("etc/gitconfig", b"[core]\n")
    return buffer.getvalue()


@pytest.mark.integration
class TestReleaseAssetSource:
    """リリースアセット取得元を使った統合テスト（httpx.MockTransport）."""

    def test_release_lookup_retried_after_server_error(self, make_pipeline, registry, sleeps) -> None:
        """リリース情報の問い合わせが一度502でも再試行して公開まで進むこと."""
        release_calls: list[int] = []
        archive = _mingit_zip()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == RELEASE_PATH:
                release_calls.append(1)
                if len(release_calls) == 1:
                    return httpx.Response(502)
                return httpx.Response(
                    200,
                    json={
                        "assets": [
                            {
                                "name": "MinGit-2.45.0-64-bit.zip",
                                "browser_download_url": "https://dl.example/MinGit-2.45.0-64-bit.zip",
                            }
                        ]
                    },
                )
            return httpx.Response(200, content=archive)

        client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
        source = GitHubReleaseAssetSource("git-for-windows", "git", client, ["MinGit", "64-bit"])

        result = make_pipeline(artifact_source=source, retry_policy=FAST_RETRY).run()

        assert result.state == PipelineState.STATE_PERSISTED
        assert len(release_calls) == 2
        assert sleeps == [1]
        assert registry.pushed == ["Git.Windows.2.45.0.nupkg"]

    def test_release_lookup_exhausted(self, make_pipeline, builder, sleeps) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        source = GitHubReleaseAssetSource("git-for-windows", "git", client, ["MinGit"])

        with pytest.raises(PipelineError) as exc_info:
            make_pipeline(artifact_source=source, retry_policy=FAST_RETRY).run()

        assert exc_info.value.stage == "fetch_artifact"
        assert isinstance(exc_info.value.cause, FetchExhaustedError)
        assert sleeps == [1, 2]
        assert builder.calls == 0
