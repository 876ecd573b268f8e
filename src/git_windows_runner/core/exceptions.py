"""Runner exceptions.

パイプラインの各ステージが送出する例外クラスを定義します。
"""

from __future__ import annotations

from pathlib import Path


class RunnerError(Exception):
    """git-windows-runner の全例外の基底クラス."""


class TransientIOError(RunnerError):
    """再試行可能なI/Oエラー（ネットワーク断、5xx応答など）.

    fetch_with_retry の内部でのみ再試行されます。
    """


class SourceUnavailableError(RunnerError):
    """上流のタグ一覧を取得できなかった場合の例外.

    Attributes:
        source: 問い合わせ先（URL など）
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Upstream source unavailable: {source} ({reason})")


class ArtifactNotFoundError(RunnerError):
    """対象が存在しない（リリースアセット、ビルド成果物など）.

    再試行されず、常に致命的エラーとして扱います。
    """


class NoStableVersionFoundError(ArtifactNotFoundError):
    """安定版タグが1つも見つからなかった場合の例外.

    Attributes:
        candidates: 判定対象だったタグ名
    """

    def __init__(self, candidates: list[str] | None) -> None:
        self.candidates = list(candidates or [])
        if self.candidates:
            message = f"No stable version found among {len(self.candidates)} tags"
        else:
            message = "No stable version found: tag list is empty"
        super().__init__(message)


class PathNotFoundError(ArtifactNotFoundError):
    """フィンガープリント対象のパスが存在しない場合の例外."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"Path not found: {self.path}")


class InvariantViolationError(RunnerError):
    """取得物が構造チェックに失敗した場合の例外（例: gzipでないアーカイブ）."""


class FetchExhaustedError(RunnerError):
    """最大試行回数まで取得に失敗した場合の例外.

    Attributes:
        target: 取得対象（保存先パスまたは説明）
        attempts: 実行した試行回数
        last_error: 最後の試行で発生した例外
    """

    def __init__(self, target: Path | str, attempts: int, last_error: BaseException) -> None:
        self.target = str(target)
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Fetch of {self.target} failed after {attempts} attempt(s): {last_error}")


class BuildError(RunnerError):
    """ビルダー（ツールチェーン）が失敗した場合の例外."""


class CommandError(BuildError):
    """外部プロセスが0以外の終了コードで終了した場合の例外.

    Attributes:
        command: 実行したコマンドライン
        returncode: 終了コード
    """

    def __init__(self, command: list[str], returncode: int, output: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        tail = output.strip().splitlines()[-5:] if output else []
        message = f"Command failed with exit code {returncode}: {' '.join(self.command)}"
        if tail:
            message += "\n" + "\n".join(tail)
        super().__init__(message)


class PublishError(RunnerError):
    """パッケージ作成またはレジストリへのpushに失敗した場合の例外."""


class StatePersistError(RunnerError):
    """pushは成功したがフィンガープリントの永続化に失敗した場合の例外.

    パッケージは公開済みのため取り消しは行いません。次回実行時の比較で
    再度 Publish 判定となり、自己修復されます。
    """

    def __init__(self, fingerprint: str, cause: BaseException) -> None:
        self.fingerprint = fingerprint
        self.cause = cause
        super().__init__(
            f"Package was pushed but fingerprint {fingerprint[:12]} could not be persisted: {cause}. "
            "Published package and recorded state are now inconsistent; "
            "the next run will republish."
        )


class RunCancelledError(RunnerError):
    """協調的キャンセルにより実行が中断された場合の例外."""
