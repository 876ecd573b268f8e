"""パイプラインが利用する外部コラボレータ（基底クラス）.

上流のタグ取得、成果物の取得、ビルド、パッケージ作成、レジストリへのpush、
状態の永続化をそれぞれ共通インターフェースで扱うための抽象基底クラスを定義します。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.version import VersionTag


class VersionSource(ABC):
    @abstractmethod
    def list_tags(self) -> list[str]:
        """タグ名を新しい順で返す.

        Raises:
            SourceUnavailableError: 上流に問い合わせできなかった場合
        """
        ...


class ArtifactSource(ABC):
    """バージョンに対応する成果物（ソースアーカイブ、リリースアセット）の取得元."""

    @abstractmethod
    def artifact_url(self, version: VersionTag) -> str:
        """取得URLを返す.

        Raises:
            ArtifactNotFoundError: 対応するアセットが存在しない場合
        """
        ...

    @abstractmethod
    def artifact_filename(self, version: VersionTag) -> str:
        ...

    @abstractmethod
    def download(self, url: str, destination: Path, cancel_token: CancellationToken) -> None:
        """url の内容を destination に書き込む.

        一時的な失敗は例外として送出し、fetch_with_retry に再試行を任せる。
        """
        ...

    @abstractmethod
    def unpack(self, archive: Path, dest_dir: Path) -> Path:
        """取得物を展開し、フィンガープリント対象のパスを返す."""
        ...


class Builder(ABC):
    """ソースツリーから実行ファイルを生成するビルダー.

    MSYS2 / MXE / ビルド済みアセットの各方式はこのクラスを継承します。
    """

    name: str = "base"

    @abstractmethod
    def build(self, source_path: Path, cancel_token: CancellationToken) -> Path:
        """ビルドを実行し、実行ファイルのパスを返す.

        Raises:
            BuildError: ツールチェーンが失敗した場合
            ArtifactNotFoundError: ビルド後に実行ファイルが見つからない場合
        """
        ...

    def payload_root(self, executable: Path) -> Path:
        """パッケージに含めるディレクトリ（既定: `<prefix>/bin/git.exe` の `<prefix>`）."""
        return executable.parent.parent


class Packager(ABC):
    @abstractmethod
    def pack(self, path: Path, version: str, cancel_token: CancellationToken) -> Path:
        """path の内容を version としてパッケージ化し、パッケージファイルを返す."""
        ...


class Registry(ABC):
    @abstractmethod
    def push(self, package_path: Path, credential: str, cancel_token: CancellationToken) -> None:
        """パッケージをレジストリへ公開する. 失敗は致命的（ここでは再試行しない）."""
        ...


class StateStore(ABC):
    """前回公開時のフィンガープリントの保存先."""

    @abstractmethod
    def read_fingerprint(self) -> str | None:
        ...

    @abstractmethod
    def write_fingerprint(self, fingerprint: str) -> None:
        ...

    @abstractmethod
    def has_pending_changes(self) -> bool:
        ...

    @abstractmethod
    def commit_and_push(self, message: str) -> None:
        ...
