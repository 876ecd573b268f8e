"""対象リポジトリ内のハッシュファイル（sidecar）による状態管理."""

from __future__ import annotations

import shutil
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from loguru import logger

from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.process import run_command

from .base import StateStore


def authenticated_url(url: str, username: str | None, token: str | None) -> str:
    """https URL に認証情報を埋め込む（トークンがなければそのまま）."""
    if not token:
        return url
    parts = urlsplit(url)
    user = username or "x-access-token"
    netloc = f"{user}:{token}@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def clone_repository(
    url: str,
    dest: Path,
    username: str | None = None,
    token: str | None = None,
    cancel_token: CancellationToken | None = None,
) -> Path:
    """対象リポジトリを dest に clone する（既存なら作り直す）.

    Args:
        url: リポジトリURL
        dest: clone 先
        username: push 用ユーザー名
        token: push 用トークン

    Returns:
        clone したディレクトリ
    """
    if dest.exists():
        logger.warning(f"Removing existing directory: {dest}")
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Cloning {url}")
    run_command(
        ["git", "clone", "--depth", "1", authenticated_url(url, username, token), str(dest)],
        cancel_token=cancel_token,
        secrets=[token] if token else [],
    )
    return dest


class GitSidecarStateStore(StateStore):
    """フィンガープリントをリポジトリ内のファイルとして保存し、commit/push する."""

    def __init__(
        self,
        repo_dir: Path,
        state_file: str = "hash.txt",
        author_name: str | None = None,
        author_email: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.repo_dir = Path(repo_dir)
        self.state_path = self.repo_dir / state_file
        self.author_name = author_name
        self.author_email = author_email
        self.cancel_token = cancel_token or CancellationToken()

    def _git(self, *args: str) -> str:
        identity = []
        if self.author_name:
            identity += ["-c", f"user.name={self.author_name}"]
        if self.author_email:
            identity += ["-c", f"user.email={self.author_email}"]
        return run_command(["git", *identity, *args], cwd=self.repo_dir, cancel_token=self.cancel_token)

    def read_fingerprint(self) -> str | None:
        if not self.state_path.exists():
            logger.info(f"No recorded fingerprint at {self.state_path.name}")
            return None
        value = self.state_path.read_text(encoding="utf-8").strip()
        return value or None

    def write_fingerprint(self, fingerprint: str) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self.state_path.write_text(fingerprint, encoding="utf-8")
        logger.info(f"Recorded fingerprint {fingerprint[:12]} to {self.state_path.name}")

    def has_pending_changes(self) -> bool:
        return bool(self._git("status", "--porcelain").strip())

    def commit_and_push(self, message: str) -> None:
        self._git("add", "--all")
        self._git("commit", "-m", message)
        self._git("push")
        logger.info(f"Committed and pushed: {message}")
