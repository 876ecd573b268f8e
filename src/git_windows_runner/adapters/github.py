"""GitHub からのタグ一覧・ソースアーカイブ・リリースアセットの取得."""

from __future__ import annotations

from pathlib import Path

import httpx
from loguru import logger

from git_windows_runner.core.archive import extract_tarball, extract_zip, validate_gzip
from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.exceptions import (
    ArtifactNotFoundError,
    SourceUnavailableError,
    TransientIOError,
)
from git_windows_runner.core.version import VersionTag

from .base import ArtifactSource, VersionSource

API_BASE = "https://api.github.com"
USER_AGENT = "git-windows-runner/1.0"
ARCHIVE_URL_TEMPLATE = "https://github.com/{owner}/{repo}/archive/refs/tags/{tag}.tar.gz"

# 再試行しても変わらないHTTPステータス
_NOT_FOUND_STATUSES = {404, 410}


def create_client(token: str | None = None, timeout: float = 60.0) -> httpx.Client:
    """GitHub 用の httpx.Client を作成（User-Agent必須、トークンは任意）."""
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "application/vnd.github+json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.Client(headers=headers, timeout=timeout, follow_redirects=True)


def stream_to_file(
    client: httpx.Client,
    url: str,
    destination: Path,
    cancel_token: CancellationToken,
) -> int:
    """url の内容を destination にストリーム保存し、書き込んだバイト数を返す.

    Raises:
        ArtifactNotFoundError: 404/410 の場合
        TransientIOError: 通信エラーまたはその他のエラーステータスの場合
    """
    written = 0
    try:
        with client.stream("GET", url) as r:
            if r.status_code in _NOT_FOUND_STATUSES:
                raise ArtifactNotFoundError(f"Not found: {url} (HTTP {r.status_code})")
            if r.status_code >= 400:
                raise TransientIOError(f"HTTP {r.status_code} while downloading {url}")
            with open(destination, "wb") as f:
                for chunk in r.iter_bytes():
                    cancel_token.raise_if_cancelled()
                    f.write(chunk)
                    written += len(chunk)
    except httpx.HTTPError as e:
        raise TransientIOError(f"Download of {url} failed: {e}") from e

    logger.info(f"Downloaded {written:,} bytes from {url}")
    return written


class GitHubTagsSource(VersionSource):
    """`GET /repos/{owner}/{repo}/tags` によるタグ一覧（新しい順）."""

    def __init__(
        self,
        owner: str,
        repo: str,
        client: httpx.Client,
        per_page: int = 100,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.client = client
        self.per_page = per_page
        self.cancel_token = cancel_token or CancellationToken()

    @property
    def url(self) -> str:
        return f"{API_BASE}/repos/{self.owner}/{self.repo}/tags"

    def list_tags(self) -> list[str]:
        self.cancel_token.raise_if_cancelled()
        logger.info(f"Querying tags of {self.owner}/{self.repo}")
        try:
            r = self.client.get(self.url, params={"per_page": self.per_page})
        except httpx.HTTPError as e:
            raise SourceUnavailableError(self.url, str(e)) from e

        if r.status_code != 200:
            raise SourceUnavailableError(self.url, f"HTTP {r.status_code}")

        try:
            payload = r.json()
        except ValueError as e:
            raise SourceUnavailableError(self.url, f"invalid JSON: {e}") from e

        if not isinstance(payload, list):
            raise SourceUnavailableError(self.url, "unexpected response shape")

        return [t["name"] for t in payload if isinstance(t, dict) and t.get("name")]


class GitHubArchiveSource(ArtifactSource):
    """タグのソースアーカイブ（tar.gz）."""

    def __init__(
        self,
        owner: str,
        repo: str,
        client: httpx.Client,
        url_template: str = ARCHIVE_URL_TEMPLATE,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.client = client
        self.url_template = url_template

    def artifact_url(self, version: VersionTag) -> str:
        return self.url_template.format(
            owner=self.owner,
            repo=self.repo,
            tag=version.name,
            version=version.normalized,
        )

    def artifact_filename(self, version: VersionTag) -> str:
        return f"{self.repo}-{version.normalized}.tar.gz"

    def download(self, url: str, destination: Path, cancel_token: CancellationToken) -> None:
        stream_to_file(self.client, url, destination, cancel_token)
        validate_gzip(destination)

    def unpack(self, archive: Path, dest_dir: Path) -> Path:
        return extract_tarball(archive, dest_dir)


class GitHubReleaseAssetSource(ArtifactSource):
    """リリースに添付されたアセットのうち、名前に全パターンを含むもの.

    例: git-for-windows/git の "MinGit-2.45.0-64-bit.zip"
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        client: httpx.Client,
        name_patterns: list[str],
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.client = client
        self.name_patterns = list(name_patterns)
        self._assets: dict[str, dict] = {}

    def _find_asset(self, version: VersionTag) -> dict:
        if version.name in self._assets:
            return self._assets[version.name]

        url = f"{API_BASE}/repos/{self.owner}/{self.repo}/releases/tags/{version.name}"
        try:
            r = self.client.get(url)
        except httpx.HTTPError as e:
            raise TransientIOError(f"Release lookup {url} failed: {e}") from e
        if r.status_code in _NOT_FOUND_STATUSES:
            raise ArtifactNotFoundError(f"No release for tag {version.name} in {self.owner}/{self.repo}")
        if r.status_code != 200:
            raise TransientIOError(f"HTTP {r.status_code} while looking up release {version.name}")

        try:
            payload = r.json()
        except ValueError as e:
            raise SourceUnavailableError(url, f"invalid JSON: {e}") from e
        assets = payload.get("assets") if isinstance(payload, dict) else None
        if not isinstance(assets, list):
            raise SourceUnavailableError(url, "unexpected response shape")

        patterns = [p.lower() for p in self.name_patterns]
        for asset in assets:
            if not isinstance(asset, dict):
                continue
            name = asset.get("name", "")
            if all(p in name.lower() for p in patterns):
                logger.info(f"Matched release asset: {name}")
                self._assets[version.name] = asset
                return asset

        raise ArtifactNotFoundError(
            f"No release asset of {version.name} matches patterns {self.name_patterns}"
        )

    def artifact_url(self, version: VersionTag) -> str:
        return self._find_asset(version)["browser_download_url"]

    def artifact_filename(self, version: VersionTag) -> str:
        return self._find_asset(version)["name"]

    def download(self, url: str, destination: Path, cancel_token: CancellationToken) -> None:
        stream_to_file(self.client, url, destination, cancel_token)

    def unpack(self, archive: Path, dest_dir: Path) -> Path:
        if archive.name.endswith((".tar.gz", ".tgz")):
            return extract_tarball(archive, dest_dir)
        return extract_zip(archive, dest_dir)
