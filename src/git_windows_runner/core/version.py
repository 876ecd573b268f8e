"""上流タグ一覧から最新の安定版を選択する."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from .exceptions import NoStableVersionFoundError

if TYPE_CHECKING:
    from git_windows_runner.adapters.base import VersionSource

# 大文字小文字を区別せずに部分一致で判定するプレリリース識別子
PRERELEASE_MARKERS = ("-rc", "-beta", "-alpha")

VERSION_PREFIXES = ("v", "V")


def is_prerelease(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in PRERELEASE_MARKERS)


def normalize_tag_name(name: str) -> str:
    """先頭のバージョンプレフィックス（`v`）を1文字だけ取り除く.

    Args:
        name: 上流のタグ名（例: "v2.45.0"）

    Returns:
        正規化済みの名前（例: "2.45.0"）
    """
    if name[:1] in VERSION_PREFIXES:
        return name[1:]
    return name


@dataclass(frozen=True)
class VersionTag:
    name: str

    @property
    def normalized(self) -> str:
        return normalize_tag_name(self.name)

    @property
    def prerelease(self) -> bool:
        return is_prerelease(self.name)

    def __str__(self) -> str:
        return self.name


def select_latest_stable(candidates: list[str] | None) -> VersionTag:
    """候補リスト（新しい順）から最初の安定版タグを返す.

    Args:
        candidates: タグ名のリスト。上流の並び（新しい順）をそのまま使う

    Returns:
        最初に見つかった安定版の VersionTag

    Raises:
        NoStableVersionFoundError: リストが空、または全てプレリリースの場合
    """
    if not candidates:
        raise NoStableVersionFoundError(candidates)

    for name in candidates:
        if not name:
            continue
        tag = VersionTag(name)
        if tag.prerelease:
            logger.debug(f"Skipping pre-release tag: {name}")
            continue
        return tag

    raise NoStableVersionFoundError(candidates)


def resolve_latest_stable(source: VersionSource) -> VersionTag:
    """VersionSource に問い合わせて最新の安定版を解決する.

    SourceUnavailableError はここでは再試行せずそのまま伝播させる。
    """
    tags = source.list_tags()
    logger.info(f"Received {len(tags) if tags else 0} tags from upstream")
    version = select_latest_stable(tags)
    logger.info(f"Latest stable version: {version.name} (normalized: {version.normalized})")
    return version
