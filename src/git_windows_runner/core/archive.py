"""取得したアーカイブの検証と展開."""

from __future__ import annotations

import gzip
import tarfile
import zipfile
import zlib
from pathlib import Path

from loguru import logger

from .exceptions import ArtifactNotFoundError, InvariantViolationError

GZIP_MAGIC = b"\x1f\x8b"


def validate_gzip(path: Path) -> None:
    """gzipのマジックバイトを確認する.

    Raises:
        InvariantViolationError: gzipでない（HTMLエラーページ等を保存した）場合
    """
    with open(path, "rb") as f:
        head = f.read(2)
    if head != GZIP_MAGIC:
        raise InvariantViolationError(f"{path} is not a valid gzip archive")


def extract_tarball(archive: Path, dest_dir: Path) -> Path:
    """tar.gz を展開し、ソースのルートディレクトリを返す.

    GitHub のタグアーカイブは `<repo>-<version>/` の単一ディレクトリを含むので、
    トップレベルが1ディレクトリならそのパスを返す。

    Args:
        archive: tar.gz のパス
        dest_dir: 展開先

    Returns:
        展開されたソースのルート
    """
    validate_gzip(archive)
    dest_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Extracting {archive.name} into {dest_dir}")
    try:
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(dest_dir, filter="data")
    except (tarfile.TarError, EOFError, zlib.error, gzip.BadGzipFile) as e:
        raise InvariantViolationError(f"Failed to extract {archive}: {e}") from e

    entries = list(dest_dir.iterdir())
    if not entries:
        raise ArtifactNotFoundError(f"Archive {archive} is empty")
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return dest_dir


def extract_zip(archive: Path, dest_dir: Path) -> Path:
    """zip（MinGit 等のポータブル版）を展開して展開先を返す."""
    if not zipfile.is_zipfile(archive):
        raise InvariantViolationError(f"{archive} is not a valid zip archive")
    dest_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Extracting {archive.name} into {dest_dir}")
    with zipfile.ZipFile(archive) as zf:
        bad_member = zf.testzip()
        if bad_member is not None:
            raise InvariantViolationError(f"Corrupted member in {archive}: {bad_member}")
        zf.extractall(dest_dir)

    if not any(dest_dir.iterdir()):
        raise ArtifactNotFoundError(f"Archive {archive} is empty")
    return dest_dir


def prune_payload(root: Path, relative_paths: list[str]) -> list[Path]:
    """配布に不要なファイルを削除する.

    Args:
        root: ペイロードのルート
        relative_paths: root からの相対パス（存在しないものは無視）

    Returns:
        実際に削除したパスのリスト
    """
    removed = []
    for rel in relative_paths:
        target = root / rel
        if target.is_file():
            target.unlink()
            removed.append(target)
    if removed:
        logger.info(f"Pruned {len(removed)} unneeded files from payload")
    return removed
