"""ファイル/ディレクトリのコンテンツフィンガープリント.

ディレクトリは相対パス（POSIX表記）の辞書順で全ファイルを走査し、
パスと内容を1つのダイジェストに畳み込みます。タイムスタンプやパーミッションは
入力に含めないため、同一内容なら環境や実行順に依らず同じ値になります。
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from loguru import logger

from .exceptions import PathNotFoundError

HASH_NAME = "sha3_256"
_CHUNK_SIZE = 1024 * 1024


def _new_digest() -> hashlib._Hash:
    return hashlib.new(HASH_NAME)


def _update_from_file(digest: hashlib._Hash, path: Path) -> int:
    size = 0
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            digest.update(chunk)
            size += len(chunk)
    return size


def iter_files(root: Path) -> list[tuple[str, Path]]:
    """root 配下の通常ファイルを (POSIX相対パス, 絶対パス) の辞書順リストで返す."""
    files = [(p.relative_to(root).as_posix(), p) for p in root.rglob("*") if p.is_file()]
    files.sort(key=lambda item: item[0])
    return files


def fingerprint_file(path: Path) -> str:
    digest = _new_digest()
    _update_from_file(digest, path)
    return digest.hexdigest()


def fingerprint_directory(root: Path) -> str:
    digest = _new_digest()
    files = iter_files(root)
    for rel_path, abs_path in files:
        encoded = rel_path.encode("utf-8")
        # パス長・内容長で区切り、境界の曖昧さをなくす
        digest.update(len(encoded).to_bytes(8, "big"))
        digest.update(encoded)
        digest.update(abs_path.stat().st_size.to_bytes(8, "big"))
        _update_from_file(digest, abs_path)
    logger.debug(f"Fingerprinted {len(files)} files under {root}")
    return digest.hexdigest()


def compute_fingerprint(path: Path | str) -> str:
    """パスのフィンガープリント（SHA3-256 の16進文字列）を計算.

    Args:
        path: ファイルまたはディレクトリ

    Returns:
        64文字の小文字16進ダイジェスト

    Raises:
        PathNotFoundError: パスが存在しない場合
    """
    path = Path(path)
    if not path.exists():
        raise PathNotFoundError(path)

    if path.is_dir():
        fingerprint = fingerprint_directory(path)
    else:
        fingerprint = fingerprint_file(path)

    logger.info(f"Fingerprint of {path.name}: {fingerprint[:12]}")
    return fingerprint
