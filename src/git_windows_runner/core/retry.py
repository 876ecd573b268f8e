"""指数バックオフ付きの取得処理."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from loguru import logger

from .cancellation import CancellationToken
from .exceptions import (
    ArtifactNotFoundError,
    FetchExhaustedError,
    InvariantViolationError,
    RunCancelledError,
)

T = TypeVar("T")

# 再試行しても結果が変わらないエラー
NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    ArtifactNotFoundError,
    InvariantViolationError,
    RunCancelledError,
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 2.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.backoff_multiplier < 1:
            raise ValueError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")

    def delay_for(self, attempt: int) -> float:
        """attempt 回目の失敗後に待機する秒数（attempt は1始まり）."""
        return self.initial_delay * self.backoff_multiplier ** (attempt - 1)


def _partial_path(destination: Path) -> Path:
    return destination.with_name(f"{destination.name}.partial")


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def call_with_retry(
    operation: Callable[[], T],
    target: str,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """operation を指数バックオフ付きで実行し、その戻り値を返す.

    Args:
        operation: 引数なしの取得処理
        target: ログと例外メッセージに使う取得対象の名前
        policy: リトライ設定
        cancel_token: キャンセルトークン（待機中も監視される）
        sleep: 待機関数（テスト用の差し替え口）

    Raises:
        FetchExhaustedError: max_attempts 回すべて失敗した場合
        ArtifactNotFoundError, InvariantViolationError, RunCancelledError:
            再試行せずにそのまま送出
    """
    policy = policy or RetryPolicy()
    cancel_token = cancel_token or CancellationToken()
    sleep = sleep or cancel_token.sleep

    last_error: Exception | None = None
    for attempt in range(1, policy.max_attempts + 1):
        cancel_token.raise_if_cancelled()
        try:
            value = operation()
            if attempt > 1:
                logger.info(f"Fetch of {target} succeeded on attempt {attempt}/{policy.max_attempts}")
            return value
        except NON_RETRYABLE_ERRORS:
            raise
        except Exception as e:
            last_error = e

        if attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"Fetch of {target} attempt {attempt}/{policy.max_attempts} failed: {last_error}; "
                f"retrying in {delay:g}s"
            )
            sleep(delay)
            cancel_token.raise_if_cancelled()

    logger.error(f"Fetch of {target} failed after {policy.max_attempts} attempt(s): {last_error}")
    raise FetchExhaustedError(target, policy.max_attempts, last_error) from last_error


def fetch_with_retry(
    fetch: Callable[[Path], None],
    destination: Path | str,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Path:
    """fetch を指数バックオフ付きで実行し、destination に完全な内容を配置する.

    fetch には一時ファイル名（`<destination>.partial`）が渡され、成功時のみ
    destination へアトミックにリネームされる。失敗時の一時ファイルは削除される。

    Returns:
        destination

    Raises:
        FetchExhaustedError: max_attempts 回すべて失敗した場合
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = _partial_path(destination)

    def attempt() -> Path:
        _remove_quietly(partial)
        try:
            fetch(partial)
            os.replace(partial, destination)
        except Exception:
            _remove_quietly(partial)
            raise
        return destination

    return call_with_retry(attempt, str(destination), policy=policy, cancel_token=cancel_token, sleep=sleep)
