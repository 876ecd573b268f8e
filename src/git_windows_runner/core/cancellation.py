"""Cooperative cancellation shared by every suspension point of a run."""

from __future__ import annotations

import threading

from .exceptions import RunCancelledError


class CancellationToken:
    """キャンセル要求を保持するトークン.

    fetch、リトライ待機、外部プロセス実行の各箇所で確認されます。
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError("Run cancelled")

    def sleep(self, seconds: float) -> None:
        """最大 seconds 秒待機する. 待機中にキャンセルされたら即座に RunCancelledError."""
        if self._event.wait(timeout=max(seconds, 0.0)):
            raise RunCancelledError("Run cancelled during backoff delay")
