"""フィンガープリント比較による公開判定."""

from __future__ import annotations

from enum import Enum


class PublishDecision(str, Enum):
    PUBLISH = "publish"
    SKIP = "skip"


def decide(old_fingerprint: str | None, new_fingerprint: str) -> PublishDecision:
    """前回記録したフィンガープリントと比較して公開要否を判定.

    - 記録なし: PUBLISH（初回実行）
    - 一致: SKIP（同一内容の二重公開を防ぐ）
    - 不一致: PUBLISH

    Args:
        old_fingerprint: 永続化済みのフィンガープリント（なければ None）
        new_fingerprint: 今回計算したフィンガープリント

    Returns:
        PublishDecision
    """
    if old_fingerprint is None:
        return PublishDecision.PUBLISH
    if old_fingerprint == new_fingerprint:
        return PublishDecision.SKIP
    return PublishDecision.PUBLISH
