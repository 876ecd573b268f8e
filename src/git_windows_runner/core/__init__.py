"""変更検出と公開判定のコア処理群.

- 最新安定版の解決
- リトライ付き取得
- コンテンツフィンガープリント
- 公開判定（ChangeGate）
"""

from .cancellation import CancellationToken
from .fingerprint import compute_fingerprint
from .gate import PublishDecision, decide
from .retry import RetryPolicy, fetch_with_retry
from .version import VersionTag, resolve_latest_stable, select_latest_stable

__all__ = [
    "CancellationToken",
    "compute_fingerprint",
    "PublishDecision",
    "decide",
    "RetryPolicy",
    "fetch_with_retry",
    "VersionTag",
    "resolve_latest_stable",
    "select_latest_stable",
]
