"""runner_ci: 定期実行用のCI統合レイヤ.

設定の読み込み、コラボレータの組み立て、公開パイプラインの実行と終了コードの決定を行う。
"""

from runner_ci.main import orchestrate

__version__ = "0.1.0"

__all__ = [
    "orchestrate",
]
