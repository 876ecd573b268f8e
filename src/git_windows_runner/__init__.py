"""git_windows_runner: 上流の安定版リリースを検出し、内容が変わったときだけ再パッケージして公開する."""

from git_windows_runner.core.gate import PublishDecision, decide
from git_windows_runner.pipeline import PipelineError, PipelineResult, PipelineState, PublishPipeline

__version__ = "0.1.0"

__all__ = [
    "PublishDecision",
    "decide",
    "PipelineError",
    "PipelineResult",
    "PipelineState",
    "PublishPipeline",
]
