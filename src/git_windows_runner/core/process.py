"""外部プロセスの実行（キャンセル対応）."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from loguru import logger

from .cancellation import CancellationToken
from .exceptions import CommandError

_POLL_INTERVAL = 0.5


def _redact(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


def build_env(extra_path: Sequence[Path | str] = (), overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """子プロセス用の環境変数を作る. os.environ 自体は変更しない.

    Args:
        extra_path: PATH の先頭に追加するディレクトリ
        overrides: 上書きする環境変数
    """
    env = dict(os.environ)
    if extra_path:
        current = env.get("PATH", "")
        env["PATH"] = os.pathsep.join([str(p) for p in extra_path] + ([current] if current else []))
    if overrides:
        env.update(overrides)
    return env


def run_command(
    command: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    cancel_token: CancellationToken | None = None,
    secrets: Sequence[str] = (),
) -> str:
    """コマンドを実行し、標準出力（stderr含む）を返す.

    キャンセルされた場合はプロセスを終了させて RunCancelledError を送出する。
    secrets に含まれる文字列はログと例外メッセージ上で伏せ字にする。

    Raises:
        CommandError: 終了コードが0以外の場合
        RunCancelledError: 実行中にキャンセルされた場合
    """
    cancel_token = cancel_token or CancellationToken()
    cancel_token.raise_if_cancelled()

    command = [str(c) for c in command]
    display = [_redact(c, secrets) for c in command]
    logger.debug(f"Running: {' '.join(display)} (cwd={cwd})")

    proc = subprocess.Popen(
        command,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    while True:
        try:
            output, _ = proc.communicate(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel_token.cancelled:
                logger.warning(f"Cancelling running process: {command[0]}")
                proc.kill()
                proc.communicate()
                cancel_token.raise_if_cancelled()

    if proc.returncode != 0:
        raise CommandError(display, proc.returncode, _redact(output or "", secrets))
    return output or ""
