"""Git for Windows のビルド方式（MSYS2 / MXE / ビルド済みアセット）.

ツールチェーンの場所は設定で明示的に受け取り、子プロセスの環境変数にだけ反映します。
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from loguru import logger

from git_windows_runner.config import BuilderConfig
from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.exceptions import ArtifactNotFoundError
from git_windows_runner.core.process import build_env, run_command

from .base import Builder

EXECUTABLE_NAME = "git.exe"

# 静的リンクで単体動作する git.exe を作るための config.mak
CONFIG_MAK = """NO_TCLTK=YesPlease
NO_GETTEXT=YesPlease
NO_UNIX_SOCKETS=YesPlease
USE_LIBPCRE2=Yes
CFLAGS  += -O2 -pipe -static -static-libgcc -static-libstdc++ -DCURL_STATICLIB -DPCRE2_STATIC
LDFLAGS += -static -static-libgcc -static-libstdc++ -s
EXTLIBS += -lpcre2-8 -lpcre2-posix -lws2_32 -lcrypt32 -lbcrypt -lz -lshlwapi \\
           -lzstd -lbrotlidec -lnghttp2 -lngtcp2 -lnghttp3 \\
           -lidn2 -lpsl -lwldap32 -lssl -lcrypto -lssh2
"""

MSYS2_PACKAGES = [
    "mingw-w64-x86_64-toolchain",
    "base-devel",
    "mingw-w64-x86_64-curl",
    "mingw-w64-x86_64-libiconv",
    "mingw-w64-x86_64-expat",
    "mingw-w64-x86_64-zlib",
    "mingw-w64-x86_64-openssl",
    "mingw-w64-x86_64-zstd",
    "mingw-w64-x86_64-brotli",
    "mingw-w64-x86_64-nghttp2",
    "mingw-w64-x86_64-ngtcp2",
    "mingw-w64-x86_64-nghttp3",
    "mingw-w64-x86_64-libssh2",
    "mingw-w64-x86_64-libidn2",
    "mingw-w64-x86_64-libpsl",
    "autoconf",
    "automake-wrapper",
    "libtool",
    "mingw-w64-x86_64-pcre2",
]


def to_msys_path(path: Path | str) -> str:
    r"""Windows パスを MSYS 形式に変換する（C:\a\b → /c/a/b）."""
    p = str(path).replace("\\", "/")
    if len(p) >= 2 and p[1] == ":":
        return f"/{p[0].lower()}{p[2:]}"
    return p


def _find_executable(root: Path, candidates: list[str]) -> Path:
    for rel in candidates:
        exe = root / rel
        if exe.is_file():
            return exe
    raise ArtifactNotFoundError(f"{EXECUTABLE_NAME} not found under {root} (looked in {candidates})")


def _write_config_mak(source_path: Path) -> None:
    logger.info("Writing config.mak")
    (source_path / "config.mak").write_text(CONFIG_MAK, encoding="utf-8")


def _reset_dist(source_path: Path) -> Path:
    dist_root = source_path.parent / "dist"
    if dist_root.exists():
        shutil.rmtree(dist_root)
    dist_root.mkdir(parents=True)
    return dist_root


class Msys2Builder(Builder):
    """MSYS2 (MINGW64) 上で make するビルダー（Windows ランナー用）."""

    name = "msys2"

    def __init__(
        self,
        msys_root: Path,
        jobs: int | None = None,
        install_if_missing: bool = True,
        packages: list[str] | None = None,
    ) -> None:
        self.msys_root = Path(msys_root)
        self.jobs = jobs or os.cpu_count() or 1
        self.install_if_missing = install_if_missing
        self.packages = packages or list(MSYS2_PACKAGES)

    @property
    def bin_dirs(self) -> list[Path]:
        return [self.msys_root / "mingw64" / "bin", self.msys_root / "usr" / "bin"]

    def _bash(self, script: str, cwd: Path, cancel_token: CancellationToken) -> str:
        bash = self.msys_root / "usr" / "bin" / "bash.exe"
        env = build_env(extra_path=self.bin_dirs, overrides={"MSYSTEM": "MINGW64"})
        return run_command([str(bash), "-lc", script], cwd=cwd, env=env, cancel_token=cancel_token)

    def _ensure_toolchain(self, cwd: Path, cancel_token: CancellationToken) -> None:
        bash = self.msys_root / "usr" / "bin" / "bash.exe"
        if not bash.exists():
            if not self.install_if_missing:
                raise ArtifactNotFoundError(f"MSYS2 not found at {self.msys_root}")
            logger.info("Installing MSYS2 via Chocolatey...")
            run_command(["choco", "install", "-y", "msys2"], cwd=cwd, cancel_token=cancel_token)

        logger.info("Synchronizing pacman database...")
        self._bash("pacman -Sy --noconfirm", cwd, cancel_token)
        logger.info("Upgrading MSYS2 core packages...")
        self._bash("MSYS2_ARG_CONV_EXCL='*' pacman -Su --noconfirm", cwd, cancel_token)
        logger.info("Installing build dependencies...")
        self._bash(f"pacman -Sy --noconfirm --needed {' '.join(self.packages)}", cwd, cancel_token)

    def build(self, source_path: Path, cancel_token: CancellationToken) -> Path:
        self._ensure_toolchain(source_path.parent, cancel_token)
        _write_config_mak(source_path)
        dist_root = _reset_dist(source_path)

        logger.info(f"Building Git with MSYS2 (jobs={self.jobs})...")
        script = " && ".join(
            [
                "export PATH=/mingw64/bin:/usr/bin:$PATH",
                "export PKG_CONFIG='pkg-config --static'",
                "export LIBRARY_PATH=/mingw64/lib:$LIBRARY_PATH",
                "set -euo pipefail",
                f"cd {to_msys_path(source_path)}",
                f"make -j{self.jobs} V=1",
                f"make install prefix=/mingw64 DESTDIR={to_msys_path(dist_root)}",
            ]
        )
        self._bash(script, source_path, cancel_token)

        exe = _find_executable(dist_root, ["mingw64/bin/git.exe"])
        logger.info(f"Successfully built {EXECUTABLE_NAME} at {exe}")
        return exe


class MxeBuilder(Builder):
    """MXE のクロスコンパイラで Linux 上から Windows 向けにビルドする."""

    name = "mxe"

    def __init__(
        self,
        mxe_root: Path,
        target: str = "x86_64-w64-mingw32.static",
        jobs: int | None = None,
    ) -> None:
        self.mxe_root = Path(mxe_root)
        self.target = target
        self.jobs = jobs or os.cpu_count() or 1

    def build(self, source_path: Path, cancel_token: CancellationToken) -> Path:
        cross_bin = self.mxe_root / "usr" / "bin"
        if not (cross_bin / f"{self.target}-gcc").exists():
            raise ArtifactNotFoundError(f"MXE cross compiler for {self.target} not found in {cross_bin}")

        _write_config_mak(source_path)
        dist_root = _reset_dist(source_path)
        env = build_env(extra_path=[cross_bin])
        prefix = f"{self.target}-"

        logger.info(f"Cross-compiling Git with MXE ({self.target}, jobs={self.jobs})...")
        run_command(
            [
                "make",
                f"-j{self.jobs}",
                f"CC={prefix}gcc",
                f"AR={prefix}ar",
                f"RC={prefix}windres",
                "uname_S=Windows",
                "uname_O=Windows",
                "uname_M=x86_64",
                "install",
                "prefix=/mingw64",
                f"DESTDIR={dist_root}",
            ],
            cwd=source_path,
            env=env,
            cancel_token=cancel_token,
        )

        exe = _find_executable(dist_root, ["mingw64/bin/git.exe"])
        logger.info(f"Successfully built {EXECUTABLE_NAME} at {exe}")
        return exe


class PrebuiltBuilder(Builder):
    """ビルド済みアセット（MinGit）を展開済みのものとしてそのまま使う."""

    name = "prebuilt"

    CANDIDATES = ["cmd/git.exe", "mingw64/bin/git.exe", "bin/git.exe"]

    def __init__(self) -> None:
        self._roots: dict[Path, Path] = {}

    def build(self, source_path: Path, cancel_token: CancellationToken) -> Path:
        cancel_token.raise_if_cancelled()
        exe = _find_executable(source_path, self.CANDIDATES)
        self._roots[exe] = source_path
        logger.info(f"Using prebuilt {EXECUTABLE_NAME} at {exe}")
        return exe

    def payload_root(self, executable: Path) -> Path:
        return self._roots.get(executable, executable.parent.parent)


def create_builder(config: BuilderConfig) -> Builder:
    """設定の kind に応じてビルダーを選択する."""
    if config.kind == "msys2":
        return Msys2Builder(
            msys_root=config.msys_root,
            jobs=config.jobs,
            install_if_missing=config.install_if_missing,
        )
    if config.kind == "mxe":
        return MxeBuilder(mxe_root=config.mxe_root, target=config.mxe_target, jobs=config.jobs)
    if config.kind == "prebuilt":
        return PrebuiltBuilder()
    raise ValueError(f"Unknown builder kind: {config.kind}")
