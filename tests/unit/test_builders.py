"""ビルダー選択と各ビルダーのテスト（外部コマンドはモック）."""

from pathlib import Path
from unittest.mock import patch

import pytest

from git_windows_runner.adapters.builders import (
    CONFIG_MAK,
    Msys2Builder,
    MxeBuilder,
    PrebuiltBuilder,
    create_builder,
    to_msys_path,
)
from git_windows_runner.config import BuilderConfig
from git_windows_runner.core.cancellation import CancellationToken
from git_windows_runner.core.exceptions import ArtifactNotFoundError, RunCancelledError


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("C:\\work\\git-2.45.0", "/c/work/git-2.45.0"),
        ("D:/a/b", "/d/a/b"),
        ("/home/runner/git", "/home/runner/git"),
    ],
)
def test_to_msys_path(path: str, expected: str) -> None:
    assert to_msys_path(path) == expected


class TestCreateBuilder:
    @pytest.mark.parametrize(
        ("kind", "cls"),
        [("msys2", Msys2Builder), ("mxe", MxeBuilder), ("prebuilt", PrebuiltBuilder)],
    )
    def test_kinds(self, kind: str, cls: type) -> None:
        assert isinstance(create_builder(BuilderConfig(kind=kind)), cls)

    def test_jobs_passed_through(self) -> None:
        builder = create_builder(BuilderConfig(kind="mxe", jobs=3))
        assert builder.jobs == 3

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown builder kind"):
            create_builder(BuilderConfig(kind="cygwin"))


class TestPrebuiltBuilder:
    def test_finds_mingit_layout(self, tmp_path: Path) -> None:
        (tmp_path / "cmd").mkdir()
        (tmp_path / "cmd" / "git.exe").write_bytes(b"MZ")
        builder = PrebuiltBuilder()

        exe = builder.build(tmp_path, CancellationToken())

        assert exe == tmp_path / "cmd" / "git.exe"
        assert builder.payload_root(exe) == tmp_path

    def test_missing_executable(self, tmp_path: Path) -> None:
        with pytest.raises(ArtifactNotFoundError, match="git.exe not found"):
            PrebuiltBuilder().build(tmp_path, CancellationToken())

    def test_cancelled(self, tmp_path: Path) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(RunCancelledError):
            PrebuiltBuilder().build(tmp_path, token)


class TestMxeBuilder:
    def test_missing_cross_compiler(self, tmp_path: Path) -> None:
        builder = MxeBuilder(mxe_root=tmp_path / "mxe")
        with pytest.raises(ArtifactNotFoundError, match="MXE cross compiler"):
            builder.build(tmp_path / "git", CancellationToken())

    def test_build_invokes_make(self, tmp_path: Path) -> None:
        mxe_bin = tmp_path / "mxe" / "usr" / "bin"
        mxe_bin.mkdir(parents=True)
        (mxe_bin / "x86_64-w64-mingw32.static-gcc").write_text("")
        source = tmp_path / "git-2.45.0"
        source.mkdir()

        def fake_make(command, cwd=None, env=None, cancel_token=None, secrets=()):
            exe = source.parent / "dist" / "mingw64" / "bin" / "git.exe"
            exe.parent.mkdir(parents=True)
            exe.write_bytes(b"MZ")
            return ""

        builder = MxeBuilder(mxe_root=tmp_path / "mxe", jobs=2)
        with patch("git_windows_runner.adapters.builders.run_command", side_effect=fake_make) as mock_run:
            exe = builder.build(source, CancellationToken())

        command = mock_run.call_args.args[0]
        assert command[:2] == ["make", "-j2"]
        assert "CC=x86_64-w64-mingw32.static-gcc" in command
        # ツールチェーンは子プロセスの PATH にだけ追加される
        assert mock_run.call_args.kwargs["env"]["PATH"].startswith(str(mxe_bin))
        assert (source / "config.mak").read_text(encoding="utf-8") == CONFIG_MAK
        assert exe == tmp_path / "dist" / "mingw64" / "bin" / "git.exe"
        assert builder.payload_root(exe) == tmp_path / "dist" / "mingw64"


class TestMsys2Builder:
    def test_missing_msys_without_install(self, tmp_path: Path) -> None:
        builder = Msys2Builder(msys_root=tmp_path / "msys64", install_if_missing=False)
        with pytest.raises(ArtifactNotFoundError, match="MSYS2 not found"):
            builder.build(tmp_path / "git", CancellationToken())

    def test_build_sequence(self, tmp_path: Path) -> None:
        """パッケージ同期 → 依存導入 → make の順で実行されること."""
        msys = tmp_path / "msys64"
        (msys / "usr" / "bin").mkdir(parents=True)
        (msys / "usr" / "bin" / "bash.exe").write_text("")
        source = tmp_path / "git-2.45.0"
        source.mkdir()
        scripts: list[str] = []

        def fake_run(command, cwd=None, env=None, cancel_token=None, secrets=()):
            scripts.append(command[-1])
            assert env["MSYSTEM"] == "MINGW64"
            if "make install" in command[-1]:
                exe = tmp_path / "dist" / "mingw64" / "bin" / "git.exe"
                exe.parent.mkdir(parents=True)
                exe.write_bytes(b"MZ")
            return ""

        builder = Msys2Builder(msys_root=msys, jobs=4)
        with patch("git_windows_runner.adapters.builders.run_command", side_effect=fake_run):
            exe = builder.build(source, CancellationToken())

        assert scripts[0] == "pacman -Sy --noconfirm"
        assert "--needed" in scripts[2]
        assert "make -j4 V=1" in scripts[-1]
        assert exe.name == "git.exe"
