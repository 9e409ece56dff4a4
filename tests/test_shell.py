import subprocess
import sys
from pathlib import Path

import pytest

from zmake import shell
from zmake.environment import Environment
from zmake.errors import ExecutionError
from zmake.model import SourceKind
from zmake.shell import _with_env_dump, run_command, shell_command


posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses sh")


def _base_env(**extra):
    env = Environment()
    env.upsert("PATH", "/usr/local/bin:/usr/bin:/bin", SourceKind.DEFAULT)
    for key, value in extra.items():
        env.upsert(key, value, SourceKind.GLOBAL)
    return env


def test_shell_command_per_os():
    assert shell_command("linux", "make") == ["sh", "-c", "make"]
    assert shell_command("macos", "make") == ["sh", "-c", "make"]
    assert shell_command("windows", "nmake") == 'cmd /S /C "nmake"'


def test_windows_wrapper_reaches_cmd_verbatim():
    command = shell_command(
        "windows",
        _with_env_dump("windows", "build.bat", Path("C:/w/.zmake-env-x.tmp")),
    )

    assert command == (
        'cmd /S /C "build.bat & '
        'call set "__ZMAKE_RC=%^ERRORLEVEL%" & '
        'set > "C:/w/.zmake-env-x.tmp" & '
        'call exit %^__ZMAKE_RC%"'
    )
    assert "\\" not in command
    # No delayed expansion: a literal "!" in a user command must survive.
    assert "/V:ON" not in command


def test_windows_command_is_passed_as_one_string(tmp_path, monkeypatch):
    seen = {}

    def fake_run(command, **kwargs):
        seen["command"] = command
        return subprocess.CompletedProcess(command, 5)

    monkeypatch.setattr(shell.subprocess, "run", fake_run)

    result = run_command("echo Done!", _base_env(), os_name="windows", cwd=tmp_path)

    assert result.exit_code == 5
    assert isinstance(seen["command"], str)
    assert seen["command"].startswith('cmd /S /C "echo Done! & call set ')
    assert '\\"' not in seen["command"]


@posix_only
def test_exported_variable_comes_back_as_script_delta(tmp_path):
    result = run_command("export BUILD_DIR=out/release", _base_env(), os_name="linux", cwd=tmp_path)

    assert result.ok
    assert result.delta.value("BUILD_DIR") == "out/release"
    assert result.delta.source("BUILD_DIR") is SourceKind.SCRIPT


@posix_only
def test_unchanged_and_bookkeeping_variables_are_not_in_delta(tmp_path):
    result = run_command("true", _base_env(FOO="bar"), os_name="linux", cwd=tmp_path)

    assert result.ok
    for key in ("FOO", "PATH", "PWD", "SHLVL", "_", "__ZMAKE_RC"):
        assert key not in result.delta


@posix_only
def test_child_sees_given_environment_and_cwd(tmp_path):
    result = run_command(
        'test "$FOO" = bar && pwd > where.txt',
        _base_env(FOO="bar"),
        os_name="linux",
        cwd=tmp_path,
    )

    assert result.exit_code == 0
    assert (tmp_path / "where.txt").read_text().strip() == str(tmp_path.resolve())


@posix_only
def test_failing_command_keeps_exit_code_and_partial_delta(tmp_path):
    result = run_command("export CI_STAGE=half; false", _base_env(), os_name="linux", cwd=tmp_path)

    assert result.exit_code == 1
    assert not result.ok
    assert result.delta.value("CI_STAGE") == "half"


@posix_only
def test_explicit_exit_skips_dump_without_error(tmp_path):
    result = run_command("export LOST=1; exit 3", _base_env(), os_name="linux", cwd=tmp_path)

    assert result.exit_code == 3
    assert len(result.delta) == 0


@posix_only
def test_dump_file_is_removed(tmp_path):
    run_command("export A=1", _base_env(), os_name="linux", cwd=tmp_path)
    run_command("false", _base_env(), os_name="linux", cwd=tmp_path)

    assert list(tmp_path.glob(".zmake-env-*")) == []


def test_spawn_failure_is_an_execution_error(tmp_path, monkeypatch):
    def boom(*args, **kwargs):
        raise FileNotFoundError("sh")

    monkeypatch.setattr(shell.subprocess, "run", boom)

    with pytest.raises(ExecutionError, match="could not spawn shell"):
        run_command("echo hi", _base_env(), os_name="linux", cwd=tmp_path)


def test_ambient_dump_fails_on_non_zero_exit(tmp_path, monkeypatch):
    def fake_run(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 2)

    monkeypatch.setattr(shell.subprocess, "run", fake_run)

    with pytest.raises(ExecutionError, match="exit 2"):
        shell.dump_environment("linux", tmp_path)


@posix_only
def test_multiline_value_passes_through_untouched(tmp_path):
    env = _base_env()
    env.upsert("CERT", "-----BEGIN-----\nQUJD==\n-----END-----", SourceKind.PASSED)

    result = run_command("true", env, os_name="linux", cwd=tmp_path)

    assert result.ok
    assert len(result.delta) == 0


@posix_only
def test_multiline_value_set_by_command_is_captured_whole(tmp_path):
    result = run_command(
        "NOTE=$(printf 'first\\nsecond=2'); export NOTE",
        _base_env(),
        os_name="linux",
        cwd=tmp_path,
    )

    assert result.delta.value("NOTE") == "first\nsecond=2"
    assert "second" not in result.delta
