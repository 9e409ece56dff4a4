import sys
import textwrap

import pytest
from click.testing import CliRunner

from zmake.cli import cli, detect_os
from zmake.errors import ZmakeError


posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses sh")


def _write(tmp_path, text, name="ZMake.yml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def _other_os():
    return "windows" if detect_os() != "windows" else "linux"


@pytest.mark.parametrize(
    "platform, expected",
    [("linux", "linux"), ("win32", "windows"), ("darwin", "macos")],
)
def test_detect_os(platform, expected):
    assert detect_os(platform) == expected


def test_detect_os_rejects_unknown_platform():
    with pytest.raises(ZmakeError, match="unsupported OS"):
        detect_os("sunos5")


def test_validate_prints_plan(tmp_path):
    path = _write(
        tmp_path,
        """
        tasks:
          build:
            linux: [make, make install]
        blocks:
          setup: [echo setup]
        """,
    )

    result = CliRunner().invoke(cli, ["validate", str(path), "--os", "linux"])

    assert result.exit_code == 0, result.output
    assert "Build: 2 step(s)" in result.output
    assert "setup: 1 step(s)" in result.output


def test_validate_rejects_reserved_block_name(tmp_path):
    path = _write(tmp_path, "blocks:\n  windows: [echo nope]\n")

    result = CliRunner().invoke(cli, ["validate", str(path)])

    assert result.exit_code == 1
    assert "Invalid task file" in result.output
    assert "reserved" in result.output


def test_run_missing_task_file(tmp_path):
    result = CliRunner().invoke(cli, ["run", str(tmp_path / "ZMake.yml")])

    assert result.exit_code == 1
    assert "Task file not found" in result.output


def test_run_rejects_malformed_env_option(tmp_path):
    path = _write(tmp_path, "tasks: {}\n")

    result = CliRunner().invoke(cli, ["run", str(path), "--env", "NOEQUALS"])

    assert result.exit_code == 2
    assert "KEY=VALUE" in result.output


def test_run_rejects_unknown_section(tmp_path):
    path = _write(tmp_path, "tasks: {}\n")

    result = CliRunner().invoke(cli, ["run", str(path), "--section", "compile"])

    assert result.exit_code == 2


@posix_only
def test_foreign_os_forces_dry_run(tmp_path):
    other = _other_os()
    path = _write(
        tmp_path,
        f"""
        tasks:
          build:
            {other}:
              - touch should-not-exist
        """,
    )

    result = CliRunner().invoke(cli, ["run", str(path), "--os", other, "--cwd", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "Forcing dry-run" in result.output
    assert "touch should-not-exist" in result.output
    assert not (tmp_path / "should-not-exist").exists()


@posix_only
def test_run_succeeds_and_passes_env(tmp_path):
    host = detect_os()
    path = _write(
        tmp_path,
        f"""
        tasks:
          build:
            {host}:
              - echo "$TARGET" > target.txt
        """,
    )

    result = CliRunner().invoke(
        cli,
        ["run", str(path), "--cwd", str(tmp_path), "--env", "TARGET=release"],
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "target.txt").read_text().strip() == "release"
    assert "All tasks completed successfully." in result.output


@posix_only
def test_run_carry_forward_reports_failures_and_exits_non_zero(tmp_path):
    host = detect_os()
    path = _write(
        tmp_path,
        f"""
        tasks:
          build:
            {host}:
              - "false"
              - touch reached
        """,
    )

    result = CliRunner().invoke(cli, ["run", str(path), "--cwd", str(tmp_path), "--carry-forward"])

    assert result.exit_code == 1
    assert (tmp_path / "reached").exists()
    assert "1 failure(s) recorded" in result.output


@posix_only
def test_run_fast_fail_exits_non_zero(tmp_path):
    host = detect_os()
    path = _write(
        tmp_path,
        f"""
        tasks:
          build:
            {host}:
              - exit 4
              - touch unreachable
        """,
    )

    result = CliRunner().invoke(cli, ["run", str(path), "--cwd", str(tmp_path)])

    assert result.exit_code == 1
    assert not (tmp_path / "unreachable").exists()
    assert "exit 4" in result.output
