from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Tuple

import pytest

from zmake.environment import Environment
from zmake.model import RunOptions, SourceKind
from zmake.shell import CommandResult
from zmake.ui.console import Console, set_console


class FakeShell:
    """
    Stand-in for shell.run_command.

    script maps a command line to (exit_code, {KEY: value set by the command}).
    Unknown commands succeed and change nothing.
    """

    def __init__(self) -> None:
        self.script: Dict[str, Tuple[int, Dict[str, str]]] = {}
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    def __call__(self, command_line, env, *, os_name, cwd=None) -> CommandResult:
        self.calls.append((command_line, env.as_dict()))
        exit_code, sets = self.script.get(command_line, (0, {}))
        return CommandResult(
            exit_code=exit_code,
            delta=Environment.from_mapping(sets, SourceKind.SCRIPT),
        )

    @property
    def commands(self) -> List[str]:
        return [cmd for cmd, _env in self.calls]

    def env_seen_by(self, command_line: str) -> Dict[str, str]:
        for cmd, env in self.calls:
            if cmd == command_line:
                return env
        raise AssertionError(f"{command_line!r} was never run")


@pytest.fixture(autouse=True)
def _fresh_console():
    set_console(Console())
    yield
    set_console(Console())


@pytest.fixture
def fake_shell() -> FakeShell:
    return FakeShell()


@pytest.fixture
def make_options(tmp_path: Path):
    def _make(**overrides) -> RunOptions:
        values = {"os_name": "linux", "cwd": tmp_path}
        values.update(overrides)
        return RunOptions(**values)

    return _make
