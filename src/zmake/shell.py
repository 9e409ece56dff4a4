# shell.py
# Everything that spawns the host shell lives here. Callers only ever see
# an exit code and an Environment delta; the env-dump file is private.

from __future__ import annotations

import shlex
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from .environment import Environment
from .errors import ExecutionError
from .model import SourceKind


# Exit status of the user command, stashed while the environment is dumped.
_RC_VAR = "__ZMAKE_RC"

# Variables the shell rewrites on its own; they never count as changes.
_SHELL_BOOKKEEPING = frozenset({"_", "SHLVL", "PWD", "OLDPWD", _RC_VAR})

ShellCommand = Union[List[str], str]


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    delta: Environment

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def shell_command(os_name: str, command_line: str) -> ShellCommand:
    """
    What to hand to subprocess.run for one command line.

    On Windows this is a single string: an argv list would go through
    list2cmdline, which escapes inner quotes as \\" and cmd.exe does not
    understand backslash escapes. /S makes cmd strip exactly the outer
    pair of quotes and keep the rest of the line verbatim.
    """
    if os_name == "windows":
        return f'cmd /S /C "{command_line}"'
    return ["sh", "-c", command_line]


def dump_separator(os_name: str) -> str:
    """Record separator of the env dump written by the host shell."""
    # `set` can't hold newlines in values; `env -0` is NUL-terminated.
    return "\n" if os_name == "windows" else "\0"


def _dump_path(cwd: Optional[Path]) -> Path:
    # Absolute: the shell runs inside cwd and must not resolve it twice.
    base = Path(cwd).resolve() if cwd is not None else Path.cwd()
    return base / f".zmake-env-{uuid.uuid4().hex}.tmp"


def _dump_builtin(os_name: str, dump_path: Path) -> str:
    if os_name == "windows":
        return f'set > "{dump_path}"'
    return f"env -0 > {shlex.quote(str(dump_path))}"


def _with_env_dump(os_name: str, command_line: str, dump_path: Path) -> str:
    """Append the env-dump builtin, keeping the command's own exit status."""
    if os_name == "windows":
        # %^VAR% survives the first expansion of the whole line; `call`
        # expands it again once the user command has set ERRORLEVEL.
        return (
            f"{command_line} & "
            f'call set "{_RC_VAR}=%^ERRORLEVEL%" & '
            f"{_dump_builtin(os_name, dump_path)} & "
            f"call exit %^{_RC_VAR}%"
        )
    return (
        f"{command_line}\n"
        f"{_RC_VAR}=$?\n"
        f"{_dump_builtin(os_name, dump_path)}\n"
        f"exit ${_RC_VAR}\n"
    )


def _child_env(os_name: str, env: Environment) -> Dict[str, str]:
    child = env.as_dict()
    child.setdefault("TERM", "xterm-256color")
    if os_name == "windows":
        child.setdefault("ANSICON", "1")
    return child


def _spawn(command: ShellCommand, *, cwd: Optional[Path], env: Optional[Dict[str, str]]) -> int:
    try:
        proc = subprocess.run(
            command,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            stdin=subprocess.DEVNULL,
        )
    except OSError as e:
        program = command[0] if isinstance(command, list) else command.split()[0]
        raise ExecutionError(f"could not spawn shell '{program}': {e}") from e
    return proc.returncode


def _read_and_remove(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None
    finally:
        path.unlink(missing_ok=True)


def _delta_from_dump(os_name: str, dump: str, given: Dict[str, str]) -> Environment:
    after = Environment()
    after.load(dump, SourceKind.SCRIPT, separator=dump_separator(os_name))

    delta = Environment()
    for key in after:
        if key in _SHELL_BOOKKEEPING:
            continue
        value = after.value(key)
        if given.get(key) != value:
            delta.upsert(key, value, SourceKind.SCRIPT)
    return delta


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def run_command(
    command_line: str,
    env: Environment,
    *,
    os_name: str,
    cwd: Optional[Path] = None,
) -> CommandResult:
    """
    Run one command line under the host shell with live (inherited) output.

    Returns the exit code plus the variables the command set or changed,
    tagged SCRIPT. The delta is returned for failing commands too. Raises
    ExecutionError only when the shell can't be spawned at all.
    """
    dump_path = _dump_path(cwd)
    child_env = _child_env(os_name, env)
    command = shell_command(os_name, _with_env_dump(os_name, command_line, dump_path))

    try:
        exit_code = _spawn(command, cwd=cwd, env=child_env)
    finally:
        dump = _read_and_remove(dump_path)

    delta = _delta_from_dump(os_name, dump, child_env) if dump is not None else Environment()
    return CommandResult(exit_code=exit_code, delta=delta)


def dump_environment(os_name: str, cwd: Optional[Path] = None) -> str:
    """
    Have the host shell print its full environment and return the text.

    Records are separated by dump_separator(os_name).
    """
    dump_path = _dump_path(cwd)
    command = shell_command(os_name, _dump_builtin(os_name, dump_path))

    try:
        exit_code = _spawn(command, cwd=cwd, env=None)
        if exit_code != 0:
            raise ExecutionError(
                f"failed to capture the ambient environment (exit {exit_code})"
            )
        dump = _read_and_remove(dump_path)
    finally:
        dump_path.unlink(missing_ok=True)

    if dump is None:
        raise ExecutionError(f"shell did not write the environment dump: {dump_path}")
    return dump
