# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class ZmakeError(Exception):
    """Base class for every error the runner raises on purpose."""


class ZmakeIOError(ZmakeError):
    """File or process I/O failed (config file missing, env file unreadable...)."""


class ConfigParseError(ZmakeError):
    """The task file or an env dump could not be parsed."""


class ConstraintError(ZmakeError):
    """The task model breaks a structural rule (reserved names, empty steps...)."""


class BlockCycleError(ConstraintError):
    """A block references itself, directly or through other blocks."""

    def __init__(self, chain: List[str]):
        self.chain = list(chain)
        super().__init__(f"block reference cycle: {' -> '.join(self.chain)}")


class BlockNotFound(ZmakeError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"block not found: {name}")


class ExecutionError(ZmakeError):
    """
    Infrastructure failure: the shell itself could not be spawned or waited on.

    Always fatal, whatever the execution policy says, since no command
    output is possible.
    """


@dataclass
class CommandFailed(ZmakeError):
    """A user command exited non-zero."""
    section: str
    command: str
    exit_code: int
    block: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f"section '{self.section}'"
        if self.block:
            where += f" block '{self.block}'"
        return f"{where} command failed: '{self.command}' (exit {self.exit_code})"


@dataclass
class RunFailed(ZmakeError):
    """Aggregate of every failure recorded under carry_forward."""
    failures: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        head = f"{len(self.failures)} failure(s) recorded"
        return "\n".join([head, *(f"  - {f}" for f in self.failures)])
