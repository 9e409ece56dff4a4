# environment.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

from .model import SourceKind


# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Every variable remembers where it came from:
#
#   DEFAULT (ambient OS env) < GLOBAL (task file) < LOCAL (block / per-OS
#   config) < PASSED (--env / --env-file) < SCRIPT (set by a command)
#
# The table is only written through upsert(), which refuses to let a lower
# source overwrite a higher one. Scopes work on clones and hand back what
# changed (diff) so the parent can merge() it in.
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class EnvVariable:
    value: str
    source: SourceKind


class Environment:
    """Keyed variable table with per-key provenance."""

    def __init__(self) -> None:
        self._variables: Dict[str, EnvVariable] = {}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str], source: SourceKind) -> "Environment":
        env = cls()
        for key, value in mapping.items():
            env.upsert(key, value, source)
        return env

    # ---- writes ----

    def upsert(self, key: str, value: str, source: SourceKind) -> bool:
        """
        Write `key` unless an existing entry has a higher-priority source.

        Returns True when the write took effect. Re-writing the same value
        from the same source is a no-op and returns False.
        """
        current = self._variables.get(key)
        if current is not None:
            if source < current.source:
                return False
            if source == current.source and value == current.value:
                return False
        self._variables[key] = EnvVariable(value=value, source=source)
        return True

    def merge(self, other: "Environment") -> None:
        """Replay every entry of `other` into self, keeping its source."""
        for key, var in other._variables.items():
            self.upsert(key, var.value, var.source)

    def load(self, dump: str, source: SourceKind, *, separator: str = "\n") -> None:
        """
        Load `KEY=VALUE` records (as printed by `env` / `set`).

        Records are lines by default. Pass separator="\\0" for `env -0`
        output, where values may themselves contain newlines. Records
        without `=` and records with an empty key are skipped.
        """
        records = dump.splitlines() if separator == "\n" else dump.split(separator)
        for record in records:
            if not record.strip():
                continue
            key, sep, value = record.partition("=")
            key = key.strip()
            if not sep or not key:
                continue
            self.upsert(key, value, source)

    def capture_ambient(self, os_name: str, cwd: Optional[Path] = None) -> None:
        """
        Seed the table with the host shell's environment (DEFAULT source).

        Raises ExecutionError if the shell can't be spawned or exits non-zero.
        """
        # Imported here: shell.py builds deltas out of Environment objects.
        from .shell import dump_environment, dump_separator

        self.load(
            dump_environment(os_name, cwd),
            SourceKind.DEFAULT,
            separator=dump_separator(os_name),
        )

    # ---- reads ----

    def get(self, key: str) -> Optional[EnvVariable]:
        return self._variables.get(key)

    def value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        var = self._variables.get(key)
        return var.value if var is not None else default

    def source(self, key: str) -> Optional[SourceKind]:
        var = self._variables.get(key)
        return var.source if var is not None else None

    def clone(self) -> "Environment":
        env = Environment()
        env._variables = dict(self._variables)
        return env

    def diff(self, base: "Environment") -> "Environment":
        """Entries that are new relative to `base`, or differ in value or source."""
        delta = Environment()
        for key, var in self._variables.items():
            if base._variables.get(key) != var:
                delta._variables[key] = var
        return delta

    def as_dict(self) -> Dict[str, str]:
        """Plain mapping suitable for a child process `env=`."""
        return {key: var.value for key, var in self._variables.items()}

    def dump(self) -> str:
        """Inverse of load(): one `KEY=VALUE` line per entry, sorted by key."""
        return "".join(f"{key}={self._variables[key].value}\n" for key in sorted(self._variables))

    def __contains__(self, key: object) -> bool:
        return key in self._variables

    def __len__(self) -> int:
        return len(self._variables)

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Environment):
            return NotImplemented
        return self._variables == other._variables

    def __repr__(self) -> str:
        return f"Environment({len(self._variables)} variables)"
