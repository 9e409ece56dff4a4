# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import ConstraintError


OPERATING_SYSTEMS: Tuple[str, ...] = ("windows", "linux", "macos")


class Section(enum.Enum):
    """The fixed build lifecycle. Definition order is execution order."""
    PRE_BUILD = "PreBuild"
    BUILD = "Build"
    POST_BUILD = "PostBuild"
    TEST = "Test"
    PRE_DEPLOY = "PreDeploy"
    DEPLOY = "Deploy"
    POST_DEPLOY = "PostDeploy"
    CLEAN = "Clean"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def key(self) -> str:
        """Name used in the task file (`prebuild`, `build`, ...)."""
        return self.value.lower()

    @classmethod
    def parse(cls, text: str) -> "Section":
        wanted = text.strip().lower().replace("-", "").replace("_", "")
        for section in cls:
            if section.key == wanted:
                return section
        raise ConstraintError(
            f"unknown section '{text}' (expected one of: {', '.join(s.key for s in cls)})"
        )


SECTION_KEYS: Tuple[str, ...] = tuple(s.key for s in Section)


class SourceKind(enum.IntEnum):
    """Where an environment variable came from. Higher wins."""
    DEFAULT = 1
    GLOBAL = 2
    LOCAL = 3
    PASSED = 4
    SCRIPT = 5


class ExecutionPolicy(enum.Enum):
    FAST_FAIL = "fast_fail"
    CARRY_FORWARD = "carry_forward"

    @classmethod
    def parse(cls, text: str) -> "ExecutionPolicy":
        wanted = str(text).strip().lower().replace("-", "_")
        for policy in cls:
            if policy.value == wanted:
                return policy
        raise ConstraintError(
            f"unknown execution_policy '{text}' (expected fast_fail or carry_forward)"
        )


@dataclass(frozen=True)
class LocalConfig:
    """Scoped overrides for a block or a per-OS section entry."""
    execution_policy: Optional[ExecutionPolicy] = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StepList:
    steps: List[str] = field(default_factory=list)
    config: LocalConfig = field(default_factory=LocalConfig)


@dataclass(frozen=True)
class Block:
    """A named, reusable list of steps."""
    name: str
    steps: List[str] = field(default_factory=list)
    config: LocalConfig = field(default_factory=LocalConfig)


@dataclass(frozen=True)
class GlobalConfig:
    execution_policy: Optional[ExecutionPolicy] = None
    env: Dict[str, str] = field(default_factory=dict)
    skip_sections: List[Section] = field(default_factory=list)


@dataclass
class TaskModel:
    """
    Validated task file.

    sections maps a lifecycle phase to its per-OS step lists; phases and
    OS keys absent from the file are simply missing from the mapping.
    """
    sections: Dict[Section, Dict[str, StepList]] = field(default_factory=dict)
    blocks: Dict[str, Block] = field(default_factory=dict)
    global_config: GlobalConfig = field(default_factory=GlobalConfig)

    def ordered_sections(self) -> List[Tuple[Section, Optional[Dict[str, StepList]]]]:
        return [(section, self.sections.get(section)) for section in Section]

    def steps_for(self, section: Section, os_name: str) -> Optional[StepList]:
        per_os = self.sections.get(section) or {}
        return per_os.get(os_name)


@dataclass(frozen=True)
class RunOptions:
    """
    Finished run configuration handed from the CLI to the runner.

    sections=None means "everything except Clean"; execution_policy=None
    means "use the task file's global policy".
    """
    os_name: str
    cwd: Path
    dry_run: bool = False
    sections: Optional[Tuple[Section, ...]] = None
    execution_policy: Optional[ExecutionPolicy] = None
    env: Tuple[Tuple[str, str], ...] = ()
    env_file: Optional[Path] = None
    verbose: int = 0
