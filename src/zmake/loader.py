# loader.py
from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from .blocks import block_references
from .errors import BlockCycleError, ConfigParseError, ConstraintError, ZmakeIOError
from .model import (
    OPERATING_SYSTEMS,
    SECTION_KEYS,
    Block,
    ExecutionPolicy,
    GlobalConfig,
    LocalConfig,
    Section,
    StepList,
    TaskModel,
)


DEFAULT_TASK_FILE = "ZMake.yml"

_TOP_LEVEL_KEYS = ("tasks", "blocks", "global_config")


# ----------------------------------------------------------------------
# Task file
# ----------------------------------------------------------------------

def load_config(path: str | Path) -> TaskModel:
    """
    Load and validate a task file (YAML, or JSON when the suffix is .json).

    Raises:
        ZmakeIOError: file missing or unreadable
        ConfigParseError: not valid YAML/JSON, or not a mapping
        ConstraintError: structurally invalid task model
    """
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ZmakeIOError(f"could not read task file {p}: {e}") from e

    try:
        if p.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigParseError(f"failed to parse task file {p}: {e}") from e

    model = parse_config(data)
    validate(model)
    return model


def parse_config(data: Any) -> TaskModel:
    """Turn the raw YAML/JSON document into a TaskModel (no cross-checks)."""
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigParseError("task file must contain a mapping at the top level")

    unknown = sorted(str(k) for k in data if k not in _TOP_LEVEL_KEYS)
    if unknown:
        raise ConstraintError(
            f"unknown top-level key(s): {', '.join(unknown)} "
            f"(expected: {', '.join(_TOP_LEVEL_KEYS)})"
        )

    return TaskModel(
        sections=_parse_tasks(data.get("tasks")),
        blocks=_parse_blocks(data.get("blocks")),
        global_config=_parse_global(data.get("global_config")),
    )


def _parse_tasks(raw: Any) -> Dict[Section, Dict[str, StepList]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigParseError("'tasks' must be a mapping of section -> platforms")

    sections: Dict[Section, Dict[str, StepList]] = {}
    for key, per_os in raw.items():
        section = Section.parse(str(key))
        if section in sections:
            raise ConstraintError(f"section '{key}' is defined more than once")
        if per_os is None:
            sections[section] = {}
            continue
        if not isinstance(per_os, Mapping):
            raise ConfigParseError(f"tasks.{key} must be a mapping of OS -> steps")

        platforms: Dict[str, StepList] = {}
        for os_name, entry in per_os.items():
            if os_name not in OPERATING_SYSTEMS:
                raise ConstraintError(
                    f"tasks.{key}: unknown OS '{os_name}' "
                    f"(expected one of: {', '.join(OPERATING_SYSTEMS)})"
                )
            steps, config = _parse_steps_entry(entry, where=f"tasks.{key}.{os_name}")
            platforms[os_name] = StepList(steps=steps, config=config)
        sections[section] = platforms
    return sections


def _parse_blocks(raw: Any) -> Dict[str, Block]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigParseError("'blocks' must be a mapping of name -> steps")

    blocks: Dict[str, Block] = {}
    for name, entry in raw.items():
        name = str(name)
        steps, config = _parse_steps_entry(entry, where=f"blocks.{name}")
        blocks[name] = Block(name=name, steps=steps, config=config)
    return blocks


def _parse_global(raw: Any) -> GlobalConfig:
    if raw is None:
        return GlobalConfig()
    if not isinstance(raw, Mapping):
        raise ConfigParseError("'global_config' must be a mapping")

    skip = raw.get("skip_sections") or []
    if not isinstance(skip, list):
        raise ConfigParseError("global_config.skip_sections must be a list")

    return GlobalConfig(
        execution_policy=_parse_policy(raw.get("execution_policy")),
        env=_parse_env(raw.get("env"), where="global_config.env"),
        skip_sections=[Section.parse(str(s)) for s in skip],
    )


def _parse_steps_entry(entry: Any, *, where: str) -> Tuple[List[str], LocalConfig]:
    """Accept either a bare list of steps or {steps: [...], config: {...}}."""
    if entry is None:
        return [], LocalConfig()
    if isinstance(entry, list):
        return _parse_step_list(entry, where=where), LocalConfig()
    if not isinstance(entry, Mapping):
        raise ConfigParseError(f"{where} must be a list of steps or a mapping with 'steps'")

    unknown = sorted(str(k) for k in entry if k not in ("steps", "config"))
    if unknown:
        raise ConstraintError(f"{where}: unknown key(s): {', '.join(unknown)}")

    steps = _parse_step_list(entry.get("steps") or [], where=f"{where}.steps")
    return steps, _parse_local(entry.get("config"), where=f"{where}.config")


def _parse_step_list(raw: Any, *, where: str) -> List[str]:
    if not isinstance(raw, list):
        raise ConfigParseError(f"{where} must be a list")
    steps: List[str] = []
    for idx, step in enumerate(raw):
        if not isinstance(step, str):
            raise ConfigParseError(f"{where}[{idx}] must be a string, got {type(step).__name__}")
        steps.append(step)
    return steps


def _parse_local(raw: Any, *, where: str) -> LocalConfig:
    if raw is None:
        return LocalConfig()
    if not isinstance(raw, Mapping):
        raise ConfigParseError(f"{where} must be a mapping")
    return LocalConfig(
        execution_policy=_parse_policy(raw.get("execution_policy")),
        env=_parse_env(raw.get("env"), where=f"{where}.env"),
    )


def _parse_policy(raw: Any) -> ExecutionPolicy | None:
    if raw is None:
        return None
    return ExecutionPolicy.parse(str(raw))


def _parse_env(raw: Any, *, where: str) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigParseError(f"{where} must be a mapping of KEY: value")
    env: Dict[str, str] = {}
    for key, value in raw.items():
        if value is None:
            value = ""
        elif isinstance(value, bool):
            # YAML turns `true` into a bool; shells want the text back.
            value = "true" if value else "false"
        env[str(key)] = str(value)
    return env


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def validate(model: TaskModel) -> None:
    """Load-time checks; any violation is a ConstraintError."""
    for name, block in model.blocks.items():
        lowered = name.lower()
        if lowered in SECTION_KEYS:
            raise ConstraintError(f"block name '{name}' conflicts with reserved section name")
        if lowered in OPERATING_SYSTEMS:
            raise ConstraintError(f"block name '{name}' conflicts with reserved operating system name")
        if not name or any(ch.isspace() for ch in name):
            raise ConstraintError(f"block name '{name}' must be a single word")
        for step in block.steps:
            if not step.strip():
                raise ConstraintError(f"empty step found in block '{name}'")

    for section, per_os in model.sections.items():
        for os_name, entry in per_os.items():
            for step in entry.steps:
                if not step.strip():
                    raise ConstraintError(
                        f"empty step found in section '{section.display_name}' ({os_name})"
                    )

    _check_block_cycles(model.blocks)


def _check_block_cycles(blocks: Dict[str, Block]) -> None:
    done: set[str] = set()

    def visit(name: str, chain: List[str]) -> None:
        if name in chain:
            raise BlockCycleError(chain[chain.index(name):] + [name])
        if name in done:
            return
        for ref in block_references(blocks[name], blocks):
            visit(ref, chain + [name])
        done.add(name)

    for name in sorted(blocks):
        visit(name, [])


# ----------------------------------------------------------------------
# --env / --env-file
# ----------------------------------------------------------------------

def parse_kv(text: str) -> Tuple[str, str]:
    """Parse one `KEY=VALUE` CLI argument."""
    key, sep, value = text.partition("=")
    if not sep:
        raise ValueError("expected KEY=VALUE")
    if not key:
        raise ValueError("key cannot be empty")
    return key, value


def load_env_file(path: str | Path) -> str:
    """
    Read an env file and return only its `KEY=VALUE` lines.

    Blank lines and `#` comments are dropped; the result goes through
    Environment.load() with PASSED source.
    """
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ZmakeIOError(f"could not read env file {p}: {e}") from e

    kept = [
        line for line in text.splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    ]
    return "\n".join(kept)
