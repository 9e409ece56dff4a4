# runner.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .blocks import BlockResolver
from .environment import Environment
from .errors import CommandFailed, ExecutionError, RunFailed, ZmakeError
from .loader import load_env_file
from .model import ExecutionPolicy, RunOptions, Section, SourceKind, StepList, TaskModel
from .shell import CommandResult, run_command
from .ui.console import get_console


CommandRunner = Callable[..., CommandResult]


@dataclass
class RunReport:
    """Per-section status ("ok" | "failed" | "dry-run") plus carried failures."""
    sections: Dict[Section, str] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and "failed" not in self.sections.values()


# ----------------------------------------------------------------------
# Environment layering
# ----------------------------------------------------------------------

def prepare_environment(
    model: TaskModel,
    options: RunOptions,
    *,
    capture_ambient: bool = True,
) -> Environment:
    """
    Build the global environment: ambient OS env (DEFAULT), task file
    global env (GLOBAL), then --env and --env-file values (PASSED).

    With capture_ambient=False the ambient layer is this process's own
    environment instead of a dump from the host shell.
    """
    console = get_console()
    env = Environment()

    if capture_ambient:
        try:
            env.capture_ambient(options.os_name, options.cwd)
        except ExecutionError as e:
            console.print_warning(f"{e}; falling back to this process's environment")
            env = Environment.from_mapping(os.environ, SourceKind.DEFAULT)
    else:
        env = Environment.from_mapping(os.environ, SourceKind.DEFAULT)
    console.print_debug(f"captured {len(env)} ambient variable(s)")

    for key, value in model.global_config.env.items():
        env.upsert(key, value, SourceKind.GLOBAL)

    for key, value in options.env:
        env.upsert(key, value, SourceKind.PASSED)

    if options.env_file is not None:
        env.load(load_env_file(options.env_file), SourceKind.PASSED)

    return env


# ----------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------

class TaskRunner:
    """
    Walks the lifecycle sections in order and dispatches their steps.

    Exactly one command runs at a time. Every scope (section, block) works
    on a clone of its parent's environment and merges the result back
    when it completes.
    """

    def __init__(
        self,
        model: TaskModel,
        options: RunOptions,
        *,
        command_runner: CommandRunner = run_command,
    ):
        self.model = model
        self.options = options
        self.report = RunReport()
        self.blocks = BlockResolver(model.blocks, self._dispatch_steps)
        self._run_command = command_runner
        self._section: Optional[Section] = None

    @property
    def global_policy(self) -> ExecutionPolicy:
        return (
            self.options.execution_policy
            or self.model.global_config.execution_policy
            or ExecutionPolicy.FAST_FAIL
        )

    def run(self, environment: Environment) -> RunReport:
        """
        Run every selected section against `environment` (updated in place).

        Raises the first error under fast_fail, or RunFailed listing every
        failure recorded under carry_forward.
        """
        console = get_console()

        for section, _per_os in self.model.ordered_sections():
            reason = self._skip_reason(section)
            if reason:
                console.print_section_skipped(section, reason)
                continue

            entry = self.model.steps_for(section, self.options.os_name)
            if entry is None or not entry.steps:
                console.print_section_skipped(section, f"no steps for {self.options.os_name}")
                continue

            self._run_section(section, entry, environment)

        if self.report.failures:
            raise RunFailed(list(self.report.failures))
        return self.report

    # ---- sections ----

    def _skip_reason(self, section: Section) -> Optional[str]:
        requested = self.options.sections
        if section in self.model.global_config.skip_sections:
            if requested is not None and section in requested:
                get_console().print_warning(
                    f"section {section.display_name} was requested but is listed in "
                    "global_config.skip_sections"
                )
            return "listed in global_config.skip_sections"
        if requested is not None:
            if section not in requested:
                return "not selected"
        elif section is Section.CLEAN:
            return "clean only runs when requested (--section clean)"
        return None

    def _run_section(self, section: Section, entry: StepList, environment: Environment) -> None:
        get_console().print_section_started(section)
        self._section = section

        scope = environment.clone()
        for key, value in entry.config.env.items():
            scope.upsert(key, value, SourceKind.LOCAL)
        policy = entry.config.execution_policy or self.global_policy

        failures_before = len(self.report.failures)
        try:
            self._dispatch_steps(list(entry.steps), scope, policy, None)
        except ZmakeError:
            self.report.sections[section] = "failed"
            raise
        finally:
            self._section = None

        if len(self.report.failures) > failures_before:
            self.report.sections[section] = "failed"
        else:
            self.report.sections[section] = "dry-run" if self.options.dry_run else "ok"

        environment.merge(scope.diff(environment))

    # ---- steps ----

    def _dispatch_steps(
        self,
        steps: List[str],
        env: Environment,
        policy: ExecutionPolicy,
        block: Optional[str],
    ) -> None:
        """Run steps in order inside one scope; env receives each step's delta."""
        console = get_console()

        for step in steps:
            if self.blocks.is_reference(step):
                try:
                    delta = self.blocks.resolve(step, env, policy)
                except CommandFailed as e:
                    self._adjudicate(e, policy)
                    continue
                env.merge(delta)
                continue

            if self.options.dry_run:
                console.print_dry_run(step)
                continue

            console.print_command(step)
            result = self._run_command(
                step,
                env,
                os_name=self.options.os_name,
                cwd=self.options.cwd,
            )
            for key in result.delta:
                console.print_env_change(key, result.delta.value(key))
            env.merge(result.delta)

            if not result.ok:
                section = self._section.display_name if self._section else "?"
                self._adjudicate(
                    CommandFailed(section=section, command=step, exit_code=result.exit_code, block=block),
                    policy,
                )

    def _adjudicate(self, error: ZmakeError, policy: ExecutionPolicy) -> None:
        """fast_fail: re-raise. carry_forward: record and keep going."""
        if policy is ExecutionPolicy.FAST_FAIL:
            raise error
        get_console().print_failure(str(error), carried=True)
        self.report.failures.append(str(error))


def run_tasks(
    model: TaskModel,
    options: RunOptions,
    environment: Optional[Environment] = None,
) -> RunReport:
    """Convenience wrapper: layer the environment and run everything."""
    if environment is None:
        environment = prepare_environment(model, options)
    return TaskRunner(model, options).run(environment)
