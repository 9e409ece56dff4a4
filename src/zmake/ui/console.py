"""Console output formatting utilities for zmake."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional

import click

if TYPE_CHECKING:
    from zmake.model import Section, TaskModel
    from zmake.runner import RunReport


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, verbose: int = 0):
        """
        Initialize console formatter.

        Args:
            debug: If True, show stack traces on errors
            verbose: 0 = normal, 1 = debug lines, 2+ = trace lines
        """
        self.debug = debug
        self.verbose = verbose

    def _echo(self, message: str, *, fg: Optional[str] = None, err: bool = False, bold: bool = False) -> None:
        if fg or bold:
            message = click.style(message, fg=fg, bold=bold)
        click.echo(message, err=err)

    def print_run_started(
        self,
        task_file: str,
        os_name: str,
        cwd: str,
        dry_run: bool,
    ) -> None:
        """Print run start information."""
        self._echo("\nRUN STARTED", bold=True)
        self._echo(f"Task file: {task_file}")
        self._echo(f"OS: {os_name}")
        self._echo(f"Working directory: {cwd}")
        if dry_run:
            self._echo("Mode: dry-run (nothing will be executed)", fg="yellow")
        self._echo("")

    def print_section_started(self, section: "Section") -> None:
        """Print section header."""
        self._echo(f"----- [{section.display_name}] -----", fg="blue")

    def print_section_skipped(self, section: "Section", reason: str) -> None:
        self.print_debug(f"skipping section {section.display_name}: {reason}")

    def print_command(self, command: str) -> None:
        self._echo(f"$ {command}", fg="cyan")

    def print_dry_run(self, command: str) -> None:
        self._echo(f"$ {command}  (dry-run)", fg="cyan")

    def print_block_entered(self, name: str, depth: int) -> None:
        self._echo(f"{'  ' * depth}> block {name}", fg="magenta")

    def print_block_left(self, name: str, depth: int, changed: int) -> None:
        self.print_debug(f"{'  ' * depth}< block {name} ({changed} variable(s) changed)")

    def print_env_change(self, key: str, value: str) -> None:
        self.print_trace(f"env {key}={value}")

    def print_failure(self, message: str, carried: bool) -> None:
        """
        Print a step/block failure.

        Args:
            message: Failure description
            carried: True when the failure is recorded and execution continues
        """
        if carried:
            self._echo(f"WARNING: {message} (continuing: carry_forward)", fg="yellow", err=True)
        else:
            self._echo(f"FAILED: {message}", fg="red", err=True)

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary."""
        self._echo("\n" + "=" * 40)
        self._echo("RESULTS")
        self._echo("=" * 40)
        for section, status in report.sections.items():
            colour = {"ok": "green", "failed": "red"}.get(status)
            self._echo(f"  {section.display_name}: {status.upper()}", fg=colour)
        if report.failures:
            self._echo(f"\n{len(report.failures)} failure(s):", fg="red")
            for failure in report.failures:
                self._echo(f"  - {failure}", fg="red")
        elif report.ok:
            self._echo("\nAll tasks completed successfully.", fg="green")

    def print_plan(self, model: "TaskModel", os_name: str) -> None:
        """Print what a task file defines for one OS."""
        self._echo(f"\nPLAN ({os_name})", bold=True)
        for section, per_os in model.ordered_sections():
            entry = (per_os or {}).get(os_name)
            count = len(entry.steps) if entry else 0
            self._echo(f"  {section.display_name}: {count} step(s)")
        if model.blocks:
            self._echo("\nBLOCKS", bold=True)
            for name, block in sorted(model.blocks.items()):
                self._echo(f"  {name}: {len(block.steps)} step(s)")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self._echo(f"\nERROR: {title}", fg="red", err=True)
        self._echo(message, err=True)
        if details:
            for detail in details:
                self._echo(f"  {detail}", err=True)
        if suggestion:
            self._echo(f"\n{suggestion}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            self._echo(f"Error: {exc}", fg="red", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._echo(message)

    def print_warning(self, message: str) -> None:
        self._echo(f"WARNING: {message}", fg="yellow", err=True)

    def print_debug(self, message: str) -> None:
        """Print debug message (only with -v or --debug)."""
        if self.debug or self.verbose >= 1:
            self._echo(f"[DEBUG] {message}", err=True)

    def print_trace(self, message: str) -> None:
        if self.verbose >= 2:
            self._echo(f"[TRACE] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
