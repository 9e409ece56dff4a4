# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from zmake.errors import ConfigParseError, ConstraintError, RunFailed, ZmakeError, ZmakeIOError
from zmake.loader import DEFAULT_TASK_FILE, load_config, parse_kv
from zmake.model import OPERATING_SYSTEMS, ExecutionPolicy, RunOptions, Section
from zmake.runner import TaskRunner, prepare_environment
from zmake.ui.console import Console, get_console, set_console


def detect_os(platform: str | None = None) -> str:
    """
    Map sys.platform onto one of the supported OS names.

    Raises:
        ZmakeError: for platforms the task model has no key for
    """
    platform = platform or sys.platform
    if platform.startswith("win"):
        return "windows"
    if platform.startswith("linux"):
        return "linux"
    if platform == "darwin":
        return "macos"
    raise ZmakeError(f"unsupported OS detected: {platform}")


def _parse_env_option(ctx, param, values):
    pairs = []
    for value in values:
        try:
            pairs.append(parse_kv(value))
        except ValueError as e:
            raise click.BadParameter(f"{value!r}: {e}", ctx=ctx, param=param)
    return tuple(pairs)


def _parse_section_option(ctx, param, values):
    try:
        return tuple(Section.parse(v) for v in values)
    except ConstraintError as e:
        raise click.BadParameter(str(e), ctx=ctx, param=param)


def _load_or_exit(task_file: Path):
    console = get_console()
    try:
        return load_config(task_file)
    except ZmakeIOError as e:
        console.print_error(
            "Task file not found",
            str(e),
            suggestion=f"Create {DEFAULT_TASK_FILE} or pass a path:\n  zmake run path/to/tasks.yml",
        )
    except (ConfigParseError, ConstraintError) as e:
        console.print_error("Invalid task file", str(e), details=[str(task_file)])
    sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """zmake: declarative, per-platform build lifecycle task runner."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("task_file", default=DEFAULT_TASK_FILE, type=click.Path(path_type=Path))
@click.option(
    "--cwd",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Working directory to run commands in (defaults to current directory)",
)
@click.option(
    "--os",
    "os_name",
    default=None,
    type=click.Choice(OPERATING_SYSTEMS),
    help="Override the detected OS. Forces --dry-run when it differs from the host.",
)
@click.option(
    "--section",
    "sections",
    multiple=True,
    callback=_parse_section_option,
    help="Run only this section (repeatable). Clean only runs when named here.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Print the commands without executing them")
@click.option(
    "--env",
    "envs",
    multiple=True,
    metavar="KEY=VALUE",
    callback=_parse_env_option,
    help="Extra environment variable for commands (repeatable)",
)
@click.option(
    "--env-file",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="File of KEY=VALUE lines ('#' comments allowed)",
)
@click.option(
    "--fail-fast/--carry-forward",
    "fail_fast",
    default=None,
    help="Override the task file's execution policy",
)
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)")
@click.pass_context
def run(ctx, task_file, cwd, os_name, sections, dry_run, envs, env_file, fail_fast, verbose):
    """Run the lifecycle sections of TASK_FILE (default: ZMake.yml)."""
    console = get_console()
    console.verbose = verbose

    try:
        detected = detect_os()
    except ZmakeError as e:
        console.print_error("Unsupported platform", str(e))
        sys.exit(1)

    target = os_name or detected
    if target != detected:
        console.print_warning(
            f"Overriding detected OS '{detected}' with '{target}'. Forcing dry-run mode."
        )
        dry_run = True

    model = _load_or_exit(task_file)

    policy = None
    if fail_fast is not None:
        policy = ExecutionPolicy.FAST_FAIL if fail_fast else ExecutionPolicy.CARRY_FORWARD

    options = RunOptions(
        os_name=target,
        cwd=(cwd or Path.cwd()).resolve(),
        dry_run=dry_run,
        sections=sections or None,
        execution_policy=policy,
        env=envs,
        env_file=env_file,
        verbose=verbose,
    )

    runner = TaskRunner(model, options)
    try:
        console.print_run_started(
            task_file=str(task_file),
            os_name=options.os_name,
            cwd=str(options.cwd),
            dry_run=options.dry_run,
        )
        # A foreign OS's shell isn't available on this host.
        environment = prepare_environment(model, options, capture_ambient=(target == detected))
        runner.run(environment)
        console.print_results(runner.report)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except RunFailed as e:
        console.print_results(runner.report)
        console.print_error("Run failed", str(e))
        sys.exit(1)
    except ZmakeError as e:
        if runner.report.sections:
            console.print_results(runner.report)
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.argument("task_file", default=DEFAULT_TASK_FILE, type=click.Path(path_type=Path))
@click.option(
    "--os",
    "os_name",
    default=None,
    type=click.Choice(OPERATING_SYSTEMS),
    help="Show the plan for this OS (defaults to the host OS)",
)
def validate(task_file, os_name):
    """Load and validate TASK_FILE, then print what it defines."""
    console = get_console()
    model = _load_or_exit(task_file)
    try:
        target = os_name or detect_os()
    except ZmakeError as e:
        console.print_error("Unsupported platform", str(e))
        sys.exit(1)

    console.print_info(f"{task_file}: OK")
    console.print_plan(model, target)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
