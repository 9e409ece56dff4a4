from .environment import Environment, EnvVariable
from .loader import load_config
from .model import Block, ExecutionPolicy, RunOptions, Section, SourceKind, TaskModel
from .runner import RunReport, TaskRunner, prepare_environment, run_tasks
from .shell import run_command

__all__ = [
    "Environment",
    "EnvVariable",
    "load_config",
    "Block",
    "ExecutionPolicy",
    "RunOptions",
    "Section",
    "SourceKind",
    "TaskModel",
    "RunReport",
    "TaskRunner",
    "prepare_environment",
    "run_tasks",
    "run_command",
]
