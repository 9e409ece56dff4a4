# blocks.py
from __future__ import annotations

from typing import Callable, Dict, List, Mapping, Optional

from .environment import Environment
from .errors import BlockCycleError, BlockNotFound
from .model import Block, ExecutionPolicy, SourceKind
from .ui.console import get_console


# Runs a step list inside a scope: (steps, env, policy, block_name) -> None.
# Mutates env in place with every step's delta.
StepDispatcher = Callable[[List[str], Environment, ExecutionPolicy, Optional[str]], None]


def is_block_reference(step: str, blocks: Mapping[str, Block]) -> bool:
    """A step names a block iff it is one bare, unquoted token found in the table."""
    token = step.strip()
    if not token or any(ch.isspace() for ch in token):
        return False
    if token[0] in "\"'" or token[-1] in "\"'":
        return False
    return token in blocks


def block_references(block: Block, blocks: Mapping[str, Block]) -> List[str]:
    return [step.strip() for step in block.steps if is_block_reference(step, blocks)]


class BlockResolver:
    """
    Resolves named blocks over an immutable name -> Block table.

    The step dispatcher is injected by the runner so nested block
    references go through exactly the same dispatch as section steps.
    """

    def __init__(self, blocks: Mapping[str, Block], dispatch: StepDispatcher):
        self._blocks: Dict[str, Block] = dict(blocks)
        self._dispatch = dispatch
        self._in_flight: List[str] = []

    def is_reference(self, step: str) -> bool:
        return is_block_reference(step, self._blocks)

    def resolve(self, name: str, env: Environment, policy: ExecutionPolicy) -> Environment:
        """
        Run block `name` against a clone of `env` and return what it changed.

        The block's local env is applied with LOCAL source and its local
        policy (if any) governs its own steps. A failure the block's policy
        says to carry forward is recorded by the dispatcher and the block
        still returns its delta; a fast_fail failure propagates.
        """
        name = name.strip()
        block = self._lookup(name)
        if name in self._in_flight:
            raise BlockCycleError(self._in_flight + [name])

        console = get_console()
        depth = len(self._in_flight)
        console.print_block_entered(name, depth)

        scope = env.clone()
        for key, value in block.config.env.items():
            scope.upsert(key, value, SourceKind.LOCAL)
        scope_policy = block.config.execution_policy or policy

        self._in_flight.append(name)
        try:
            self._dispatch(list(block.steps), scope, scope_policy, name)
        finally:
            self._in_flight.pop()

        delta = scope.diff(env)
        console.print_block_left(name, depth, len(delta))
        return delta

    def _lookup(self, name: str) -> Block:
        block = self._blocks.get(name.strip())
        if block is None:
            raise BlockNotFound(name)
        return block
