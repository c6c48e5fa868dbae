"""Lookup of solver adapters by tool name."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from hive_mind.config import ConfigError
from hive_mind.solvers.base import SolverAdapter
from hive_mind.solvers.claude import ClaudeSolver
from hive_mind.solvers.codex import CodexSolver
from hive_mind.solvers.opencode import OpencodeSolver

if TYPE_CHECKING:
    from hive_mind.config import HiveConfig
    from hive_mind.logger import HiveLogger

SOLVERS: dict[str, type[SolverAdapter]] = {
    "claude": ClaudeSolver,
    "codex": CodexSolver,
    "opencode": OpencodeSolver,
}


def get_solver(
    tool: str,
    config: HiveConfig,
    logger: Optional[HiveLogger] = None,
) -> SolverAdapter:
    """
    Instantiate the adapter registered under `tool`.

    Raises:
        ConfigError: If no adapter is registered for the tool.
    """
    try:
        solver_cls = SOLVERS[tool]
    except KeyError:
        raise ConfigError(
            f"Unknown tool '{tool}'. Available: {', '.join(sorted(SOLVERS))}"
        )
    return solver_cls(config, logger=logger)
