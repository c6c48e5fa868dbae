"""Coding-agent CLI adapters."""

from hive_mind.solvers.base import OutputSink, SolverAdapter
from hive_mind.solvers.claude import ClaudeSolver
from hive_mind.solvers.codex import CodexSolver
from hive_mind.solvers.opencode import OpencodeSolver
from hive_mind.solvers.registry import SOLVERS, get_solver

__all__ = [
    "ClaudeSolver",
    "CodexSolver",
    "OpencodeSolver",
    "OutputSink",
    "SOLVERS",
    "SolverAdapter",
    "get_solver",
]
