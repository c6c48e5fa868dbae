"""Claude Code CLI adapter."""

from __future__ import annotations

from hive_mind.models import SolveRequest
from hive_mind.solvers.base import SolverAdapter
from hive_mind.solvers.prompts import SYSTEM_GUIDELINES, build_prompt


class ClaudeSolver(SolverAdapter):
    """
    Runs `claude` in stream-json mode.

    The guidelines go in through --append-system-prompt so the user prompt
    stays short. API overloads are retried.
    """

    name = "claude"
    retry_on_overload = True

    @property
    def binary(self) -> str:
        return self.config.solver.claude_binary

    def build_prompt(self, request: SolveRequest) -> str:
        return build_prompt(request)

    def build_command(self, request: SolveRequest, prompt: str) -> list[str]:
        cmd = [
            self.binary,
            "--output-format", "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
            "--model", request.model,
            "--append-system-prompt", SYSTEM_GUIDELINES,
        ]
        if request.resume_session_id:
            cmd.extend(["--resume", request.resume_session_id])
        cmd.extend(["-p", prompt])
        return cmd
