"""OpenCode CLI adapter."""

from __future__ import annotations

from hive_mind.models import SolveRequest
from hive_mind.solvers.base import SolverAdapter

MODEL_ALIASES = {
    "sonnet": "anthropic/claude-sonnet-4-5",
    "opus": "anthropic/claude-opus-4-1",
    "haiku": "anthropic/claude-haiku-4-5",
}


class OpencodeSolver(SolverAdapter):
    """Runs `opencode run --format json`."""

    name = "opencode"

    @property
    def binary(self) -> str:
        return self.config.solver.opencode_binary

    def build_command(self, request: SolveRequest, prompt: str) -> list[str]:
        model = MODEL_ALIASES.get(request.model, request.model)
        cmd = [self.binary, "run", "--format", "json", "--model", model]
        if request.resume_session_id:
            cmd.extend(["--session", request.resume_session_id])
        cmd.append(prompt)
        return cmd
