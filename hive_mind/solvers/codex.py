"""OpenAI Codex CLI adapter."""

from __future__ import annotations

from hive_mind.models import SolveRequest
from hive_mind.solvers.base import SolverAdapter

# Claude model aliases make no sense for codex
CLAUDE_ALIASES = {"sonnet", "opus", "haiku"}
DEFAULT_MODEL = "gpt-5"


class CodexSolver(SolverAdapter):
    """Runs `codex exec --json`, resuming by thread id when asked."""

    name = "codex"

    @property
    def binary(self) -> str:
        return self.config.solver.codex_binary

    def build_command(self, request: SolveRequest, prompt: str) -> list[str]:
        model = DEFAULT_MODEL if request.model in CLAUDE_ALIASES else request.model
        cmd = [
            self.binary,
            "exec",
            "--json",
            "--model", model,
            "--dangerously-bypass-approvals-and-sandbox",
            "--skip-git-repo-check",
        ]
        if request.resume_session_id:
            cmd.extend(["resume", request.resume_session_id])
        # Separator keeps prompts starting with dashes from parsing as options
        cmd.extend(["--", prompt])
        return cmd
