"""Prompt text handed to the coding agents."""

from __future__ import annotations

from hive_mind.models import SolveRequest

SYSTEM_GUIDELINES = """You are an AI issue solver working in a prepared git repository.

Guidelines:
- Read the issue and every comment on it before changing code.
- Keep changes focused on the issue; do not refactor unrelated code.
- Run the project's tests and linters before finishing.
- Commit your work to the prepared branch and push it.
- Update the prepared pull request title and description so they describe the solution.
- When feedback is listed below, address every item."""


def build_prompt(request: SolveRequest) -> str:
    """Build the user prompt for one solve or restart."""
    lines = []
    if request.issue_number is not None:
        lines.append(f"Issue to solve: {request.item_url}")
    else:
        lines.append(f"Pull request to continue: {request.item_url}")
    if request.branch_name:
        lines.append(f"Your prepared branch: {request.branch_name}")
    if request.working_dir:
        lines.append(f"Your prepared working directory: {request.working_dir}")
    if request.pr_url:
        lines.append(f"Your prepared pull request: {request.pr_url}")

    if request.feedback_lines:
        lines.append("")
        lines.append("New feedback since your last work session:")
        lines.extend(request.feedback_lines)

    lines.append("")
    lines.append("Continue." if request.feedback_lines or request.resume_session_id else "Proceed.")
    return "\n".join(lines)


def build_full_prompt(request: SolveRequest) -> str:
    """Guidelines followed by the request prompt, for CLIs without a system prompt flag."""
    return f"{SYSTEM_GUIDELINES}\n\n{build_prompt(request)}"


def task_marker_content(request: SolveRequest) -> str:
    """Content of the marker file committed to open the draft pull request."""
    return (
        f"Issue to solve: {request.item_url}\n"
        f"Your prepared branch: {request.branch_name}\n"
        f"Your prepared working directory: {request.working_dir}\n"
        "\nProceed.\n"
    )
