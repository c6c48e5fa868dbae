"""
Hive Mind - autonomous issue solving for GitHub.

Discovers issues in a repository, organization or user account, dispatches each
one to a coding-agent CLI, and supervises the agent until its pull request is
merged or its attempts are exhausted.
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
