"""
Infrastructure layer for orgmaint.

Contains abstractions for external systems:
- GitClient: git command execution
- GitHubClient: gh CLI and GitHub REST access
- JuliaClient: child `julia` processes

These provide clean interfaces that can be mocked for testing.
"""

from .git_client import GitClient
from .github_client import GitHubClient, WorkflowRun, parse_repo_url, repo_name_from_url
from .julia_client import JuliaClient, julia_string

__all__ = [
    'GitClient',
    'GitHubClient',
    'WorkflowRun',
    'parse_repo_url',
    'repo_name_from_url',
    'JuliaClient',
    'julia_string',
]
