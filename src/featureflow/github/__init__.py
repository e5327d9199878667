"""GitHub pull request status queries via the gh CLI."""

from src.featureflow.github.cli import (
    GitHubCLI,
    PullRequestQueryError,
    PullRequestState,
)

__all__ = [
    "GitHubCLI",
    "PullRequestQueryError",
    "PullRequestState",
]
