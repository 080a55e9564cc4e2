"""GitHub API access for the labeler.

This module provides:
- Issue and pull request record models and the page envelope
- GraphQL queries for paged and single-item reads
- An async client for reads and label mutations

The client classifies failures as transient or permanent but never retries
on its own.
"""

from src.labeler.github.client import (
    GitHubAPIError,
    GitHubClient,
    ItemNotFoundError,
    RateLimitError,
    TransientGitHubError,
)
from src.labeler.github.models import (
    GHOST_AUTHOR,
    Issue,
    ItemKind,
    Page,
    PullRequest,
    Record,
)

__all__ = [
    "GHOST_AUTHOR",
    "GitHubAPIError",
    "GitHubClient",
    "Issue",
    "ItemKind",
    "ItemNotFoundError",
    "Page",
    "PullRequest",
    "RateLimitError",
    "Record",
    "TransientGitHubError",
]
