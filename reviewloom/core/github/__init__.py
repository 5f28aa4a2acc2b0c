"""Diff source adapter for GitHub pull requests.

Public API:
    GitHubDiffSource  — fetch_change_set_diff, get_change_set, verify_access
    DiffBundle        — normalized pull request diff
"""

from .client import GitHubDiffSource
from .models import (
    AccessResult,
    ChangedFile,
    ChangeSetSummary,
    ChangeStatus,
    DiffBundle,
    RepositoryInfo,
)

__all__ = [
    "GitHubDiffSource",
    "AccessResult",
    "ChangedFile",
    "ChangeSetSummary",
    "ChangeStatus",
    "DiffBundle",
    "RepositoryInfo",
]
