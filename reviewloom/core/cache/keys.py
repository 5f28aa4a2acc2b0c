"""Cache key builders.

Keys are scoped so that everything derived from one analysis, or from one
user's listings, can be found by exact key or by prefix.
"""

from typing import Any, Mapping


def analysis_key(analysis_id: str) -> str:
    return f"analysis:{analysis_id}"


def analysis_status_key(analysis_id: str) -> str:
    return f"analysis:{analysis_id}:status"


def user_listing_prefix(user_id: str) -> str:
    return f"analyses:user:{user_id}:"


def user_listing_key(user_id: str, page: int, limit: int, filters: Mapping[str, Any]) -> str:
    """Every filter/sort parameter is part of the key, in a stable order."""
    parts = [f"{name}={filters[name]}" for name in sorted(filters) if filters[name] is not None]
    return f"{user_listing_prefix(user_id)}{page}:{limit}:{'&'.join(parts)}"


def user_stats_key(user_id: str) -> str:
    return f"stats:user:{user_id}"


def repository_listing_prefix(user_id: str) -> str:
    return f"repos:user:{user_id}:"


def repository_listing_key(user_id: str, page: int, limit: int) -> str:
    return f"{repository_listing_prefix(user_id)}{page}:{limit}"


def diff_key(repo_full_name: str, pr_number: int) -> str:
    return f"github:diff:{repo_full_name}:{pr_number}"


REPORT_PREFIX = "ai:analysis:"


def report_key(fingerprint: str) -> str:
    return f"{REPORT_PREFIX}{fingerprint}"


def repository_detail_key(repository_id: str, user_id: str) -> str:
    return f"repo:{repository_id}:{user_id}"


def credential_key(user_id: str) -> str:
    """Delegated GitHub token of a signed-in user, read by background runs."""
    return f"session:{user_id}:github"
