"""Repository connections for ReviewLoom.

A user connects a GitHub repository once (access verified with their
token); analyses are then requested against the stored record. Deleting a
repository only deactivates it, so its analysis history is preserved.
"""

import logging
import math
from typing import Any, Dict

from ..cache import ResilientCache, keys
from ..constants import LISTING_CACHE_TTL, STATS_CACHE_TTL
from ..exceptions import AuthorizationError, ConflictError, NotFoundError
from ..github import GitHubDiffSource
from .models import Principal
from .store import AnalysisStore

logger = logging.getLogger(__name__)


class RepositoryService:
    """Connect, list, inspect, and disconnect repositories."""

    def __init__(
        self,
        store: AnalysisStore,
        cache: ResilientCache,
        diff_source: GitHubDiffSource,
        listing_ttl: int = LISTING_CACHE_TTL,
        detail_ttl: int = STATS_CACHE_TTL,
    ):
        self._store = store
        self._cache = cache
        self._diff_source = diff_source
        self._listing_ttl = listing_ttl
        self._detail_ttl = detail_ttl

    def connect(self, principal: Principal, full_name: str) -> Dict[str, Any]:
        """Create or reactivate a repository record.

        Returns:
            Dict with the repository and ``created`` (False when reactivated)

        Raises:
            AuthorizationError: GitHub denies access to the repository
            ConflictError: Repository is already connected and active
        """
        access = self._diff_source.verify_access(full_name, principal.github_token)
        if not access.has_access:
            raise AuthorizationError(access.error or "No access to this repository")

        existing = self._store.find_repository_by_full_name(principal.user_id, access.repo.full_name)
        if existing is not None:
            if existing["isActive"]:
                raise ConflictError("Repository is already connected")
            repo = self._store.set_repository_active(existing["id"], True)
            self._cache.invalidate_repositories(principal.user_id, existing["id"])
            logger.info(f"Reactivated repository {existing['id']} ({existing['fullName']})")
            return {"repository": repo, "created": False}

        repo = self._store.create_repository(
            user_id=principal.user_id,
            name=access.repo.name,
            full_name=access.repo.full_name,
            github_id=access.repo.id,
            is_private=access.repo.private,
            default_branch=access.repo.default_branch,
        )
        self._cache.invalidate_repositories(principal.user_id)
        return {"repository": repo, "created": True}

    def list_repositories(self, principal: Principal, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        cache_key = keys.repository_listing_key(principal.user_id, page, limit)
        cached = self._cache.get_json(cache_key)
        if cached is not None:
            return cached

        items, total = self._store.list_repositories(principal.user_id, page, limit)
        result = {
            "repositories": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }
        self._cache.set_json(cache_key, result, self._listing_ttl)
        return result

    def get_repository(self, principal: Principal, repository_id: str) -> Dict[str, Any]:
        cache_key = keys.repository_detail_key(repository_id, principal.user_id)
        cached = self._cache.get_json(cache_key)
        if cached is not None:
            return cached

        detail = self._store.get_repository_detail(repository_id, principal.user_id)
        if detail is None:
            raise NotFoundError("Repository not found")
        self._cache.set_json(cache_key, detail, self._detail_ttl)
        return detail

    def disconnect(self, principal: Principal, repository_id: str) -> None:
        repo = self._store.get_repository(repository_id, user_id=principal.user_id, active_only=False)
        if repo is None:
            raise NotFoundError("Repository not found")
        self._store.set_repository_active(repository_id, False)
        self._cache.invalidate_repositories(principal.user_id, repository_id)
        logger.info(f"Deactivated repository {repository_id} ({repo['fullName']})")
