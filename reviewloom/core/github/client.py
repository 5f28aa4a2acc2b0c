"""GitHub diff source adapter.

Fetches pull request metadata and per-file patches over the GitHub REST API
with the user's delegated token, normalizes them into a DiffBundle, and
caches the bundle for 30 minutes keyed by (repository, pull request).

Upstream errors are translated into the ReviewLoom taxonomy:
- 404            -> NotFoundError
- 403            -> AuthorizationError (access denied or rate limited)
- 429            -> RateLimitError
- anything else  -> DiffFetchError
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..cache import ResilientCache, keys
from ..constants import DIFF_CACHE_TTL
from ..exceptions import (
    AuthorizationError,
    DiffFetchError,
    NotFoundError,
    RateLimitError,
)
from .models import AccessResult, ChangeSetSummary, DiffBundle, RepositoryInfo

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
FILES_PER_PAGE = 100
MAX_FILE_PAGES = 30   # GitHub caps the files listing at 3000 entries


class GitHubDiffSource:
    """Diff source backed by the GitHub REST API.

    Args:
        cache: Shared ResilientCache for diff payloads
        api_url: GitHub API base URL (GitHub Enterprise needs a different one)
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(
        self,
        cache: ResilientCache,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        user_agent: str = "ReviewLoom/1.0",
        transport: Optional[httpx.BaseTransport] = None,
        diff_ttl: int = DIFF_CACHE_TTL,
    ):
        self._cache = cache
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport
        self._diff_ttl = diff_ttl

    def _client(self, credential: str) -> httpx.Client:
        return httpx.Client(
            base_url=self._api_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {credential}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": self._user_agent,
            },
        )

    # ── Public API ──────────────────────────────────────────────────────

    def fetch_change_set_diff(
        self,
        repo_full_name: str,
        pr_number: int,
        credential: str,
    ) -> DiffBundle:
        """Return the normalized diff of one pull request (cache first)."""
        cache_key = keys.diff_key(repo_full_name, pr_number)
        cached = self._cache.get_json(cache_key)
        if cached is not None:
            try:
                logger.debug(f"Using cached diff for {repo_full_name}#{pr_number}")
                return DiffBundle.model_validate(cached)
            except PydanticValidationError:
                logger.warning(f"Cached diff for {cache_key} no longer decodes, refetching")

        try:
            with self._client(credential) as client:
                pr_response = client.get(f"/repos/{repo_full_name}/pulls/{pr_number}")
                self._check_response(
                    pr_response,
                    not_found="Pull request not found or no access to repository",
                )
                pr = self._json(pr_response)
                files = self._fetch_files(client, repo_full_name, pr_number)
        except httpx.RequestError as e:
            logger.error(f"GitHub request failed for {repo_full_name}#{pr_number}: {e}")
            raise DiffFetchError("Failed to fetch PR diff from GitHub") from e

        try:
            bundle = DiffBundle.model_validate({
                "summary": self._summary_payload(pr),
                "files": files,
            })
        except PydanticValidationError as e:
            logger.error(f"Malformed GitHub payload for {repo_full_name}#{pr_number}: {e}")
            raise DiffFetchError("GitHub returned a malformed pull request payload") from e

        self._cache.set_json(cache_key, bundle.model_dump(mode="json"), self._diff_ttl)
        logger.info(
            f"Fetched diff for {repo_full_name}#{pr_number}: "
            f"{len(bundle.files)} files, {bundle.total_changed_lines} changed lines"
        )
        return bundle

    def get_change_set(
        self,
        repo_full_name: str,
        pr_number: int,
        credential: str,
    ) -> ChangeSetSummary:
        """Fetch pull request metadata only (existence check)."""
        try:
            with self._client(credential) as client:
                response = client.get(f"/repos/{repo_full_name}/pulls/{pr_number}")
                self._check_response(response, not_found="Pull request not found")
                pr = self._json(response)
        except httpx.RequestError as e:
            raise DiffFetchError("Failed to fetch pull request from GitHub") from e

        try:
            return ChangeSetSummary.model_validate(self._summary_payload(pr))
        except PydanticValidationError as e:
            raise DiffFetchError("GitHub returned a malformed pull request payload") from e

    def verify_access(self, repo_full_name: str, credential: str) -> AccessResult:
        """Check that the credential can still read the repository."""
        try:
            with self._client(credential) as client:
                response = client.get(f"/repos/{repo_full_name}")
        except httpx.RequestError as e:
            logger.error(f"Repository access verification failed for {repo_full_name}: {e}")
            raise DiffFetchError("Failed to verify repository access") from e

        if response.status_code == 404:
            return AccessResult(has_access=False, error="Repository not found or no access")
        if response.status_code == 403:
            return AccessResult(has_access=False, error="Access denied to repository")
        if response.status_code >= 400:
            raise DiffFetchError("Failed to verify repository access")

        try:
            repo = RepositoryInfo.model_validate(self._json(response))
        except PydanticValidationError as e:
            raise DiffFetchError("GitHub returned a malformed repository payload") from e
        return AccessResult(has_access=True, repo=repo)

    # ── Helpers ─────────────────────────────────────────────────────────

    def _fetch_files(self, client: httpx.Client, repo_full_name: str, pr_number: int) -> List[Dict]:
        files: List[Dict] = []
        for page in range(1, MAX_FILE_PAGES + 1):
            response = client.get(
                f"/repos/{repo_full_name}/pulls/{pr_number}/files",
                params={"per_page": FILES_PER_PAGE, "page": page},
            )
            self._check_response(
                response,
                not_found="Pull request not found or no access to repository",
            )
            batch = self._json(response)
            if not isinstance(batch, list):
                raise DiffFetchError("GitHub returned a malformed files payload")
            files.extend(batch)
            if len(batch) < FILES_PER_PAGE:
                break
        return files

    @staticmethod
    def _summary_payload(pr: Dict[str, Any]) -> Dict[str, Any]:
        head = pr.get("head") or {}
        return {
            "number": pr.get("number"),
            "title": pr.get("title"),
            "body": pr.get("body"),
            "state": pr.get("state", "open"),
            "head_sha": head.get("sha"),
            "commits": pr.get("commits") or 0,
            "additions": pr.get("additions") or 0,
            "deletions": pr.get("deletions") or 0,
            "changed_files": pr.get("changed_files") or 0,
        }

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DiffFetchError("GitHub returned a non-JSON response") from e

    @staticmethod
    def _check_response(response: httpx.Response, not_found: str) -> None:
        status = response.status_code
        if status < 400:
            return
        logger.warning(f"GitHub API {response.request.url.path} returned {status}")
        if status == 404:
            raise NotFoundError(not_found)
        if status == 403:
            raise AuthorizationError("Access denied to repository or rate limit exceeded")
        if status == 429:
            raise RateLimitError("GitHub rate limit exceeded. Please try again later.")
        raise DiffFetchError("Failed to fetch PR diff from GitHub")
