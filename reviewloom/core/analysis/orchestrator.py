"""Analysis Orchestrator — the PR analysis state machine.

States:
  PENDING -> PROCESSING -> COMPLETED | FAILED

A FAILED analysis may be superseded (deleted and recreated as PENDING),
either automatically by a new create request or explicitly by a rerun.
COMPLETED, PENDING and PROCESSING records are never replaced.

Create requests return immediately; the pipeline run is handed to a
scheduler (the AnalysisWorker queue) and always ends in a terminal status.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..cache import ResilientCache, keys
from ..constants import (
    ACTIVE_STATUSES,
    CREDENTIAL_TTL,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
)
from ..exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ReviewLoomError,
    ValidationError,
)
from ..github import GitHubDiffSource
from ..review import SuggestionEngine
from .models import CreateAnalysisResult, CreateOutcome, PipelineResult, Principal
from .store import AnalysisStore

logger = logging.getLogger(__name__)


class AnalysisOrchestrator:
    """Create, supersede, delete, and run analyses.

    Args:
        store: AnalysisStore (source of truth)
        cache: Shared ResilientCache
        diff_source: GitHubDiffSource (or any object with the same methods)
        engine: SuggestionEngine
        scheduler: Callable taking an analysis id; queues the pipeline run
    """

    def __init__(
        self,
        store: AnalysisStore,
        cache: ResilientCache,
        diff_source: GitHubDiffSource,
        engine: SuggestionEngine,
        scheduler: Optional[Callable[[str], None]] = None,
        credential_ttl: int = CREDENTIAL_TTL,
    ):
        self._store = store
        self._cache = cache
        self._diff_source = diff_source
        self._engine = engine
        self._scheduler = scheduler
        self._credential_ttl = credential_ttl

    def set_scheduler(self, scheduler: Callable[[str], None]) -> None:
        self._scheduler = scheduler

    # ── Credentials ───────────────────────────────────────────────────

    def remember_credential(self, principal: Principal) -> None:
        """Keep the caller's token where background runs can find it."""
        self._cache.set_json(
            keys.credential_key(principal.user_id),
            {"githubToken": principal.github_token},
            self._credential_ttl,
        )

    def _credential_for(self, user_id: str) -> str:
        entry = self._cache.get_json(keys.credential_key(user_id))
        token = entry.get("githubToken") if isinstance(entry, dict) else None
        if not token:
            raise AuthenticationError("GitHub credential unavailable; please sign in again")
        return token

    # ── Create ────────────────────────────────────────────────────────

    def create_analysis(
        self,
        principal: Principal,
        repository_id: str,
        pr_number: int,
    ) -> CreateAnalysisResult:
        """Resolve a create request to a new, reused, or in-progress analysis.

        Raises:
            NotFoundError: Repository absent, inactive, or not owned by the caller
            AuthorizationError: GitHub no longer grants access to the repository
            ValidationError: The pull request does not exist
        """
        repo = self._store.get_repository(repository_id, user_id=principal.user_id)
        if repo is None:
            raise NotFoundError("Repository not found or access denied")

        access = self._diff_source.verify_access(repo["fullName"], principal.github_token)
        if not access.has_access:
            raise AuthorizationError(access.error or "No access to this repository")

        superseded = None
        existing = self._store.find_by_natural_key(repository_id, pr_number, include_suggestions=True)
        if existing is not None:
            if existing["status"] == STATUS_COMPLETED:
                logger.info(f"Reusing completed analysis {existing['id']} for {repo['fullName']}#{pr_number}")
                return CreateAnalysisResult(CreateOutcome.EXISTING_COMPLETED, existing)
            if existing["status"] in ACTIVE_STATUSES:
                logger.info(f"Analysis {existing['id']} already {existing['status']} for {repo['fullName']}#{pr_number}")
                return CreateAnalysisResult(CreateOutcome.IN_PROGRESS, existing)
            superseded = existing

        try:
            change_set = self._diff_source.get_change_set(repo["fullName"], pr_number, principal.github_token)
        except NotFoundError as e:
            raise ValidationError(f"Pull request #{pr_number} not found in {repo['fullName']}") from e

        if superseded is not None:
            # FAILED: replaced by a fresh run once the request has passed every check
            self._discard(superseded)

        self.remember_credential(principal)
        try:
            analysis = self._store.create_analysis(
                repository_id=repository_id,
                user_id=principal.user_id,
                pr_number=pr_number,
                pr_title=change_set.title,
            )
        except ConflictError:
            # Lost a race with a concurrent create for the same pull request
            winner = self._store.find_by_natural_key(repository_id, pr_number, include_suggestions=True)
            if winner is None:
                raise
            outcome = (
                CreateOutcome.EXISTING_COMPLETED
                if winner["status"] == STATUS_COMPLETED
                else CreateOutcome.IN_PROGRESS
            )
            return CreateAnalysisResult(outcome, winner)

        self._cache.invalidate_user_views(principal.user_id)
        self._cache.invalidate_repositories(principal.user_id, repository_id)
        self._schedule(analysis["id"])
        return CreateAnalysisResult(CreateOutcome.CREATED, analysis)

    # ── Rerun / delete ────────────────────────────────────────────────

    def rerun_analysis(self, principal: Principal, analysis_id: str) -> CreateAnalysisResult:
        """Supersede a FAILED analysis with a fresh one for the same pull request."""
        analysis = self._owned_analysis(principal, analysis_id)
        if analysis["status"] != STATUS_FAILED:
            raise ValidationError("Can only rerun failed analyses")

        # create_analysis supersedes the FAILED record after its own checks pass
        return self.create_analysis(principal, analysis["repositoryId"], analysis["prNumber"])

    def delete_analysis(self, principal: Principal, analysis_id: str) -> None:
        """Delete an analysis and its suggestions. PROCESSING is rejected."""
        analysis = self._owned_analysis(principal, analysis_id)
        if analysis["status"] == STATUS_PROCESSING:
            raise ValidationError("Cannot delete an analysis while it is processing")
        self._discard(analysis)

    def _owned_analysis(self, principal: Principal, analysis_id: str) -> dict:
        analysis = self._store.get_analysis(analysis_id)
        if analysis is None:
            raise NotFoundError("Analysis not found")
        if analysis["userId"] != principal.user_id:
            raise AuthorizationError("Access denied to this analysis")
        return analysis

    def _discard(self, analysis: dict) -> None:
        self._store.delete_analysis(analysis["id"])
        self._invalidate(analysis)

    def _schedule(self, analysis_id: str) -> None:
        if self._scheduler is None:
            logger.warning(f"No scheduler configured; analysis {analysis_id} waits for recovery")
            return
        try:
            self._scheduler(analysis_id)
        except Exception as e:
            # The record is PENDING in the store; the recovery sweep reschedules it
            logger.error(f"Failed to schedule analysis {analysis_id}: {e}")

    # ── Pipeline ──────────────────────────────────────────────────────

    def run_pipeline(self, analysis_id: str) -> PipelineResult:
        """Drive one analysis to a terminal status. Never raises."""
        try:
            analysis = self._store.get_analysis(analysis_id)
        except Exception as e:
            logger.error(f"Pipeline could not load analysis {analysis_id}: {e}")
            return PipelineResult(analysis_id, None, error=str(e))

        if analysis is None:
            logger.info(f"Analysis {analysis_id} no longer exists, skipping")
            return PipelineResult(analysis_id, None)
        if analysis["status"] not in ACTIVE_STATUSES:
            logger.info(f"Analysis {analysis_id} already {analysis['status']}, skipping")
            return PipelineResult(analysis_id, analysis["status"])

        user_id = analysis["userId"]
        try:
            self._store.update_status(analysis_id, STATUS_PROCESSING)
            self._invalidate(analysis)

            repo = self._store.get_repository(analysis["repositoryId"], active_only=False)
            if repo is None:
                raise NotFoundError("Repository not found")
            credential = self._credential_for(user_id)

            logger.info(f"Processing analysis {analysis_id}: {repo['fullName']}#{analysis['prNumber']}")
            bundle = self._diff_source.fetch_change_set_diff(
                repo["fullName"], analysis["prNumber"], credential
            )
            self._store.set_progress(
                analysis_id,
                total_changed_lines=bundle.total_changed_lines,
                revision_hash=bundle.summary.head_sha,
                pr_title=bundle.summary.title,
            )

            report = self._engine.generate_suggestions(bundle)

            completed = self._store.complete_analysis(
                analysis_id,
                [s.model_dump(by_alias=True) for s in report.suggestions],
                overall_rating=report.summary.overall_rating,
                main_concerns=report.summary.main_concerns,
            )
            if not completed:
                logger.info(f"Analysis {analysis_id} was deleted during processing")
                return PipelineResult(analysis_id, None)

            self._invalidate(analysis)
            logger.info(
                f"Analysis {analysis_id} COMPLETED: {len(report.suggestions)} suggestions"
                f"{' (fallback report)' if report.is_fallback else ''}"
            )
            return PipelineResult(analysis_id, STATUS_COMPLETED, suggestion_count=len(report.suggestions))

        except Exception as e:
            message = e.message if isinstance(e, ReviewLoomError) else (str(e) or type(e).__name__)
            logger.exception(f"Analysis {analysis_id} failed: {message}")
            return self._mark_failed(analysis, message)

    def _mark_failed(self, analysis: dict, message: str) -> PipelineResult:
        analysis_id = analysis["id"]
        try:
            if not self._store.fail_analysis(analysis_id, message):
                return PipelineResult(analysis_id, None, error=message)
        except Exception as e:
            logger.error(f"Could not mark analysis {analysis_id} FAILED: {e}")
            return PipelineResult(analysis_id, None, error=message)
        self._invalidate(analysis)
        return PipelineResult(analysis_id, STATUS_FAILED, suggestion_count=1, error=message)

    def _invalidate(self, analysis: dict) -> None:
        self._cache.invalidate_analysis(analysis["id"], analysis["userId"])
        self._cache.invalidate_repositories(analysis["userId"], analysis["repositoryId"])

    # ── Recovery ──────────────────────────────────────────────────────

    def recover_stale(self, grace_seconds: float) -> List[str]:
        """Reschedule PENDING/PROCESSING analyses untouched for grace_seconds."""
        cutoff = datetime.utcnow() - timedelta(seconds=grace_seconds)
        stale = self._store.find_stale(cutoff)
        for analysis_id in stale:
            logger.info(f"Recovering stale analysis {analysis_id}")
            self._schedule(analysis_id)
        return stale
