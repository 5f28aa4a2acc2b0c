"""Tests for AnalysisOrchestrator — the PR analysis state machine.

Runs against a real AnalysisStore (in-memory SQLite) and ResilientCache;
the diff source and suggestion engine are mocked.

Tests cover:
- Create: new, reuse COMPLETED, in-progress, supersede FAILED, guards
- Lost creation race resolved through the natural key
- Pipeline: success, fallback report, every failure path ends FAILED
- Pipeline skips missing and terminal analyses and never raises
- Rerun / delete rules, cache invalidation, stale recovery
"""

import json
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from reviewloom.core.analysis import AnalysisOrchestrator, CreateOutcome, RepositoryService
from reviewloom.core.cache import keys
from reviewloom.core.constants import ANALYSIS_ERROR_CATEGORY
from reviewloom.core.db.models import Analysis
from reviewloom.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DiffFetchError,
    NotFoundError,
    SuggestionEngineError,
    ValidationError,
)
from reviewloom.core.github import AccessResult, ChangeSetSummary, DiffBundle, RepositoryInfo
from reviewloom.core.review import ReviewSuggestion, SuggestionEngine, SuggestionReport


# ── Fixtures ──────────────────────────────────────────────────────────────


def _bundle(pr_number: int = 42) -> DiffBundle:
    return DiffBundle.model_validate({
        "summary": {"number": pr_number, "title": "Harden login", "head_sha": "f00dbabe"},
        "files": [
            {"filename": "auth.py", "status": "modified", "additions": 8, "deletions": 2,
             "patch": "@@ -1 +1 @@\n+check()"},
        ],
    })


def _report() -> SuggestionReport:
    return SuggestionReport.from_suggestions(
        [
            ReviewSuggestion(file_path="auth.py", line_number=4, severity="LOW", category="Style",
                             message="Long line", suggestion="Wrap it"),
            ReviewSuggestion(file_path="auth.py", line_number=2, severity="HIGH", category="Security",
                             message="Timing attack", suggestion="Use hmac.compare_digest"),
        ],
        overall_rating="needs_improvement",
        main_concerns=["Security"],
    )


def _diff_source(has_access: bool = True):
    source = MagicMock()
    source.verify_access.return_value = AccessResult(
        has_access=has_access,
        repo=RepositoryInfo(id=1, name="hello-world", full_name="octocat/hello-world") if has_access else None,
        error=None if has_access else "Access denied to repository",
    )
    source.get_change_set.side_effect = lambda repo, pr, token: ChangeSetSummary(number=pr, title="Harden login")
    source.fetch_change_set_diff.side_effect = lambda repo, pr, token: _bundle(pr)
    return source


def _engine(report: SuggestionReport = None):
    engine = MagicMock()
    engine.generate_suggestions.return_value = report or _report()
    return engine


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def diff_source():
    return _diff_source()


@pytest.fixture
def engine():
    return _engine()


@pytest.fixture
def orchestrator(store, cache, diff_source, engine, scheduler):
    return AnalysisOrchestrator(store, cache, diff_source, engine, scheduler=scheduler)


# ── Tests: Create ─────────────────────────────────────────────────────────


class TestCreateAnalysis:

    def test_creates_pending_and_schedules(self, orchestrator, store, scheduler, principal, repository):
        result = orchestrator.create_analysis(principal, repository["id"], 42)

        assert result.outcome == CreateOutcome.CREATED
        assert result.status == "PENDING"
        assert result.message == "Analysis started"
        assert result.analysis["prTitle"] == "Harden login"
        scheduler.assert_called_once_with(result.analysis_id)
        assert store.find_by_natural_key(repository["id"], 42)["id"] == result.analysis_id

    def test_remembers_credential_for_background_run(self, orchestrator, cache, principal, repository):
        orchestrator.create_analysis(principal, repository["id"], 42)

        assert cache.get_json(keys.credential_key(principal.user_id)) == {"githubToken": "gho_test_token"}

    def test_reuses_completed_analysis(self, orchestrator, store, scheduler, principal, repository):
        existing = store.create_analysis(repository["id"], principal.user_id, 42)
        store.complete_analysis(existing["id"], [s.model_dump(by_alias=True) for s in _report().suggestions])

        result = orchestrator.create_analysis(principal, repository["id"], 42)

        assert result.outcome == CreateOutcome.EXISTING_COMPLETED
        assert result.analysis_id == existing["id"]
        assert len(result.to_dict()["suggestions"]) == 2
        assert result.to_dict()["completedAt"] is not None
        scheduler.assert_not_called()

    @pytest.mark.parametrize("status", ["PENDING", "PROCESSING"])
    def test_active_analysis_is_in_progress(self, orchestrator, store, scheduler, principal, repository, status):
        existing = store.create_analysis(repository["id"], principal.user_id, 42)
        store.update_status(existing["id"], status)

        result = orchestrator.create_analysis(principal, repository["id"], 42)

        assert result.outcome == CreateOutcome.IN_PROGRESS
        assert result.analysis_id == existing["id"]
        assert result.message == "Analysis already in progress for this pull request"
        scheduler.assert_not_called()

    def test_failed_analysis_is_superseded(self, orchestrator, store, principal, repository):
        failed = store.create_analysis(repository["id"], principal.user_id, 42)
        store.fail_analysis(failed["id"], "boom")

        result = orchestrator.create_analysis(principal, repository["id"], 42)

        assert result.outcome == CreateOutcome.CREATED
        assert result.analysis_id != failed["id"]
        assert store.get_analysis(failed["id"]) is None

    def test_unknown_repository(self, orchestrator, principal):
        with pytest.raises(NotFoundError):
            orchestrator.create_analysis(principal, "c" + "0" * 24, 42)

    def test_repository_of_another_user(self, orchestrator, other_principal, repository):
        with pytest.raises(NotFoundError):
            orchestrator.create_analysis(other_principal, repository["id"], 42)

    def test_inactive_repository(self, orchestrator, store, principal, repository):
        store.set_repository_active(repository["id"], False)
        with pytest.raises(NotFoundError):
            orchestrator.create_analysis(principal, repository["id"], 42)

    def test_access_revoked(self, store, cache, engine, scheduler, principal, repository):
        orchestrator = AnalysisOrchestrator(store, cache, _diff_source(has_access=False), engine, scheduler)

        with pytest.raises(AuthorizationError):
            orchestrator.create_analysis(principal, repository["id"], 42)
        assert store.find_by_natural_key(repository["id"], 42) is None

    def test_missing_pull_request(self, orchestrator, diff_source, store, principal, repository):
        diff_source.get_change_set.side_effect = NotFoundError("Pull request not found")

        with pytest.raises(ValidationError):
            orchestrator.create_analysis(principal, repository["id"], 999)
        assert store.find_by_natural_key(repository["id"], 999) is None

    def test_lost_race_returns_winner(self, store, cache, diff_source, engine, scheduler, principal, repository):
        real_create = store.create_analysis

        def racing_create(**kwargs):
            real_create(**kwargs)
            raise ConflictError("Analysis already exists for this pull request")

        store.create_analysis = racing_create
        orchestrator = AnalysisOrchestrator(store, cache, diff_source, engine, scheduler)

        result = orchestrator.create_analysis(principal, repository["id"], 42)

        assert result.outcome == CreateOutcome.IN_PROGRESS
        assert result.analysis_id == store.find_by_natural_key(repository["id"], 42)["id"]
        scheduler.assert_not_called()

    def test_scheduler_failure_does_not_fail_create(self, orchestrator, scheduler, principal, repository):
        scheduler.side_effect = RuntimeError("queue closed")

        result = orchestrator.create_analysis(principal, repository["id"], 42)

        assert result.outcome == CreateOutcome.CREATED
        assert result.status == "PENDING"

    def test_invalidates_user_views(self, orchestrator, cache, principal, repository):
        listing = keys.user_listing_key(principal.user_id, 1, 10, {})
        cache.set_json(listing, {"analyses": []}, 300)
        cache.set_json(keys.user_stats_key(principal.user_id), {"totalAnalyses": 0}, 600)

        orchestrator.create_analysis(principal, repository["id"], 42)

        assert cache.get_json(listing) is None
        assert cache.get_json(keys.user_stats_key(principal.user_id)) is None

    def test_repository_listing_reflects_new_analysis(self, orchestrator, store, cache, diff_source, principal, repository):
        repositories = RepositoryService(store, cache, diff_source)
        before = repositories.list_repositories(principal)

        orchestrator.create_analysis(principal, repository["id"], 42)
        after = repositories.list_repositories(principal)

        assert before["repositories"][0]["analysisCount"] == 0
        assert after["repositories"][0]["analysisCount"] == 1


# ── Tests: Pipeline ───────────────────────────────────────────────────────


class TestRunPipeline:

    def _created(self, orchestrator, principal, repository, pr=42):
        return orchestrator.create_analysis(principal, repository["id"], pr).analysis_id

    def test_success(self, orchestrator, store, engine, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "COMPLETED"
        assert result.suggestion_count == 2
        loaded = store.get_analysis(analysis_id, include_suggestions=True)
        assert loaded["status"] == "COMPLETED"
        assert loaded["completedAt"] is not None
        assert loaded["totalChangedLines"] == 10
        assert loaded["revisionHash"] == "f00dbabe"
        assert loaded["overallRating"] == "needs_improvement"
        assert loaded["mainConcerns"] == ["Security"]
        assert [s["severity"] for s in loaded["suggestions"]] == ["HIGH", "LOW"]

    def test_unstorable_suggestion_does_not_fail_run(self, store, cache, diff_source, scheduler, principal, repository):
        content = json.dumps({
            "summary": {"totalIssues": 2, "criticalIssues": 0, "overallRating": "good", "mainConcerns": []},
            "suggestions": [
                {"filePath": "auth.py", "lineNumber": 3, "severity": "LOW", "category": "Style",
                 "message": "Long line", "suggestion": "Wrap it"},
                {"filePath": "auth.py", "lineNumber": 1e30, "severity": "LOW", "category": "Style",
                 "message": "Far away", "suggestion": "Move it"},
            ],
        })
        llm = MagicMock()
        llm.chat.return_value = MagicMock(message=MagicMock(content=content))
        orchestrator = AnalysisOrchestrator(
            store, cache, diff_source, SuggestionEngine(cache, llm=llm), scheduler=scheduler
        )
        analysis_id = self._created(orchestrator, principal, repository)

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "COMPLETED"
        loaded = store.get_analysis(analysis_id, include_suggestions=True)
        assert [s["lineNumber"] for s in loaded["suggestions"]] == [3]

    def test_status_is_processing_while_engine_runs(self, orchestrator, store, engine, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)
        seen = []

        def generate(bundle):
            seen.append(store.get_analysis(analysis_id)["status"])
            return _report()

        engine.generate_suggestions.side_effect = generate
        orchestrator.run_pipeline(analysis_id)

        assert seen == ["PROCESSING"]

    def test_fetches_diff_with_remembered_credential(self, orchestrator, diff_source, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)

        orchestrator.run_pipeline(analysis_id)

        diff_source.fetch_change_set_diff.assert_called_once_with("octocat/hello-world", 42, "gho_test_token")

    def test_fallback_report_completes(self, orchestrator, store, engine, principal, repository):
        engine.generate_suggestions.return_value = SuggestionReport.fallback()
        analysis_id = self._created(orchestrator, principal, repository)

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "COMPLETED"
        loaded = store.get_analysis(analysis_id, include_suggestions=True)
        assert loaded["suggestions"][0]["category"] == ANALYSIS_ERROR_CATEGORY

    @pytest.mark.parametrize("error", [
        DiffFetchError("Failed to fetch PR diff from GitHub"),
        AuthorizationError("Access denied to repository or rate limit exceeded"),
        NotFoundError("Pull request not found or no access to repository"),
    ])
    def test_diff_failure_marks_failed(self, orchestrator, store, diff_source, principal, repository, error):
        analysis_id = self._created(orchestrator, principal, repository)
        diff_source.fetch_change_set_diff.side_effect = error

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "FAILED"
        loaded = store.get_analysis(analysis_id, include_suggestions=True)
        assert loaded["status"] == "FAILED"
        assert loaded["errorMessage"] == error.message
        assert len(loaded["suggestions"]) == 1
        assert loaded["suggestions"][0]["category"] == ANALYSIS_ERROR_CATEGORY

    def test_engine_failure_marks_failed(self, orchestrator, store, engine, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)
        engine.generate_suggestions.side_effect = SuggestionEngineError("No LLM configured")

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "FAILED"
        assert store.get_analysis(analysis_id)["errorMessage"] == "No LLM configured"

    def test_unexpected_error_marks_failed(self, orchestrator, store, engine, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)
        engine.generate_suggestions.side_effect = KeyError("summary")

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "FAILED"
        assert store.get_analysis(analysis_id)["status"] == "FAILED"

    def test_missing_credential_marks_failed(self, orchestrator, store, cache, diff_source, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)
        cache.delete(keys.credential_key(principal.user_id))

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "FAILED"
        assert "credential" in store.get_analysis(analysis_id)["errorMessage"]
        diff_source.fetch_change_set_diff.assert_not_called()

    def test_skips_terminal_analysis(self, orchestrator, store, diff_source, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)
        orchestrator.run_pipeline(analysis_id)
        diff_source.fetch_change_set_diff.reset_mock()

        result = orchestrator.run_pipeline(analysis_id)

        assert result.status == "COMPLETED"
        diff_source.fetch_change_set_diff.assert_not_called()

    def test_skips_missing_analysis(self, orchestrator, diff_source):
        result = orchestrator.run_pipeline("c" + "0" * 24)

        assert result.status is None
        diff_source.fetch_change_set_diff.assert_not_called()

    def test_deleted_during_processing(self, orchestrator, store, engine, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)

        def generate(bundle):
            store.delete_analysis(analysis_id)
            return _report()

        engine.generate_suggestions.side_effect = generate
        result = orchestrator.run_pipeline(analysis_id)

        assert result.status is None
        assert store.get_analysis(analysis_id) is None

    def test_never_raises_when_store_is_down(self, cache, diff_source, engine):
        store = MagicMock()
        store.get_analysis.side_effect = RuntimeError("database unavailable")
        orchestrator = AnalysisOrchestrator(store, cache, diff_source, engine)

        result = orchestrator.run_pipeline("c" + "0" * 24)

        assert result.status is None
        assert "database unavailable" in result.error

    def test_invalidates_cached_views(self, orchestrator, cache, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)
        cache.set_json(keys.analysis_status_key(analysis_id), {"status": "PENDING"}, 60)
        cache.set_json(keys.user_stats_key(principal.user_id), {"totalAnalyses": 1}, 600)

        orchestrator.run_pipeline(analysis_id)

        assert cache.get_json(keys.analysis_status_key(analysis_id)) is None
        assert cache.get_json(keys.user_stats_key(principal.user_id)) is None

    def test_repeat_create_after_completion_reuses(self, orchestrator, scheduler, principal, repository):
        analysis_id = self._created(orchestrator, principal, repository)
        orchestrator.run_pipeline(analysis_id)
        scheduler.reset_mock()

        result = orchestrator.create_analysis(principal, repository["id"], 42)

        assert result.outcome == CreateOutcome.EXISTING_COMPLETED
        assert result.analysis_id == analysis_id
        scheduler.assert_not_called()


# ── Tests: Rerun / delete ─────────────────────────────────────────────────


class TestRerunAndDelete:

    def test_rerun_failed(self, orchestrator, store, diff_source, principal, repository):
        first = orchestrator.create_analysis(principal, repository["id"], 42).analysis_id
        diff_source.fetch_change_set_diff.side_effect = DiffFetchError()
        orchestrator.run_pipeline(first)

        result = orchestrator.rerun_analysis(principal, first)

        assert result.outcome == CreateOutcome.CREATED
        assert result.analysis_id != first
        assert store.get_analysis(first) is None

    def test_rerun_keeps_failed_record_when_pull_request_is_gone(self, orchestrator, store, diff_source, principal, repository):
        failed = store.create_analysis(repository["id"], principal.user_id, 42)
        store.fail_analysis(failed["id"], "boom")
        diff_source.get_change_set.side_effect = NotFoundError("Pull request not found")

        with pytest.raises(ValidationError):
            orchestrator.rerun_analysis(principal, failed["id"])
        kept = store.get_analysis(failed["id"], include_suggestions=True)
        assert kept["status"] == "FAILED"
        assert len(kept["suggestions"]) == 1

    def test_rerun_keeps_failed_record_when_access_is_revoked(self, store, cache, engine, scheduler, principal, repository):
        orchestrator = AnalysisOrchestrator(store, cache, _diff_source(has_access=False), engine, scheduler)
        failed = store.create_analysis(repository["id"], principal.user_id, 42)
        store.fail_analysis(failed["id"], "boom")

        with pytest.raises(AuthorizationError):
            orchestrator.rerun_analysis(principal, failed["id"])
        assert store.get_analysis(failed["id"])["status"] == "FAILED"

    def test_delete_refreshes_repository_listing(self, orchestrator, store, cache, diff_source, principal, repository):
        repositories = RepositoryService(store, cache, diff_source)
        analysis = store.create_analysis(repository["id"], principal.user_id, 42)
        assert repositories.list_repositories(principal)["repositories"][0]["analysisCount"] == 1

        orchestrator.delete_analysis(principal, analysis["id"])

        assert repositories.list_repositories(principal)["repositories"][0]["analysisCount"] == 0

    @pytest.mark.parametrize("status", ["PENDING", "PROCESSING", "COMPLETED"])
    def test_rerun_requires_failed(self, orchestrator, store, principal, repository, status):
        analysis = store.create_analysis(repository["id"], principal.user_id, 42)
        store.update_status(analysis["id"], status)

        with pytest.raises(ValidationError, match="Can only rerun failed analyses"):
            orchestrator.rerun_analysis(principal, analysis["id"])

    def test_rerun_other_users_analysis(self, orchestrator, store, principal, other_principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 42)
        store.fail_analysis(analysis["id"], "boom")

        with pytest.raises(AuthorizationError):
            orchestrator.rerun_analysis(other_principal, analysis["id"])

    def test_delete_completed(self, orchestrator, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 42)
        store.complete_analysis(analysis["id"], [])

        orchestrator.delete_analysis(principal, analysis["id"])

        assert store.get_analysis(analysis["id"]) is None

    def test_delete_processing_rejected(self, orchestrator, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 42)
        store.update_status(analysis["id"], "PROCESSING")

        with pytest.raises(ValidationError):
            orchestrator.delete_analysis(principal, analysis["id"])
        assert store.get_analysis(analysis["id"]) is not None

    def test_delete_missing(self, orchestrator, principal):
        with pytest.raises(NotFoundError):
            orchestrator.delete_analysis(principal, "c" + "0" * 24)

    def test_delete_other_users_analysis(self, orchestrator, store, principal, other_principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 42)

        with pytest.raises(AuthorizationError):
            orchestrator.delete_analysis(other_principal, analysis["id"])

    def test_delete_drops_cached_analysis(self, orchestrator, store, cache, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 42)
        cache.set_json(keys.analysis_key(analysis["id"]), {"userId": principal.user_id}, 3600)

        orchestrator.delete_analysis(principal, analysis["id"])

        assert cache.get_json(keys.analysis_key(analysis["id"])) is None


# ── Tests: Recovery ───────────────────────────────────────────────────────


class TestRecoverStale:

    def test_reschedules_stale_active_analyses(self, orchestrator, store, db_manager, scheduler, principal, repository):
        stale = store.create_analysis(repository["id"], principal.user_id, 1)
        store.create_analysis(repository["id"], principal.user_id, 2)
        with db_manager.get_session() as session:
            session.get(Analysis, stale["id"]).updated_at = datetime.utcnow() - timedelta(hours=1)

        recovered = orchestrator.recover_stale(grace_seconds=600)

        assert recovered == [stale["id"]]
        scheduler.assert_called_once_with(stale["id"])
