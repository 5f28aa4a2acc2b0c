"""Unit tests for AnalysisStore against an in-memory SQLite database.

Tests cover:
- Natural key uniqueness (ConflictError on duplicate create)
- Status transitions and completed_at stamping
- Atomic completion and FAILED replacement with the synthetic error entry
- Ordered suggestion reads, filters and pagination
- Owner listings, statistics, repository views, stale detection
"""

from datetime import datetime, timedelta

import pytest

from reviewloom.core.constants import ANALYSIS_ERROR_CATEGORY
from reviewloom.core.db.models import Analysis
from reviewloom.core.exceptions import ConflictError


def _suggestions():
    return [
        {"filePath": "b.py", "lineNumber": 20, "severity": "LOW", "category": "Style",
         "message": "Naming", "suggestion": "Rename", "codeSnippet": None},
        {"filePath": "a.py", "lineNumber": 9, "severity": "HIGH", "category": "Security",
         "message": "SQL injection", "suggestion": "Use parameters", "codeSnippet": "cursor.execute(q)"},
        {"filePath": "a.py", "lineNumber": 3, "severity": "MEDIUM", "category": "Performance",
         "message": "N+1 query", "suggestion": "Batch the lookups", "codeSnippet": None},
        {"filePath": "c.py", "lineNumber": 1, "severity": "HIGH", "category": "Security",
         "message": "Hardcoded secret", "suggestion": "Read it from the environment", "codeSnippet": None},
    ]


def _touch(db_manager, analysis_id, when):
    with db_manager.get_session() as session:
        session.get(Analysis, analysis_id).updated_at = when


# ── Tests: Create / natural key ───────────────────────────────────────────


class TestCreateAnalysis:

    def test_creates_pending(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 42, pr_title="Fix")

        assert analysis["status"] == "PENDING"
        assert analysis["prNumber"] == 42
        assert analysis["prTitle"] == "Fix"
        assert analysis["completedAt"] is None
        assert analysis["repository"]["fullName"] == "octocat/hello-world"

    def test_duplicate_natural_key_conflicts(self, store, principal, repository):
        store.create_analysis(repository["id"], principal.user_id, 42)

        with pytest.raises(ConflictError):
            store.create_analysis(repository["id"], principal.user_id, 42)

    def test_same_pr_number_in_other_repository(self, store, principal, repository):
        other = store.create_repository(principal.user_id, "other", "octocat/other")
        store.create_analysis(repository["id"], principal.user_id, 42)

        assert store.create_analysis(other["id"], principal.user_id, 42)["status"] == "PENDING"

    def test_find_by_natural_key(self, store, principal, repository):
        created = store.create_analysis(repository["id"], principal.user_id, 42)

        assert store.find_by_natural_key(repository["id"], 42)["id"] == created["id"]
        assert store.find_by_natural_key(repository["id"], 43) is None

    def test_recreate_after_delete(self, store, principal, repository):
        first = store.create_analysis(repository["id"], principal.user_id, 42)
        assert store.delete_analysis(first["id"]) is True

        second = store.create_analysis(repository["id"], principal.user_id, 42)
        assert second["id"] != first["id"]


# ── Tests: Transitions ────────────────────────────────────────────────────


class TestTransitions:

    def test_update_status_stamps_completed_at(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)

        store.update_status(analysis["id"], "PROCESSING")
        assert store.get_analysis(analysis["id"])["completedAt"] is None

        store.update_status(analysis["id"], "COMPLETED")
        assert store.get_analysis(analysis["id"])["completedAt"] is not None

    def test_update_status_rejects_unknown(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)
        with pytest.raises(ValueError):
            store.update_status(analysis["id"], "DONE")

    def test_update_missing_returns_false(self, store):
        assert store.update_status("c" + "0" * 24, "PROCESSING") is False

    def test_set_progress(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)
        store.set_progress(analysis["id"], total_changed_lines=57, revision_hash="abc", pr_title="New")

        loaded = store.get_analysis(analysis["id"])
        assert loaded["totalChangedLines"] == 57
        assert loaded["revisionHash"] == "abc"
        assert loaded["prTitle"] == "New"
        assert loaded["status"] == "PENDING"

    def test_complete_analysis(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)

        assert store.complete_analysis(
            analysis["id"], _suggestions(), overall_rating="poor", main_concerns=["Security"]
        ) is True

        loaded = store.get_analysis(analysis["id"], include_suggestions=True)
        assert loaded["status"] == "COMPLETED"
        assert loaded["completedAt"] is not None
        assert loaded["overallRating"] == "poor"
        assert loaded["mainConcerns"] == ["Security"]
        assert len(loaded["suggestions"]) == 4

    def test_complete_missing_returns_false(self, store):
        assert store.complete_analysis("c" + "0" * 24, _suggestions()) is False

    def test_fail_analysis_replaces_suggestions(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)
        store.save_suggestions(analysis["id"], _suggestions()[:2])

        store.fail_analysis(analysis["id"], "GitHub credential unavailable")

        loaded = store.get_analysis(analysis["id"], include_suggestions=True)
        assert loaded["status"] == "FAILED"
        assert loaded["errorMessage"] == "GitHub credential unavailable"
        assert loaded["completedAt"] is None
        assert len(loaded["suggestions"]) == 1
        assert loaded["suggestions"][0]["category"] == ANALYSIS_ERROR_CATEGORY
        assert loaded["suggestions"][0]["suggestion"] == "GitHub credential unavailable"

    def test_delete_cascades_suggestions(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)
        store.save_suggestions(analysis["id"], _suggestions())

        store.delete_analysis(analysis["id"])

        assert store.get_analysis(analysis["id"]) is None
        assert store.list_suggestions(analysis["id"]) == ([], 0)


# ── Tests: Suggestion reads ───────────────────────────────────────────────


class TestSuggestions:

    def _completed(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)
        store.complete_analysis(analysis["id"], _suggestions())
        return analysis["id"]

    def test_ordered_high_first_then_line(self, store, principal, repository):
        analysis_id = self._completed(store, principal, repository)

        suggestions = store.get_analysis(analysis_id, include_suggestions=True)["suggestions"]

        assert [(s["severity"], s["lineNumber"]) for s in suggestions] == [
            ("HIGH", 1), ("HIGH", 9), ("MEDIUM", 3), ("LOW", 20),
        ]

    def test_filter_by_severity_case_insensitive(self, store, principal, repository):
        analysis_id = self._completed(store, principal, repository)

        items, total = store.list_suggestions(analysis_id, severity="high")

        assert total == 2
        assert {s["severity"] for s in items} == {"HIGH"}

    def test_filter_by_category_and_paginate(self, store, principal, repository):
        analysis_id = self._completed(store, principal, repository)

        items, total = store.list_suggestions(analysis_id, category="Security", page=2, limit=1)

        assert total == 2
        assert [s["lineNumber"] for s in items] == [9]

    def test_fields_are_bounded(self, store, principal, repository):
        analysis = store.create_analysis(repository["id"], principal.user_id, 1)
        store.save_suggestions(analysis["id"], [{
            "filePath": "x.py", "lineNumber": 0, "severity": "LOW", "category": "Style",
            "message": "m" * 300, "suggestion": "s" * 700, "codeSnippet": "c" * 400,
        }])

        item = store.list_suggestions(analysis["id"])[0][0]
        assert item["lineNumber"] == 1
        assert len(item["message"]) == 200
        assert len(item["suggestion"]) == 500
        assert len(item["codeSnippet"]) == 300


# ── Tests: Listings and statistics ────────────────────────────────────────


class TestListings:

    def test_list_by_owner_filters_and_counts(self, store, principal, other_principal, repository):
        a1 = store.create_analysis(repository["id"], principal.user_id, 1)
        a2 = store.create_analysis(repository["id"], principal.user_id, 2)
        store.complete_analysis(a2["id"], _suggestions())
        foreign_repo = store.create_repository(other_principal.user_id, "x", "hubot/x")
        store.create_analysis(foreign_repo["id"], other_principal.user_id, 1)

        items, total = store.list_by_owner(principal.user_id)
        assert total == 2
        assert {i["id"] for i in items} == {a1["id"], a2["id"]}

        completed, total = store.list_by_owner(principal.user_id, status="COMPLETED")
        assert total == 1
        assert completed[0]["suggestionCount"] == 4

    def test_list_by_owner_sort_and_page(self, store, principal, repository):
        for pr in (5, 1, 3):
            store.create_analysis(repository["id"], principal.user_id, pr)

        items, total = store.list_by_owner(principal.user_id, sort_by="prNumber", sort_order="asc", page=1, limit=2)

        assert total == 3
        assert [i["prNumber"] for i in items] == [1, 3]

    def test_statistics(self, store, principal, repository):
        a1 = store.create_analysis(repository["id"], principal.user_id, 1)
        a2 = store.create_analysis(repository["id"], principal.user_id, 2)
        store.create_analysis(repository["id"], principal.user_id, 3)
        store.complete_analysis(a1["id"], _suggestions())
        store.fail_analysis(a2["id"], "boom")

        stats = store.get_statistics(principal.user_id)

        assert stats["totalAnalyses"] == 3
        assert stats["byStatus"] == {"PENDING": 1, "PROCESSING": 0, "COMPLETED": 1, "FAILED": 1}
        assert stats["bySeverity"] == {"HIGH": 2, "MEDIUM": 2, "LOW": 1}
        assert stats["totalSuggestions"] == 5
        assert len(stats["recentAnalyses"]) == 3

    def test_statistics_empty_user(self, store, principal):
        stats = store.get_statistics(principal.user_id)

        assert stats["totalAnalyses"] == 0
        assert stats["recentAnalyses"] == []

    def test_find_stale(self, store, db_manager, principal, repository):
        old = store.create_analysis(repository["id"], principal.user_id, 1)
        fresh = store.create_analysis(repository["id"], principal.user_id, 2)
        done = store.create_analysis(repository["id"], principal.user_id, 3)
        store.complete_analysis(done["id"], [])
        long_ago = datetime.utcnow() - timedelta(hours=1)
        _touch(db_manager, old["id"], long_ago)
        _touch(db_manager, done["id"], long_ago)

        stale = store.find_stale(datetime.utcnow() - timedelta(minutes=10))

        assert stale == [old["id"]]
        assert fresh["id"] not in stale


# ── Tests: Repositories ───────────────────────────────────────────────────


class TestRepositories:

    def test_duplicate_repository_conflicts(self, store, principal, repository):
        with pytest.raises(ConflictError):
            store.create_repository(principal.user_id, "hello-world", "octocat/hello-world")

    def test_inactive_repository_hidden_by_default(self, store, principal, repository):
        store.set_repository_active(repository["id"], False)

        assert store.get_repository(repository["id"]) is None
        assert store.get_repository(repository["id"], active_only=False)["isActive"] is False

    def test_get_repository_scoped_to_owner(self, store, other_principal, repository):
        assert store.get_repository(repository["id"], user_id=other_principal.user_id) is None

    def test_list_and_detail(self, store, principal, repository):
        store.create_analysis(repository["id"], principal.user_id, 1)
        store.create_analysis(repository["id"], principal.user_id, 2)

        items, total = store.list_repositories(principal.user_id, 1, 10)
        assert total == 1
        assert items[0]["analysisCount"] == 2

        detail = store.get_repository_detail(repository["id"], principal.user_id)
        assert detail["totalAnalyses"] == 2
        assert len(detail["recentAnalyses"]) == 2

    def test_ensure_user_is_idempotent(self, store, principal):
        again = store.ensure_user(principal.user_id, "someone-else")
        assert again["username"] == "octocat"
