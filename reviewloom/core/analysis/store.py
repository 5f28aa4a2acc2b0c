"""Analysis Record Store for ReviewLoom.

Durable storage for users, repositories, analyses, and suggestions with
SQLAlchemy persistence. The database is the source of truth; every read
returns plain dicts shaped for the API so they can be cached as JSON.

The (repository_id, pr_number) uniqueness constraint is the backstop for
concurrent creation: a violation surfaces as ConflictError.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..constants import (
    ACTIVE_STATUSES,
    ANALYSIS_ERROR_CATEGORY,
    ANALYSIS_ERROR_FILE_PATH,
    ANALYSIS_STATUSES,
    MAX_MESSAGE_LENGTH,
    MAX_SNIPPET_LENGTH,
    MAX_SUGGESTION_LENGTH,
    RECENT_ANALYSES_COUNT,
    SEVERITIES,
    SEVERITY_MEDIUM,
    SEVERITY_RANK,
    STATUS_COMPLETED,
    STATUS_FAILED,
)
from ..db import DatabaseManager
from ..db.models import Analysis, Repository, Suggestion, User
from ..exceptions import ConflictError

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "createdAt": Analysis.created_at,
    "completedAt": Analysis.completed_at,
    "status": Analysis.status,
    "prNumber": Analysis.pr_number,
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _severity_order():
    """HIGH first, then MEDIUM, then LOW."""
    return case(SEVERITY_RANK, value=Suggestion.severity, else_=len(SEVERITY_RANK))


class AnalysisStore:
    """CRUD for analyses and the records they hang off."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        logger.info("AnalysisStore initialized")

    # =========================================================================
    # Users
    # =========================================================================

    def ensure_user(self, user_id: str, username: str, github_id: Optional[int] = None) -> Dict:
        """Make sure the authenticated principal has a users row."""
        with self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                user = User(id=user_id, username=username or user_id, github_id=github_id)
                session.add(user)
                session.flush()
                logger.info(f"Registered user {user_id} ({user.username})")
            return {"id": user.id, "username": user.username, "githubId": user.github_id}

    # =========================================================================
    # Repositories
    # =========================================================================

    def get_repository(
        self,
        repository_id: str,
        user_id: Optional[str] = None,
        active_only: bool = True,
    ) -> Optional[Dict]:
        """Fetch a repository, optionally scoped to its owner and active state."""
        with self.db.get_session() as session:
            query = session.query(Repository).filter(Repository.id == repository_id)
            if user_id is not None:
                query = query.filter(Repository.user_id == user_id)
            if active_only:
                query = query.filter(Repository.is_active.is_(True))
            repo = query.first()
            return self._repository_to_dict(repo) if repo else None

    def find_repository_by_full_name(self, user_id: str, full_name: str) -> Optional[Dict]:
        with self.db.get_session() as session:
            repo = session.query(Repository).filter(
                Repository.user_id == user_id,
                Repository.full_name == full_name,
            ).first()
            return self._repository_to_dict(repo) if repo else None

    def create_repository(
        self,
        user_id: str,
        name: str,
        full_name: str,
        github_id: Optional[int] = None,
        is_private: bool = False,
        default_branch: Optional[str] = None,
    ) -> Dict:
        """Connect a repository for a user.

        Raises:
            ConflictError: The user already has this repository
        """
        try:
            with self.db.get_session() as session:
                repo = Repository(
                    user_id=user_id,
                    name=name,
                    full_name=full_name,
                    github_id=github_id,
                    is_private=is_private,
                    default_branch=default_branch,
                    is_active=True,
                )
                session.add(repo)
                session.flush()
                logger.info(f"Connected repository {repo.id} ({full_name}) for user {user_id}")
                return self._repository_to_dict(repo)
        except IntegrityError as e:
            logger.warning(f"Duplicate repository {full_name} for user {user_id}: {e.orig}")
            raise ConflictError("Repository is already connected") from e

    def set_repository_active(self, repository_id: str, is_active: bool) -> Optional[Dict]:
        with self.db.get_session() as session:
            repo = session.get(Repository, repository_id)
            if repo is None:
                return None
            repo.is_active = is_active
            repo.updated_at = datetime.utcnow()
            session.flush()
            return self._repository_to_dict(repo)

    def list_repositories(self, user_id: str, page: int, limit: int) -> Tuple[List[Dict], int]:
        """Active repositories of a user, most recently updated first."""
        with self.db.get_session() as session:
            base = session.query(Repository).filter(
                Repository.user_id == user_id,
                Repository.is_active.is_(True),
            )
            total = base.count()
            repos = base.order_by(Repository.updated_at.desc(), Repository.id.desc()) \
                .offset((page - 1) * limit).limit(limit).all()

            counts = self._count_by(
                session, Analysis.repository_id, Analysis.repository_id.in_([r.id for r in repos])
            )
            items = []
            for repo in repos:
                item = self._repository_to_dict(repo)
                item["analysisCount"] = counts.get(repo.id, 0)
                items.append(item)
            return items, total

    def get_repository_detail(self, repository_id: str, user_id: str) -> Optional[Dict]:
        """Repository with its analysis count and most recent analyses."""
        with self.db.get_session() as session:
            repo = session.query(Repository).filter(
                Repository.id == repository_id,
                Repository.user_id == user_id,
                Repository.is_active.is_(True),
            ).first()
            if repo is None:
                return None

            total = session.query(func.count(Analysis.id)).filter(
                Analysis.repository_id == repository_id
            ).scalar() or 0
            recent = session.query(Analysis).filter(
                Analysis.repository_id == repository_id
            ).order_by(Analysis.created_at.desc(), Analysis.id.desc()).limit(RECENT_ANALYSES_COUNT).all()
            suggestion_counts = self._suggestion_counts(session, [a.id for a in recent])

            result = self._repository_to_dict(repo)
            result["totalAnalyses"] = total
            result["recentAnalyses"] = [
                {
                    "id": a.id,
                    "prNumber": a.pr_number,
                    "status": a.status,
                    "createdAt": _iso(a.created_at),
                    "completedAt": _iso(a.completed_at),
                    "suggestionCount": suggestion_counts.get(a.id, 0),
                }
                for a in recent
            ]
            return result

    # =========================================================================
    # Analysis CRUD
    # =========================================================================

    def create_analysis(
        self,
        repository_id: str,
        user_id: str,
        pr_number: int,
        pr_title: Optional[str] = None,
    ) -> Dict:
        """Insert a PENDING analysis.

        Raises:
            ConflictError: An analysis already exists for (repository, pr_number)
        """
        try:
            with self.db.get_session() as session:
                analysis = Analysis(
                    repository_id=repository_id,
                    user_id=user_id,
                    pr_number=pr_number,
                    pr_title=pr_title,
                )
                session.add(analysis)
                session.flush()
                logger.info(f"Created analysis {analysis.id} for repository {repository_id} PR #{pr_number}")
                return self._analysis_to_dict(analysis)
        except IntegrityError as e:
            logger.warning(
                f"Analysis already exists for repository {repository_id} PR #{pr_number}: {e.orig}"
            )
            raise ConflictError("Analysis already exists for this pull request") from e

    def get_analysis(self, analysis_id: str, include_suggestions: bool = False) -> Optional[Dict]:
        """Retrieve an analysis by id, optionally with ordered suggestions."""
        with self.db.get_session() as session:
            analysis = session.get(Analysis, analysis_id)
            if analysis is None:
                return None
            return self._analysis_to_dict(
                analysis,
                suggestions=self._ordered_suggestions(session, analysis_id) if include_suggestions else None,
            )

    def find_by_natural_key(
        self,
        repository_id: str,
        pr_number: int,
        include_suggestions: bool = False,
    ) -> Optional[Dict]:
        with self.db.get_session() as session:
            analysis = session.query(Analysis).filter(
                Analysis.repository_id == repository_id,
                Analysis.pr_number == pr_number,
            ).first()
            if analysis is None:
                return None
            return self._analysis_to_dict(
                analysis,
                suggestions=self._ordered_suggestions(session, analysis.id) if include_suggestions else None,
            )

    def update_status(self, analysis_id: str, status: str, **fields: Any) -> bool:
        """Set the status (and any extra columns). COMPLETED stamps completed_at."""
        if status not in ANALYSIS_STATUSES:
            raise ValueError(f"Unknown analysis status: {status}")
        with self.db.get_session() as session:
            analysis = session.get(Analysis, analysis_id)
            if analysis is None:
                return False
            analysis.status = status
            for name, value in fields.items():
                setattr(analysis, name, value)
            if status == STATUS_COMPLETED:
                analysis.completed_at = datetime.utcnow()
            analysis.updated_at = datetime.utcnow()
            return True

    def set_progress(
        self,
        analysis_id: str,
        total_changed_lines: Optional[int] = None,
        revision_hash: Optional[str] = None,
        pr_title: Optional[str] = None,
    ) -> bool:
        """Persist partial pipeline results without touching the status."""
        with self.db.get_session() as session:
            analysis = session.get(Analysis, analysis_id)
            if analysis is None:
                return False
            if total_changed_lines is not None:
                analysis.total_changed_lines = total_changed_lines
            if revision_hash is not None:
                analysis.revision_hash = revision_hash
            if pr_title is not None:
                analysis.pr_title = pr_title
            analysis.updated_at = datetime.utcnow()
            return True

    def save_suggestions(self, analysis_id: str, suggestions: Iterable[Dict]) -> int:
        """Insert a batch of suggestions in one transaction."""
        with self.db.get_session() as session:
            return self._add_suggestions(session, analysis_id, suggestions)

    def complete_analysis(
        self,
        analysis_id: str,
        suggestions: Iterable[Dict],
        overall_rating: Optional[str] = None,
        main_concerns: Optional[List[str]] = None,
    ) -> bool:
        """Write the suggestion batch and flip to COMPLETED atomically."""
        with self.db.get_session() as session:
            analysis = session.get(Analysis, analysis_id)
            if analysis is None:
                return False
            count = self._add_suggestions(session, analysis_id, suggestions)
            now = datetime.utcnow()
            analysis.status = STATUS_COMPLETED
            analysis.overall_rating = overall_rating
            analysis.main_concerns = list(main_concerns or [])
            analysis.error_message = None
            analysis.completed_at = now
            analysis.updated_at = now
            logger.info(f"Analysis {analysis_id} completed with {count} suggestions")
            return True

    def fail_analysis(self, analysis_id: str, error_message: str) -> bool:
        """Flip to FAILED and replace suggestions with one synthetic error entry."""
        with self.db.get_session() as session:
            analysis = session.get(Analysis, analysis_id)
            if analysis is None:
                return False
            session.query(Suggestion).filter(
                Suggestion.analysis_id == analysis_id
            ).delete(synchronize_session=False)
            self._add_suggestions(session, analysis_id, [{
                "filePath": ANALYSIS_ERROR_FILE_PATH,
                "lineNumber": 1,
                "severity": SEVERITY_MEDIUM,
                "category": ANALYSIS_ERROR_CATEGORY,
                "message": "Analysis failed",
                "suggestion": error_message or "Unknown error",
                "codeSnippet": None,
            }])
            analysis.status = STATUS_FAILED
            analysis.error_message = error_message
            analysis.updated_at = datetime.utcnow()
            logger.info(f"Analysis {analysis_id} marked FAILED: {error_message}")
            return True

    def delete_analysis(self, analysis_id: str) -> bool:
        """Delete an analysis and its suggestions (CASCADE)."""
        with self.db.get_session() as session:
            analysis = session.get(Analysis, analysis_id)
            if analysis is None:
                return False
            session.delete(analysis)
            logger.info(f"Deleted analysis {analysis_id}")
            return True

    # =========================================================================
    # Listings
    # =========================================================================

    def list_by_owner(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        repository_id: Optional[str] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Tuple[List[Dict], int]:
        """One page of a user's analyses plus the total matching count."""
        column = _SORT_COLUMNS.get(sort_by, Analysis.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        tiebreak = Analysis.id.asc() if sort_order == "asc" else Analysis.id.desc()

        with self.db.get_session() as session:
            query = session.query(Analysis).filter(Analysis.user_id == user_id)
            if status:
                query = query.filter(Analysis.status == status)
            if repository_id:
                query = query.filter(Analysis.repository_id == repository_id)

            total = query.count()
            analyses = query.order_by(ordering, tiebreak) \
                .offset((page - 1) * limit).limit(limit).all()
            counts = self._suggestion_counts(session, [a.id for a in analyses])

            items = []
            for analysis in analyses:
                item = self._analysis_to_dict(analysis)
                item["suggestionCount"] = counts.get(analysis.id, 0)
                items.append(item)
            return items, total

    def list_suggestions(
        self,
        analysis_id: str,
        severity: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Dict], int]:
        """Filtered page of suggestions, HIGH first then by line number."""
        with self.db.get_session() as session:
            query = session.query(Suggestion).filter(Suggestion.analysis_id == analysis_id)
            if severity:
                query = query.filter(Suggestion.severity == severity.upper())
            if category:
                query = query.filter(Suggestion.category == category)

            total = query.count()
            rows = query.order_by(_severity_order(), Suggestion.line_number.asc(), Suggestion.id.asc()) \
                .offset((page - 1) * limit).limit(limit).all()
            return [self._suggestion_to_dict(s) for s in rows], total

    def get_statistics(self, user_id: str) -> Dict:
        """Counts by status and severity plus the most recent analyses."""
        with self.db.get_session() as session:
            by_status = {s: 0 for s in ANALYSIS_STATUSES}
            by_status.update(self._count_by(session, Analysis.status, Analysis.user_id == user_id))

            by_severity = {s: 0 for s in SEVERITIES}
            severity_rows = session.query(Suggestion.severity, func.count(Suggestion.id)) \
                .join(Analysis, Suggestion.analysis_id == Analysis.id) \
                .filter(Analysis.user_id == user_id) \
                .group_by(Suggestion.severity).all()
            by_severity.update({sev: count for sev, count in severity_rows})

            recent = session.query(Analysis).filter(Analysis.user_id == user_id) \
                .order_by(Analysis.created_at.desc(), Analysis.id.desc()) \
                .limit(RECENT_ANALYSES_COUNT).all()
            counts = self._suggestion_counts(session, [a.id for a in recent])
            recent_items = []
            for analysis in recent:
                item = self._analysis_to_dict(analysis)
                item["suggestionCount"] = counts.get(analysis.id, 0)
                recent_items.append(item)

            return {
                "totalAnalyses": sum(by_status.values()),
                "byStatus": by_status,
                "totalSuggestions": sum(by_severity.values()),
                "bySeverity": by_severity,
                "recentAnalyses": recent_items,
            }

    def find_stale(self, older_than: datetime, statuses: Iterable[str] = ACTIVE_STATUSES) -> List[str]:
        """Ids of non-terminal analyses not touched since ``older_than``."""
        with self.db.get_session() as session:
            rows = session.query(Analysis.id).filter(
                Analysis.status.in_(list(statuses)),
                Analysis.updated_at < older_than,
            ).order_by(Analysis.created_at.asc()).all()
            return [row[0] for row in rows]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _add_suggestions(self, session, analysis_id: str, suggestions: Iterable[Dict]) -> int:
        count = 0
        for item in suggestions:
            snippet = item.get("codeSnippet")
            session.add(Suggestion(
                analysis_id=analysis_id,
                file_path=item["filePath"],
                line_number=max(1, int(item.get("lineNumber") or 1)),
                severity=item["severity"],
                category=item["category"],
                message=item["message"][:MAX_MESSAGE_LENGTH],
                suggestion=item["suggestion"][:MAX_SUGGESTION_LENGTH],
                code_snippet=snippet[:MAX_SNIPPET_LENGTH] if snippet else None,
            ))
            count += 1
        session.flush()
        return count

    def _ordered_suggestions(self, session, analysis_id: str) -> List[Dict]:
        rows = session.query(Suggestion).filter(Suggestion.analysis_id == analysis_id) \
            .order_by(_severity_order(), Suggestion.line_number.asc(), Suggestion.id.asc()).all()
        return [self._suggestion_to_dict(s) for s in rows]

    def _suggestion_counts(self, session, analysis_ids: List[str]) -> Dict[str, int]:
        if not analysis_ids:
            return {}
        return self._count_by(session, Suggestion.analysis_id, Suggestion.analysis_id.in_(analysis_ids))

    @staticmethod
    def _count_by(session, column, criterion) -> Dict[Any, int]:
        rows = session.query(column, func.count()).filter(criterion).group_by(column).all()
        return {key: count for key, count in rows}

    def _analysis_to_dict(self, analysis: Analysis, suggestions: Optional[List[Dict]] = None) -> Dict:
        repo = analysis.repository
        result = {
            "id": analysis.id,
            "repositoryId": analysis.repository_id,
            "userId": analysis.user_id,
            "prNumber": analysis.pr_number,
            "prTitle": analysis.pr_title,
            "revisionHash": analysis.revision_hash,
            "status": analysis.status,
            "totalChangedLines": analysis.total_changed_lines,
            "overallRating": analysis.overall_rating,
            "mainConcerns": analysis.main_concerns or [],
            "errorMessage": analysis.error_message,
            "createdAt": _iso(analysis.created_at),
            "updatedAt": _iso(analysis.updated_at),
            "completedAt": _iso(analysis.completed_at),
            "repository": {
                "id": repo.id,
                "name": repo.name,
                "fullName": repo.full_name,
            } if repo is not None else None,
        }
        if suggestions is not None:
            result["suggestions"] = suggestions
        return result

    @staticmethod
    def _suggestion_to_dict(suggestion: Suggestion) -> Dict:
        return {
            "id": suggestion.id,
            "analysisId": suggestion.analysis_id,
            "filePath": suggestion.file_path,
            "lineNumber": suggestion.line_number,
            "severity": suggestion.severity,
            "category": suggestion.category,
            "message": suggestion.message,
            "suggestion": suggestion.suggestion,
            "codeSnippet": suggestion.code_snippet,
            "createdAt": _iso(suggestion.created_at),
        }

    @staticmethod
    def _repository_to_dict(repo: Repository) -> Dict:
        return {
            "id": repo.id,
            "userId": repo.user_id,
            "githubId": repo.github_id,
            "name": repo.name,
            "fullName": repo.full_name,
            "isPrivate": repo.is_private,
            "defaultBranch": repo.default_branch,
            "isActive": repo.is_active,
            "createdAt": _iso(repo.created_at),
            "updatedAt": _iso(repo.updated_at),
        }
