"""Read side of the analysis subsystem.

Every view is served cache-first and recomputed from the AnalysisStore on a
miss. Cached data is never trusted for authorization: the owning user is
checked on cache hits as well. Only COMPLETED analyses are cached in full;
non-terminal ones get a short-lived status entry.
"""

import csv
import io
import logging
import math
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..cache import ResilientCache, keys
from ..constants import (
    ANALYSIS_CACHE_TTL,
    LISTING_CACHE_TTL,
    SEVERITIES,
    STATS_CACHE_TTL,
    STATUS_CACHE_TTL,
    STATUS_COMPLETED,
)
from ..exceptions import AuthorizationError, NotFoundError, ValidationError
from .models import Principal
from .store import AnalysisStore

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")
CSV_COLUMNS = ("file_path", "line_number", "severity", "category", "message", "suggestion")


def summarize_suggestions(analysis: Dict[str, Any]) -> Dict[str, Any]:
    """Derived summary of an analysis: counts by severity and by category."""
    suggestions = analysis.get("suggestions") or []
    by_severity = {s: 0 for s in SEVERITIES}
    by_severity.update(Counter(s["severity"] for s in suggestions))
    return {
        "totalSuggestions": len(suggestions),
        "bySeverity": by_severity,
        "byCategory": dict(Counter(s["category"] for s in suggestions)),
        "overallRating": analysis.get("overallRating"),
        "mainConcerns": analysis.get("mainConcerns") or [],
    }


class AnalysisQueryService:
    """Cached views of analyses, listings, statistics, and exports."""

    def __init__(
        self,
        store: AnalysisStore,
        cache: ResilientCache,
        analysis_ttl: int = ANALYSIS_CACHE_TTL,
        listing_ttl: int = LISTING_CACHE_TTL,
        stats_ttl: int = STATS_CACHE_TTL,
        status_ttl: int = STATUS_CACHE_TTL,
    ):
        self._store = store
        self._cache = cache
        self._analysis_ttl = analysis_ttl
        self._listing_ttl = listing_ttl
        self._stats_ttl = stats_ttl
        self._status_ttl = status_ttl

    @staticmethod
    def _check_owner(record: Dict[str, Any], principal: Principal) -> None:
        if record.get("userId") != principal.user_id:
            raise AuthorizationError("Access denied to this analysis")

    # ── Single analysis ───────────────────────────────────────────────

    def get_analysis(self, principal: Principal, analysis_id: str) -> Dict[str, Any]:
        """Full analysis with ordered suggestions and derived summary.

        Raises:
            NotFoundError: No such analysis
            AuthorizationError: Analysis belongs to another user
        """
        cache_key = keys.analysis_key(analysis_id)
        cached = self._cache.get_json(cache_key)
        if isinstance(cached, dict):
            self._check_owner(cached, principal)
            logger.debug(f"Using cached analysis {analysis_id}")
            return cached

        analysis = self._store.get_analysis(analysis_id, include_suggestions=True)
        if analysis is None:
            raise NotFoundError("Analysis not found")
        self._check_owner(analysis, principal)

        analysis["summary"] = summarize_suggestions(analysis)
        if analysis["status"] == STATUS_COMPLETED:
            self._cache.set_json(cache_key, analysis, self._analysis_ttl)
        else:
            self._cache_status(analysis)
        return analysis

    def get_status(self, principal: Principal, analysis_id: str) -> Dict[str, Any]:
        """Lightweight status for polling clients."""
        cached = self._cache.get_json(keys.analysis_status_key(analysis_id))
        if isinstance(cached, dict):
            self._check_owner(cached, principal)
            return cached

        analysis = self._store.get_analysis(analysis_id)
        if analysis is None:
            raise NotFoundError("Analysis not found")
        self._check_owner(analysis, principal)
        return self._cache_status(analysis)

    def _cache_status(self, analysis: Dict[str, Any]) -> Dict[str, Any]:
        status = {
            "id": analysis["id"],
            "userId": analysis["userId"],
            "status": analysis["status"],
            "prNumber": analysis["prNumber"],
            "totalChangedLines": analysis.get("totalChangedLines"),
            "updatedAt": analysis.get("updatedAt"),
            "completedAt": analysis.get("completedAt"),
        }
        self._cache.set_json(keys.analysis_status_key(analysis["id"]), status, self._status_ttl)
        return status

    # ── Listings ──────────────────────────────────────────────────────

    def list_analyses(
        self,
        principal: Principal,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        repository_id: Optional[str] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        filters = {
            "status": status,
            "repositoryId": repository_id,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }
        cache_key = keys.user_listing_key(principal.user_id, page, limit, filters)
        cached = self._cache.get_json(cache_key)
        if cached is not None:
            return cached

        items, total = self._store.list_by_owner(
            principal.user_id,
            page=page,
            limit=limit,
            status=status,
            repository_id=repository_id,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        result = {
            "analyses": items,
            "pagination": self._pagination(page, limit, total),
            "filters": filters,
        }
        self._cache.set_json(cache_key, result, self._listing_ttl)
        return result

    def get_statistics(self, principal: Principal) -> Dict[str, Any]:
        cache_key = keys.user_stats_key(principal.user_id)
        cached = self._cache.get_json(cache_key)
        if cached is not None:
            return cached

        stats = self._store.get_statistics(principal.user_id)
        self._cache.set_json(cache_key, stats, self._stats_ttl)
        return stats

    def get_suggestions(
        self,
        principal: Principal,
        analysis_id: str,
        severity: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Filtered page of one analysis' suggestions (not cached)."""
        analysis = self._store.get_analysis(analysis_id)
        if analysis is None:
            raise NotFoundError("Analysis not found")
        self._check_owner(analysis, principal)

        suggestions, total = self._store.list_suggestions(
            analysis_id,
            severity=severity,
            category=category,
            page=page,
            limit=limit,
        )
        return {
            "suggestions": suggestions,
            "pagination": self._pagination(page, limit, total),
            "filters": {"severity": severity, "category": category},
            "analysisStatus": analysis["status"],
        }

    # ── Export ────────────────────────────────────────────────────────

    def export_analysis(
        self,
        principal: Principal,
        analysis_id: str,
        fmt: str = "json",
    ) -> Tuple[Any, str, str]:
        """Return (content, media type, filename) for a download."""
        if fmt not in EXPORT_FORMATS:
            raise ValidationError("Format must be json or csv")

        analysis = self.get_analysis(principal, analysis_id)
        if fmt == "csv":
            return self._to_csv(analysis), "text/csv", f"analysis-{analysis_id}.csv"

        payload = {
            "success": True,
            "data": analysis,
            "exportedAt": datetime.utcnow().isoformat(),
        }
        return payload, "application/json", f"analysis-{analysis_id}.json"

    @staticmethod
    def _to_csv(analysis: Dict[str, Any]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for s in analysis.get("suggestions") or []:
            writer.writerow([
                s["filePath"],
                s["lineNumber"],
                s["severity"],
                s["category"],
                s["message"],
                s["suggestion"],
            ])
        return buffer.getvalue()

    @staticmethod
    def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
        return {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        }
