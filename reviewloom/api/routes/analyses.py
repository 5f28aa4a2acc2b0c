"""Pull request analysis API routes (FastAPI).

All routes require an authenticated session and share a per-user general
throttle; creation and rerun carry an additional, stricter throttle.
Handlers are plain functions so blocking store/GitHub calls run in the
threadpool instead of on the event loop.
"""

import logging

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse, Response

from ...core.analysis import (
    AnalysisOrchestrator,
    AnalysisQueryService,
    CreateOutcome,
    Principal,
)
from ...core.constants import ID_PATTERN
from ..core import success_response
from ..deps import (
    creation_rate_limit,
    general_rate_limit,
    get_orchestrator,
    get_query_service,
    query_model,
)
from ..schemas import CreateAnalysisRequest, ExportQuery, ListAnalysesQuery, SuggestionsQuery

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyses", tags=["analyses"])

AnalysisId = Path(..., pattern=ID_PATTERN, description="Analysis id")
RepositoryId = Path(..., pattern=ID_PATTERN, description="Repository id")


def _created_response(result) -> JSONResponse:
    status_code = 200 if result.outcome == CreateOutcome.EXISTING_COMPLETED else 202
    return success_response(result.to_dict(), result.message, status_code)


# ── Create ───────────────────────────────────────────────────────────────

@router.post("/repositories/{repository_id}/analyze", status_code=202)
def create_analysis(
    data: CreateAnalysisRequest,
    repository_id: str = RepositoryId,
    user: Principal = Depends(creation_rate_limit),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Start (or reuse) the analysis of one pull request."""
    logger.info(f"[ANALYSIS_CREATE] user={user.user_id} repository={repository_id} pr={data.pr_number}")
    result = orchestrator.create_analysis(user, repository_id, data.pr_number)
    return _created_response(result)


# ── Read ─────────────────────────────────────────────────────────────────

@router.get("")
def list_analyses(
    query: ListAnalysesQuery = Depends(query_model(ListAnalysesQuery)),
    user: Principal = Depends(general_rate_limit),
    queries: AnalysisQueryService = Depends(get_query_service),
):
    """List the caller's analyses with filters, sorting and pagination."""
    logger.info(f"[ANALYSIS_LIST] user={user.user_id} page={query.page} limit={query.limit}")
    result = queries.list_analyses(
        user,
        page=query.page,
        limit=query.limit,
        status=query.status,
        repository_id=query.repository_id,
        sort_by=query.sort_by,
        sort_order=query.sort_order,
    )
    return success_response(result, "Analyses retrieved successfully")


@router.get("/stats")
def get_statistics(
    user: Principal = Depends(general_rate_limit),
    queries: AnalysisQueryService = Depends(get_query_service),
):
    """Counts by status and severity plus the five most recent analyses."""
    logger.info(f"[ANALYSIS_STATS] user={user.user_id}")
    return success_response(queries.get_statistics(user), "Statistics retrieved successfully")


@router.get("/{analysis_id}")
def get_analysis(
    analysis_id: str = AnalysisId,
    user: Principal = Depends(general_rate_limit),
    queries: AnalysisQueryService = Depends(get_query_service),
):
    logger.info(f"[ANALYSIS_GET] user={user.user_id} analysis={analysis_id}")
    return success_response(queries.get_analysis(user, analysis_id), "Analysis retrieved successfully")


@router.get("/{analysis_id}/status")
def get_analysis_status(
    analysis_id: str = AnalysisId,
    user: Principal = Depends(general_rate_limit),
    queries: AnalysisQueryService = Depends(get_query_service),
):
    """Lightweight status for polling."""
    return success_response(queries.get_status(user, analysis_id), "Status retrieved successfully")


@router.get("/{analysis_id}/suggestions")
def get_suggestions(
    analysis_id: str = AnalysisId,
    query: SuggestionsQuery = Depends(query_model(SuggestionsQuery)),
    user: Principal = Depends(general_rate_limit),
    queries: AnalysisQueryService = Depends(get_query_service),
):
    result = queries.get_suggestions(
        user,
        analysis_id,
        severity=query.severity,
        category=query.category,
        page=query.page,
        limit=query.limit,
    )
    return success_response(result, "Suggestions retrieved successfully")


@router.get("/{analysis_id}/export")
def export_analysis(
    analysis_id: str = AnalysisId,
    query: ExportQuery = Depends(query_model(ExportQuery)),
    user: Principal = Depends(general_rate_limit),
    queries: AnalysisQueryService = Depends(get_query_service),
):
    """Download the full analysis as JSON or CSV."""
    logger.info(f"[ANALYSIS_EXPORT] user={user.user_id} analysis={analysis_id} format={query.format}")
    content, media_type, filename = queries.export_analysis(user, analysis_id, query.format)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if query.format == "csv":
        return Response(content=content, media_type=media_type, headers=headers)
    return JSONResponse(content=content, media_type=media_type, headers=headers)


# ── Write ────────────────────────────────────────────────────────────────

@router.delete("/{analysis_id}")
def delete_analysis(
    analysis_id: str = AnalysisId,
    user: Principal = Depends(general_rate_limit),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    logger.info(f"[ANALYSIS_DELETE] user={user.user_id} analysis={analysis_id}")
    orchestrator.delete_analysis(user, analysis_id)
    return success_response(None, "Analysis deleted successfully")


@router.post("/{analysis_id}/rerun", status_code=202)
def rerun_analysis(
    analysis_id: str = AnalysisId,
    user: Principal = Depends(creation_rate_limit),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Replace a FAILED analysis with a fresh run for the same pull request."""
    logger.info(f"[ANALYSIS_RERUN] user={user.user_id} analysis={analysis_id}")
    result = orchestrator.rerun_analysis(user, analysis_id)
    return _created_response(result)
