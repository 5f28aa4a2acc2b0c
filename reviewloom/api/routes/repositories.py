"""Repository connection API routes (FastAPI)."""

import logging

from fastapi import APIRouter, Depends, Path

from ...core.analysis import AnalysisStore, Principal, RepositoryService
from ...core.constants import ID_PATTERN
from ..core import success_response
from ..deps import (
    general_rate_limit,
    get_repository_service,
    get_store,
    query_model,
)
from ..schemas import ConnectRepositoryRequest, PageQuery

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repositories", tags=["repositories"])

RepositoryId = Path(..., pattern=ID_PATTERN, description="Repository id")


@router.post("", status_code=201)
def connect_repository(
    data: ConnectRepositoryRequest,
    user: Principal = Depends(general_rate_limit),
    repos: RepositoryService = Depends(get_repository_service),
    store: AnalysisStore = Depends(get_store),
):
    """Connect a GitHub repository (or reactivate a disconnected one)."""
    store.ensure_user(user.user_id, user.username)
    result = repos.connect(user, data.full_name)
    if result["created"]:
        return success_response(result["repository"], "Repository connected successfully", 201)
    return success_response(result["repository"], "Repository reactivated successfully")


@router.get("")
def list_repositories(
    query: PageQuery = Depends(query_model(PageQuery)),
    user: Principal = Depends(general_rate_limit),
    repos: RepositoryService = Depends(get_repository_service),
):
    result = repos.list_repositories(user, page=query.page, limit=query.limit)
    return success_response(result, "Repositories retrieved successfully")


@router.get("/{repository_id}")
def get_repository(
    repository_id: str = RepositoryId,
    user: Principal = Depends(general_rate_limit),
    repos: RepositoryService = Depends(get_repository_service),
):
    """Repository details with its most recent analyses."""
    return success_response(repos.get_repository(user, repository_id), "Repository retrieved successfully")


@router.delete("/{repository_id}")
def disconnect_repository(
    repository_id: str = RepositoryId,
    user: Principal = Depends(general_rate_limit),
    repos: RepositoryService = Depends(get_repository_service),
):
    """Deactivate a repository; its analysis history is kept."""
    repos.disconnect(user, repository_id)
    return success_response(None, "Repository disconnected successfully")
