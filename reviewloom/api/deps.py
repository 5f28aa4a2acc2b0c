"""FastAPI dependencies for ReviewLoom.

Provides shared dependencies (auth, services, throttles, query parsing)
via FastAPI's Depends() injection system. Services live on app.state and
are built once in create_app().
"""

import logging
from typing import Callable, Type, TypeVar

from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..core.analysis import (
    AnalysisOrchestrator,
    AnalysisQueryService,
    AnalysisStore,
    Principal,
    RepositoryService,
)
from ..core.exceptions import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)

Q = TypeVar("Q", bound=BaseModel)


async def get_store(request: Request) -> AnalysisStore:
    """Get AnalysisStore from app state."""
    return request.app.state.store


async def get_orchestrator(request: Request) -> AnalysisOrchestrator:
    """Get AnalysisOrchestrator from app state."""
    return request.app.state.orchestrator


async def get_query_service(request: Request) -> AnalysisQueryService:
    """Get AnalysisQueryService from app state."""
    return request.app.state.query_service


async def get_repository_service(request: Request) -> RepositoryService:
    """Get RepositoryService from app state."""
    return request.app.state.repository_service


async def get_current_user(request: Request) -> Principal:
    """FastAPI dependency for authentication.

    The sign-in flow stores user_id, username and the GitHub access token
    in the session. Returns the Principal or raises 401.
    """
    session = request.session
    user_id = session.get("user_id")
    token = session.get("github_token")

    if not user_id or not token:
        raise AuthenticationError("Not authenticated")

    return Principal(user_id=user_id, username=session.get("username") or user_id, github_token=token)


async def general_rate_limit(
    request: Request,
    user: Principal = Depends(get_current_user),
) -> Principal:
    """100 requests / 10 minutes per user across analysis routes."""
    request.app.state.general_limiter.hit(f"general:{user.user_id}")
    return user


async def creation_rate_limit(
    request: Request,
    user: Principal = Depends(general_rate_limit),
) -> Principal:
    """5 analysis creations (or reruns) / 15 minutes per user."""
    request.app.state.creation_limiter.hit(f"analysis_creation:{user.user_id}")
    return user


def _first_error(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    if err.get("type") == "extra_forbidden":
        return f"Unknown query parameter: {field}"
    return f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid query")


def query_model(model: Type[Q]) -> Callable[[Request], Q]:
    """Dependency parsing the raw query string into ``model``."""

    async def _parse(request: Request) -> Q:
        try:
            return model.model_validate(dict(request.query_params))
        except PydanticValidationError as e:
            raise ValidationError(_first_error(e)) from e

    return _parse
