"""FastAPI application factory for ReviewLoom.

Creates and configures the FastAPI app with sessions, CORS, the error
envelope, and all route modules registered. Collaborators (database,
cache, diff source, suggestion engine) are passed in explicitly; the
store, orchestrator, query services, throttles and worker are built here
and stored on app.state.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from ..core.analysis import (
    AnalysisOrchestrator,
    AnalysisQueryService,
    AnalysisStore,
    AnalysisWorker,
    RepositoryService,
)
from ..core.cache import ResilientCache
from ..core.config import get_config_value
from ..core.db import DatabaseManager
from ..core.github import GitHubDiffSource
from ..core.ratelimit import SlidingWindowRateLimiter
from ..core.review import SuggestionEngine
from .core import register_exception_handlers, success_response

logger = logging.getLogger(__name__)


def _ttl(name: str, default: int) -> int:
    return get_config_value("cache", "ttl", name, default=default)


def create_app(
    db_manager: DatabaseManager,
    cache: ResilientCache,
    diff_source: GitHubDiffSource,
    engine: SuggestionEngine,
    run_worker: bool = True,
    secret_key: Optional[str] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_manager: DatabaseManager instance
        cache: Shared ResilientCache
        diff_source: GitHub diff source adapter
        engine: Suggestion engine adapter
        run_worker: Start the background AnalysisWorker with the app
        secret_key: Session signing key (defaults to SESSION_SECRET_KEY)

    Returns:
        Configured FastAPI application
    """
    store = AnalysisStore(db_manager)
    orchestrator = AnalysisOrchestrator(
        store,
        cache,
        diff_source,
        engine,
        credential_ttl=_ttl("credential", 7 * 24 * 60 * 60),
    )
    query_service = AnalysisQueryService(
        store,
        cache,
        analysis_ttl=_ttl("analysis", 3600),
        listing_ttl=_ttl("listing", 300),
        stats_ttl=_ttl("stats", 600),
        status_ttl=_ttl("status", 60),
    )
    repository_service = RepositoryService(store, cache, diff_source, listing_ttl=_ttl("listing", 300))

    worker = None
    if run_worker:
        worker = AnalysisWorker(
            orchestrator,
            poll_interval=get_config_value("worker", "poll_interval", default=30.0),
            max_concurrent=get_config_value("worker", "max_concurrent", default=2),
            recovery_grace_seconds=get_config_value("worker", "recovery_grace_seconds", default=600),
        )
        orchestrator.set_scheduler(worker.enqueue)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if worker is not None:
            worker.start()
        yield
        if worker is not None:
            worker.stop()

    app = FastAPI(
        title="ReviewLoom API",
        description="Pull request analysis with AI review suggestions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Session middleware (the sign-in flow stores the principal here)
    secret_key = secret_key or os.getenv("SESSION_SECRET_KEY", "reviewloom-dev-secret-change-me")
    app.add_middleware(SessionMiddleware, secret_key=secret_key)

    # CORS for the web client dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_config_value(
            "app", "cors_origins", default=["http://localhost:3000", "http://localhost:5173"]
        ),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Store shared dependencies on app state
    app.state.db_manager = db_manager
    app.state.cache = cache
    app.state.engine = engine
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.query_service = query_service
    app.state.repository_service = repository_service
    app.state.worker = worker
    app.state.creation_limiter = SlidingWindowRateLimiter(
        max_requests=get_config_value("rate_limits", "analysis_creation", "max_requests", default=5),
        window_seconds=get_config_value("rate_limits", "analysis_creation", "window_seconds", default=900),
        message="Too many analysis requests. Please wait before creating another analysis.",
    )
    app.state.general_limiter = SlidingWindowRateLimiter(
        max_requests=get_config_value("rate_limits", "general", "max_requests", default=100),
        window_seconds=get_config_value("rate_limits", "general", "window_seconds", default=600),
        message="Too many requests to analysis endpoints. Please slow down.",
    )

    # Register routers
    from .routes.analyses import router as analyses_router
    from .routes.repositories import router as repositories_router

    app.include_router(analyses_router, prefix="/api")
    app.include_router(repositories_router, prefix="/api")

    @app.get("/api/health")
    def health_check():
        database_ok = db_manager.check_connection()
        cache_ok = cache.is_available()
        data = {
            "service": "reviewloom",
            "database": "ok" if database_ok else "unavailable",
            "cache": "ok" if cache_ok else "unavailable",
            "worker": "running" if worker is not None and worker.is_running else "stopped",
            "engine": engine.get_usage_stats(),
        }
        # Cache errors surface as misses, so only the database gates health
        status_code = 200 if database_ok else 503
        return success_response(data, "healthy" if database_ok else "degraded", status_code)

    logger.info("FastAPI app created with all routes registered")
    return app
