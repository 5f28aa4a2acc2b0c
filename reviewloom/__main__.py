import argparse
import logging
import sys

from .core.cache import build_cache
from .core.config import get_config_value, get_env
from .core.db import get_database_manager, wait_for_db
from .core.gateway import create_review_llm
from .core.github import GitHubDiffSource
from .core.review import SuggestionEngine


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("backoff").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("psycopg2").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def main():
    """Main entry point for ReviewLoom."""
    parser = argparse.ArgumentParser(description="ReviewLoom - Pull Request Analysis Service")
    parser.add_argument(
        "--port",
        type=int,
        default=get_config_value("app", "port", default=9010),
        help="Port for the API server"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables on startup (development; use alembic otherwise)"
    )
    parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Serve the API without the background analysis worker"
    )
    args = parser.parse_args()

    setup_logging(args.log_level)
    logger.info("Starting ReviewLoom")

    # Database
    db_manager = get_database_manager()
    if not wait_for_db(db_manager):
        logger.error("Database unavailable, exiting")
        sys.exit(1)
    if args.create_tables:
        db_manager.init_db()

    # Cache
    cache = build_cache(
        backend=get_config_value("cache", "backend", default="memory"),
        redis_url=get_env("REDIS_URL"),
    )

    # Collaborators
    diff_source = GitHubDiffSource(
        cache,
        api_url=get_env("GITHUB_API_URL", get_config_value("github", "api_url", default="https://api.github.com")),
        timeout=get_config_value("github", "timeout", default=30),
        user_agent=get_config_value("github", "user_agent", default="ReviewLoom/1.0"),
        diff_ttl=get_config_value("cache", "ttl", "diff", default=1800),
    )

    llm = None
    api_key = get_env("OPENAI_API_KEY")
    if api_key:
        llm = create_review_llm(
            model=get_env("REVIEWLOOM_LLM_MODEL", get_config_value("llm", "model", default="gpt-4o")),
            temperature=get_config_value("llm", "temperature", default=0.1),
            max_tokens=get_config_value("llm", "max_tokens", default=4000),
            api_key=api_key,
        )
    else:
        logger.warning("OPENAI_API_KEY not set. Analyses will fail until it is configured.")

    engine = SuggestionEngine(
        cache,
        llm=llm,
        max_files=get_config_value("review", "max_files", default=10),
        max_patch_chars=get_config_value("review", "max_patch_chars", default=2000),
        report_ttl=get_config_value("cache", "ttl", "report", default=86400),
    )

    # Build FastAPI app
    from .api.app import create_app
    app = create_app(
        db_manager=db_manager,
        cache=cache,
        diff_source=diff_source,
        engine=engine,
        run_worker=not args.no_worker,
    )

    # Launch with uvicorn
    import uvicorn

    logger.info(f"Starting FastAPI server on http://0.0.0.0:{args.port}")
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=args.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
