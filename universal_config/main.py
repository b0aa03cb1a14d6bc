"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from universal_config import __version__
from universal_config.api import evaluate_router, families_router, rules_router, templates_router
from universal_config.config import configure_logging, get_settings
from universal_config.errors import (
    AmbiguousOverride,
    InvalidContext,
    OperationCancelled,
    RuleEngineError,
    RuleNotFound,
    StorageUnavailable,
    TemplateNotFound,
    UnknownFamily,
)
from universal_config.storage import init_db

logger = logging.getLogger(__name__)

# Domain error -> HTTP status
ERROR_STATUS_CODES: dict[type[RuleEngineError], int] = {
    UnknownFamily: 404,
    TemplateNotFound: 404,
    RuleNotFound: 404,
    InvalidContext: 422,
    AmbiguousOverride: 409,
    StorageUnavailable: 503,
    OperationCancelled: 504,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting %s (store backend: %s)", settings.app_name, settings.store_backend)

    if settings.store_backend == "sql":
        logger.info("Initializing database...")
        init_db()

    yield

    logger.info("Shutting down...")


async def rule_engine_error_handler(request: Request, exc: RuleEngineError) -> JSONResponse:
    """Translate domain errors into JSON error responses."""
    status_code = 500
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": exc.code})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Multi-tenant configuration rules: evaluation, validation and lifecycle",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS middleware - configurable via CORS_ORIGINS env var
    cors_origins_str = os.getenv("CORS_ORIGINS", "*")
    cors_origins = cors_origins_str.split(",") if cors_origins_str != "*" else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RuleEngineError, rule_engine_error_handler)

    app.include_router(evaluate_router)   # /evaluate
    app.include_router(rules_router)      # /rules
    app.include_router(templates_router)  # /templates
    app.include_router(families_router)   # /families

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "endpoints": {
                "evaluate": "/evaluate - Effective configuration for a context",
                "rules": "/rules - Rule lifecycle and history",
                "simulate": "/rules/simulate - Test a draft rule against sample scenarios",
                "templates": "/templates/{family} - Starter templates",
                "families": "/families - Registered rule families",
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
