import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from mythilens.api.routes import router as api_router
from mythilens.core.config import settings
from mythilens.core.middleware import UserIdentityMiddleware
from mythilens.logging import configure_logging
from mythilens.middleware.logging import LoggingMiddleware
from mythilens.services.model_client import build_model_client
from mythilens.services.profile_store import InMemoryProfileStore, build_profile_store

configure_logging()
logger = structlog.get_logger(__name__)

# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_startup", version=settings.VERSION, env=settings.ENV)

    try:
        app.state.profile_store = build_profile_store()
    except ValueError as e:
        # misconfigured Redis in development should not stop the app from booting
        if settings.ENV.lower() == "production":
            raise
        logger.error("profile_store_config_error", error=str(e), fallback="memory")
        app.state.profile_store = InMemoryProfileStore()

    app.state.model_client = build_model_client()

    yield

    logger.info("application_shutdown")
    redis_client = getattr(app.state.profile_store, "redis_client", None)
    if redis_client is not None:
        await redis_client.aclose()

# --- FastAPI Application Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.BRIEF_DESCRIPTION,
    lifespan=lifespan,
    docs_url=None if settings.ENV.lower() == "production" else "/docs",
    redoc_url=None,
)

# Last added runs first: logging clears request context before identity binds to it.
app.add_middleware(UserIdentityMiddleware)
app.add_middleware(LoggingMiddleware)

app.include_router(api_router, prefix="/api")

# --- Health Check Endpoint ---
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    store = getattr(request.app.state, "profile_store", None)
    return {
        "status": "ok",
        "version": settings.VERSION,
        "profile_store": type(store).__name__ if store is not None else None,
        "model_configured": getattr(request.app.state, "model_client", None) is not None,
    }

# --- Global Exception Handler (for unhandled errors) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.error("unhandled_exception", error_id=error_id, error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": {
                "error": "INTERNAL_SERVER_ERROR",
                "detail": "An unexpected error occurred. Please report this error ID.",
                "error_id": error_id
            }
        }
    )
