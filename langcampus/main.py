"""FastAPI application entry point."""
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from langcampus.core.config import settings
from langcampus.core.errors import (
    ConversationNotFound,
    GenerationFailure,
    GroupFullError,
    GroupNotFound,
    NotAuthorized,
    QuotaExceeded,
    StoreUnavailable,
)
from langcampus.database import init_db
from langcampus.api.chat import router as chat_router
from langcampus.api.groups import router as groups_router
from langcampus.api.learning import router as learning_router

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "https://langcampus-exchange.web.app",
        "https://practicefor.fun",
        "https://www.practicefor.fun",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_sweeper: Optional[asyncio.Task] = None


async def sweep_idle_chats(interval_seconds: float) -> None:
    """Periodically drop chats abandoned without a close (e.g. the tab was closed)."""
    from langcampus.services.session import get_session_facade
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            get_session_facade().evict_idle_chats()
        except Exception as e:
            logger.error(f"Idle chat sweep failed: {e}", exc_info=True)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global _sweeper
    logger.info("Starting up LangCampus session engine...")
    logger.info(f"APP_ENV={settings.app_env} (is_prod={settings.is_prod})")

    # Prod: require Gemini API key (fail fast)
    if settings.is_prod and not settings.gemini_api_key:
        raise RuntimeError("GEMINI_API_KEY is required when APP_ENV=prod. Set it in .env or environment.")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set. Chat replies will fall back to an apology message.")
    else:
        logger.info(f"LLM: Gemini (model: {settings.llm_model})")

    logger.info(
        f"Nudges: welcome after {settings.welcome_delay_seconds}s, "
        f"follow-ups after {settings.nudge_delay_seconds}s, max {settings.max_ai_initiated_messages}"
    )

    # Initialize database
    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    if settings.cache_enabled:
        from langcampus.services.cache import redis_available
        if redis_available:
            logger.info("Cache enabled (Redis available)")
        else:
            logger.warning("Cache enabled but Redis not available, continuing without cache")
    else:
        logger.info("Cache disabled (CACHE_ENABLED=false)")

    _sweeper = asyncio.create_task(sweep_idle_chats(settings.chat_sweep_interval_seconds))


@app.on_event("shutdown")
async def shutdown_event():
    """Stop nudge timers on shutdown."""
    logger.info("Shutting down...")
    if _sweeper is not None:
        _sweeper.cancel()
    from langcampus.services.session import get_session_facade
    get_session_facade().shutdown()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "service": settings.app_name
    }


# Include API routers
app.include_router(chat_router, prefix="/api/v1/chats", tags=["Chats"])
app.include_router(groups_router, prefix="/api/v1/groups", tags=["Groups"])
app.include_router(learning_router, prefix="/api/v1", tags=["Learning"])


@app.exception_handler(QuotaExceeded)
async def quota_exceeded_handler(request: Request, exc: QuotaExceeded):
    """Expected denial: the UI shows the upgrade-or-wait prompt."""
    return JSONResponse(
        status_code=429,
        content={"detail": str(exc), "reason": "quota_exceeded", "action": exc.action},
    )


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable. Please try again.", "retryable": True},
    )


@app.exception_handler(GenerationFailure)
async def generation_failure_handler(request: Request, exc: GenerationFailure):
    logger.warning(f"Generation failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": "The AI service could not complete this request. Please try again.", "retryable": True},
    )


@app.exception_handler(GroupFullError)
async def group_full_handler(request: Request, exc: GroupFullError):
    return JSONResponse(status_code=409, content={"detail": "This group is full."})


@app.exception_handler(NotAuthorized)
async def not_authorized_handler(request: Request, exc: NotAuthorized):
    return JSONResponse(status_code=403, content={"detail": str(exc) or "Not allowed."})


@app.exception_handler(GroupNotFound)
@app.exception_handler(ConversationNotFound)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": "Not found."})


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler - never expose stack traces."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."}
    )
