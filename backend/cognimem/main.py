"""
CogniMem - Cognitive Memory Backend

FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import init_db, close_db
from .config import settings
from .errors import (
    CogniMemError,
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from .jobs import get_job_queue
from .api import (
    relationships_router,
    entities_router,
    predicates_router,
    validation_rules_router,
    memory_router,
    inspect_router,
    conversations_router,
    contacts_router,
)
from .tracer import setup_follow_through_logging

# Configure logging based on mode
if settings.debug:
    log_level = logging.DEBUG
elif settings.follow_through:
    log_level = logging.WARNING  # Suppress normal logs, let tracer handle output
else:
    log_level = logging.INFO

logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Quiet down noisy loggers when not in debug mode
if not settings.debug:
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

# Setup follow-through tracing
setup_follow_through_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting CogniMem...")

    # Validate provider key
    try:
        settings.validate_provider_key()
        logger.info(f"Using LLM provider: {settings.llm_provider}")
    except UpstreamError as e:
        logger.error(f"Configuration error: {e}")
        raise

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    job_queue = get_job_queue()
    await job_queue.start()

    yield

    # Shutdown
    logger.info("Shutting down CogniMem...")
    await job_queue.stop()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title="CogniMem",
    description="""
    Cognitive memory backend for conversational agents.

    ## Features
    - **Entity Graph**: Typed entities and predicates with upsert semantics
    - **Consistency**: Duplicate detection, merge, split and bulk actions
    - **Validation Rules**: Per-type field constraints checked on every write
    - **Context Assembly**: Episodic, semantic, structured and graph tiers
    - **Memory Extraction**: Background LLM extraction of entities and facts
    - **Inspection**: Durable trace of every pipeline run and step
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error mapping
# =============================================================================

ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (UpstreamError, 502),
)


@app.exception_handler(CogniMemError)
async def domain_error_handler(request: Request, exc: CogniMemError):
    """Render domain errors as {"error", "details"} with a matching status."""
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    details = exc.violations if isinstance(exc, ValidationError) else None
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": str(exc), "details": details},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and params share the 400 shape of rule violations."""
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


# Include routers (relationships before entities: /entities/{entity_id} would shadow it)
app.include_router(relationships_router)
app.include_router(entities_router)
app.include_router(predicates_router)
app.include_router(validation_rules_router)
app.include_router(memory_router)
app.include_router(inspect_router)
app.include_router(conversations_router)
app.include_router(contacts_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "CogniMem",
        "version": "1.0.0",
        "description": "Cognitive memory backend",
        "provider": settings.llm_provider,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    job_queue = get_job_queue()
    return {
        "status": "healthy",
        "jobs": {
            "running": job_queue.running,
            "pending": job_queue.pending,
            "completed": job_queue.stats.completed,
            "failed": job_queue.stats.failed,
        },
    }
