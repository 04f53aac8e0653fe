"""
VesselCost Estimator API v1.0
FastAPI backend: AI drawing extraction (litellm, Gemini primary + fallback),
BOM editing and cost rollups, async SQLAlchemy project persistence.
"""
import logging
import sys
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import APP_VERSION, CORS_ORIGINS, DEFAULT_PROJECT_ID, LLM_PRIMARY_MODEL, LOG_JSON, LOG_LEVEL
from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware
from app.services.perf_monitor import tracker as perf_tracker

setup_logging(level=LOG_LEVEL, json_output=LOG_JSON)
logger = logging.getLogger("vesselcost-api")

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.db import init_db
    from app.services.chat_service import ChatService
    from app.services.extraction_service import LLMDrawingAnalyzer
    from app.services.import_pipeline import ImportSession
    from app.services.ledger import ProjectLedger
    from app.services.llm_client import LLMClient
    from app.services.project_store import ProjectStore

    await init_db()

    store = ProjectStore()
    ledger = await store.load(DEFAULT_PROJECT_ID)
    if ledger is None:
        logger.info("No saved project — starting empty")
        ledger = ProjectLedger()

    client = LLMClient()
    app.state.store = store
    app.state.ledger = ledger
    app.state.import_session = ImportSession()
    app.state.analyzer = LLMDrawingAnalyzer(client)
    app.state.chat_service = ChatService(client)
    yield


app = FastAPI(
    title="VesselCost Estimator API",
    version=APP_VERSION,
    description="AI-assisted cost estimation for pressure vessels from engineering drawings",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.ingestion_routes import router as ingestion_router
from app.api.project_routes import router as project_router
from app.api.chat_routes import router as chat_router

app.include_router(ingestion_router)
app.include_router(project_router)
app.include_router(chat_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": APP_VERSION,
        "llm_primary": LLM_PRIMARY_MODEL,
    }


@app.get("/metrics")
async def metrics():
    """
    Extraction metrics: files scanned, equipment extracted, batch durations,
    failures by stage, plus process memory. In-process only.
    """
    uptime_seconds = round(time.monotonic() - _PROCESS_START, 1)

    memory_mb: float = 0.0
    try:
        import resource  # Unix only
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # ru_maxrss is in kilobytes on Linux, bytes on macOS
        if sys.platform == "darwin":
            memory_mb = round(usage.ru_maxrss / (1024 * 1024), 2)
        else:
            memory_mb = round(usage.ru_maxrss / 1024, 2)
    except ImportError:
        memory_mb = 0.0

    return {
        "uptime_seconds": uptime_seconds,
        "memory_usage_mb": memory_mb,
        **perf_tracker.get_metrics(),
    }
