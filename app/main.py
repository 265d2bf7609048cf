"""
Main FastAPI application for Quire backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.routers import health, reports
from app.services.generation_manager import generation_manager
from app.services.section_plans import load_default_registry

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_ollama() -> dict:
    """
    Verify Ollama is reachable and check that the generation model is pulled.
    Returns a dict with status info.  Never raises; problems are logged as warnings.
    """
    result = {"reachable": False, "llm_model": False, "models": []}
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(f"{settings.OLLAMA_BASE_URL}/api/tags")
        if resp.status_code != 200:
            logger.warning("⚠ Ollama responded with status %d", resp.status_code)
            return result

        result["reachable"] = True
        available = [m["name"] for m in resp.json().get("models", [])]
        result["models"] = available
        logger.info("✓ Ollama reachable — available models: %s", available)

        # Partial match so "qwen2.5:3b-instruct" still matches "qwen2.5"
        llm_model = settings.OLLAMA_LLM_MODEL
        result["llm_model"] = any(
            m == llm_model or m.startswith(llm_model.split(":")[0])
            for m in available
        )
        if result["llm_model"]:
            logger.info("  ✓ LLM model '%s' is available", llm_model)
        else:
            logger.warning(
                "  ⚠ LLM model '%s' not found — run: ollama pull %s",
                llm_model,
                llm_model,
            )

    except Exception as exc:
        logger.error("✗ Ollama unreachable (%s) — report generation will fail", exc)
    return result


def _check_section_plans() -> None:
    """Load the section plans once so a broken plan file stops startup."""
    registry = load_default_registry()
    logger.info("✓ Section plans loaded: %s", ", ".join(registry.document_types()))


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Quire backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. Section plans (required; raises on an invalid plan file)
    _check_section_plans()

    # 3. Ollama (optional; logs warnings but continues)
    ollama_status = await _check_ollama()
    if not ollama_status["reachable"]:
        logger.warning(
            "Ollama is not running.  Start it with: ollama serve\n"
            "  Report generation will be unavailable until Ollama is up."
        )

    logger.info("=" * 60)
    logger.info("  Quire backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down Quire backend …")
    await generation_manager.cancel_all()
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Quire API",
    description=(
        "**Quire** — multi-section academic report generation.\n\n"
        "Reports are written section by section by a local Ollama model: "
        "independent sections in parallel, dependent sections in order with "
        "the earlier sections as context.\n\n"
        "Key endpoints:\n"
        "- `GET  /api/reports/types` — report types and their sections\n"
        "- `POST /api/reports` — generate and save a report\n"
        "- `POST /api/reports/stream` — same, with Server-Sent Events progress\n"
        "- `POST /api/reports/jobs` — generate in the background\n"
        "- `GET  /api/reports` — list saved reports\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling from the frontend
    if request.url.path not in ("/api/health", "/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,   prefix="/api/health",  tags=["Health"])
app.include_router(reports.router,  prefix="/api/reports", tags=["Reports"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root — returns basic service info."""
    return {
        "name": "Quire API",
        "version": "0.1.0",
        "description": "Multi-section Report Generation Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "reports": "/api/reports",
            "report_types": "/api/reports/types",
            "stream": "/api/reports/stream",
            "jobs": "/api/reports/jobs",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
