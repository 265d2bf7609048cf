"""
Health check endpoint.

Reports database and Ollama reachability, the report types that can be
generated, and how many background generation jobs are running.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import logging

from app.database import get_db
from app.dependencies.generation import get_llm_backend, get_plan_registry
from app.models.schemas import HealthCheckResponse
from app.services.generation_manager import generation_manager
from app.services.llm_client import TextBackend
from app.services.section_plans import SectionPlanRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    backend: TextBackend = Depends(get_llm_backend),
    registry: SectionPlanRegistry = Depends(get_plan_registry),
):
    """
    Health check endpoint to verify system status.

    ``status`` is "healthy" only when both the database and Ollama answer;
    report generation needs both.
    """
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    ollama_status = "ok" if await backend.check_health() else "error"

    overall_status = "healthy" if db_status == "ok" and ollama_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        ollama=ollama_status,
        report_types=registry.document_types(),
        active_jobs=generation_manager.running_count(),
        timestamp=datetime.utcnow(),
    )
