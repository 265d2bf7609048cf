"""
Report generation and management endpoints.

Route summary
-------------
GET    /api/reports/types                — configured report types and their section plans
POST   /api/reports                      — generate + save a report (blocking)
POST   /api/reports/stream               — generate + save a report, progress as SSE
POST   /api/reports/jobs                 — generate + save in the background
GET    /api/reports/jobs/{job_id}        — poll a background job
GET    /api/reports                      — list the user's reports (paginated)
GET    /api/reports/{report_id}          — report detail
GET    /api/reports/{report_id}/sections — stored per-section content
DELETE /api/reports/{report_id}          — delete a report (cascades to sections)
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import AsyncGenerator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import (
    UserIdentity,
    get_current_user_id,
    get_owned_report,
    get_user_identity,
)
from app.dependencies.generation import (
    get_persistence,
    get_plan_registry,
    get_strategy_selector,
)
from app.models.database_models import Report, ReportSection
from app.models.schemas import (
    GenerationJobResponse,
    GenerationRequest,
    Pagination,
    ReportGenerateRequest,
    ReportGenerateResponse,
    ReportListResponse,
    ReportResponse,
    ReportSectionResponse,
    ReportSectionsResponse,
    ReportTypeResponse,
    SectionPlanItem,
    StreamEvent,
)
from app.services.exceptions import UnknownDocumentType
from app.services.fallback import FallbackStrategySelector
from app.services.generation_manager import (
    GenerationJobStatus,
    generation_manager,
    run_generation_job,
)
from app.services.orchestrator import EventType, GenerationEvent, GenerationRun
from app.services.persistence import PersistenceCoordinator
from app.services.section_plans import SectionPlan, SectionPlanRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _resolve_plan(selector: FallbackStrategySelector, report_type: str) -> SectionPlan:
    """Plan for *report_type* or 400 before any generation starts."""
    try:
        return selector.orchestrator.registry.get_plan(report_type)
    except UnknownDocumentType as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _stream_event(event: GenerationEvent, report_id: Optional[int] = None) -> StreamEvent:
    document = event.document
    return StreamEvent(
        event=event.event.value,
        section=event.section,
        section_key=event.section_key,
        fragment=event.fragment,
        content=event.content,
        progress=event.progress,
        report_id=report_id,
        strategy=document.strategy if document else None,
        per_section_status=document.per_section_status if document else None,
        error=event.error,
    )


def _sse(payload: StreamEvent) -> str:
    return f"data: {payload.model_dump_json(exclude_none=True)}\n\n"


def _job_response(job: GenerationJobStatus) -> GenerationJobResponse:
    return GenerationJobResponse(
        job_id=job.job_id,
        phase=job.phase.value,
        title=job.title,
        report_type=job.report_type,
        sections_completed=job.sections_completed,
        sections_failed=job.sections_failed,
        total_sections=job.total_sections,
        progress=job.progress,
        report_id=job.report_id,
        errors=job.errors,
        elapsed_seconds=job.elapsed_seconds,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REPORT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/types", response_model=List[ReportTypeResponse])
async def list_report_types(
    registry: SectionPlanRegistry = Depends(get_plan_registry),
) -> List[ReportTypeResponse]:
    """Every configured report type with its ordered section plan."""
    response: List[ReportTypeResponse] = []
    for report_type in registry.document_types():
        plan = registry.get_plan(report_type)
        response.append(
            ReportTypeResponse(
                report_type=report_type,
                sections=[
                    SectionPlanItem(
                        key=s.key,
                        display_name=s.display_name,
                        order=s.order,
                        independent=s.independent,
                    )
                    for s in plan.sections
                ],
            )
        )
    return response


# ═══════════════════════════════════════════════════════════════════════════════
# GENERATION
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("", response_model=ReportGenerateResponse, status_code=status.HTTP_201_CREATED)
async def generate_report(
    body: ReportGenerateRequest,
    user: UserIdentity = Depends(get_user_identity),
    selector: FallbackStrategySelector = Depends(get_strategy_selector),
    persistence: PersistenceCoordinator = Depends(get_persistence),
) -> ReportGenerateResponse:
    """
    Generate a report and save it.

    Sections that fail are listed in ``per_section_status`` and the report is
    saved as ``incomplete``.  If the structured run produces nothing, a single
    monolithic prompt is tried before giving up with 503.
    """
    request = GenerationRequest.from_body(body, user.id, user.email, user.name)

    try:
        outcome = await selector.select(request)
    except UnknownDocumentType as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    if not outcome.ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(outcome.error),
        )

    document = outcome.document
    report = await persistence.save(request, document)

    failed = [result.display_name for result in document.failed_sections]
    if failed:
        message = f"Report generated with {len(failed)} failed section(s): {', '.join(failed)}."
    elif outcome.structured_error is not None:
        message = "Report generated with the single-prompt fallback."
    else:
        message = "Report generated successfully."

    return ReportGenerateResponse(
        report=ReportResponse.model_validate(report),
        per_section_status=document.per_section_status,
        strategy=document.strategy,
        message=message,
    )


@router.post("/stream")
async def stream_report(
    body: ReportGenerateRequest,
    user: UserIdentity = Depends(get_user_identity),
    selector: FallbackStrategySelector = Depends(get_strategy_selector),
    persistence: PersistenceCoordinator = Depends(get_persistence),
) -> StreamingResponse:
    """
    Generate a report, streaming progress as Server-Sent Events.

    Event types: ``section_started``, ``fragment``, ``section_completed``,
    ``section_failed``, then exactly one of ``complete`` (carries
    ``report_id``) or ``error``.  The stream ends with ``data: [DONE]``.

    If the client disconnects mid-run (or the run errors out), the sections
    finished so far are saved as a ``partial`` report.
    """
    request = GenerationRequest.from_body(body, user.id, user.email, user.name)
    _resolve_plan(selector, request.report_type)

    async def generate() -> AsyncGenerator[str, None]:
        run = GenerationRun(request=request)
        finished = False
        try:
            async for event in selector.produce_stream(request, run):
                if event.event is EventType.COMPLETE:
                    report = await persistence.save(request, event.document)
                    finished = True
                    yield _sse(_stream_event(event, report_id=report.id))
                else:
                    yield _sse(_stream_event(event))
            yield "data: [DONE]\n\n"

        except Exception as exc:
            logger.error("stream_report: %r failed: %s", request.title, exc, exc_info=True)
            yield _sse(StreamEvent(event=EventType.ERROR.value, progress=run.progress(), error=str(exc)))
            yield "data: [DONE]\n\n"

        finally:
            if not finished:
                logger.warning(
                    "stream_report: %r ended without a saved report (phase %s)",
                    request.title,
                    run.phase.value,
                )
                try:
                    await asyncio.shield(
                        persistence.save_under_interruption(request, run.plan, run.results.values())
                    )
                except Exception as exc:
                    logger.error(
                        "stream_report: could not save partial report for %r: %s",
                        request.title,
                        exc,
                        exc_info=True,
                    )

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


# ═══════════════════════════════════════════════════════════════════════════════
# BACKGROUND JOBS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/jobs", response_model=GenerationJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_generation_job(
    body: ReportGenerateRequest,
    user: UserIdentity = Depends(get_user_identity),
    selector: FallbackStrategySelector = Depends(get_strategy_selector),
    persistence: PersistenceCoordinator = Depends(get_persistence),
) -> GenerationJobResponse:
    """
    Launch generation as a background task.

    Returns immediately. Poll ``GET /api/reports/jobs/{job_id}`` for progress.
    """
    request = GenerationRequest.from_body(body, user.id, user.email, user.name)
    plan = _resolve_plan(selector, request.report_type)

    # Pre-create the status so the coroutine and the poller share one object
    job = GenerationJobStatus(
        title=request.title,
        report_type=request.report_type,
        user_id=user.id,
        total_sections=len(plan),
    )
    generation_manager.start(job, run_generation_job(job, request, selector, persistence))
    return _job_response(job)


@router.get("/jobs/{job_id}", response_model=GenerationJobResponse)
async def get_generation_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
) -> GenerationJobResponse:
    """Poll a background generation job."""
    job = generation_manager.get_status(job_id)
    if job is None or job.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found.")
    return _job_response(job)


# ═══════════════════════════════════════════════════════════════════════════════
# REPORT CRUD
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("", response_model=ReportListResponse)
async def list_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReportListResponse:
    """List the authenticated user's reports, newest first."""
    total = (
        await db.execute(select(func.count(Report.id)).where(Report.user_id == user_id))
    ).scalar() or 0

    result = await db.execute(
        select(Report)
        .where(Report.user_id == user_id)
        .order_by(Report.created_at.desc(), Report.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    reports = result.scalars().all()

    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in reports],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(report: Report = Depends(get_owned_report)) -> ReportResponse:
    """Get report details."""
    return ReportResponse.model_validate(report)


@router.get("/{report_id}/sections", response_model=ReportSectionsResponse)
async def get_report_sections(
    report: Report = Depends(get_owned_report),
    db: AsyncSession = Depends(get_db),
) -> ReportSectionsResponse:
    """Stored content of every section that was generated successfully, in plan order."""
    result = await db.execute(
        select(ReportSection)
        .where(ReportSection.report_id == report.id)
        .order_by(ReportSection.order_index)
    )
    return ReportSectionsResponse(
        report_id=report.id,
        status=report.status,
        sections=[ReportSectionResponse.model_validate(s) for s in result.scalars().all()],
    )


@router.delete(
    "/{report_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
)
async def delete_report(
    report: Report = Depends(get_owned_report),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete a report and its stored sections."""
    await db.delete(report)
    await db.flush()
    logger.info("Deleted report id=%d title=%r", report.id, report.title)
