"""
Durable storage of generated reports.

Public API
----------
PersistenceCoordinator.save(request, document)
    -> Report                 status "complete" / "incomplete"
PersistenceCoordinator.save_under_interruption(request, plan, results)
    -> Optional[Report]       status "partial"; None when nothing succeeded

Each call opens its own session and writes the report row plus one row per
successful section in a single transaction, so a report is never visible
half-written.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.database_models import (
    GenerationStrategy,
    Report,
    ReportSection,
    ReportStatus,
    User,
)
from app.models.schemas import GenerationRequest
from app.services.orchestrator import AssembledDocument
from app.services.section_generator import SectionResult
from app.services.section_plans import SectionPlan

logger = logging.getLogger(__name__)


async def ensure_user(
    db: AsyncSession,
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> User:
    """Return the user row for *user_id*, creating it if needed."""
    user = await db.get(User, user_id)
    if user is None:
        user = User(id=user_id, email=email or f"{user_id}@quire.local", name=name)
        db.add(user)
        await db.flush()
        logger.info("Created new user: id=%s email=%s", user_id, user.email)
    return user


class PersistenceCoordinator:
    """Atomic create of a report and its per-section content."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def save(self, request: GenerationRequest, document: AssembledDocument) -> Report:
        status = ReportStatus.COMPLETE if document.is_complete else ReportStatus.INCOMPLETE
        return await self._create(
            request,
            content=document.content,
            status=status,
            strategy=document.strategy,
            sections=[result for result in document.sections if result.succeeded],
            section_status=document.per_section_status,
        )

    async def save_under_interruption(
        self,
        request: GenerationRequest,
        plan: Optional[SectionPlan],
        results: Iterable[SectionResult],
    ) -> Optional[Report]:
        """
        Persist whatever sections finished before a stream was cut off.

        Nothing is written (and None returned) when no section succeeded.
        """
        results = list(results)
        succeeded = [result for result in results if result.succeeded]
        if plan is None or not succeeded:
            logger.info(
                "save_under_interruption: nothing to save for %r (%d result(s))",
                request.title,
                len(results),
            )
            return None

        document = AssembledDocument.assemble(plan, results)
        report = await self._create(
            request,
            content=document.content,
            status=ReportStatus.PARTIAL,
            strategy=GenerationStrategy.STRUCTURED.value,
            sections=succeeded,
            section_status=document.per_section_status,
        )
        logger.warning(
            "save_under_interruption: saved partial report id=%d with %d/%d section(s)",
            report.id,
            len(succeeded),
            len(plan),
        )
        return report

    async def _create(
        self,
        request: GenerationRequest,
        content: str,
        status: ReportStatus,
        strategy: str,
        sections: List[SectionResult],
        section_status: List[Dict[str, object]],
    ) -> Report:
        async with self.session_factory() as session:
            async with session.begin():
                await ensure_user(session, request.user_id, request.user_email, request.user_name)

                report = Report(
                    user_id=request.user_id,
                    title=request.title,
                    report_type=request.report_type,
                    content=content,
                    requirements=request.requirements.model_dump(),
                    status=status.value,
                    strategy=strategy,
                    section_status=section_status,
                )
                session.add(report)
                await session.flush()

                for result in sorted(sections, key=lambda r: r.order):
                    session.add(
                        ReportSection(
                            report_id=report.id,
                            section_key=result.key,
                            display_name=result.display_name,
                            order_index=result.order,
                            content=result.content,
                        )
                    )
                await session.flush()
                await session.refresh(report, attribute_names=["created_at", "updated_at"])

        logger.info(
            "Saved report id=%d title=%r status=%s strategy=%s sections=%d",
            report.id,
            report.title,
            report.status,
            report.strategy,
            len(sections),
        )
        return report
