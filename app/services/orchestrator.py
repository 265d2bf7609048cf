"""
Structured report generation orchestrator.

Public API
----------
GenerationOrchestrator.run(request, on_progress=None)
    -> AssembledDocument
    Blocking strategy: independent sections concurrently, then dependent
    sections one by one, then assembly.

GenerationOrchestrator.stream(request, state=None)
    -> AsyncIterator[GenerationEvent]
    Same phases; dependent sections are delivered fragment by fragment,
    independent ones as whole sections once the concurrent phase is over.

Phases
------
PLANNING -> GENERATING_INDEPENDENT -> GENERATING_DEPENDENT -> ASSEMBLING -> DONE
(FAILED from any phase but DONE)

GenerationContext is only written by the orchestrator coroutine between
phases.  Concurrent independent tasks read the same empty context and hand
their results back; the merge happens after the barrier.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from types import MappingProxyType
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
)

from app.config import settings
from app.models.database_models import GenerationStrategy
from app.models.schemas import GenerationRequest
from app.services.exceptions import NoContentGeneratedError
from app.services.section_generator import SectionGenerator, SectionResult
from app.services.section_plans import SectionDescriptor, SectionPlan, SectionPlanRegistry
from app.utils.helpers import safe_divide

logger = logging.getLogger(__name__)

_EMPTY_CONTEXT: Mapping[str, str] = MappingProxyType({})

# Intermediate events never report 100%; only the final "complete" event does.
_MAX_INTERMEDIATE_PROGRESS = 99.0


# ---------------------------------------------------------------------------
# Phase enum
# ---------------------------------------------------------------------------

class GenerationPhase(str, enum.Enum):
    PLANNING = "planning"
    GENERATING_INDEPENDENT = "generating_independent"
    GENERATING_DEPENDENT = "generating_dependent"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


class EventType(str, enum.Enum):
    SECTION_STARTED = "section_started"
    FRAGMENT = "fragment"
    SECTION_COMPLETED = "section_completed"
    SECTION_FAILED = "section_failed"
    COMPLETE = "complete"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class AssembledDocument:
    """Final report text plus the per-section outcome it was built from."""

    document_type: str
    content: str
    sections: List[SectionResult]
    strategy: str = GenerationStrategy.STRUCTURED.value

    @property
    def per_section_status(self) -> List[Dict[str, object]]:
        return [result.status() for result in self.sections]

    @property
    def failed_sections(self) -> List[SectionResult]:
        return [result for result in self.sections if not result.succeeded]

    @property
    def is_complete(self) -> bool:
        return not self.failed_sections

    @classmethod
    def assemble(
        cls,
        plan: SectionPlan,
        results: Iterable[SectionResult],
        strategy: str = GenerationStrategy.STRUCTURED.value,
    ) -> "AssembledDocument":
        """
        Heading + content for every successful section, in plan order.

        Completion order of *results* is irrelevant.
        """
        by_key = {result.key: result for result in results}
        ordered = [by_key[s.key] for s in plan.sections if s.key in by_key]

        parts = [
            f"{result.display_name.upper()}\n\n{result.content}"
            for result in ordered
            if result.succeeded
        ]
        return cls(
            document_type=plan.document_type,
            content="\n\n".join(parts).strip(),
            sections=ordered,
            strategy=strategy,
        )


@dataclasses.dataclass
class GenerationEvent:
    """One progress event of a streamed run."""

    event: EventType
    progress: float
    section: Optional[str] = None
    section_key: Optional[str] = None
    fragment: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None
    document: Optional[AssembledDocument] = None


@dataclasses.dataclass
class GenerationRun:
    """
    Request-scoped state of one structured run.

    Owned by the orchestrator while the run is in flight; callers read it
    (e.g. ``results`` after an interrupted stream) once it has stopped.
    """

    request: GenerationRequest
    on_progress: Optional[Callable[["GenerationRun"], None]] = None
    phase: GenerationPhase = GenerationPhase.PLANNING
    plan: Optional[SectionPlan] = None
    results: Dict[str, SectionResult] = dataclasses.field(default_factory=dict)
    context: Dict[str, str] = dataclasses.field(default_factory=dict)
    document: Optional[AssembledDocument] = None
    error: Optional[BaseException] = None
    started_at: float = dataclasses.field(default_factory=time.monotonic)

    @property
    def total_sections(self) -> int:
        return len(self.plan) if self.plan else 0

    @property
    def sections_completed(self) -> int:
        return len(self.results)

    @property
    def sections_failed(self) -> int:
        return sum(1 for result in self.results.values() if not result.succeeded)

    def succeeded_results(self) -> List[SectionResult]:
        return [result for result in self.results.values() if result.succeeded]

    def progress(self) -> float:
        """Percentage of planned sections finished (success or failure)."""
        if self.phase == GenerationPhase.DONE:
            return 100.0
        pct = safe_divide(self.sections_completed, self.total_sections) * 100
        return round(min(pct, _MAX_INTERMEDIATE_PROGRESS), 2)

    def notify(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class GenerationOrchestrator:
    """Runs a section plan: concurrent independent phase, sequential dependent phase."""

    def __init__(
        self,
        generator: SectionGenerator,
        registry: SectionPlanRegistry,
        max_concurrent: Optional[int] = None,
    ) -> None:
        self.generator = generator
        self.registry = registry
        self.max_concurrent = max_concurrent or settings.MAX_CONCURRENT_SECTIONS

    # ------------------------------------------------------------------
    # Blocking strategy
    # ------------------------------------------------------------------

    async def run(
        self,
        request: GenerationRequest,
        on_progress: Optional[Callable[[GenerationRun], None]] = None,
        state: Optional[GenerationRun] = None,
    ) -> AssembledDocument:
        """
        Generate every planned section and assemble the report.

        Raises UnknownDocumentType for an unknown report type and
        NoContentGeneratedError when not a single section succeeded.
        Individual section failures are reported in the document's
        ``per_section_status`` instead.
        """
        run = state or GenerationRun(request=request, on_progress=on_progress)
        try:
            plan = self._plan(run)

            independent = plan.independent_sections()
            if independent:
                self._set_phase(run, GenerationPhase.GENERATING_INDEPENDENT)
                for result in await self._generate_independent(run, independent):
                    self._record(run, result)

            self._set_phase(run, GenerationPhase.GENERATING_DEPENDENT)
            for section in plan.dependent_sections():
                result = await self._safe_generate(run, section, dict(run.context))
                self._record(run, result)

            document = self._assemble(run)
        except Exception as exc:
            run.error = exc
            self._set_phase(run, GenerationPhase.FAILED)
            raise

        self._set_phase(run, GenerationPhase.DONE)
        logger.info(
            "run: %r (%s) done in %.2fs — %d/%d section(s) succeeded",
            request.title,
            request.report_type,
            time.monotonic() - run.started_at,
            len(run.succeeded_results()),
            run.total_sections,
        )
        return document

    # ------------------------------------------------------------------
    # Streaming strategy
    # ------------------------------------------------------------------

    async def stream(
        self,
        request: GenerationRequest,
        state: Optional[GenerationRun] = None,
    ) -> AsyncIterator[GenerationEvent]:
        """
        Yield progress events while generating.

        The last event is either ``complete`` (progress 100, assembled
        content) or ``error``.  Pass *state* to inspect the run afterwards,
        e.g. to persist completed sections when the consumer went away.
        """
        run = state or GenerationRun(request=request)
        try:
            plan = self._plan(run)

            independent = plan.independent_sections()
            if independent:
                self._set_phase(run, GenerationPhase.GENERATING_INDEPENDENT)
                results = await self._generate_independent(run, independent)
                for result in sorted(results, key=lambda r: r.order):
                    self._record(run, result)
                    yield self._result_event(run, result)

            self._set_phase(run, GenerationPhase.GENERATING_DEPENDENT)
            for section in plan.dependent_sections():
                yield GenerationEvent(
                    event=EventType.SECTION_STARTED,
                    progress=run.progress(),
                    section=section.display_name,
                    section_key=section.key,
                )

                parts: List[str] = []
                try:
                    async for fragment in self.generator.generate_stream(
                        run.request, plan, section, dict(run.context)
                    ):
                        parts.append(fragment)
                        yield GenerationEvent(
                            event=EventType.FRAGMENT,
                            progress=run.progress(),
                            section=section.display_name,
                            section_key=section.key,
                            fragment=fragment,
                        )
                    result = self.generator.finalize_streamed(section, "".join(parts))
                except Exception as exc:
                    logger.warning("stream: section %r failed — %s", section.key, exc)
                    result = SectionResult.failure(section, str(exc))

                self._record(run, result)
                yield self._result_event(run, result)

            document = self._assemble(run)
        except Exception as exc:
            logger.error("stream: %r failed — %s", request.title, exc)
            run.error = exc
            self._set_phase(run, GenerationPhase.FAILED)
            yield GenerationEvent(
                event=EventType.ERROR,
                progress=run.progress(),
                error=str(exc),
            )
            return

        self._set_phase(run, GenerationPhase.DONE)
        yield GenerationEvent(
            event=EventType.COMPLETE,
            progress=100.0,
            content=document.content,
            document=document,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _plan(self, run: GenerationRun) -> SectionPlan:
        self._set_phase(run, GenerationPhase.PLANNING)
        run.plan = self.registry.get_plan(run.request.report_type)
        logger.info(
            "plan: %r — %d section(s), %d independent",
            run.request.report_type,
            len(run.plan),
            len(run.plan.independent_sections()),
        )
        return run.plan

    async def _generate_independent(
        self,
        run: GenerationRun,
        sections: List[SectionDescriptor],
    ) -> List[SectionResult]:
        """Generate *sections* concurrently; failures come back as results."""
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _one(section: SectionDescriptor) -> SectionResult:
            async with semaphore:
                return await self._safe_generate(run, section, _EMPTY_CONTEXT)

        return list(await asyncio.gather(*(_one(section) for section in sections)))

    async def _safe_generate(
        self,
        run: GenerationRun,
        section: SectionDescriptor,
        context: Mapping[str, str],
    ) -> SectionResult:
        try:
            return await self.generator.generate(run.request, run.plan, section, context)
        except Exception as exc:
            logger.error(
                "generate: unexpected error in section %r: %s", section.key, exc, exc_info=True
            )
            return SectionResult.failure(section, f"unexpected error: {str(exc)[:200]}")

    def _assemble(self, run: GenerationRun) -> AssembledDocument:
        self._set_phase(run, GenerationPhase.ASSEMBLING)
        if not run.succeeded_results():
            raise NoContentGeneratedError(
                run.request.report_type,
                {key: result.error for key, result in run.results.items()},
            )
        run.document = AssembledDocument.assemble(run.plan, run.results.values())
        if not run.document.is_complete:
            logger.warning(
                "assemble: %r is incomplete — failed section(s): %s",
                run.request.title,
                [result.key for result in run.document.failed_sections],
            )
        return run.document

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _record(run: GenerationRun, result: SectionResult) -> None:
        run.results[result.key] = result
        if result.succeeded:
            run.context[result.key] = result.content
        run.notify()

    @staticmethod
    def _set_phase(run: GenerationRun, phase: GenerationPhase) -> None:
        run.phase = phase
        run.notify()

    @staticmethod
    def _result_event(run: GenerationRun, result: SectionResult) -> GenerationEvent:
        if result.succeeded:
            return GenerationEvent(
                event=EventType.SECTION_COMPLETED,
                progress=run.progress(),
                section=result.display_name,
                section_key=result.key,
                content=result.content,
            )
        return GenerationEvent(
            event=EventType.SECTION_FAILED,
            progress=run.progress(),
            section=result.display_name,
            section_key=result.key,
            error=result.error,
        )
