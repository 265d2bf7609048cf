"""
Strategy selection: structured multi-call generation first, one monolithic
prompt if that fails outright.

Public API
----------
FallbackStrategySelector.select(request)         -> StrategyOutcome
FallbackStrategySelector.produce(request)        -> AssembledDocument
FallbackStrategySelector.produce_stream(request) -> AsyncIterator[GenerationEvent]

"Fails outright" means the structured run raised (every section failed, or
the run crashed).  A report with some failed sections is a success and is
returned as-is.  Unknown report types are not retried.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import AsyncIterator, Callable, Optional

from app.config import settings
from app.models.database_models import GenerationStrategy
from app.models.schemas import GenerationRequest
from app.services.exceptions import (
    GenerationUnavailableError,
    InsufficientContentError,
    UnknownDocumentType,
)
from app.services.llm_client import TextBackend
from app.services.orchestrator import (
    AssembledDocument,
    EventType,
    GenerationEvent,
    GenerationOrchestrator,
    GenerationRun,
)
from app.services.section_generator import (
    FORMATTING_RULES,
    format_instructions,
    report_type_label,
)
from app.utils.helpers import strip_markdown

logger = logging.getLogger(__name__)


_SINGLE_PROMPT = """\
Generate a comprehensive {report_type} report with the title "{title}".

IMPORTANT: This report is specifically about the project "{title}". Make ALL \
content relevant to the actual project, not generic filler.

REPORT STRUCTURE:
{structure}

FORMATTING SPECIFICATIONS:
- Font Family: {font_family}
- Font Size: {font_size}pt for paragraphs
- Section Heading Font Size: {header_size}pt (Bold)
- Line Height: {line_height}
- All paragraphs must be justified

CONTENT REQUIREMENTS:
- Write specifically about the project: {title}
- Include relevant technical details for the specific project
- Use proper academic language and tone
- Write each section heading in UPPERCASE on its own line

{formatting_rules}
{instructions}
Generate a complete, well-structured {report_type} report about "{title}" in plain text format.\
"""


@dataclasses.dataclass
class StrategyOutcome:
    """Tagged result of one strategy attempt (document xor error)."""

    strategy: str
    document: Optional[AssembledDocument] = None
    error: Optional[BaseException] = None
    # Set on a successful fallback: why the structured strategy was abandoned
    structured_error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.document is not None and self.error is None


class FallbackStrategySelector:
    """Structured strategy with a single-prompt safety net."""

    SINGLE_PROMPT = _SINGLE_PROMPT

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        backend: TextBackend,
        min_chars: Optional[int] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.backend = backend
        self.min_chars = min_chars if min_chars is not None else settings.MIN_SECTION_CHARS

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def run_structured(
        self,
        request: GenerationRequest,
        on_progress: Optional[Callable[[GenerationRun], None]] = None,
    ) -> StrategyOutcome:
        try:
            document = await self.orchestrator.run(request, on_progress=on_progress)
        except Exception as exc:
            return StrategyOutcome(strategy=GenerationStrategy.STRUCTURED.value, error=exc)
        return StrategyOutcome(strategy=GenerationStrategy.STRUCTURED.value, document=document)

    async def run_single_prompt(self, request: GenerationRequest) -> StrategyOutcome:
        """One backend call for the whole report, normalised like a section."""
        strategy = GenerationStrategy.SINGLE_PROMPT.value
        try:
            plan = self.orchestrator.registry.get_plan(request.report_type)
            prompt = self.build_prompt(request, plan.structure_outline())
            content = strip_markdown(await self.backend.generate(prompt))
            if len(content) < self.min_chars:
                raise InsufficientContentError(
                    f"Single-prompt report is too short ({len(content)} chars)"
                )
        except Exception as exc:
            logger.error("single_prompt: %r failed — %s", request.title, exc)
            return StrategyOutcome(strategy=strategy, error=exc)

        logger.info("single_prompt: %r done (%d chars)", request.title, len(content))
        document = AssembledDocument(
            document_type=request.report_type,
            content=content,
            sections=[],
            strategy=strategy,
        )
        return StrategyOutcome(strategy=strategy, document=document)

    def build_prompt(self, request: GenerationRequest, structure: str) -> str:
        requirements = request.requirements
        return self.SINGLE_PROMPT.format(
            report_type=report_type_label(request.report_type),
            title=request.title,
            structure=structure,
            font_family=requirements.font_family,
            font_size=f"{requirements.font_size:g}",
            header_size=f"{requirements.header_size:g}",
            line_height=f"{requirements.line_height:g}",
            formatting_rules=FORMATTING_RULES,
            instructions=format_instructions(request),
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select(
        self,
        request: GenerationRequest,
        on_progress: Optional[Callable[[GenerationRun], None]] = None,
    ) -> StrategyOutcome:
        """
        Return the first strategy outcome that produced a document, or an
        outcome carrying GenerationUnavailableError.

        Raises UnknownDocumentType straight away (no strategy can help).
        """
        structured = await self.run_structured(request, on_progress)
        if structured.ok:
            return structured
        if isinstance(structured.error, UnknownDocumentType):
            raise structured.error

        logger.error(
            "select: structured generation failed for %r, falling back to single prompt: %s",
            request.title,
            structured.error,
        )
        return await self._fallback(request, structured.error)

    async def produce(
        self,
        request: GenerationRequest,
        on_progress: Optional[Callable[[GenerationRun], None]] = None,
    ) -> AssembledDocument:
        outcome = await self.select(request, on_progress)
        if outcome.error is not None:
            raise outcome.error
        return outcome.document

    async def produce_stream(
        self,
        request: GenerationRequest,
        state: Optional[GenerationRun] = None,
    ) -> AsyncIterator[GenerationEvent]:
        """
        Structured stream; a fatal ``error`` event is replaced by the
        single-prompt result (or a GenerationUnavailableError event).
        """
        run = state or GenerationRun(request=request)
        async for event in self.orchestrator.stream(request, run):
            if event.event is not EventType.ERROR or isinstance(run.error, UnknownDocumentType):
                yield event
                continue

            logger.error(
                "produce_stream: structured stream failed for %r, falling back: %s",
                request.title,
                run.error,
            )
            outcome = await self._fallback(request, run.error)
            if outcome.ok:
                yield GenerationEvent(
                    event=EventType.COMPLETE,
                    progress=100.0,
                    content=outcome.document.content,
                    document=outcome.document,
                )
            else:
                yield GenerationEvent(
                    event=EventType.ERROR,
                    progress=event.progress,
                    error=str(outcome.error),
                )

    async def _fallback(
        self,
        request: GenerationRequest,
        structured_error: BaseException,
    ) -> StrategyOutcome:
        fallback = await self.run_single_prompt(request)
        if fallback.ok:
            fallback.structured_error = structured_error
            return fallback
        return StrategyOutcome(
            strategy=GenerationStrategy.SINGLE_PROMPT.value,
            error=GenerationUnavailableError(structured_error, fallback.error),
        )
