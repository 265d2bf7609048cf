"""
Single-section writer.

Public API
----------
SectionGenerator.generate(request, plan, section, context)
    -> SectionResult
    Prompt -> backend -> normalise -> validate -> refinement pass.

SectionGenerator.generate_stream(request, plan, section, context)
    -> AsyncIterator[str]
    Prompt -> streamed backend call; yields plain-text fragments whose
    concatenation is the section content.

SectionGenerator.finalize_streamed(section, text)
    -> SectionResult
    Validates the text assembled from a stream.

Section-level problems never raise from ``generate``: a backend failure or a
too-short answer becomes ``SectionResult.failure``.  Refinement is optional;
if it fails the unrefined text is kept.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import AsyncIterator, Dict, List, Mapping, Optional

from app.config import settings
from app.models.schemas import GenerationRequest
from app.services.context_compressor import ContextCompressor
from app.services.exceptions import BackendError, InsufficientContentError
from app.services.llm_client import TextBackend
from app.services.section_plans import SectionDescriptor, SectionPlan
from app.utils.helpers import strip_markdown, strip_markdown_line

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class SectionResult:
    """Outcome of one section: either content or the reason it failed."""

    key: str
    display_name: str
    order: int
    content: str
    succeeded: bool
    error: Optional[str] = None

    @classmethod
    def success(cls, section: SectionDescriptor, content: str) -> "SectionResult":
        return cls(
            key=section.key,
            display_name=section.display_name,
            order=section.order,
            content=content,
            succeeded=True,
        )

    @classmethod
    def failure(cls, section: SectionDescriptor, error: str) -> "SectionResult":
        return cls(
            key=section.key,
            display_name=section.display_name,
            order=section.order,
            content="",
            succeeded=False,
            error=error,
        )

    def status(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "display_name": self.display_name,
            "order": self.order,
            "succeeded": self.succeeded,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

FORMATTING_RULES = """\
FORMATTING REQUIREMENTS:
- Write in PLAIN TEXT format only
- Do NOT use markdown formatting (no #, **, *, etc.)
- Use proper academic paragraph structure
- Use numbered lists where appropriate (1. 2. 3.)
- Use bullet points where appropriate (-)
- Keep headings simple and clear
- Ensure proper spacing between paragraphs\
"""

_SECTION_PROMPT = """\
You are writing one section of a {report_type} report about the project: "{title}".

PROJECT FOCUS:
- This report is specifically about: {title}
- Make ALL content relevant to the actual project, not generic filler
- Focus on the project's features, implementation, and outcomes

{context_block}{gap_note}
SECTION REQUIREMENTS:
- Write the "{section_name}" section for the project: {title}
- This is section {order} of {total} in the report
- Use proper academic language and tone
- Ensure content flows logically from the earlier sections

{formatting_rules}
{instructions}
Generate a well-structured {section_name} section about "{title}" in plain text format. \
Do not repeat the section heading.\
"""

_REFINEMENT_PROMPT = """\
You are a professional editor refining academic content. Polish the following \
{section_name} section of a {report_type} report about "{title}".

ORIGINAL CONTENT:
{content}

REFINEMENT REQUIREMENTS:
- Improve clarity and flow
- Ensure proper academic tone
- Fix any grammatical errors
- Maintain the original length and scope

{formatting_rules}

Return only the refined content in plain text format without any explanations.\
"""


def report_type_label(report_type: str) -> str:
    return report_type.replace("_", " ")


def format_instructions(request: GenerationRequest) -> str:
    if not request.additional_instructions:
        return ""
    return f"\nADDITIONAL INSTRUCTIONS: {request.additional_instructions}\n"


# ---------------------------------------------------------------------------
# Streaming normaliser
# ---------------------------------------------------------------------------

class _LineNormalizer:
    """
    Line-buffered markdown stripper for streamed output.

    Emits text only for completed lines, with blank-line runs collapsed and
    no leading or trailing whitespace, so the concatenated output equals the
    normalised full text.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._emitted_any = False
        self._pending_blank = False

    def feed(self, fragment: str) -> str:
        self._buffer += fragment
        out: List[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            out.append(self._emit(line))
        return "".join(out)

    def flush(self) -> str:
        line, self._buffer = self._buffer, ""
        return self._emit(line)

    def _emit(self, raw_line: str) -> str:
        line = strip_markdown_line(raw_line)
        if not line:
            if self._emitted_any:
                self._pending_blank = True
            return ""

        separator = ""
        if self._emitted_any:
            separator = "\n\n" if self._pending_blank else "\n"
        self._emitted_any = True
        self._pending_blank = False
        return separator + line


# ---------------------------------------------------------------------------
# Main service class
# ---------------------------------------------------------------------------

class SectionGenerator:
    """Writes one section end-to-end against an injected text backend."""

    SECTION_PROMPT = _SECTION_PROMPT
    REFINEMENT_PROMPT = _REFINEMENT_PROMPT

    def __init__(
        self,
        backend: TextBackend,
        compressor: Optional[ContextCompressor] = None,
        min_chars: Optional[int] = None,
        refinement_enabled: Optional[bool] = None,
    ) -> None:
        self.backend = backend
        self.compressor = compressor or ContextCompressor(backend)
        self.min_chars = min_chars if min_chars is not None else settings.MIN_SECTION_CHARS
        self.refinement_enabled = (
            refinement_enabled if refinement_enabled is not None else settings.REFINEMENT_ENABLED
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        plan: SectionPlan,
        section: SectionDescriptor,
        context: Mapping[str, str],
    ) -> SectionResult:
        try:
            prompt = await self.build_prompt(request, plan, section, context)
            raw = await self.backend.generate(prompt)
            content = self._validate(section, strip_markdown(raw))
        except (BackendError, InsufficientContentError) as exc:
            logger.warning("generate: section %r failed — %s", section.key, exc)
            return SectionResult.failure(section, str(exc))

        content = await self.refine(request, section, content)
        logger.info("generate: section %r done (%d chars)", section.key, len(content))
        return SectionResult.success(section, content)

    async def generate_stream(
        self,
        request: GenerationRequest,
        plan: SectionPlan,
        section: SectionDescriptor,
        context: Mapping[str, str],
    ) -> AsyncIterator[str]:
        """
        Yield plain-text fragments for *section*.

        Raises BackendError if the backend stream fails; fragments already
        yielded stay delivered.
        """
        prompt = await self.build_prompt(request, plan, section, context)
        normalizer = _LineNormalizer()

        async for fragment in self.backend.generate_stream(prompt):
            text = normalizer.feed(fragment)
            if text:
                yield text

        tail = normalizer.flush()
        if tail:
            yield tail

    def finalize_streamed(self, section: SectionDescriptor, text: str) -> SectionResult:
        try:
            content = self._validate(section, text)
        except InsufficientContentError as exc:
            logger.warning("finalize_streamed: section %r failed — %s", section.key, exc)
            return SectionResult.failure(section, str(exc))
        return SectionResult.success(section, content)

    async def refine(
        self,
        request: GenerationRequest,
        section: SectionDescriptor,
        content: str,
    ) -> str:
        """Editorial pass; returns *content* untouched if anything goes wrong."""
        if not self.refinement_enabled:
            return content

        prompt = self.REFINEMENT_PROMPT.format(
            section_name=section.display_name,
            report_type=report_type_label(request.report_type),
            title=request.title,
            content=content,
            formatting_rules=FORMATTING_RULES,
        )
        try:
            refined = strip_markdown(await self.backend.generate(prompt))
        except BackendError as exc:
            logger.warning(
                "refine: refinement failed for %r, using initial content — %s", section.key, exc
            )
            return content

        if len(refined) < self.min_chars:
            logger.warning(
                "refine: refined %r too short (%d chars), using initial content",
                section.key,
                len(refined),
            )
            return content
        return refined

    async def build_prompt(
        self,
        request: GenerationRequest,
        plan: SectionPlan,
        section: SectionDescriptor,
        context: Mapping[str, str],
    ) -> str:
        context_block = await self.compressor.build_context_block(context)
        if context_block:
            context_block = f"REPORT CONTEXT:\n{context_block}\n"

        return self.SECTION_PROMPT.format(
            report_type=report_type_label(request.report_type),
            title=request.title,
            context_block=context_block,
            gap_note=self._gap_note(plan, section, context),
            section_name=section.display_name,
            order=section.order,
            total=len(plan),
            formatting_rules=FORMATTING_RULES,
            instructions=format_instructions(request),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, section: SectionDescriptor, content: str) -> str:
        content = content.strip()
        if len(content) < self.min_chars:
            raise InsufficientContentError(
                f"Generated content for {section.display_name} is too short or empty "
                f"({len(content)} chars, minimum {self.min_chars})"
            )
        return content

    @staticmethod
    def _gap_note(
        plan: SectionPlan,
        section: SectionDescriptor,
        context: Mapping[str, str],
    ) -> str:
        """Name earlier sections a dependent section would normally see but can't."""
        if section.independent:
            return ""
        missing = [
            s.display_name
            for s in plan.sections
            if s.key not in context
            and s.key != section.key
            and (s.independent or s.order < section.order)
        ]
        if not missing:
            return ""
        return (
            "NOTE: The following earlier sections are not available: "
            f"{', '.join(missing)}. Do not refer to their content.\n"
        )
