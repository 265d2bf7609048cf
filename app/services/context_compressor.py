"""
Context compression for dependent sections.

Every dependent section is written with the sections before it as context.
Passing that context verbatim makes the Nth prompt grow with the sum of all
earlier sections, so each long section is first reduced to a 2-3 sentence
digest.  Compression is best-effort: when the summarisation call fails the
section is truncated instead, and generation carries on.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional

from app.config import settings
from app.services.exceptions import BackendError
from app.services.llm_client import TextBackend
from app.utils.helpers import truncate_text

logger = logging.getLogger(__name__)


_SUMMARY_PROMPT = """\
Summarize the following {section_name} section content in 2-3 sentences, \
focusing on key points and main ideas. Keep it concise but informative.

{content}

Summary:\
"""

_CONTEXT_HEADER = "PREVIOUSLY GENERATED SECTIONS (for context and continuity):"
_CONTEXT_FOOTER = (
    "IMPORTANT: Build upon the above context but focus on the current section requirements."
)


class ContextCompressor:
    """Reduce prior section text to a short digest before prompt injection."""

    SUMMARY_PROMPT = _SUMMARY_PROMPT

    def __init__(
        self,
        backend: TextBackend,
        threshold: Optional[int] = None,
        truncate_length: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self.threshold = threshold if threshold is not None else settings.COMPRESSION_THRESHOLD
        self.truncate_length = (
            truncate_length if truncate_length is not None else settings.COMPRESSION_TRUNCATE_LENGTH
        )

    async def compress(self, section_key: str, content: str) -> str:
        """
        Return *content* unchanged when short, otherwise a backend summary.

        Falls back to ``content[:truncate_length] + "..."`` (cut further if that
        would not be shorter) when the backend fails or its summary is not actually shorter than the input.
        """
        if len(content) < self.threshold:
            return content

        prompt = self.SUMMARY_PROMPT.format(
            section_name=section_key.replace("_", " "),
            content=content,
        )
        try:
            summary = (await self.backend.generate(prompt)).strip()
        except BackendError as exc:
            logger.warning(
                "compress: summarisation failed for %r, truncating instead — %s",
                section_key,
                exc,
            )
            return self._truncate(content)

        if not summary or len(summary) >= len(content):
            logger.warning(
                "compress: unusable summary for %r (%d chars), truncating instead",
                section_key,
                len(summary),
            )
            return self._truncate(content)

        logger.debug(
            "compress: %r reduced from %d to %d chars", section_key, len(content), len(summary)
        )
        return summary

    def _truncate(self, content: str) -> str:
        # Room for the "..." suffix so the result is always shorter than content
        return truncate_text(content, max(min(self.truncate_length, len(content) - 4), 0))

    async def build_context_block(self, context: Mapping[str, str]) -> str:
        """Render every context entry (compressed) as one prompt block."""
        if not context:
            return ""

        keys = list(context)
        digests = await asyncio.gather(
            *(self.compress(key, context[key]) for key in keys)
        )

        parts = [_CONTEXT_HEADER]
        for key, digest in zip(keys, digests):
            parts.append(f"\n{key.upper()}:\n{digest}")
        parts.append(f"\n{_CONTEXT_FOOTER}")
        return "\n".join(parts)
