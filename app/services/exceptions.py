"""
Error taxonomy for the report generation pipeline.

Section-level problems (BackendError, InsufficientContentError) are caught
inside the pipeline and turned into failed SectionResults.  Only the
run-level errors (NoContentGeneratedError, GenerationUnavailableError) and
UnknownDocumentType ever reach a caller.
"""
from __future__ import annotations

from typing import Optional


class ReportGenerationError(Exception):
    """Base class for every error raised by the generation pipeline."""


class UnknownDocumentType(ReportGenerationError):
    """No section plan is configured for the requested document type."""

    def __init__(self, document_type: str) -> None:
        super().__init__(f"Unknown report type: {document_type!r}")
        self.document_type = document_type


class BackendError(ReportGenerationError):
    """The generative backend failed, timed out, or returned garbage."""


class InsufficientContentError(ReportGenerationError):
    """Generated text was empty or shorter than the minimum length."""


class NoContentGeneratedError(ReportGenerationError):
    """Every section of a structured run failed."""

    def __init__(self, document_type: str, failures: Optional[dict] = None) -> None:
        super().__init__(f"No section could be generated for {document_type!r}")
        self.document_type = document_type
        self.failures = failures or {}


class GenerationUnavailableError(ReportGenerationError):
    """Both the structured and the single-prompt strategies failed."""

    def __init__(
        self,
        structured_error: BaseException,
        fallback_error: BaseException,
    ) -> None:
        super().__init__(
            "Report generation unavailable: "
            f"structured strategy failed ({structured_error}); "
            f"single-prompt fallback failed ({fallback_error})"
        )
        self.structured_error = structured_error
        self.fallback_error = fallback_error
