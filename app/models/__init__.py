"""Database and schema models for Quire."""
from app.models.database_models import (
    User,
    Report,
    ReportSection,
    ReportStatus,
    GenerationStrategy,
)
from app.models.schemas import (
    GenerationRequest,
    ReportGenerateRequest,
    ReportRequirements,
    ReportResponse,
    SectionStatus,
    StreamEvent,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "User",
    "Report",
    "ReportSection",
    "ReportStatus",
    "GenerationStrategy",
    # Pydantic schemas
    "GenerationRequest",
    "ReportGenerateRequest",
    "ReportRequirements",
    "ReportResponse",
    "SectionStatus",
    "StreamEvent",
    "HealthCheckResponse",
]
