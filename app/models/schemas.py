"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


# Enums (matching database enums)
class ReportStatusSchema(str, Enum):
    """Report completion states for API responses."""

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    PARTIAL = "partial"


class GenerationStrategySchema(str, Enum):
    """Generation strategies for API responses."""

    STRUCTURED = "structured"
    SINGLE_PROMPT = "single_prompt"


# Requirement Schemas
class ReportRequirements(BaseModel):
    """Formatting preferences stored alongside a report (sizes in pt, margins in mm)."""

    line_height: float = Field(1.5, gt=0)
    font_size: float = Field(12, gt=0)
    header_size: float = Field(16, gt=0)
    paragraph_size: float = Field(12, gt=0)
    font_family: str = Field("Times New Roman", min_length=1, max_length=100)
    margin_top: float = Field(25.4, ge=0)  # 1 inch
    margin_bottom: float = Field(25.4, ge=0)
    margin_left: float = Field(31.75, ge=0)  # 1.25 inch
    margin_right: float = Field(25.4, ge=0)


# Generation Schemas
class ReportGenerateRequest(BaseModel):
    """Body of POST /api/reports, /api/reports/stream and /api/reports/jobs."""

    title: str = Field(..., min_length=1, max_length=500)
    report_type: str = Field("main_report", min_length=1, max_length=100)
    additional_instructions: Optional[str] = Field(None, max_length=4000)
    requirements: Optional[ReportRequirements] = None


class GenerationRequest(BaseModel):
    """One report-generation invocation, as seen by the pipeline."""

    title: str = Field(..., min_length=1, max_length=500)
    report_type: str = Field(..., min_length=1)
    additional_instructions: Optional[str] = None
    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    requirements: ReportRequirements = Field(default_factory=ReportRequirements)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_body(
        cls,
        body: ReportGenerateRequest,
        user_id: str,
        user_email: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> "GenerationRequest":
        return cls(
            title=body.title,
            report_type=body.report_type,
            additional_instructions=body.additional_instructions or None,
            user_id=user_id,
            user_email=user_email,
            user_name=user_name,
            requirements=body.requirements or ReportRequirements(),
        )


class SectionStatus(BaseModel):
    """Outcome of one planned section."""

    key: str
    display_name: str
    order: int
    succeeded: bool
    error: Optional[str] = None


# Report Schemas
class ReportResponse(BaseModel):
    """Schema for report details."""

    id: int
    title: str
    report_type: str
    content: str
    requirements: Optional[Dict[str, Any]] = None
    status: ReportStatusSchema
    strategy: GenerationStrategySchema
    section_status: Optional[List[SectionStatus]] = None
    user_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReportGenerateResponse(BaseModel):
    """Response for POST /api/reports."""

    report: ReportResponse
    per_section_status: List[SectionStatus]
    strategy: GenerationStrategySchema
    message: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ReportListResponse(BaseModel):
    """Response for GET /api/reports."""

    reports: List[ReportResponse]
    pagination: Pagination


class ReportSectionResponse(BaseModel):
    """Stored content of one section."""

    section_key: str
    display_name: str
    order_index: int
    content: str

    model_config = ConfigDict(from_attributes=True)


class ReportSectionsResponse(BaseModel):
    """Response for GET /api/reports/{id}/sections."""

    report_id: int
    status: ReportStatusSchema
    sections: List[ReportSectionResponse]


# Plan Schemas
class SectionPlanItem(BaseModel):
    key: str
    display_name: str
    order: int
    independent: bool


class ReportTypeResponse(BaseModel):
    """One configured report type and its section plan."""

    report_type: str
    sections: List[SectionPlanItem]


# Streaming Schemas
class StreamEventType(str, Enum):
    SECTION_STARTED = "section_started"
    FRAGMENT = "fragment"
    SECTION_COMPLETED = "section_completed"
    SECTION_FAILED = "section_failed"
    COMPLETE = "complete"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One server-sent event of POST /api/reports/stream."""

    event: StreamEventType
    section: Optional[str] = None
    section_key: Optional[str] = None
    fragment: Optional[str] = None
    content: Optional[str] = None
    progress: float = 0.0
    report_id: Optional[int] = None
    strategy: Optional[GenerationStrategySchema] = None
    per_section_status: Optional[List[SectionStatus]] = None
    error: Optional[str] = None


# Background Job Schemas
class GenerationJobResponse(BaseModel):
    """Status of a background generation job."""

    job_id: str
    phase: str
    title: str
    report_type: str
    sections_completed: int = 0
    sections_failed: int = 0
    total_sections: int = 0
    progress: float = 0.0
    report_id: Optional[int] = None
    errors: List[str] = []
    elapsed_seconds: float = 0.0


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    database: str
    ollama: str
    report_types: List[str] = []
    active_jobs: int = 0
    timestamp: datetime
    version: str = "0.1.0"
