"""
SQLAlchemy ORM models for Quire database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.database import Base


# Enums
class ReportStatus(str, enum.Enum):
    """Completion state of a stored report."""

    COMPLETE = "complete"        # every planned section succeeded
    INCOMPLETE = "incomplete"    # run finished but some sections failed
    PARTIAL = "partial"          # run interrupted, only finished sections saved


class GenerationStrategy(str, enum.Enum):
    """Which strategy produced the report content."""

    STRUCTURED = "structured"
    SINGLE_PROMPT = "single_prompt"


# Models
class User(Base):
    """User account (synced from the frontend identity headers)."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    reports = relationship("Report", back_populates="user", cascade="all, delete-orphan")


class Report(Base):
    """A generated report with its assembled content."""

    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    report_type = Column(String(100), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    requirements = Column(JSON, nullable=True)  # formatting preferences
    status = Column(String(20), nullable=False, default=ReportStatus.COMPLETE.value)
    strategy = Column(String(20), nullable=False, default=GenerationStrategy.STRUCTURED.value)
    section_status = Column(JSON, nullable=True)  # per-section success / error
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    user = relationship("User", back_populates="reports")
    sections = relationship(
        "ReportSection",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="ReportSection.order_index",
    )


class ReportSection(Base):
    """Content of one successfully generated section of a report."""

    __tablename__ = "report_sections"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    section_key = Column(String(100), nullable=False)
    display_name = Column(String(255), nullable=False)
    order_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)

    # Relationships
    report = relationship("Report", back_populates="sections")
