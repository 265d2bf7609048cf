"""
Authentication dependencies for FastAPI routes.

Extracts user identity from the X-User-Id header (set by the frontend).
Users are created lazily the first time one of their reports is saved.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.database_models import Report

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserIdentity:
    """Caller identity as sent by the frontend."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None


async def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if missing."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id


async def get_user_identity(
    user_id: str = Depends(get_current_user_id),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
) -> UserIdentity:
    """User ID plus the optional e-mail/name headers used when the user row is created."""
    return UserIdentity(id=user_id, email=x_user_email or None, name=x_user_name or None)


async def get_owned_report(
    report_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Report:
    """
    Verify that the given report belongs to the current user.
    Returns the Report ORM object or raises 404.
    """
    result = await db.execute(
        select(Report).where(
            Report.id == report_id,
            Report.user_id == user_id,
        )
    )
    report = result.scalar_one_or_none()

    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Report {report_id} not found.",
        )

    return report
