"""Lawyer rating aggregation."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Consultation, ConsultationStatus, LawyerProfile


async def recalc_lawyer_rating(db: AsyncSession, lawyer_id: str) -> Optional[float]:
    """
    Recompute average_rating and review_count of a lawyer from the ratings
    stored on their completed consultations.
    """
    result = await db.execute(
        select(Consultation.rating).where(
            Consultation.lawyer_id == lawyer_id,
            Consultation.status == ConsultationStatus.COMPLETED.value,
        )
    )
    ratings = [row["rating"] for row in result.scalars().all() if row and row.get("rating") is not None]
    average = round(sum(ratings) / len(ratings), 2) if ratings else None

    profile_result = await db.execute(select(LawyerProfile).where(LawyerProfile.user_id == lawyer_id))
    profile = profile_result.scalar_one_or_none()
    if profile is not None:
        profile.average_rating = average
        profile.review_count = len(ratings)
        await db.flush()
    return average
