"""
Consultation change logging.
"""
import json
from typing import Any, Optional, List
from datetime import datetime, timezone
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ConsultationChangeLog


async def log_consultation_change(
    db: AsyncSession,
    consultation_id: str,
    field_name: str,
    old_value: Any,
    new_value: Any,
    changed_by: Optional[str] = None,
    source: str = "API",
) -> None:
    """
    Record a change of a consultation field.

    Args:
        db: DB session
        consultation_id: consultation id
        field_name: changed field
        old_value: previous value
        new_value: new value
        changed_by: id of the acting user
        source: origin of the change (API, SCHEDULER)
    """
    old_value_str = json.dumps(old_value, ensure_ascii=False, default=str) if old_value is not None else None
    new_value_str = json.dumps(new_value, ensure_ascii=False, default=str) if new_value is not None else None

    db.add(ConsultationChangeLog(
        consultation_id=consultation_id,
        field_name=field_name,
        old_value=old_value_str,
        new_value=new_value_str,
        changed_by=changed_by,
        source=source,
        created_at=datetime.now(timezone.utc),
    ))
    await db.flush()


async def get_consultation_changes(db: AsyncSession, consultation_id: str) -> List[ConsultationChangeLog]:
    result = await db.execute(
        select(ConsultationChangeLog)
        .where(ConsultationChangeLog.consultation_id == consultation_id)
        .order_by(ConsultationChangeLog.id.asc())
    )
    return list(result.scalars().all())
