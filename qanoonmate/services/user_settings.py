"""
Per-user settings sections.

Sections are stored as JSON columns of user_settings and created lazily with
role defaults on first access. Updates are partial: nested dicts are merged,
lists and scalars are replaced.
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFoundError
from ..models import User, UserRole, UserSettings

logger = logging.getLogger(__name__)

WEEK_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MAX_ACTIVITY_LOGS = 50

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "preferences": {
        "notifications": {"email": True, "sms": False, "push": True, "newsletter": False},
        "language": "en",
        "timezone": "Asia/Karachi",
        "date_format": "DD/MM/YYYY",
        "theme": "system",
    },
    "security": {
        "two_factor_enabled": False,
        "login_alerts": True,
        "devices": [],
        "activity_logs": [],
    },
    "billing": {
        "payout_method": None,
        "account_title": None,
        "account_number": None,
        "bank_name": None,
    },
    "consultation": {
        "modes": ["video", "phone", "in-person", "chat"],
        "durations": [30, 60, 90],
        "fees": {},
        "buffer_minutes": 15,
        "cancel_cutoff_hours": 24,
        "auto_approve": False,
        "advance_booking_days": 30,
    },
    "availability": {
        "weekly": {day: [] for day in WEEK_DAYS},
        "unavailable_dates": [],
    },
    "identity_verification": {
        "status": "not_submitted",
        "documents": {},
        "rejection_reason": None,
    },
}

COMMON_SECTIONS = ("preferences", "security", "billing")
LAWYER_SECTIONS = COMMON_SECTIONS + ("consultation", "availability", "identity_verification")


def sections_for(role: str) -> tuple:
    return LAWYER_SECTIONS if role == UserRole.LAWYER.value else COMMON_SECTIONS


def deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


async def get_or_create_settings(db: AsyncSession, user: User) -> UserSettings:
    result = await db.execute(select(UserSettings).where(UserSettings.user_id == user.id))
    row = result.scalar_one_or_none()
    if row is None:
        row = UserSettings(user_id=user.id)
        db.add(row)
    for section in sections_for(user.role):
        if getattr(row, section) is None:
            setattr(row, section, copy.deepcopy(DEFAULTS[section]))
        else:
            # sections saved before a default key was introduced
            merged = deep_merge(DEFAULTS[section], getattr(row, section))
            if merged != getattr(row, section):
                setattr(row, section, merged)
    await db.flush()
    return row


def _ensure_section(user: User, section: str) -> None:
    if section not in sections_for(user.role):
        raise NotFoundError(f"Settings section '{section}' not found", {"section": section, "role": user.role})


async def get_section(db: AsyncSession, user: User, section: str) -> Dict[str, Any]:
    _ensure_section(user, section)
    row = await get_or_create_settings(db, user)
    return getattr(row, section)


async def get_all_sections(db: AsyncSession, user: User) -> Dict[str, Any]:
    row = await get_or_create_settings(db, user)
    return {section: getattr(row, section) for section in sections_for(user.role)}


async def update_section(db: AsyncSession, user: User, section: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a partial update into one section and return the new section value."""
    _ensure_section(user, section)
    row = await get_or_create_settings(db, user)
    updated = deep_merge(getattr(row, section), patch)
    setattr(row, section, updated)
    await db.flush()
    logger.info(f"Updated settings section '{section}' for user {user.id}: keys={sorted(patch.keys())}")
    return updated


async def reset_section(db: AsyncSession, user: User, section: str) -> Dict[str, Any]:
    _ensure_section(user, section)
    row = await get_or_create_settings(db, user)
    setattr(row, section, copy.deepcopy(DEFAULTS[section]))
    await db.flush()
    return getattr(row, section)


async def record_activity(
    db: AsyncSession,
    user: User,
    action: str,
    details: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Append an entry to security.activity_logs (newest first, capped)."""
    row = await get_or_create_settings(db, user)
    security = copy.deepcopy(row.security)
    entry = {
        "action": action,
        "details": details or {},
        "at": datetime.now(timezone.utc).isoformat(),
    }
    security["activity_logs"] = ([entry] + list(security.get("activity_logs") or []))[:MAX_ACTIVITY_LOGS]
    row.security = security
    await db.flush()
    return security["activity_logs"]


async def set_two_factor(db: AsyncSession, user: User, enabled: bool) -> Dict[str, Any]:
    await update_section(db, user, "security", {"two_factor_enabled": enabled})
    await record_activity(db, user, "two_factor_enabled" if enabled else "two_factor_disabled")
    return await get_section(db, user, "security")


async def lawyer_consultation_settings(db: AsyncSession, lawyer: User) -> Dict[str, Any]:
    """Consultation settings of a lawyer, used by booking and cancellation rules."""
    row = await get_or_create_settings(db, lawyer)
    return row.consultation or copy.deepcopy(DEFAULTS["consultation"])
