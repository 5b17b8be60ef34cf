"""
Admin review of lawyer onboarding applications.

Statuses: pending -> under_review -> approved | rejected; a rejected
application can be reconsidered (back to pending) or deleted permanently.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import InvalidTransitionError, ValidationError
from ..models import ApplicationStatus as A, LawyerProfile, RejectionReason, User
from ..utils.date_normalization import date_range_start
from ..utils.structured_logging import log_with_context
from .listing import ilike_any

logger = logging.getLogger(__name__)

REVIEWABLE = frozenset({A.PENDING.value, A.UNDER_REVIEW.value})

full_name_expr = func.coalesce(User.first_name, "").concat(" ").concat(func.coalesce(User.last_name, ""))

REJECTED_SORTS = {
    "name": full_name_expr.asc(),
    "name-desc": full_name_expr.desc(),
    "email": User.email.asc(),
    "email-desc": User.email.desc(),
    "applied-date": LawyerProfile.applied_at.asc(),
    "applied-date-desc": LawyerProfile.applied_at.desc(),
    "rejected-date": LawyerProfile.rejected_at.asc(),
    "rejected-date-desc": LawyerProfile.rejected_at.desc(),
    "rejection-reason": LawyerProfile.rejection_reason.asc(),
}
DEFAULT_REJECTED_SORT = "rejected-date-desc"


def pending_applications_query(
    search: Optional[str] = None,
    jurisdiction: Optional[str] = None,
    date_range: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Select:
    """
    Pending and under-review applications, newest first.

    Args:
        search: substring of the applicant's name or email (case-insensitive)
        jurisdiction: substring of the jurisdiction (case-insensitive)
        date_range: today, week, month, 3months or 6months (by applied date)
    """
    stmt = (
        select(LawyerProfile)
        .join(User, User.id == LawyerProfile.user_id)
        .where(LawyerProfile.application_status.in_(REVIEWABLE))
    )
    if search:
        stmt = stmt.where(ilike_any(search, full_name_expr, User.email))
    if jurisdiction:
        stmt = stmt.where(ilike_any(jurisdiction, LawyerProfile.jurisdiction))
    start = date_range_start(date_range, now)
    if start is not None:
        stmt = stmt.where(LawyerProfile.applied_at >= start)
    return stmt.order_by(LawyerProfile.applied_at.desc(), LawyerProfile.id)


def rejected_applications_query(
    search: Optional[str] = None,
    reason: Optional[str] = None,
    sort: Optional[str] = None,
) -> Select:
    """
    Rejected applications.

    Args:
        search: substring of name, email or bar council id
        reason: rejection reason ('all' or empty for any)
        sort: one of REJECTED_SORTS keys
    """
    if sort and sort not in REJECTED_SORTS:
        raise ValidationError(f"Unknown sort '{sort}'", {"allowed": sorted(REJECTED_SORTS)})
    stmt = (
        select(LawyerProfile)
        .join(User, User.id == LawyerProfile.user_id)
        .where(LawyerProfile.application_status == A.REJECTED.value)
    )
    if search:
        stmt = stmt.where(ilike_any(search, full_name_expr, User.email, LawyerProfile.bar_council_id))
    if reason and reason != "all":
        stmt = stmt.where(LawyerProfile.rejection_reason == reason)
    return stmt.order_by(REJECTED_SORTS[sort or DEFAULT_REJECTED_SORT], LawyerProfile.id)


def _ensure_status(profile: LawyerProfile, allowed: frozenset, action: str) -> None:
    if profile.application_status not in allowed:
        raise InvalidTransitionError(
            f"Cannot {action} an application with status '{profile.application_status}'",
            current_status=profile.application_status,
            action=action,
        )


def _log_decision(profile: LawyerProfile, admin: User, action: str, **extra) -> None:
    log_with_context(
        logger, logging.INFO,
        f"Lawyer application {profile.id}: {action}",
        context={"application_id": profile.id, "user_id": profile.user_id, "admin_id": admin.id, **extra},
    )


def _append_note(profile: LawyerProfile, admin: User, note: str, kind: str = "note") -> None:
    profile.admin_notes = list(profile.admin_notes or []) + [{
        "note": note,
        "kind": kind,
        "author_id": admin.id,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }]


def approve(profile: LawyerProfile, admin: User) -> LawyerProfile:
    _ensure_status(profile, REVIEWABLE, "approve")
    profile.application_status = A.APPROVED.value
    profile.identity_verified = True
    profile.approved_at = datetime.now(timezone.utc)
    if profile.user is not None:
        profile.user.is_active = True
    _log_decision(profile, admin, "approved")
    return profile


def reject(profile: LawyerProfile, admin: User, reason: str, notes: Optional[str] = None) -> LawyerProfile:
    _ensure_status(profile, REVIEWABLE, "reject")
    valid = {r.value for r in RejectionReason}
    if reason not in valid:
        raise ValidationError(f"Unknown rejection reason '{reason}'", {"allowed": sorted(valid)})
    if reason == RejectionReason.OTHER.value and not (notes and notes.strip()):
        raise ValidationError("Notes are required when the rejection reason is 'other'")

    profile.application_status = A.REJECTED.value
    profile.identity_verified = False
    profile.rejection_reason = reason
    profile.rejection_notes = notes
    profile.rejected_at = datetime.now(timezone.utc)
    profile.rejected_by = admin.id
    _log_decision(profile, admin, "rejected", reason=reason)
    return profile


def mark_duplicate(profile: LawyerProfile, admin: User, notes: Optional[str] = None) -> LawyerProfile:
    return reject(profile, admin, RejectionReason.DUPLICATE_APPLICATION.value, notes or "Duplicate application")


def request_info(profile: LawyerProfile, admin: User, message: str) -> LawyerProfile:
    _ensure_status(profile, frozenset({A.PENDING.value, A.UNDER_REVIEW.value}), "request information for")
    profile.application_status = A.UNDER_REVIEW.value
    _append_note(profile, admin, message, kind="info_request")
    _log_decision(profile, admin, "information requested")
    return profile


def add_note(profile: LawyerProfile, admin: User, note: str) -> LawyerProfile:
    _append_note(profile, admin, note)
    return profile


def reconsider(profile: LawyerProfile, admin: User) -> LawyerProfile:
    _ensure_status(profile, frozenset({A.REJECTED.value}), "reconsider")
    profile.application_status = A.PENDING.value
    profile.rejection_reason = None
    profile.rejection_notes = None
    profile.rejected_at = None
    profile.rejected_by = None
    _append_note(profile, admin, "Application reconsidered", kind="reconsidered")
    _log_decision(profile, admin, "reconsidered")
    return profile


async def delete_permanently(db: AsyncSession, profile: LawyerProfile, admin: User) -> None:
    """Delete a rejected application together with its user account."""
    _ensure_status(profile, frozenset({A.REJECTED.value}), "delete")
    _log_decision(profile, admin, "deleted permanently")
    # the profile is removed through the user relationship cascade
    await db.delete(profile.user)
    await db.flush()
