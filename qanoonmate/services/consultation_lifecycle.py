"""
Consultation lifecycle: allowed status transitions and their side effects.

    pending ──confirm──► confirmed ──start──► in_progress ──complete──► completed
    scheduled ─confirm─┘     │
    rescheduled ─────start───┘
    pending/scheduled/confirmed/rescheduled ──cancel──► cancelled
    scheduled/confirmed/rescheduled ──no_show──► no_show
    approved reschedule request ──► rescheduled

Each transition appends to status_history and writes a change log row.
"""
import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Dict, FrozenSet, List, Optional, Tuple

from dateutil import tz
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import ConflictError, InvalidTransitionError, PermissionDeniedError, ValidationError, NotFoundError
from ..models import (
    CancellationReason,
    Consultation,
    ConsultationStatus as S,
    RescheduleStatus,
    User,
    UserRole,
)
from ..utils.change_log import log_consultation_change
from ..utils.date_normalization import ensure_utc
from ..utils.structured_logging import log_with_context
from .user_settings import WEEK_DAYS, get_or_create_settings

logger = logging.getLogger(__name__)

CONFIRM = "confirm"
START = "start"
COMPLETE = "complete"
NO_SHOW = "no_show"
CANCEL = "cancel"
RESCHEDULE = "reschedule"
RATE = "rate"

# action -> (statuses it is allowed from, resulting status or None when unchanged)
TRANSITIONS: Dict[str, Tuple[FrozenSet[str], Optional[str]]] = {
    CONFIRM: (frozenset({S.PENDING.value, S.SCHEDULED.value}), S.CONFIRMED.value),
    START: (frozenset({S.CONFIRMED.value, S.RESCHEDULED.value}), S.IN_PROGRESS.value),
    COMPLETE: (frozenset({S.IN_PROGRESS.value}), S.COMPLETED.value),
    NO_SHOW: (frozenset({S.SCHEDULED.value, S.CONFIRMED.value, S.RESCHEDULED.value}), S.NO_SHOW.value),
    CANCEL: (frozenset({S.PENDING.value, S.SCHEDULED.value, S.CONFIRMED.value, S.RESCHEDULED.value}), S.CANCELLED.value),
    RESCHEDULE: (frozenset({S.PENDING.value, S.SCHEDULED.value, S.CONFIRMED.value, S.RESCHEDULED.value}), None),
    RATE: (frozenset({S.COMPLETED.value}), None),
}

ACTION_ORDER = (CONFIRM, START, COMPLETE, NO_SHOW, RESCHEDULE, CANCEL, RATE)
TERMINAL_STATUSES = frozenset({S.COMPLETED.value, S.CANCELLED.value, S.NO_SHOW.value})
LAWYER_ACTIONS = frozenset({CONFIRM, START, COMPLETE, NO_SHOW})

# conflict kinds reported in ConflictError details
DOUBLE_BOOKING = "double_booking"
LAWYER_UNAVAILABLE = "lawyer_unavailable"
OVERLAPPING_SLOT = "overlapping_slot"


def available_actions(status: str, has_rating: bool = False) -> List[str]:
    """Actions that may be performed on a consultation in the given status."""
    actions = [action for action in ACTION_ORDER if status in TRANSITIONS[action][0]]
    if has_rating and RATE in actions:
        actions.remove(RATE)
    return actions


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def ensure_transition(consultation: Consultation, action: str) -> Optional[str]:
    """
    Check that the action is allowed from the current status.

    Returns:
        the resulting status (None when the status does not change)
    """
    allowed_from, target = TRANSITIONS[action]
    if consultation.status not in allowed_from:
        raise InvalidTransitionError(
            f"Cannot {action.replace('_', ' ')} a consultation with status '{consultation.status}'",
            current_status=consultation.status,
            action=action,
            details={"allowed_from": sorted(allowed_from)},
        )
    return target


# ----------------------------------------------------------------------------
# Permissions
# ----------------------------------------------------------------------------

def is_participant(consultation: Consultation, user: User) -> bool:
    return user.id in (consultation.client_id, consultation.lawyer_id)


def ensure_can_view(consultation: Consultation, user: User) -> None:
    if user.role == UserRole.ADMIN.value or is_participant(consultation, user):
        return
    raise PermissionDeniedError("You do not have access to this consultation", {"consultation_id": consultation.id})


def ensure_can_act(consultation: Consultation, user: User, action: str) -> None:
    """Lawyer-only actions need the owning lawyer (or an admin); the rest any participant."""
    if user.role == UserRole.ADMIN.value:
        return
    if action in LAWYER_ACTIONS:
        if user.id != consultation.lawyer_id:
            raise PermissionDeniedError(
                f"Only the consultation's lawyer can {action.replace('_', ' ')} it",
                {"consultation_id": consultation.id, "action": action},
            )
        return
    if action == RATE:
        if user.id != consultation.client_id:
            raise PermissionDeniedError("Only the client can rate a consultation", {"consultation_id": consultation.id})
        return
    if not is_participant(consultation, user):
        raise PermissionDeniedError("You do not have access to this consultation", {"consultation_id": consultation.id})


# ----------------------------------------------------------------------------
# Slot checks
# ----------------------------------------------------------------------------

def ensure_bookable_window(start: datetime, now: Optional[datetime] = None) -> datetime:
    """The slot must be in the future and within MAX_FUTURE_CONSULTATION_DAYS."""
    now = now or datetime.now(timezone.utc)
    start = ensure_utc(start)
    if start <= now:
        raise ValidationError("The consultation date must be in the future")
    if start > now + timedelta(days=settings.MAX_FUTURE_CONSULTATION_DAYS):
        raise ValidationError(
            f"Consultations can be booked at most {settings.MAX_FUTURE_CONSULTATION_DAYS} days ahead",
            {"max_days": settings.MAX_FUTURE_CONSULTATION_DAYS},
        )
    return start


def _within_weekly_hours(weekly: dict, local_start: datetime, local_end: datetime) -> bool:
    # no weekly hours configured means any time is fine
    if not any(weekly.values()):
        return True
    if local_end.date() != local_start.date():
        return False
    begin, end = local_start.strftime("%H:%M"), local_end.strftime("%H:%M")
    slots = weekly.get(WEEK_DAYS[local_start.weekday()]) or []
    return any(slot["start"] <= begin and end <= slot["end"] for slot in slots)


async def ensure_slot_available(
    db: AsyncSession,
    lawyer: User,
    client_id: str,
    start: datetime,
    duration: int,
    exclude_id: Optional[str] = None,
) -> None:
    """
    Reject a slot the lawyer has blocked or that collides with another open
    consultation of the lawyer or the client.

    Unavailable dates and weekly hours are read in the lawyer's timezone.
    The lawyer's buffer_minutes is kept free around every consultation.

    Raises:
        ConflictError: `details.conflict` is lawyer_unavailable, double_booking or overlapping_slot
    """
    row = await get_or_create_settings(db, lawyer)
    availability = row.availability or {}
    start = ensure_utc(start)
    end = start + timedelta(minutes=duration)

    zone = tz.gettz((row.preferences or {}).get("timezone") or "UTC") or tz.UTC
    local_start, local_end = start.astimezone(zone), end.astimezone(zone)
    local_day = local_start.date().isoformat()
    if local_day in (availability.get("unavailable_dates") or []):
        raise ConflictError(
            "The lawyer is not available on this date",
            {"conflict": LAWYER_UNAVAILABLE, "date": local_day},
        )
    if not _within_weekly_hours(availability.get("weekly") or {}, local_start, local_end):
        raise ConflictError(
            "The lawyer is not available at this time",
            {"conflict": LAWYER_UNAVAILABLE, "weekly": availability.get("weekly")},
        )

    buffer = timedelta(minutes=(row.consultation or {}).get("buffer_minutes") or 0)
    stmt = select(Consultation).where(
        or_(Consultation.lawyer_id == lawyer.id, Consultation.client_id == client_id),
        Consultation.status.notin_(sorted(TERMINAL_STATUSES)),
    )
    if exclude_id:
        stmt = stmt.where(Consultation.id != exclude_id)
    result = await db.execute(stmt)
    for other in result.scalars():
        other_start = ensure_utc(other.scheduled_date)
        other_end = other_start + timedelta(minutes=other.duration or settings.DEFAULT_CONSULTATION_DURATION)
        if other_start < end + buffer and start < other_end + buffer:
            same_lawyer = other.lawyer_id == lawyer.id
            details = {
                "conflict": DOUBLE_BOOKING if same_lawyer else OVERLAPPING_SLOT,
                "buffer_minutes": int(buffer.total_seconds() // 60),
            }
            # other clients' bookings stay anonymous
            if other.client_id == client_id:
                details["consultation_id"] = other.id
            raise ConflictError(
                "The lawyer already has a consultation at this time" if same_lawyer
                else "You already have a consultation at this time",
                details,
            )


# ----------------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _set_status(
    db: AsyncSession,
    consultation: Consultation,
    new_status: str,
    actor: User,
    action: str,
    note: Optional[str] = None,
) -> None:
    old_status = consultation.status
    consultation.status = new_status
    consultation.status_history = list(consultation.status_history or []) + [{
        "from": old_status,
        "to": new_status,
        "action": action,
        "by": actor.id,
        "role": actor.role,
        "note": note,
        "at": _now_iso(),
    }]
    await log_consultation_change(db, consultation.id, "status", old_status, new_status, changed_by=actor.id)
    log_with_context(
        logger, logging.INFO,
        f"Consultation {consultation.id}: {old_status} -> {new_status}",
        context={"consultation_id": consultation.id, "action": action, "actor": actor.id},
    )


async def confirm(db: AsyncSession, consultation: Consultation, actor: User) -> Consultation:
    ensure_can_act(consultation, actor, CONFIRM)
    target = ensure_transition(consultation, CONFIRM)
    await _set_status(db, consultation, target, actor, CONFIRM)
    return consultation


async def start(
    db: AsyncSession,
    consultation: Consultation,
    actor: User,
    meeting_link: Optional[str] = None,
    phone_number: Optional[str] = None,
) -> Consultation:
    ensure_can_act(consultation, actor, START)
    target = ensure_transition(consultation, START)
    if meeting_link:
        consultation.meeting_link = meeting_link
    if phone_number:
        consultation.phone_number = phone_number
    consultation.started_at = datetime.now(timezone.utc)
    await _set_status(db, consultation, target, actor, START)
    return consultation


async def complete(
    db: AsyncSession,
    consultation: Consultation,
    actor: User,
    lawyer_notes: Optional[str] = None,
) -> Consultation:
    ensure_can_act(consultation, actor, COMPLETE)
    target = ensure_transition(consultation, COMPLETE)
    if lawyer_notes:
        consultation.lawyer_notes = lawyer_notes
    consultation.completed_at = datetime.now(timezone.utc)
    await _set_status(db, consultation, target, actor, COMPLETE)
    return consultation


async def mark_no_show(db: AsyncSession, consultation: Consultation, actor: User, note: Optional[str] = None) -> Consultation:
    ensure_can_act(consultation, actor, NO_SHOW)
    target = ensure_transition(consultation, NO_SHOW)
    await _set_status(db, consultation, target, actor, NO_SHOW, note=note)
    return consultation


async def cancel(
    db: AsyncSession,
    consultation: Consultation,
    actor: User,
    reason: Optional[str],
    note: Optional[str] = None,
    cancel_cutoff_hours: int = 0,
) -> Consultation:
    """
    Cancel a consultation.

    A reason is mandatory. Clients must also respect the lawyer's cancellation
    cutoff (hours before the scheduled time).
    """
    ensure_can_act(consultation, actor, CANCEL)
    target = ensure_transition(consultation, CANCEL)

    valid_reasons = {r.value for r in CancellationReason}
    if not reason:
        raise ValidationError("A cancellation reason is required", {"allowed": sorted(valid_reasons)})
    if reason not in valid_reasons:
        raise ValidationError(f"Unknown cancellation reason '{reason}'", {"allowed": sorted(valid_reasons)})
    if reason == CancellationReason.OTHER.value and not (note and note.strip()):
        raise ValidationError("Please describe the reason when selecting 'other'")

    if actor.role == UserRole.CLIENT.value and cancel_cutoff_hours:
        hours_left = (ensure_utc(consultation.scheduled_date) - datetime.now(timezone.utc)).total_seconds() / 3600
        if hours_left < cancel_cutoff_hours:
            raise ValidationError(
                f"Consultations can only be cancelled at least {cancel_cutoff_hours} hours in advance",
                {"hours_left": round(hours_left, 2), "cancel_cutoff_hours": cancel_cutoff_hours},
            )

    consultation.cancellation_reason = reason
    consultation.cancellation_note = note
    consultation.cancelled_by = actor.id
    consultation.cancelled_at = datetime.now(timezone.utc)
    consultation.reschedule_requests = [
        {
            **r,
            "status": RescheduleStatus.REJECTED.value,
            "response_message": "Consultation cancelled",
            "responded_at": consultation.cancelled_at.isoformat(),
            "responded_by": actor.id,
        } if r["status"] == RescheduleStatus.PENDING.value else r
        for r in consultation.reschedule_requests or []
    ]
    await _set_status(db, consultation, target, actor, CANCEL, note=note)
    return consultation


# ----------------------------------------------------------------------------
# Reschedule requests
# ----------------------------------------------------------------------------

async def _ensure_reschedule_slot(db: AsyncSession, consultation: Consultation, new_date: datetime) -> None:
    await ensure_slot_available(
        db, consultation.lawyer, consultation.client_id, new_date,
        consultation.duration or settings.DEFAULT_CONSULTATION_DURATION,
        exclude_id=consultation.id,
    )


async def request_reschedule(
    db: AsyncSession,
    consultation: Consultation,
    actor: User,
    new_date: datetime,
    new_time_slot: Optional[str],
    reason: Optional[str],
) -> dict:
    ensure_can_act(consultation, actor, RESCHEDULE)
    ensure_transition(consultation, RESCHEDULE)

    new_date = ensure_bookable_window(new_date)
    requests = list(consultation.reschedule_requests or [])
    if any(r["status"] == RescheduleStatus.PENDING.value for r in requests):
        raise ValidationError("There is already a pending reschedule request for this consultation")
    await _ensure_reschedule_slot(db, consultation, new_date)

    request = {
        "id": str(uuid.uuid4()),
        "requested_by": actor.id,
        "requested_by_role": actor.role,
        "new_date": new_date.isoformat(),
        "new_time_slot": new_time_slot,
        "reason": reason,
        "status": RescheduleStatus.PENDING.value,
        "response_message": None,
        "created_at": _now_iso(),
        "responded_at": None,
    }
    consultation.reschedule_requests = requests + [request]
    await log_consultation_change(db, consultation.id, "reschedule_request", None, request, changed_by=actor.id)
    return request


async def respond_reschedule(
    db: AsyncSession,
    consultation: Consultation,
    actor: User,
    request_id: str,
    approve: bool,
    response_message: Optional[str] = None,
) -> dict:
    """Approve or reject a pending reschedule request (by the other party or an admin)."""
    requests = [dict(r) for r in (consultation.reschedule_requests or [])]
    request = next((r for r in requests if r["id"] == request_id), None)
    if request is None:
        raise NotFoundError("Reschedule request not found", {"request_id": request_id})
    if request["status"] != RescheduleStatus.PENDING.value:
        raise InvalidTransitionError(
            f"Reschedule request is already {request['status']}",
            current_status=request["status"],
            action="approve" if approve else "reject",
        )
    if actor.role != UserRole.ADMIN.value:
        if not is_participant(consultation, actor):
            raise PermissionDeniedError("You do not have access to this consultation")
        if actor.id == request["requested_by"]:
            raise PermissionDeniedError("A reschedule request must be answered by the other party")

    request["status"] = RescheduleStatus.APPROVED.value if approve else RescheduleStatus.REJECTED.value
    request["response_message"] = response_message
    request["responded_at"] = _now_iso()
    request["responded_by"] = actor.id

    if approve:
        ensure_transition(consultation, RESCHEDULE)
        # the slot may have been taken since the request was made
        await _ensure_reschedule_slot(db, consultation, datetime.fromisoformat(request["new_date"]))
        old_date = consultation.scheduled_date
        if consultation.original_date is None:
            consultation.original_date = old_date
        consultation.scheduled_date = datetime.fromisoformat(request["new_date"])
        if request.get("new_time_slot"):
            consultation.time_slot = request["new_time_slot"]
        await log_consultation_change(
            db, consultation.id, "scheduled_date", old_date, consultation.scheduled_date, changed_by=actor.id
        )
        await _set_status(db, consultation, S.RESCHEDULED.value, actor, "approve_reschedule", note=response_message)

    consultation.reschedule_requests = requests
    return request


# ----------------------------------------------------------------------------
# Notes and ratings
# ----------------------------------------------------------------------------

def add_note(consultation: Consultation, actor: User, content: str, is_private: bool = False) -> dict:
    if not is_participant(consultation, actor) and actor.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("You do not have access to this consultation")
    note = {
        "id": str(uuid.uuid4()),
        "content": content,
        "is_private": is_private,
        "author_id": actor.id,
        "author_role": actor.role,
        "created_at": _now_iso(),
    }
    consultation.notes = list(consultation.notes or []) + [note]
    return note


def visible_notes(consultation: Consultation, viewer: Optional[User]) -> List[dict]:
    """Private notes are only shown to users with the author's role."""
    notes = consultation.notes or []
    if viewer is None:
        return [n for n in notes if not n.get("is_private")]
    if viewer.role == UserRole.ADMIN.value:
        return list(notes)
    return [n for n in notes if not n.get("is_private") or n.get("author_role") == viewer.role]


def set_rating(
    consultation: Consultation,
    actor: User,
    rating: int,
    review: Optional[str],
    categories: Optional[dict],
) -> dict:
    ensure_can_act(consultation, actor, RATE)
    ensure_transition(consultation, RATE)
    if consultation.rating:
        raise ValidationError("This consultation has already been rated")
    consultation.rating = {
        "rating": rating,
        "review": review,
        "categories": categories or {},
        "created_at": _now_iso(),
    }
    return consultation.rating


# ----------------------------------------------------------------------------
# Overdue sweep
# ----------------------------------------------------------------------------

async def find_overdue_consultations(
    db: AsyncSession,
    grace_minutes: int,
    now: Optional[datetime] = None,
) -> List[Consultation]:
    """
    Confirmed or rescheduled consultations whose slot ended more than
    grace_minutes ago. Their status is left for the lawyer to settle.
    """
    now = now or datetime.now(timezone.utc)
    grace = timedelta(minutes=grace_minutes)
    result = await db.execute(
        select(Consultation).where(
            Consultation.status.in_((S.CONFIRMED.value, S.RESCHEDULED.value)),
            Consultation.scheduled_date < now - grace,
        )
    )
    return [
        c for c in result.scalars().all()
        if ensure_utc(c.scheduled_date) + timedelta(minutes=c.duration or 0) + grace < now
    ]
