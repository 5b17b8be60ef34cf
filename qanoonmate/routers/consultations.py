"""Consultation booking, lifecycle actions, reschedules, ratings, notes and documents."""
import logging
from datetime import date, datetime, time, timezone, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, UploadFile, status
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..dependencies.security import get_current_user, require_admin, require_client
from ..exceptions import InvalidTransitionError, ValidationError
from ..models import (
    ApplicationStatus,
    Consultation,
    ConsultationStatus,
    PaymentStatus,
    User,
    UserRole,
)
from ..schemas.common import MessageResponse, Page, PaginationParams
from ..schemas.consultations import (
    CancelRequest,
    ChangeLogRead,
    CompleteRequest,
    ConsultationBook,
    ConsultationRead,
    ConsultationStats,
    ConsultationUpdate,
    NoShowRequest,
    NoteCreate,
    RatingCreate,
    RescheduleCreate,
    RescheduleDecision,
    StartRequest,
)
from ..services import consultation_lifecycle as lifecycle
from ..services.consultation_ratings import recalc_lawyer_rating
from ..services.listing import ilike_any, pagination_params, paginate_query, split_csv
from ..services.uploads import DOCUMENT_TYPES, store_upload
from ..services.user_settings import lawyer_consultation_settings
from ..utils.change_log import get_consultation_changes, log_consultation_change
from ..utils.idempotency import check_idempotency_key, generate_request_hash, scoped_key, store_idempotency_key
from .websocket import notify_consultation_update

logger = logging.getLogger(__name__)
router = APIRouter()

BOOK_OPERATION = "book_consultation"

SORTS = {
    "date": Consultation.scheduled_date.asc(),
    "date-desc": Consultation.scheduled_date.desc(),
    "created": Consultation.created_at.asc(),
    "created-desc": Consultation.created_at.desc(),
}


async def _get_consultation_or_404(db: AsyncSession, consultation_id: str) -> Consultation:
    result = await db.execute(select(Consultation).where(Consultation.id == consultation_id))
    consultation = result.scalar_one_or_none()
    if consultation is None:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return consultation


async def _respond(db: AsyncSession, consultation: Consultation, viewer: User) -> ConsultationRead:
    """Commit, push the new state to websocket subscribers and render it for the caller."""
    await db.commit()
    await db.refresh(consultation)
    await notify_consultation_update(consultation)
    return ConsultationRead.from_model(consultation, viewer=viewer)


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ----------------------------------------------------------------------------
# Booking
# ----------------------------------------------------------------------------

async def _get_bookable_lawyer(db: AsyncSession, lawyer_id: str) -> User:
    result = await db.execute(select(User).where(User.id == lawyer_id, User.role == UserRole.LAWYER.value))
    lawyer = result.scalar_one_or_none()
    if lawyer is None:
        raise HTTPException(status_code=404, detail="Lawyer not found")
    profile = lawyer.lawyer_profile
    if not lawyer.is_active or profile is None or profile.application_status != ApplicationStatus.APPROVED.value:
        raise ValidationError("This lawyer is not accepting consultations", {"lawyer_id": lawyer_id})
    return lawyer


def _consultation_fee(lawyer: User, consultation_settings: dict, mode: str, duration: int) -> Decimal:
    """Fee of the mode from the lawyer's settings, otherwise the hourly rate pro rata."""
    fees = consultation_settings.get("fees") or {}
    if fees.get(mode) is not None:
        return _money(fees[mode])
    hourly_rate = lawyer.lawyer_profile.hourly_rate
    if hourly_rate:
        return _money(Decimal(hourly_rate) * duration / 60)
    return Decimal("0.00")


@router.post("/book", response_model=ConsultationRead, status_code=status.HTTP_201_CREATED)
async def book_consultation(
    payload: ConsultationBook,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    client: User = Depends(require_client()),
    db: AsyncSession = Depends(get_db),
):
    """
    Book a consultation with an approved lawyer.

    Rules:
    - terms must be accepted
    - the date must be in the future and within MAX_FUTURE_CONSULTATION_DAYS
    - mode and duration must be offered by the lawyer
    - the slot must respect the lawyer's availability and not overlap another
      open consultation of the lawyer or the client (409 with `details.conflict`)
    - the consultation starts as `scheduled` when the lawyer auto-approves, else `pending`

    A repeated request with the same `Idempotency-Key` returns the stored response.
    """
    request_hash = generate_request_hash({"client_id": client.id, **payload.model_dump(mode="json")})
    if idempotency_key:
        idempotency_key = scoped_key(client.id, idempotency_key)
        cached = await check_idempotency_key(db, idempotency_key, BOOK_OPERATION, request_hash)
        if cached:
            logger.info(f"Replaying booking for Idempotency-Key {idempotency_key}")
            return cached

    if not payload.terms_accepted:
        raise ValidationError("You must accept the terms and conditions to book a consultation")

    lawyer = await _get_bookable_lawyer(db, payload.lawyer_id)
    if lawyer.id == client.id:
        raise ValidationError("You cannot book a consultation with yourself")

    now = datetime.now(timezone.utc)
    scheduled_date = lifecycle.ensure_bookable_window(payload.scheduled_date, now)

    consultation_settings = await lawyer_consultation_settings(db, lawyer)
    mode = payload.mode.value
    duration = payload.duration or settings.DEFAULT_CONSULTATION_DURATION
    allowed_modes = consultation_settings.get("modes") or []
    if allowed_modes and mode not in allowed_modes:
        raise ValidationError(f"This lawyer does not offer '{mode}' consultations", {"allowed": allowed_modes})
    allowed_durations = consultation_settings.get("durations") or []
    if allowed_durations and duration not in allowed_durations:
        raise ValidationError(
            f"This lawyer does not offer {duration} minute consultations",
            {"allowed": allowed_durations},
        )
    await lifecycle.ensure_slot_available(db, lawyer, client.id, scheduled_date, duration)

    initial_status = (
        ConsultationStatus.SCHEDULED.value if consultation_settings.get("auto_approve")
        else ConsultationStatus.PENDING.value
    )
    consultation = Consultation(
        client_id=client.id,
        lawyer_id=lawyer.id,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        consultation_type=payload.consultation_type.value,
        mode=mode,
        scheduled_date=scheduled_date,
        time_slot=payload.time_slot,
        duration=duration,
        fee=_consultation_fee(lawyer, consultation_settings, mode, duration),
        currency=lawyer.lawyer_profile.currency or settings.PAYMENT_CURRENCY,
        status=initial_status,
        payment_status=PaymentStatus.PENDING.value,
        documents=[],
        notes=[],
        reschedule_requests=[],
        status_history=[{
            "from": None,
            "to": initial_status,
            "action": "book",
            "by": client.id,
            "role": client.role,
            "note": None,
            "at": now.isoformat(),
        }],
    )
    db.add(consultation)
    await db.flush()
    await log_consultation_change(db, consultation.id, "status", None, initial_status, changed_by=client.id)
    await db.commit()
    await db.refresh(consultation)

    logger.info(f"Consultation {consultation.id} booked by {client.id} with lawyer {lawyer.id} ({initial_status})")
    response = ConsultationRead.from_model(consultation, viewer=client)
    if idempotency_key:
        await store_idempotency_key(
            db, idempotency_key, BOOK_OPERATION,
            resource_id=consultation.id,
            request_hash=request_hash,
            response_data=response.model_dump(mode="json"),
        )
        await db.commit()
    return response


# ----------------------------------------------------------------------------
# Lists and stats
# ----------------------------------------------------------------------------

def _filtered(
    stmt: Select,
    status_filter: Optional[str],
    consultation_type: Optional[str],
    mode: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
    search: Optional[str],
    sort: Optional[str],
) -> Select:
    statuses = split_csv(status_filter)
    if statuses and "all" not in statuses:
        stmt = stmt.where(Consultation.status.in_(statuses))
    if consultation_type:
        stmt = stmt.where(Consultation.consultation_type == consultation_type)
    if mode:
        stmt = stmt.where(Consultation.mode == mode)
    if date_from:
        stmt = stmt.where(Consultation.scheduled_date >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to:
        # inclusive end date
        end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        stmt = stmt.where(Consultation.scheduled_date < end)
    if search:
        stmt = stmt.where(ilike_any(search, Consultation.title, Consultation.description, Consultation.category))
    if sort and sort not in SORTS:
        raise ValidationError(f"Unknown sort '{sort}'", {"allowed": sorted(SORTS)})
    return stmt.order_by(SORTS[sort or "date-desc"], Consultation.id)


@router.get("", response_model=Page[ConsultationRead])
async def list_consultations(
    status_filter: Optional[str] = Query(None, alias="status", description="Status or comma separated statuses"),
    consultation_type: Optional[str] = Query(None, alias="type"),
    mode: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    lawyer_id: Optional[str] = None,
    client_id: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="date | date-desc | created | created-desc"),
    params: PaginationParams = Depends(pagination_params),
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """All consultations (admin)"""
    stmt = select(Consultation)
    if lawyer_id:
        stmt = stmt.where(Consultation.lawyer_id == lawyer_id)
    if client_id:
        stmt = stmt.where(Consultation.client_id == client_id)
    stmt = _filtered(stmt, status_filter, consultation_type, mode, date_from, date_to, search, sort)
    rows, meta = await paginate_query(db, stmt, params)
    return Page[ConsultationRead](items=[ConsultationRead.from_model(c, viewer=admin) for c in rows], meta=meta)


def _own_scope(stmt: Select, user: User) -> Select:
    if user.role == UserRole.CLIENT.value:
        return stmt.where(Consultation.client_id == user.id)
    if user.role == UserRole.LAWYER.value:
        return stmt.where(Consultation.lawyer_id == user.id)
    return stmt


@router.get("/my", response_model=Page[ConsultationRead])
async def my_consultations(
    status_filter: Optional[str] = Query(None, alias="status"),
    consultation_type: Optional[str] = Query(None, alias="type"),
    mode: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    params: PaginationParams = Depends(pagination_params),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Consultations of the calling client or lawyer"""
    stmt = _own_scope(select(Consultation), current_user)
    stmt = _filtered(stmt, status_filter, consultation_type, mode, date_from, date_to, search, sort)
    rows, meta = await paginate_query(db, stmt, params)
    return Page[ConsultationRead](
        items=[ConsultationRead.from_model(c, viewer=current_user) for c in rows],
        meta=meta,
    )


@router.get("/stats/overview", response_model=ConsultationStats)
async def consultation_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Counts per status, revenue and average rating.

    Revenue is the sum of fees of completed consultations whose payment completed.
    Admins see the whole platform, other roles their own consultations.
    """
    counts_stmt = _own_scope(
        select(Consultation.status, func.count(Consultation.id)).group_by(Consultation.status),
        current_user,
    )
    by_status = {row[0]: row[1] for row in (await db.execute(counts_stmt)).all()}

    revenue_stmt = _own_scope(
        select(func.coalesce(func.sum(Consultation.fee), 0)).where(
            Consultation.status == ConsultationStatus.COMPLETED.value,
            Consultation.payment_status == PaymentStatus.COMPLETED.value,
        ),
        current_user,
    )
    revenue = (await db.execute(revenue_stmt)).scalar() or 0

    ratings_stmt = _own_scope(
        select(Consultation.rating).where(
            Consultation.status == ConsultationStatus.COMPLETED.value,
            Consultation.rating.is_not(None),
        ),
        current_user,
    )
    ratings = [r["rating"] for r in (await db.execute(ratings_stmt)).scalars().all() if r and r.get("rating")]

    return ConsultationStats(
        total=sum(by_status.values()),
        by_status=by_status,
        pending=by_status.get(ConsultationStatus.PENDING.value, 0),
        scheduled=by_status.get(ConsultationStatus.SCHEDULED.value, 0),
        completed=by_status.get(ConsultationStatus.COMPLETED.value, 0),
        cancelled=by_status.get(ConsultationStatus.CANCELLED.value, 0),
        revenue=float(revenue),
        average_rating=round(sum(ratings) / len(ratings), 2) if ratings else None,
    )


# ----------------------------------------------------------------------------
# Single consultation
# ----------------------------------------------------------------------------

@router.get("/{consultation_id}", response_model=ConsultationRead)
async def get_consultation(
    consultation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    lifecycle.ensure_can_view(consultation, current_user)
    return ConsultationRead.from_model(consultation, viewer=current_user)


@router.put("/{consultation_id}", response_model=ConsultationRead)
async def update_consultation(
    consultation_id: str,
    payload: ConsultationUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Edit title, description or category while the consultation is not finished"""
    consultation = await _get_consultation_or_404(db, consultation_id)
    lifecycle.ensure_can_view(consultation, current_user)
    if lifecycle.is_terminal(consultation.status):
        raise InvalidTransitionError(
            f"Cannot update a consultation with status '{consultation.status}'",
            current_status=consultation.status,
            action="update",
        )

    for field, value in payload.model_dump(exclude_unset=True).items():
        old_value = getattr(consultation, field)
        if old_value != value:
            setattr(consultation, field, value)
            await log_consultation_change(db, consultation.id, field, old_value, value, changed_by=current_user.id)
    return await _respond(db, consultation, current_user)


@router.delete("/{consultation_id}", response_model=MessageResponse)
async def delete_consultation(
    consultation_id: str,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    await db.delete(consultation)
    await db.commit()
    logger.info(f"Consultation {consultation_id} deleted by admin {admin.id}")
    return MessageResponse(message="Consultation deleted")


@router.get("/{consultation_id}/history", response_model=List[ChangeLogRead])
async def consultation_history(
    consultation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Audit trail of field changes"""
    consultation = await _get_consultation_or_404(db, consultation_id)
    lifecycle.ensure_can_view(consultation, current_user)
    return [ChangeLogRead.model_validate(row) for row in await get_consultation_changes(db, consultation_id)]


# ----------------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------------

@router.post("/{consultation_id}/confirm", response_model=ConsultationRead)
async def confirm_consultation(
    consultation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    await lifecycle.confirm(db, consultation, current_user)
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/start", response_model=ConsultationRead)
async def start_consultation(
    consultation_id: str,
    payload: Optional[StartRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payload = payload or StartRequest()
    consultation = await _get_consultation_or_404(db, consultation_id)
    await lifecycle.start(db, consultation, current_user, payload.meeting_link, payload.phone_number)
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/complete", response_model=ConsultationRead)
async def complete_consultation(
    consultation_id: str,
    payload: Optional[CompleteRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payload = payload or CompleteRequest()
    consultation = await _get_consultation_or_404(db, consultation_id)
    await lifecycle.complete(db, consultation, current_user, payload.lawyer_notes)
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/no-show", response_model=ConsultationRead)
async def no_show_consultation(
    consultation_id: str,
    payload: Optional[NoShowRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    await lifecycle.mark_no_show(db, consultation, current_user, payload.note if payload else None)
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/cancel", response_model=ConsultationRead)
async def cancel_consultation(
    consultation_id: str,
    payload: CancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel with a mandatory reason; clients must respect the lawyer's cancellation cutoff"""
    consultation = await _get_consultation_or_404(db, consultation_id)
    lifecycle.ensure_can_act(consultation, current_user, lifecycle.CANCEL)
    consultation_settings = await lawyer_consultation_settings(db, consultation.lawyer)
    await lifecycle.cancel(
        db, consultation, current_user,
        reason=payload.reason.value,
        note=payload.note,
        cancel_cutoff_hours=consultation_settings.get("cancel_cutoff_hours") or 0,
    )
    return await _respond(db, consultation, current_user)


# ----------------------------------------------------------------------------
# Reschedule requests
# ----------------------------------------------------------------------------

@router.post("/{consultation_id}/reschedule", response_model=ConsultationRead)
async def request_reschedule(
    consultation_id: str,
    payload: RescheduleCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    await lifecycle.request_reschedule(
        db, consultation, current_user, payload.new_date, payload.new_time_slot, payload.reason
    )
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/reschedule/{request_id}/approve", response_model=ConsultationRead)
async def approve_reschedule(
    consultation_id: str,
    request_id: str,
    payload: Optional[RescheduleDecision] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    await lifecycle.respond_reschedule(
        db, consultation, current_user, request_id, approve=True,
        response_message=payload.response_message if payload else None,
    )
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/reschedule/{request_id}/reject", response_model=ConsultationRead)
async def reject_reschedule(
    consultation_id: str,
    request_id: str,
    payload: Optional[RescheduleDecision] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    await lifecycle.respond_reschedule(
        db, consultation, current_user, request_id, approve=False,
        response_message=payload.response_message if payload else None,
    )
    return await _respond(db, consultation, current_user)


# ----------------------------------------------------------------------------
# Rating, notes, documents
# ----------------------------------------------------------------------------

@router.post("/{consultation_id}/rate", response_model=ConsultationRead)
async def rate_consultation(
    consultation_id: str,
    payload: RatingCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    categories = payload.categories.model_dump(exclude_none=True) if payload.categories else None
    lifecycle.set_rating(consultation, current_user, payload.rating, payload.review, categories)
    await log_consultation_change(db, consultation.id, "rating", None, payload.rating, changed_by=current_user.id)
    await recalc_lawyer_rating(db, consultation.lawyer_id)
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/notes", response_model=ConsultationRead, status_code=status.HTTP_201_CREATED)
async def add_consultation_note(
    consultation_id: str,
    payload: NoteCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    consultation = await _get_consultation_or_404(db, consultation_id)
    lifecycle.add_note(consultation, current_user, payload.content, payload.is_private)
    return await _respond(db, consultation, current_user)


@router.post("/{consultation_id}/documents", response_model=ConsultationRead, status_code=status.HTTP_201_CREATED)
async def upload_consultation_document(
    consultation_id: str,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Attach a document (PDF, image, doc or docx; 5MB at most)"""
    consultation = await _get_consultation_or_404(db, consultation_id)
    lifecycle.ensure_can_view(consultation, current_user)

    stored = await store_upload(file, "consultations", DOCUMENT_TYPES)
    stored["uploaded_by"] = current_user.id
    consultation.documents = list(consultation.documents or []) + [stored]
    await log_consultation_change(db, consultation.id, "documents", None, stored["name"], changed_by=current_user.id)
    return await _respond(db, consultation, current_user)
