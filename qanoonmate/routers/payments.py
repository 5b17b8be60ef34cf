"""Consultation payments: checkout, gateway callback, result page, retries"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import get_current_user, require_client
from ..models import Consultation, Payment, User, UserRole
from ..schemas.common import Page, PaginationParams
from ..schemas.payments import PaymentCallback, PaymentCreate, PaymentCreateResponse, PaymentRead, PaymentResult
from ..services import payments as payment_service
from ..services.listing import pagination_params, paginate_query
from .websocket import notify_consultation_update

logger = logging.getLogger(__name__)
router = APIRouter()


async def _get_payment_or_404(db: AsyncSession, payment_id: str) -> Payment:
    result = await db.execute(select(Payment).where(Payment.id == payment_id))
    payment = result.scalar_one_or_none()
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


def _ensure_owner(payment: Payment, user: User) -> None:
    if user.role != UserRole.ADMIN.value and payment.user_id != user.id:
        raise HTTPException(status_code=403, detail="You do not have access to this payment")


async def _notify_payment_change(db: AsyncSession, payment: Payment) -> None:
    if not payment.consultation_id:
        return
    result = await db.execute(
        select(Consultation)
        .where(Consultation.id == payment.consultation_id)
        .execution_options(populate_existing=True)
    )
    consultation = result.scalar_one_or_none()
    if consultation is not None:
        await notify_consultation_update(consultation)


@router.post("", response_model=PaymentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payload: PaymentCreate,
    client: User = Depends(require_client()),
    db: AsyncSession = Depends(get_db),
):
    """
    Start paying for a consultation.

    Returns the payment with the hosted checkout URL. While a payment is open
    (pending or processing) the same payment is returned.
    """
    result = await db.execute(select(Consultation).where(Consultation.id == payload.consultation_id))
    consultation = result.scalar_one_or_none()
    if consultation is None:
        raise HTTPException(status_code=404, detail="Consultation not found")
    if consultation.client_id != client.id:
        raise HTTPException(status_code=403, detail="You do not have access to this consultation")

    payment = await payment_service.create_payment(db, consultation, client, payload.method)
    await db.commit()
    await db.refresh(payment)
    return PaymentCreateResponse.from_model(payment, checkout_url=payment_service.build_checkout_url(payment))


@router.post("/callback")
async def payment_callback(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    db: AsyncSession = Depends(get_db),
):
    """
    Gateway webhook.

    The `X-Signature` header must be the HMAC-SHA256 hex digest of the raw
    body with PAYMENT_WEBHOOK_SECRET. Callbacks for final payments are
    acknowledged and ignored.
    """
    body = await request.body()
    if not payment_service.verify_signature(body, x_signature):
        logger.warning("Rejected payment callback with an invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = PaymentCallback.model_validate_json(body)
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))

    result = await db.execute(select(Payment).where(Payment.order_id == payload.order_id))
    payment = result.scalar_one_or_none()
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    new_status = payment_service.map_gateway_status(payload.status)
    applied = await payment_service.apply_gateway_status(
        db, payment, new_status,
        tracker=payload.tracker,
        reason=payload.reason,
        raw_response=payload.model_dump(),
    )
    await db.commit()
    if applied:
        await _notify_payment_change(db, payment)
    return {"status": "ok", "applied": applied, "payment_status": payment.status}


@router.get("/result", response_model=PaymentResult)
async def payment_result(
    order_id: Optional[str] = None,
    tracker: Optional[str] = None,
    reason: Optional[str] = None,
    outcome: Optional[str] = Query(None, description="success | failed | cancelled"),
    db: AsyncSession = Depends(get_db),
):
    """Data for the payment success / failure page (public)"""
    payment = None
    if order_id:
        result = await db.execute(select(Payment).where(Payment.order_id == order_id))
        payment = result.scalar_one_or_none()
    return PaymentResult(**payment_service.build_result(payment, outcome, order_id, tracker, reason))


@router.get("/mine", response_model=Page[PaymentRead])
async def my_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    params: PaginationParams = Depends(pagination_params),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Payment).where(Payment.user_id == current_user.id)
    if status_filter and status_filter != "all":
        stmt = stmt.where(Payment.status == status_filter)
    rows, meta = await paginate_query(db, stmt.order_by(Payment.created_at.desc(), Payment.id), params)
    return Page[PaymentRead](items=[PaymentRead.from_model(p) for p in rows], meta=meta)


@router.get("/{payment_id}", response_model=PaymentRead)
async def get_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payment = await _get_payment_or_404(db, payment_id)
    _ensure_owner(payment, current_user)
    return PaymentRead.from_model(payment)


@router.post("/{payment_id}/retry", response_model=PaymentCreateResponse)
async def retry_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Reopen a failed or expired payment (up to max_retries times)"""
    payment = await _get_payment_or_404(db, payment_id)
    _ensure_owner(payment, current_user)
    await payment_service.retry_payment(db, payment)
    await db.commit()
    await db.refresh(payment)
    return PaymentCreateResponse.from_model(payment, checkout_url=payment_service.build_checkout_url(payment))


@router.post("/{payment_id}/verify", response_model=PaymentRead)
async def verify_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Ask the gateway for the order status and apply it"""
    payment = await _get_payment_or_404(db, payment_id)
    _ensure_owner(payment, current_user)

    data = await payment_service.PaymentGatewayClient().fetch_status(payment.order_id)
    new_status = payment_service.map_gateway_status(data["status"])
    applied = await payment_service.apply_gateway_status(
        db, payment, new_status,
        tracker=data.get("tracker"),
        reason=data.get("reason"),
        raw_response=data,
    )
    await db.commit()
    await db.refresh(payment)
    if applied:
        await _notify_payment_change(db, payment)
    return PaymentRead.from_model(payment)
