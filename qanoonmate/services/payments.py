"""
Consultation payments through a hosted checkout gateway.

Flow:
- create_payment: pending payment locked to the consultation fee, checkout URL
- gateway callback (HMAC signed) or an explicit status lookup: apply_gateway_status
- scheduler: expire_stale_payments
"""
import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..dependencies.security import safe_equals
from ..exceptions import ConflictError, PaymentGatewayError, ValidationError
from ..models import Consultation, ConsultationStatus, Payment, PaymentStatus, User
from ..utils.retry import retry_decorator
from ..utils.structured_logging import log_with_context

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment was not completed. Please try again."
NOT_AVAILABLE = "N/A"

OPEN_STATUSES = frozenset({PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value})
FINAL_STATUSES = frozenset({
    PaymentStatus.COMPLETED.value,
    PaymentStatus.CANCELLED.value,
    PaymentStatus.REFUNDED.value,
    PaymentStatus.PARTIAL_REFUND.value,
})
RETRYABLE_STATUSES = frozenset({PaymentStatus.FAILED.value, PaymentStatus.EXPIRED.value})
UNPAYABLE_CONSULTATION_STATUSES = frozenset({ConsultationStatus.CANCELLED.value, ConsultationStatus.NO_SHOW.value})

# gateway vocabulary -> PaymentStatus
GATEWAY_STATUS_MAP = {
    "success": PaymentStatus.COMPLETED.value,
    "succeeded": PaymentStatus.COMPLETED.value,
    "paid": PaymentStatus.COMPLETED.value,
    "completed": PaymentStatus.COMPLETED.value,
    "failed": PaymentStatus.FAILED.value,
    "failure": PaymentStatus.FAILED.value,
    "declined": PaymentStatus.FAILED.value,
    "cancel": PaymentStatus.CANCELLED.value,
    "cancelled": PaymentStatus.CANCELLED.value,
    "canceled": PaymentStatus.CANCELLED.value,
    "pending": PaymentStatus.PROCESSING.value,
    "processing": PaymentStatus.PROCESSING.value,
    "refunded": PaymentStatus.REFUNDED.value,
}


def map_gateway_status(raw: str) -> str:
    status = GATEWAY_STATUS_MAP.get((raw or "").strip().lower())
    if status is None:
        raise ValidationError(f"Unknown gateway status '{raw}'", {"allowed": sorted(GATEWAY_STATUS_MAP)})
    return status


def sign_payload(body: bytes, secret: Optional[str] = None) -> str:
    secret = secret if secret is not None else settings.PAYMENT_WEBHOOK_SECRET
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str]) -> bool:
    if not settings.PAYMENT_WEBHOOK_SECRET:
        return False
    return safe_equals(sign_payload(body), (signature or "").strip().lower())


def new_order_id() -> str:
    return f"QM-{datetime.now(timezone.utc):%Y%m%d}-{uuid.uuid4().hex[:10].upper()}"


def build_checkout_url(payment: Payment) -> str:
    query = urlencode({
        "merchant_id": settings.PAYMENT_MERCHANT_ID,
        "order_id": payment.order_id,
        "amount": f"{Decimal(payment.amount):.2f}",
        "currency": payment.currency,
        "return_url": f"{settings.FRONTEND_URL.rstrip('/')}/payment/result",
    })
    return f"{settings.PAYMENT_GATEWAY_URL}?{query}"


def _history_entry(status: str, note: Optional[str] = None) -> Dict[str, Any]:
    return {"status": status, "note": note, "at": datetime.now(timezone.utc).isoformat()}


async def _open_payment_for(db: AsyncSession, consultation_id: str) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.consultation_id == consultation_id, Payment.status.in_(OPEN_STATUSES))
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_payment(db: AsyncSession, consultation: Consultation, payer: User, method: Optional[str]) -> Payment:
    """
    Create (or return the already open) payment for a consultation.

    Raises:
        ConflictError: the consultation is already paid
        ValidationError: the consultation cannot be paid (cancelled, no-show, free)
    """
    if consultation.payment_status == PaymentStatus.COMPLETED.value:
        raise ConflictError("This consultation has already been paid", {"consultation_id": consultation.id})
    if consultation.status in UNPAYABLE_CONSULTATION_STATUSES:
        raise ValidationError(
            f"A consultation with status '{consultation.status}' cannot be paid",
            {"consultation_id": consultation.id},
        )
    if Decimal(consultation.fee or 0) <= 0:
        raise ValidationError("This consultation is free of charge", {"consultation_id": consultation.id})

    existing = await _open_payment_for(db, consultation.id)
    if existing is not None:
        return existing

    payment = Payment(
        order_id=new_order_id(),
        user_id=payer.id,
        consultation_id=consultation.id,
        amount=consultation.fee,
        currency=consultation.currency or settings.PAYMENT_CURRENCY,
        method=method,
        status=PaymentStatus.PENDING.value,
        status_history=[_history_entry(PaymentStatus.PENDING.value, "created")],
        max_retries=settings.PAYMENT_MAX_RETRIES,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.PAYMENT_EXPIRY_MINUTES),
    )
    db.add(payment)
    await db.flush()
    log_with_context(
        logger, logging.INFO, f"Created payment {payment.order_id}",
        context={"consultation_id": consultation.id, "amount": str(payment.amount)},
    )
    return payment


async def apply_gateway_status(
    db: AsyncSession,
    payment: Payment,
    status: str,
    tracker: Optional[str] = None,
    reason: Optional[str] = None,
    raw_response: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Apply a gateway status to a payment and mirror it on the consultation.

    Returns:
        False when the payment was already final and the update was ignored
    """
    if payment.status in FINAL_STATUSES:
        logger.info(f"Ignoring gateway status '{status}' for final payment {payment.order_id} ({payment.status})")
        return False

    old_status = payment.status
    payment.status = status
    if tracker:
        payment.tracker = tracker
    if raw_response is not None:
        payment.gateway_response = raw_response
    if status == PaymentStatus.COMPLETED.value:
        payment.paid_at = datetime.now(timezone.utc)
        payment.failure_reason = None
    elif status in (PaymentStatus.FAILED.value, PaymentStatus.CANCELLED.value):
        payment.failure_reason = reason or DEFAULT_FAILURE_REASON
    payment.status_history = list(payment.status_history or []) + [_history_entry(status, reason)]

    if payment.consultation_id:
        await db.execute(
            update(Consultation)
            .where(Consultation.id == payment.consultation_id)
            .values(payment_status=status)
        )
    await db.flush()
    log_with_context(
        logger, logging.INFO, f"Payment {payment.order_id}: {old_status} -> {status}",
        context={"order_id": payment.order_id, "tracker": payment.tracker, "reason": reason},
    )
    return True


async def _ensure_consultation_payable(db: AsyncSession, payment: Payment) -> None:
    result = await db.execute(select(Consultation).where(Consultation.id == payment.consultation_id))
    consultation = result.scalar_one_or_none()
    if consultation is None:
        return
    if consultation.payment_status == PaymentStatus.COMPLETED.value:
        raise ConflictError("This consultation has already been paid", {"consultation_id": consultation.id})
    if consultation.status in UNPAYABLE_CONSULTATION_STATUSES:
        raise ValidationError(
            f"A consultation with status '{consultation.status}' cannot be paid",
            {"consultation_id": consultation.id},
        )
    other = await _open_payment_for(db, consultation.id)
    if other is not None and other.id != payment.id:
        raise ConflictError(
            "Another payment for this consultation is already open",
            {"consultation_id": consultation.id, "order_id": other.order_id, "payment_id": other.id},
        )


async def retry_payment(db: AsyncSession, payment: Payment) -> Payment:
    """
    Reopen a failed or expired payment while retries remain.

    Raises:
        ConflictError: not retryable, no retries left, the consultation is
            already paid or another payment for it is open
    """
    if payment.status not in RETRYABLE_STATUSES:
        raise ConflictError(
            f"A payment with status '{payment.status}' cannot be retried",
            {"order_id": payment.order_id},
        )
    if payment.retry_count >= payment.max_retries:
        raise ConflictError(
            "Maximum number of payment retries reached",
            {"order_id": payment.order_id, "max_retries": payment.max_retries},
        )
    if payment.consultation_id:
        await _ensure_consultation_payable(db, payment)
    payment.retry_count += 1
    payment.status = PaymentStatus.PENDING.value
    payment.failure_reason = None
    payment.expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.PAYMENT_EXPIRY_MINUTES)
    payment.status_history = list(payment.status_history or []) + [
        _history_entry(PaymentStatus.PENDING.value, f"retry {payment.retry_count}")
    ]
    if payment.consultation_id:
        await db.execute(
            update(Consultation)
            .where(Consultation.id == payment.consultation_id)
            .values(payment_status=PaymentStatus.PENDING.value)
        )
    await db.flush()
    return payment


def build_result(
    payment: Optional[Payment],
    outcome: Optional[str],
    order_id: Optional[str],
    tracker: Optional[str],
    reason: Optional[str],
) -> Dict[str, Any]:
    """
    Data for the payment result page.

    Query values win for display; when the order is known its stored status,
    amount and tracker fill the rest. Missing values are "N/A".
    """
    if payment is not None:
        status = payment.status
        if not outcome:
            outcome = {
                PaymentStatus.COMPLETED.value: "success",
                PaymentStatus.CANCELLED.value: "cancelled",
            }.get(status, "failed" if status in RETRYABLE_STATUSES else "pending")
    else:
        status = None
    outcome = outcome or "failed"

    result = {
        "outcome": outcome,
        "order_id": order_id or (payment.order_id if payment else None) or NOT_AVAILABLE,
        "tracker": tracker or (payment.tracker if payment else None) or NOT_AVAILABLE,
        "status": status or NOT_AVAILABLE,
        "amount": float(payment.amount) if payment else None,
        "currency": payment.currency if payment else settings.PAYMENT_CURRENCY,
        "consultation_id": payment.consultation_id if payment else None,
        "reason": None,
    }
    if outcome != "success":
        result["reason"] = reason or (payment.failure_reason if payment else None) or DEFAULT_FAILURE_REASON
    return result


async def expire_stale_payments(db: AsyncSession) -> int:
    """Mark pending payments past their expiry as expired."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(Payment).where(
            Payment.status == PaymentStatus.PENDING.value,
            Payment.expires_at.is_not(None),
            Payment.expires_at < now,
        )
    )
    expired = 0
    for payment in result.scalars().all():
        await apply_gateway_status(db, payment, PaymentStatus.EXPIRED.value, reason="Payment window expired")
        expired += 1
    return expired


class PaymentGatewayClient:
    """Async client for the gateway order status API"""

    def __init__(self):
        self.status_url = settings.PAYMENT_STATUS_URL.rstrip("/")
        self.merchant_id = settings.PAYMENT_MERCHANT_ID

    @retry_decorator(max_attempts=3, delay=0.5, exceptions=(httpx.TransportError,))
    async def _get(self, order_id: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.get(
                self.status_url,
                params={"merchant_id": self.merchant_id, "order_id": order_id},
            )
            response.raise_for_status()
            return response.json()

    async def fetch_status(self, order_id: str) -> Dict[str, Any]:
        """
        Query the gateway for an order.

        Returns:
            gateway payload with at least `status` (and optionally `tracker`, `reason`)
        """
        if not self.status_url:
            raise PaymentGatewayError("Payment gateway status endpoint is not configured")
        try:
            data = await self._get(order_id)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Gateway status lookup failed for {order_id}: {exc}")
            raise PaymentGatewayError("Payment gateway status lookup failed", {"order_id": order_id, "error": str(exc)})
        if "status" not in data:
            raise PaymentGatewayError("Payment gateway response has no status", {"order_id": order_id})
        return data
