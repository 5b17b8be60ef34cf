"""Payment schemas"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..utils.date_normalization import ensure_utc


class PaymentCreate(BaseModel):
    consultation_id: str
    method: Optional[str] = None


class PaymentRead(BaseModel):
    payment_id: str
    order_id: str
    tracker: Optional[str] = None
    user_id: str
    consultation_id: Optional[str] = None
    amount: float
    currency: str
    payment_type: str
    method: Optional[str] = None
    status: str
    status_history: List[Dict[str, Any]] = Field(default_factory=list)
    gateway: str
    failure_reason: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    paid_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model, **extra):
        return cls(
            payment_id=model.id,
            order_id=model.order_id,
            tracker=model.tracker,
            user_id=model.user_id,
            consultation_id=model.consultation_id,
            amount=float(model.amount),
            currency=model.currency,
            payment_type=model.payment_type,
            method=model.method,
            status=model.status,
            status_history=model.status_history or [],
            gateway=model.gateway,
            failure_reason=model.failure_reason,
            retry_count=model.retry_count,
            max_retries=model.max_retries,
            paid_at=ensure_utc(model.paid_at),
            expires_at=ensure_utc(model.expires_at),
            created_at=model.created_at,
            updated_at=model.updated_at,
            **extra,
        )


class PaymentCreateResponse(PaymentRead):
    checkout_url: str


class PaymentCallback(BaseModel):
    """Gateway webhook body"""
    order_id: str
    tracker: Optional[str] = None
    status: str
    reason: Optional[str] = None


class PaymentResult(BaseModel):
    """Data for the payment result page; unknown values are "N/A" """
    outcome: str
    order_id: str
    tracker: str
    status: str
    amount: Optional[float] = None
    currency: str
    consultation_id: Optional[str] = None
    reason: Optional[str] = None
