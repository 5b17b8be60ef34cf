"""Consultation schemas"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..models import CancellationReason, ConsultationMode, ConsultationType
from ..services.consultation_lifecycle import available_actions, visible_notes
from ..utils.date_normalization import ensure_utc, normalize_datetime


def parse_datetime_flexible(value):
    """Parse ISO strings (with or without timezone) into UTC datetimes"""
    if value is None or value == "":
        return None
    parsed = normalize_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid datetime format: {value}")
    return parsed


class ConsultationBook(BaseModel):
    """Booking request from a client"""
    lawyer_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    consultation_type: ConsultationType = ConsultationType.GENERAL
    mode: ConsultationMode = ConsultationMode.VIDEO
    scheduled_date: datetime
    time_slot: Optional[str] = None  # e.g. "10:00-11:00"
    duration: Optional[int] = Field(default=None, gt=0, le=480)
    terms_accepted: bool = False

    @field_validator('scheduled_date', mode='before')
    @classmethod
    def parse_scheduled_date(cls, v):
        return parse_datetime_flexible(v)


class ConsultationUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None


class StartRequest(BaseModel):
    meeting_link: Optional[str] = None
    phone_number: Optional[str] = None


class CompleteRequest(BaseModel):
    lawyer_notes: Optional[str] = None


class NoShowRequest(BaseModel):
    note: Optional[str] = None


class CancelRequest(BaseModel):
    """Cancellation; a reason must be selected"""
    reason: CancellationReason
    note: Optional[str] = None


class RescheduleCreate(BaseModel):
    new_date: datetime
    new_time_slot: Optional[str] = None
    reason: Optional[str] = None

    @field_validator('new_date', mode='before')
    @classmethod
    def parse_new_date(cls, v):
        return parse_datetime_flexible(v)


class RescheduleDecision(BaseModel):
    response_message: Optional[str] = None


class RatingCategories(BaseModel):
    professionalism: Optional[int] = Field(default=None, ge=1, le=5)
    communication: Optional[int] = Field(default=None, ge=1, le=5)
    expertise: Optional[int] = Field(default=None, ge=1, le=5)
    value: Optional[int] = Field(default=None, ge=1, le=5)


class RatingCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: Optional[str] = None
    categories: Optional[RatingCategories] = None


class NoteCreate(BaseModel):
    content: str = Field(min_length=1)
    is_private: bool = False


class PartyRead(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    profile_photo: Optional[str] = None


def _party(user) -> Optional[PartyRead]:
    if user is None:
        return None
    return PartyRead(
        id=user.id,
        name=user.full_name,
        email=user.email,
        phone=user.phone,
        profile_photo=user.profile_photo,
    )


class ConsultationRead(BaseModel):
    """Consultation with the actions available in its current status"""
    id: str
    client_id: str
    lawyer_id: str
    client: Optional[PartyRead] = None
    lawyer: Optional[PartyRead] = None
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    consultation_type: str
    mode: str
    scheduled_date: datetime
    time_slot: Optional[str] = None
    duration: int
    fee: float
    currency: str
    status: str
    payment_status: str
    meeting_link: Optional[str] = None
    phone_number: Optional[str] = None
    lawyer_notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_note: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    original_date: Optional[datetime] = None
    documents: List[Dict[str, Any]] = Field(default_factory=list)
    notes: List[Dict[str, Any]] = Field(default_factory=list)
    reschedule_requests: List[Dict[str, Any]] = Field(default_factory=list)
    rating: Optional[Dict[str, Any]] = None
    status_history: List[Dict[str, Any]] = Field(default_factory=list)
    available_actions: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model, viewer=None):
        """
        Build the read model.

        Args:
            model: Consultation
            viewer: requesting user; private notes of other roles are hidden from them
        """
        return cls(
            id=model.id,
            client_id=model.client_id,
            lawyer_id=model.lawyer_id,
            client=_party(model.client),
            lawyer=_party(model.lawyer),
            title=model.title,
            description=model.description,
            category=model.category,
            consultation_type=model.consultation_type,
            mode=model.mode,
            scheduled_date=ensure_utc(model.scheduled_date),
            time_slot=model.time_slot,
            duration=model.duration,
            fee=float(model.fee or 0),
            currency=model.currency,
            status=model.status,
            payment_status=model.payment_status,
            meeting_link=model.meeting_link,
            phone_number=model.phone_number,
            lawyer_notes=model.lawyer_notes,
            started_at=ensure_utc(model.started_at),
            completed_at=ensure_utc(model.completed_at),
            cancellation_reason=model.cancellation_reason,
            cancellation_note=model.cancellation_note,
            cancelled_by=model.cancelled_by,
            cancelled_at=ensure_utc(model.cancelled_at),
            original_date=ensure_utc(model.original_date),
            documents=model.documents or [],
            notes=visible_notes(model, viewer),
            reschedule_requests=model.reschedule_requests or [],
            rating=model.rating,
            status_history=model.status_history or [],
            available_actions=available_actions(model.status, has_rating=bool(model.rating)),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class ConsultationStats(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    pending: int = 0
    scheduled: int = 0
    completed: int = 0
    cancelled: int = 0
    revenue: float = 0.0
    average_rating: Optional[float] = None


class ChangeLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field_name: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: Optional[str] = None
    source: str
    created_at: Optional[datetime] = None
