"""
SQLAlchemy models for the QanoonMate marketplace.

Tables:
- users, lawyer_profiles: accounts and lawyer onboarding applications
- consultations: booked sessions with their lifecycle data
- faqs: knowledge base entries
- user_settings: per-user settings sections
- payments: gateway payments for consultations
- chat_sessions, chat_messages: AI assistant conversations
- consultation_change_log, idempotency_keys: service tables
"""
import enum
import uuid

from sqlalchemy import (
    Column, Boolean, Integer, DateTime, ForeignKey, Text, JSON, Numeric,
    String, Float, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Enumerations (stored as text)
# ============================================================================

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    LAWYER = "lawyer"
    CLIENT = "client"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class RejectionReason(str, enum.Enum):
    INCOMPLETE_CREDENTIALS = "incomplete-credentials"
    INVALID_DOCUMENTS = "invalid-documents"
    SUSPENDED_LICENSE = "suspended-license"
    FRAUDULENT_APPLICATION = "fraudulent-application"
    DUPLICATE_APPLICATION = "duplicate-application"
    INSUFFICIENT_EXPERIENCE = "insufficient-experience"
    FAILED_VERIFICATION = "failed-verification"
    OTHER = "other"


class ConsultationStatus(str, enum.Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class ConsultationType(str, enum.Enum):
    GENERAL = "general"
    SPECIALIST = "specialist"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"
    INITIAL = "initial"


class ConsultationMode(str, enum.Enum):
    VIDEO = "video"
    PHONE = "phone"
    IN_PERSON = "in-person"
    CHAT = "chat"


class CancellationReason(str, enum.Enum):
    CLIENT_REQUEST = "client_request"
    LAWYER_UNAVAILABLE = "lawyer_unavailable"
    EMERGENCY = "emergency"
    TECHNICAL_ISSUE = "technical_issue"
    OTHER = "other"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"
    EXPIRED = "expired"


class RescheduleStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================================================
# Accounts
# ============================================================================

class User(Base):
    """Platform account (admin, lawyer or client)"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(Text, unique=True, nullable=False, index=True)
    password_hash = Column(Text, nullable=False)
    role = Column(Text, nullable=False, default=UserRole.CLIENT.value)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    city = Column(Text, nullable=True)
    province = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    profile_photo = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    deactivation_reason = Column(Text, nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    lawyer_profile = relationship(
        "LawyerProfile", back_populates="user", uselist=False,
        cascade="all, delete-orphan", lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


class LawyerProfile(Base):
    """Lawyer profile and onboarding application"""
    __tablename__ = "lawyer_profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    title = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    cnic = Column(Text, nullable=True)
    license_number = Column(Text, nullable=True)  # enrollment number
    bar_council = Column(Text, nullable=True)
    bar_council_id = Column(Text, nullable=True)
    jurisdiction = Column(Text, nullable=True)  # court, e.g. "Lahore High Court"
    specializations = Column(JSONType, nullable=False, default=list)
    experience_years = Column(Integer, nullable=False, default=0)
    hourly_rate = Column(Numeric(12, 2), nullable=True)
    currency = Column(Text, nullable=False, default="PKR")
    additional_info = Column(Text, nullable=True)
    documents = Column(JSONType, nullable=False, default=list)  # [{doc_type, name, url, uploaded_at}]

    application_status = Column(Text, nullable=False, default=ApplicationStatus.PENDING.value, index=True)
    identity_verified = Column(Boolean, nullable=False, default=False)
    applied_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    rejection_notes = Column(Text, nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(36), nullable=True)
    admin_notes = Column(JSONType, nullable=False, default=list)  # [{note, author_id, created_at}]

    average_rating = Column(Float, nullable=True)
    review_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="lawyer_profile", lazy="selectin")


class UserSettings(Base):
    """Settings sections of a user"""
    __tablename__ = "user_settings"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    preferences = Column(JSONType, nullable=True)
    security = Column(JSONType, nullable=True)
    consultation = Column(JSONType, nullable=True)
    availability = Column(JSONType, nullable=True)
    billing = Column(JSONType, nullable=True)
    identity_verification = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


# ============================================================================
# Consultations
# ============================================================================

class Consultation(Base):
    """Lawyer/client consultation"""
    __tablename__ = "consultations"
    __table_args__ = (
        Index("ix_consultations_lawyer_status", "lawyer_id", "status"),
        Index("ix_consultations_client_status", "client_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lawyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    consultation_type = Column(Text, nullable=False, default=ConsultationType.GENERAL.value)
    mode = Column(Text, nullable=False, default=ConsultationMode.VIDEO.value)
    scheduled_date = Column(DateTime(timezone=True), nullable=False)
    time_slot = Column(Text, nullable=True)
    duration = Column(Integer, nullable=False, default=60)
    fee = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(Text, nullable=False, default="PKR")
    status = Column(Text, nullable=False, default=ConsultationStatus.PENDING.value, index=True)
    payment_status = Column(Text, nullable=False, default=PaymentStatus.PENDING.value)

    meeting_link = Column(Text, nullable=True)
    phone_number = Column(Text, nullable=True)
    lawyer_notes = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancellation_note = Column(Text, nullable=True)
    cancelled_by = Column(String(36), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    original_date = Column(DateTime(timezone=True), nullable=True)

    documents = Column(JSONType, nullable=False, default=list)
    notes = Column(JSONType, nullable=False, default=list)
    reschedule_requests = Column(JSONType, nullable=False, default=list)
    rating = Column(JSONType, nullable=True)
    status_history = Column(JSONType, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    client = relationship("User", foreign_keys=[client_id], lazy="selectin")
    lawyer = relationship("User", foreign_keys=[lawyer_id], lazy="selectin")


class ConsultationChangeLog(Base):
    """Audit log of consultation field changes"""
    __tablename__ = "consultation_change_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    consultation_id = Column(String(36), nullable=False, index=True)
    field_name = Column(Text, nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    changed_by = Column(String(36), nullable=True)
    source = Column(Text, nullable=False, default="API")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ============================================================================
# FAQ
# ============================================================================

class FAQ(Base):
    """Knowledge base entry with an approval flag"""
    __tablename__ = "faqs"

    id = Column(String(36), primary_key=True, default=new_id)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    category = Column(Text, nullable=True, index=True)
    tags = Column(JSONType, nullable=False, default=list)
    urdu_translation = Column(JSONType, nullable=True)  # {question, answer}
    related_laws = Column(JSONType, nullable=False, default=list)
    is_approved = Column(Boolean, nullable=False, default=False, index=True)
    verified_by = Column(String(36), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


# ============================================================================
# Payments
# ============================================================================

class Payment(Base):
    """Gateway payment for a consultation"""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(Text, unique=True, nullable=False, index=True)
    tracker = Column(Text, nullable=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    consultation_id = Column(String(36), ForeignKey("consultations.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(Text, nullable=False, default="PKR")
    payment_type = Column(Text, nullable=False, default="consultation")
    method = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    status_history = Column(JSONType, nullable=False, default=list)
    gateway = Column(Text, nullable=False, default="hosted_checkout")
    gateway_response = Column(JSONType, nullable=True)
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


# ============================================================================
# AI assistant chat
# ============================================================================

class ChatSession(Base):
    """AI assistant conversation"""
    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(Text, nullable=False, default="New chat")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ChatMessage(Base):
    """Message inside an AI assistant conversation"""
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    sender = Column(Text, nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    attachments = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ============================================================================
# Service tables
# ============================================================================

class IdempotencyKey(Base):
    """Idempotency keys for replaying repeated requests"""
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("key", "operation_type", name="uq_idempotency_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(Text, nullable=False)
    operation_type = Column(Text, nullable=False)
    resource_id = Column(Text, nullable=True)
    request_hash = Column(Text, nullable=True)
    response_data = Column(JSONType, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
