"""
Settings section schemas.

One PATCH schema per section; every field is optional so a form can send
only what changed. Unknown keys are rejected.
"""
import re
from datetime import date
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Literal

from ..models import ConsultationMode

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
WEEK_DAY = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class SectionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NotificationPreferences(SectionPatch):
    email: Optional[bool] = None
    sms: Optional[bool] = None
    push: Optional[bool] = None
    newsletter: Optional[bool] = None


class PreferencesUpdate(SectionPatch):
    notifications: Optional[NotificationPreferences] = None
    language: Optional[Literal["en", "ur"]] = None
    timezone: Optional[str] = None
    date_format: Optional[str] = None
    theme: Optional[Literal["light", "dark", "system"]] = None


class SecurityUpdate(SectionPatch):
    login_alerts: Optional[bool] = None
    devices: Optional[List[Dict[str, str]]] = None


class ConsultationSettingsUpdate(SectionPatch):
    modes: Optional[List[ConsultationMode]] = None
    durations: Optional[List[int]] = None
    fees: Optional[Dict[ConsultationMode, float]] = None
    buffer_minutes: Optional[int] = Field(default=None, ge=0, le=240)
    cancel_cutoff_hours: Optional[int] = Field(default=None, ge=0, le=168)
    auto_approve: Optional[bool] = None
    advance_booking_days: Optional[int] = Field(default=None, ge=1, le=365)

    @field_validator('durations')
    @classmethod
    def validate_durations(cls, v):
        if v is not None and any(d <= 0 for d in v):
            raise ValueError("Durations must be positive minutes")
        return v

    @field_validator('fees')
    @classmethod
    def validate_fees(cls, v):
        if v is not None and any(amount < 0 for amount in v.values()):
            raise ValueError("Fees cannot be negative")
        return v


class TimeSlot(SectionPatch):
    start: str
    end: str

    @field_validator('start', 'end')
    @classmethod
    def validate_time(cls, v):
        if not TIME_PATTERN.match(v):
            raise ValueError("Time must be HH:MM")
        return v

    @field_validator('end')
    @classmethod
    def validate_order(cls, v, info):
        start = info.data.get("start")
        if start and v <= start:
            raise ValueError("Slot end must be after its start")
        return v


class AvailabilityUpdate(SectionPatch):
    weekly: Optional[Dict[WEEK_DAY, List[TimeSlot]]] = None
    unavailable_dates: Optional[List[date]] = None


class BillingUpdate(SectionPatch):
    payout_method: Optional[Literal["bank_transfer", "jazzcash", "easypaisa"]] = None
    account_title: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None


class IdentityVerificationUpdate(SectionPatch):
    documents: Dict[str, str] = Field(description="doc_type -> uploaded file url")


SECTION_SCHEMAS = {
    "preferences": PreferencesUpdate,
    "security": SecurityUpdate,
    "consultation": ConsultationSettingsUpdate,
    "availability": AvailabilityUpdate,
    "billing": BillingUpdate,
    "identity_verification": IdentityVerificationUpdate,
}


class TwoFactorToggle(BaseModel):
    enabled: bool


class TwoFactorState(BaseModel):
    two_factor_enabled: bool


class DeactivateRequest(BaseModel):
    password: str
    reason: Optional[str] = None


class SettingsSectionRead(BaseModel):
    section: str
    data: dict
