"""Lawyer application and directory schemas"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..models import RejectionReason


class LawyerApplicationRead(BaseModel):
    """Application record shown on the admin review screens"""
    id: str
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None
    jurisdiction: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    practice_areas: List[str] = Field(default_factory=list)
    experience: str
    experience_years: int = 0
    cnic: Optional[str] = None
    enrollment_no: Optional[str] = None
    bar_council: Optional[str] = None
    bar_council_id: Optional[str] = None
    uploaded_docs: List[str] = Field(default_factory=list)
    documents: List[Dict[str, Any]] = Field(default_factory=list)
    additional_info: Optional[str] = None
    status: str
    applied_date: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_notes: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    admin_notes: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_model(cls, profile):
        user = profile.user
        documents = profile.documents or []
        return cls(
            id=profile.id,
            user_id=profile.user_id,
            name=user.full_name,
            email=user.email,
            phone=user.phone,
            jurisdiction=profile.jurisdiction,
            province=user.province,
            city=user.city,
            practice_areas=profile.specializations or [],
            experience=f"{profile.experience_years or 0}+ years",
            experience_years=profile.experience_years or 0,
            cnic=profile.cnic,
            enrollment_no=profile.license_number,
            bar_council=profile.bar_council,
            bar_council_id=profile.bar_council_id,
            uploaded_docs=[d.get("name") for d in documents if d.get("name")],
            documents=documents,
            additional_info=profile.additional_info,
            status=profile.application_status,
            applied_date=profile.applied_at,
            approved_at=profile.approved_at,
            rejection_reason=profile.rejection_reason,
            rejection_notes=profile.rejection_notes,
            rejected_at=profile.rejected_at,
            rejected_by=profile.rejected_by,
            admin_notes=profile.admin_notes or [],
        )


class RejectRequest(BaseModel):
    reason: RejectionReason
    notes: Optional[str] = None


class DuplicateRequest(BaseModel):
    notes: Optional[str] = None


class RequestInfoRequest(BaseModel):
    message: str = Field(min_length=1)


class AdminNoteRequest(BaseModel):
    note: str = Field(min_length=1)


class LawyerPublicRead(BaseModel):
    """Approved lawyer as shown in the public directory"""
    id: str
    name: str
    title: Optional[str] = None
    summary: Optional[str] = None
    profile_photo: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    jurisdiction: Optional[str] = None
    specializations: List[str] = Field(default_factory=list)
    experience_years: int = 0
    hourly_rate: Optional[float] = None
    currency: str = "PKR"
    average_rating: Optional[float] = None
    review_count: int = 0

    @classmethod
    def from_model(cls, profile):
        user = profile.user
        return cls(
            id=user.id,
            name=user.full_name,
            title=profile.title,
            summary=profile.summary,
            profile_photo=user.profile_photo,
            city=user.city,
            province=user.province,
            jurisdiction=profile.jurisdiction,
            specializations=profile.specializations or [],
            experience_years=profile.experience_years or 0,
            hourly_rate=float(profile.hourly_rate) if profile.hourly_rate is not None else None,
            currency=profile.currency,
            average_rating=profile.average_rating,
            review_count=profile.review_count or 0,
        )
