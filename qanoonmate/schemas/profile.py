"""Profile schemas"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from .auth import UserRead

LAWYER_FIELDS = ("title", "summary", "specializations", "jurisdiction", "hourly_rate", "experience_years")


class LawyerProfileRead(BaseModel):
    id: str
    title: Optional[str] = None
    summary: Optional[str] = None
    jurisdiction: Optional[str] = None
    specializations: List[str] = Field(default_factory=list)
    experience_years: int = 0
    hourly_rate: Optional[float] = None
    currency: str = "PKR"
    application_status: str
    identity_verified: bool = False
    average_rating: Optional[float] = None
    review_count: int = 0
    documents: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_model(cls, profile):
        return cls(
            id=profile.id,
            title=profile.title,
            summary=profile.summary,
            jurisdiction=profile.jurisdiction,
            specializations=profile.specializations or [],
            experience_years=profile.experience_years or 0,
            hourly_rate=float(profile.hourly_rate) if profile.hourly_rate is not None else None,
            currency=profile.currency,
            application_status=profile.application_status,
            identity_verified=profile.identity_verified,
            average_rating=profile.average_rating,
            review_count=profile.review_count or 0,
            documents=profile.documents or [],
        )


class ProfileRead(BaseModel):
    user: UserRead
    lawyer_profile: Optional[LawyerProfileRead] = None

    @classmethod
    def from_model(cls, user):
        profile = user.lawyer_profile
        return cls(
            user=UserRead.from_model(user),
            lawyer_profile=LawyerProfileRead.from_model(profile) if profile is not None else None,
        )


class ProfileUpdate(BaseModel):
    """Partial profile update; the lawyer fields are accepted for lawyers only"""
    first_name: Optional[str] = Field(default=None, min_length=1)
    last_name: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    bio: Optional[str] = None

    title: Optional[str] = None
    summary: Optional[str] = None
    specializations: Optional[List[str]] = None
    jurisdiction: Optional[str] = None
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    experience_years: Optional[int] = Field(default=None, ge=0)
