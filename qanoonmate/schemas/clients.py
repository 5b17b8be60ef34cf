"""Client schemas"""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class ClientRead(BaseModel):
    """Client identity and location, with consultation totals when listed for a lawyer"""
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    profile_photo: Optional[str] = None
    is_active: bool = True
    consultation_count: int = 0
    last_consultation_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, user, consultation_count: int = 0, last_consultation_date: Optional[datetime] = None):
        return cls(
            id=user.id,
            name=user.full_name,
            email=user.email,
            phone=user.phone,
            city=user.city,
            province=user.province,
            profile_photo=user.profile_photo,
            is_active=user.is_active,
            consultation_count=consultation_count,
            last_consultation_date=last_consultation_date,
            created_at=user.created_at,
        )


class ClientStatusUpdate(BaseModel):
    is_active: bool
    reason: Optional[str] = None
