"""Authentication schemas"""
import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
from datetime import datetime

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def normalize_email(value: str) -> str:
    """Lower-case and validate an email address"""
    if not isinstance(value, str) or not EMAIL_PATTERN.match(value.strip()):
        raise ValueError("Invalid email address")
    return value.strip().lower()


class RegisterRequest(BaseModel):
    """Sign-up of a client or a lawyer"""
    email: str
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1)
    last_name: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    role: Literal["client", "lawyer"] = "client"

    # lawyer application fields
    cnic: Optional[str] = None
    license_number: Optional[str] = None
    bar_council: Optional[str] = None
    bar_council_id: Optional[str] = None
    jurisdiction: Optional[str] = None
    specializations: list[str] = Field(default_factory=list)
    experience_years: int = Field(default=0, ge=0)
    additional_info: Optional[str] = None

    @field_validator('email', mode='before')
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email', mode='before')
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class UserRead(BaseModel):
    id: str
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    phone: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    bio: Optional[str] = None
    profile_photo: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model):
        return cls(
            id=model.id,
            email=model.email,
            role=model.role,
            first_name=model.first_name,
            last_name=model.last_name,
            full_name=model.full_name,
            phone=model.phone,
            city=model.city,
            province=model.province,
            bio=model.bio,
            profile_photo=model.profile_photo,
            is_active=model.is_active,
            created_at=model.created_at,
        )
