"""Registration, login and password routes"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import (
    create_access_token,
    get_current_user,
    hash_password,
    verify_password,
)
from ..models import ApplicationStatus, LawyerProfile, User, UserRole
from ..schemas.auth import LoginRequest, LoginResponse, PasswordChange, RegisterRequest, UserRead
from ..schemas.common import MessageResponse
from ..services.user_settings import record_activity

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Sign up a client or a lawyer.

    A lawyer account gets a LawyerProfile with application_status=pending;
    it appears in the admin pending list until reviewed.
    """
    existing = await db.execute(select(User.id).where(User.email == payload.email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="An account with this email already exists")

    user = User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        city=payload.city,
        province=payload.province,
        is_active=True,
    )
    if payload.role == UserRole.LAWYER.value:
        user.lawyer_profile = LawyerProfile(
            cnic=payload.cnic,
            license_number=payload.license_number,
            bar_council=payload.bar_council,
            bar_council_id=payload.bar_council_id,
            jurisdiction=payload.jurisdiction,
            specializations=list(payload.specializations),
            experience_years=payload.experience_years,
            additional_info=payload.additional_info,
            application_status=ApplicationStatus.PENDING.value,
        )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info(f"Registered {user.role} {user.id} ({user.email})")
    return UserRead.from_model(user)


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Exchange email and password for a bearer token"""
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="This account is deactivated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user.last_login_at = datetime.now(timezone.utc)
    await record_activity(db, user, "login")
    await db.commit()

    return LoginResponse(access_token=create_access_token(user), user_id=user.id, role=user.role)


@router.get("/me", response_model=UserRead)
async def me(current_user: User = Depends(get_current_user)):
    return UserRead.from_model(current_user)


@router.put("/password", response_model=MessageResponse)
async def change_password(
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not verify_password(payload.current_password, current_user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    if payload.current_password == payload.new_password:
        raise HTTPException(status_code=400, detail="The new password must differ from the current one")

    current_user.password_hash = hash_password(payload.new_password)
    await record_activity(db, current_user, "password_changed")
    await db.commit()
    return MessageResponse(message="Password updated")
