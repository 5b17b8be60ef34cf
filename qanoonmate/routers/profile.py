"""Profile routes of the signed-in user"""
import logging

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import get_current_user
from ..exceptions import ValidationError
from ..models import User, UserRole
from ..schemas.profile import LAWYER_FIELDS, ProfileRead, ProfileUpdate
from ..services.uploads import PHOTO_TYPES, store_upload

logger = logging.getLogger(__name__)
router = APIRouter()


async def _saved(db: AsyncSession, user: User) -> ProfileRead:
    await db.commit()
    await db.refresh(user)
    return ProfileRead.from_model(user)


@router.get("", response_model=ProfileRead)
async def get_profile(current_user: User = Depends(get_current_user)):
    return ProfileRead.from_model(current_user)


@router.put("", response_model=ProfileRead)
async def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Partial update; only the sent fields change"""
    changes = payload.model_dump(exclude_unset=True)
    lawyer_changes = {k: changes.pop(k) for k in LAWYER_FIELDS if k in changes}

    if lawyer_changes:
        if current_user.role != UserRole.LAWYER.value or current_user.lawyer_profile is None:
            raise ValidationError(
                "Only lawyers can update professional profile fields",
                {"fields": sorted(lawyer_changes)},
            )
        profile = current_user.lawyer_profile
        for field, value in lawyer_changes.items():
            if field == "specializations":
                value = list(value or [])
            setattr(profile, field, value)

    for field, value in changes.items():
        setattr(current_user, field, value)

    logger.info(f"Profile of {current_user.id} updated: {sorted(changes) + sorted(lawyer_changes)}")
    return await _saved(db, current_user)


@router.post("/photo", response_model=ProfileRead)
async def upload_profile_photo(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the profile photo (jpeg, png, gif or webp; 5MB at most)"""
    stored = await store_upload(file, "profile_photos", PHOTO_TYPES)
    current_user.profile_photo = stored["url"]
    return await _saved(db, current_user)
