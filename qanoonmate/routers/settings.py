"""
Settings routes.

Each settings form saves its own section with a partial PATCH. Sections:
preferences, security, billing (all roles) and consultation, availability,
identity_verification (lawyers).
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import get_current_user, verify_password
from ..models import User
from ..schemas.common import MessageResponse
from ..schemas.settings import (
    SECTION_SCHEMAS,
    DeactivateRequest,
    SettingsSectionRead,
    TwoFactorState,
    TwoFactorToggle,
)
from ..services import user_settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def get_settings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """All sections available to the caller's role"""
    sections = await user_settings.get_all_sections(db, current_user)
    await db.commit()
    return sections


@router.patch("/security/two-factor", response_model=TwoFactorState)
async def toggle_two_factor(
    payload: TwoFactorToggle,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Enable or disable two-factor authentication.

    Returns the stored state; the client reverts its optimistic toggle when
    this call fails.
    """
    security = await user_settings.set_two_factor(db, current_user, payload.enabled)
    await db.commit()
    return TwoFactorState(two_factor_enabled=security["two_factor_enabled"])


@router.post("/danger-zone/deactivate", response_model=MessageResponse)
async def deactivate_account(
    payload: DeactivateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate the caller's account after password confirmation"""
    if not verify_password(payload.password, current_user.password_hash):
        raise HTTPException(status_code=400, detail="Password is incorrect")
    current_user.is_active = False
    current_user.deactivation_reason = payload.reason
    await user_settings.record_activity(db, current_user, "account_deactivated", {"reason": payload.reason})
    await db.commit()
    logger.info(f"User {current_user.id} deactivated their account")
    return MessageResponse(message="Account deactivated")


@router.post("/reset/{section}", response_model=SettingsSectionRead)
async def reset_section(
    section: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = await user_settings.reset_section(db, current_user, section)
    await db.commit()
    return SettingsSectionRead(section=section, data=data)


@router.get("/{section}", response_model=SettingsSectionRead)
async def get_section(
    section: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = await user_settings.get_section(db, current_user, section)
    await db.commit()
    return SettingsSectionRead(section=section, data=data)


@router.patch("/{section}", response_model=SettingsSectionRead)
async def update_section(
    section: str,
    body: Dict[str, Any] = Body(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Partial update of one section.

    Only the sent keys change; nested objects are merged. Unknown keys are
    rejected with 422.
    """
    schema = SECTION_SCHEMAS.get(section)
    if schema is None or section not in user_settings.sections_for(current_user.role):
        raise HTTPException(status_code=404, detail=f"Settings section '{section}' not found")
    try:
        patch = schema.model_validate(body).model_dump(exclude_unset=True, mode="json")
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))

    if section == "identity_verification":
        patch["status"] = "pending"
        patch["rejection_reason"] = None
    data = await user_settings.update_section(db, current_user, section, patch)
    await db.commit()
    return SettingsSectionRead(section=section, data=data)
