"""Lawyer application review (admin), the lawyer's own application and the public directory"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import get_current_user, require_admin, require_lawyer
from ..models import ApplicationStatus, LawyerProfile, User, UserRole
from ..schemas.common import MessageResponse, Page, PaginationParams
from ..schemas.lawyers import (
    AdminNoteRequest,
    DuplicateRequest,
    LawyerApplicationRead,
    LawyerPublicRead,
    RejectRequest,
    RequestInfoRequest,
)
from ..services import lawyer_applications as applications
from ..services.listing import ilike_any, pagination_params, paginate_items, paginate_query
from ..services.uploads import VERIFICATION_TYPES, private_file_path, store_upload

logger = logging.getLogger(__name__)
router = APIRouter()

DocType = Literal["cnic_front", "cnic_back", "bar_card_front", "bar_card_back", "selfie", "degree"]


async def _get_application_or_404(db: AsyncSession, application_id: str) -> LawyerProfile:
    result = await db.execute(select(LawyerProfile).where(LawyerProfile.id == application_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return profile


async def _saved(db: AsyncSession, profile: LawyerProfile) -> LawyerApplicationRead:
    await db.commit()
    await db.refresh(profile)
    return LawyerApplicationRead.from_model(profile)


# ----------------------------------------------------------------------------
# Admin review
# ----------------------------------------------------------------------------

@router.get("/applications/pending", response_model=Page[LawyerApplicationRead])
async def list_pending_applications(
    search: Optional[str] = Query(None, description="Name or email substring"),
    jurisdiction: Optional[str] = Query(None, description="Court substring, e.g. 'Lahore High Court'"),
    date_range: Optional[str] = Query(None, description="today | week | month | 3months | 6months"),
    params: PaginationParams = Depends(pagination_params),
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Applications awaiting review (pending and under_review), newest first"""
    stmt = applications.pending_applications_query(search, jurisdiction, date_range)
    rows, meta = await paginate_query(db, stmt, params)
    return Page[LawyerApplicationRead](items=[LawyerApplicationRead.from_model(p) for p in rows], meta=meta)


@router.get("/applications/rejected", response_model=Page[LawyerApplicationRead])
async def list_rejected_applications(
    search: Optional[str] = Query(None, description="Name, email or bar council id substring"),
    reason: Optional[str] = Query(None, description="Rejection reason or 'all'"),
    sort: Optional[str] = Query(None, description="Sort key, default rejected-date-desc"),
    params: PaginationParams = Depends(pagination_params),
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    stmt = applications.rejected_applications_query(search, reason, sort)
    rows, meta = await paginate_query(db, stmt, params)
    return Page[LawyerApplicationRead](items=[LawyerApplicationRead.from_model(p) for p in rows], meta=meta)


@router.get("/applications/{application_id}", response_model=LawyerApplicationRead)
async def get_application(
    application_id: str,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    return LawyerApplicationRead.from_model(await _get_application_or_404(db, application_id))


@router.post("/applications/{application_id}/approve", response_model=LawyerApplicationRead)
async def approve_application(
    application_id: str,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    profile = await _get_application_or_404(db, application_id)
    applications.approve(profile, admin)
    return await _saved(db, profile)


@router.post("/applications/{application_id}/reject", response_model=LawyerApplicationRead)
async def reject_application(
    application_id: str,
    payload: RejectRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    profile = await _get_application_or_404(db, application_id)
    applications.reject(profile, admin, payload.reason.value, payload.notes)
    return await _saved(db, profile)


@router.post("/applications/{application_id}/mark-duplicate", response_model=LawyerApplicationRead)
async def mark_duplicate_application(
    application_id: str,
    payload: Optional[DuplicateRequest] = None,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    profile = await _get_application_or_404(db, application_id)
    applications.mark_duplicate(profile, admin, payload.notes if payload else None)
    return await _saved(db, profile)


@router.post("/applications/{application_id}/request-info", response_model=LawyerApplicationRead)
async def request_application_info(
    application_id: str,
    payload: RequestInfoRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    profile = await _get_application_or_404(db, application_id)
    applications.request_info(profile, admin, payload.message)
    return await _saved(db, profile)


@router.post("/applications/{application_id}/notes", response_model=LawyerApplicationRead)
async def add_application_note(
    application_id: str,
    payload: AdminNoteRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    profile = await _get_application_or_404(db, application_id)
    applications.add_note(profile, admin, payload.note)
    return await _saved(db, profile)


@router.post("/applications/{application_id}/reconsider", response_model=LawyerApplicationRead)
async def reconsider_application(
    application_id: str,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Move a rejected application back to pending"""
    profile = await _get_application_or_404(db, application_id)
    applications.reconsider(profile, admin)
    return await _saved(db, profile)


@router.delete("/applications/{application_id}", response_model=MessageResponse)
async def delete_application(
    application_id: str,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete a rejected application and its account"""
    profile = await _get_application_or_404(db, application_id)
    await applications.delete_permanently(db, profile, admin)
    await db.commit()
    return MessageResponse(message="Application deleted")


# ----------------------------------------------------------------------------
# Lawyer's own application
# ----------------------------------------------------------------------------

@router.get("/me/application", response_model=LawyerApplicationRead)
async def my_application(lawyer: User = Depends(require_lawyer())):
    if lawyer.lawyer_profile is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return LawyerApplicationRead.from_model(lawyer.lawyer_profile)


@router.post("/me/documents", response_model=LawyerApplicationRead)
async def upload_verification_document(
    doc_type: DocType = Form(...),
    file: UploadFile = File(...),
    lawyer: User = Depends(require_lawyer()),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload a verification document (image or PDF, 5MB at most).

    A new upload of the same doc_type replaces the previous one. The file is
    not public; its url points at the authorized download route.
    """
    profile = lawyer.lawyer_profile
    if profile is None:
        raise HTTPException(status_code=404, detail="Application not found")

    stored = await store_upload(file, "verification", VERIFICATION_TYPES, private=True)
    stored["doc_type"] = doc_type
    stored["url"] = f"/api/lawyers/applications/{profile.id}/documents/{stored['id']}"
    profile.documents = [d for d in (profile.documents or []) if d.get("doc_type") != doc_type] + [stored]
    return await _saved(db, profile)


@router.get("/applications/{application_id}/documents/{document_id}")
async def download_verification_document(
    application_id: str,
    document_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Verification document file, for admins and the applicant only"""
    profile = await _get_application_or_404(db, application_id)
    if current_user.role != UserRole.ADMIN.value and current_user.id != profile.user_id:
        raise HTTPException(status_code=403, detail="Not allowed to view this document")
    document = next((d for d in (profile.documents or []) if d.get("id") == document_id), None)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    try:
        path = private_file_path("verification", document, VERIFICATION_TYPES)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Document not found")
    return FileResponse(path, media_type=document["file_type"], filename=document.get("name"))


# ----------------------------------------------------------------------------
# Public directory
# ----------------------------------------------------------------------------

def _directory_query():
    return (
        select(LawyerProfile)
        .join(User, User.id == LawyerProfile.user_id)
        .where(
            LawyerProfile.application_status == ApplicationStatus.APPROVED.value,
            User.is_active.is_(True),
            User.role == UserRole.LAWYER.value,
        )
    )


@router.get("", response_model=Page[LawyerPublicRead])
async def list_lawyers(
    search: Optional[str] = Query(None, description="Name, title or summary substring"),
    specialization: Optional[str] = None,
    province: Optional[str] = None,
    city: Optional[str] = None,
    min_experience: Optional[int] = Query(None, ge=0),
    max_experience: Optional[int] = Query(None, ge=0),
    params: PaginationParams = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    """Approved, active lawyers; best rated first"""
    stmt = _directory_query()
    if search:
        stmt = stmt.where(ilike_any(
            search, applications.full_name_expr, LawyerProfile.title, LawyerProfile.summary
        ))
    if province:
        stmt = stmt.where(User.province.ilike(province.strip()))
    if city:
        stmt = stmt.where(User.city.ilike(city.strip()))
    if min_experience is not None:
        stmt = stmt.where(LawyerProfile.experience_years >= min_experience)
    if max_experience is not None:
        stmt = stmt.where(LawyerProfile.experience_years <= max_experience)
    stmt = stmt.order_by(
        LawyerProfile.average_rating.desc().nulls_last(),
        LawyerProfile.review_count.desc(),
        LawyerProfile.id,
    )

    if specialization:
        # specializations is a JSON list; filtered after loading for portability
        result = await db.execute(stmt)
        wanted = specialization.strip().lower()
        rows = [
            p for p in result.scalars().all()
            if any(wanted in s.lower() for s in (p.specializations or []))
        ]
        items, meta = paginate_items(rows, params)
    else:
        items, meta = await paginate_query(db, stmt, params)
    return Page[LawyerPublicRead](items=[LawyerPublicRead.from_model(p) for p in items], meta=meta)


@router.get("/{lawyer_id}", response_model=LawyerPublicRead)
async def get_lawyer(lawyer_id: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(_directory_query().where(User.id == lawyer_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        raise HTTPException(status_code=404, detail="Lawyer not found")
    return LawyerPublicRead.from_model(profile)
