"""FAQ routes: public approved list, admin management and verification"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import require_admin
from ..exceptions import ValidationError
from ..models import FAQ, User
from ..schemas.common import MessageResponse, Page, PaginationParams
from ..schemas.faqs import FAQCreate, FAQRead, FAQUpdate, FAQVerify
from ..services.listing import contains_any, ilike_any, pagination_params, paginate_items, paginate_query, split_csv

logger = logging.getLogger(__name__)
router = APIRouter()

SORTS = {
    "newest": FAQ.created_at.desc(),
    "oldest": FAQ.created_at.asc(),
    "question": FAQ.question.asc(),
}
CONTENT_FIELDS = ("question", "answer", "urdu_translation")


def _faq_query(category: Optional[str], search: Optional[str], sort: Optional[str]) -> Select:
    if sort and sort not in SORTS:
        raise ValidationError(f"Unknown sort '{sort}'", {"allowed": sorted(SORTS)})
    stmt = select(FAQ)
    if category and category != "all":
        stmt = stmt.where(FAQ.category == category)
    if search:
        stmt = stmt.where(ilike_any(search, FAQ.question, FAQ.answer))
    return stmt.order_by(SORTS[sort or "newest"], FAQ.id)


async def _page(db: AsyncSession, stmt: Select, tags: Optional[str], params: PaginationParams) -> Page[FAQRead]:
    wanted = split_csv(tags)
    if wanted:
        # tags is a JSON list; matched after loading
        rows = [faq for faq in (await db.execute(stmt)).scalars().all() if contains_any(faq.tags, wanted)]
        items, meta = paginate_items(rows, params)
    else:
        items, meta = await paginate_query(db, stmt, params)
    return Page[FAQRead](items=[FAQRead.model_validate(f) for f in items], meta=meta)


async def _get_faq_or_404(db: AsyncSession, faq_id: str) -> FAQ:
    result = await db.execute(select(FAQ).where(FAQ.id == faq_id))
    faq = result.scalar_one_or_none()
    if faq is None:
        raise HTTPException(status_code=404, detail="FAQ not found")
    return faq


@router.get("/approved", response_model=Page[FAQRead])
async def list_approved_faqs(
    category: Optional[str] = None,
    search: Optional[str] = Query(None, description="Question or answer substring"),
    tags: Optional[str] = Query(None, description="Comma separated; any tag matches"),
    sort: Optional[str] = Query(None, description="newest | oldest | question"),
    params: PaginationParams = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    """Approved FAQs (public)"""
    stmt = _faq_query(category, search, sort).where(FAQ.is_approved.is_(True))
    return await _page(db, stmt, tags, params)


@router.get("/all", response_model=Page[FAQRead])
async def list_all_faqs(
    category: Optional[str] = None,
    search: Optional[str] = None,
    tags: Optional[str] = None,
    sort: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status", description="approved | pending | all"),
    params: PaginationParams = Depends(pagination_params),
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    stmt = _faq_query(category, search, sort)
    if status_filter == "approved":
        stmt = stmt.where(FAQ.is_approved.is_(True))
    elif status_filter == "pending":
        stmt = stmt.where(FAQ.is_approved.is_(False))
    return await _page(db, stmt, tags, params)


@router.get("/{faq_id}", response_model=FAQRead)
async def get_faq(faq_id: str, db: AsyncSession = Depends(get_db)):
    """A single approved FAQ"""
    faq = await _get_faq_or_404(db, faq_id)
    if not faq.is_approved:
        raise HTTPException(status_code=404, detail="FAQ not found")
    return FAQRead.model_validate(faq)


@router.post("", response_model=FAQRead, status_code=status.HTTP_201_CREATED)
async def create_faq(
    payload: FAQCreate,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    data = payload.model_dump()
    faq = FAQ(**data, is_approved=False, created_by=admin.id)
    db.add(faq)
    await db.commit()
    await db.refresh(faq)
    logger.info(f"FAQ {faq.id} created by {admin.id}")
    return FAQRead.model_validate(faq)


@router.put("/{faq_id}", response_model=FAQRead)
async def update_faq(
    faq_id: str,
    payload: FAQUpdate,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Update an FAQ; changing its content withdraws the approval"""
    faq = await _get_faq_or_404(db, faq_id)
    changes = payload.model_dump(exclude_unset=True)
    content_changed = False
    for field, value in changes.items():
        if getattr(faq, field) != value:
            setattr(faq, field, value)
            content_changed = content_changed or field in CONTENT_FIELDS
    if content_changed and faq.is_approved:
        faq.is_approved = False
        faq.verified_by = None
        faq.verified_at = None
        logger.info(f"FAQ {faq.id} content changed; approval withdrawn")
    await db.commit()
    await db.refresh(faq)
    return FAQRead.model_validate(faq)


@router.patch("/{faq_id}/verify", response_model=FAQRead)
async def verify_faq(
    faq_id: str,
    payload: FAQVerify,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Approve or withdraw approval"""
    faq = await _get_faq_or_404(db, faq_id)
    faq.is_approved = payload.approved
    faq.verified_by = admin.id if payload.approved else None
    faq.verified_at = datetime.now(timezone.utc) if payload.approved else None
    await db.commit()
    await db.refresh(faq)
    return FAQRead.model_validate(faq)


@router.delete("/{faq_id}", response_model=MessageResponse)
async def delete_faq(
    faq_id: str,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    faq = await _get_faq_or_404(db, faq_id)
    await db.delete(faq)
    await db.commit()
    return MessageResponse(message="FAQ deleted")
