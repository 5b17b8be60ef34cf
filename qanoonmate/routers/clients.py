"""Client directory routes for lawyers and admins"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import get_current_user, require_admin, require_lawyer
from ..models import Consultation, User, UserRole
from ..schemas.clients import ClientRead, ClientStatusUpdate
from ..schemas.common import Page, PaginationParams
from ..services.lawyer_applications import full_name_expr
from ..services.listing import ilike_any, pagination_params, paginate_query
from ..services.user_settings import record_activity
from ..utils.date_normalization import normalize_datetime

logger = logging.getLogger(__name__)
router = APIRouter()


def _client_filters(stmt: Select, search: Optional[str], city: Optional[str], province: Optional[str]) -> Select:
    if search:
        stmt = stmt.where(ilike_any(search, full_name_expr, User.email))
    if city:
        stmt = stmt.where(ilike_any(city, User.city))
    if province:
        stmt = stmt.where(ilike_any(province, User.province))
    return stmt


async def _consultation_totals(db: AsyncSession, client_ids, lawyer_id: Optional[str] = None) -> dict:
    """client_id -> (consultation count, last scheduled date), optionally limited to one lawyer."""
    if not client_ids:
        return {}
    stmt = (
        select(Consultation.client_id, func.count(Consultation.id), func.max(Consultation.scheduled_date))
        .where(Consultation.client_id.in_(client_ids))
        .group_by(Consultation.client_id)
    )
    if lawyer_id:
        stmt = stmt.where(Consultation.lawyer_id == lawyer_id)
    return {row[0]: (row[1], row[2]) for row in (await db.execute(stmt)).all()}


async def _page_of_clients(db: AsyncSession, stmt: Select, params: PaginationParams, lawyer_id: Optional[str] = None):
    rows, meta = await paginate_query(db, stmt, params)
    totals = await _consultation_totals(db, [u.id for u in rows], lawyer_id)
    items = []
    for user in rows:
        count, last_date = totals.get(user.id, (0, None))
        # max() of a datetime column comes back as text on sqlite
        items.append(ClientRead.from_model(user, count, normalize_datetime(last_date)))
    return Page[ClientRead](items=items, meta=meta)


@router.get("/mine", response_model=Page[ClientRead])
async def my_clients(
    search: Optional[str] = Query(None, description="Name or email substring"),
    city: Optional[str] = None,
    province: Optional[str] = None,
    params: PaginationParams = Depends(pagination_params),
    lawyer: User = Depends(require_lawyer()),
    db: AsyncSession = Depends(get_db),
):
    """Distinct clients who have consultations with the calling lawyer"""
    client_ids = select(Consultation.client_id).where(Consultation.lawyer_id == lawyer.id).distinct()
    stmt = select(User).where(User.id.in_(client_ids))
    stmt = _client_filters(stmt, search, city, province).order_by(full_name_expr.asc(), User.id)
    return await _page_of_clients(db, stmt, params, lawyer_id=lawyer.id)


@router.get("", response_model=Page[ClientRead])
async def list_clients(
    search: Optional[str] = Query(None, description="Name or email substring"),
    city: Optional[str] = None,
    province: Optional[str] = None,
    status: Optional[str] = Query(None, description="active | inactive"),
    params: PaginationParams = Depends(pagination_params),
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """All client accounts (admin)"""
    stmt = select(User).where(User.role == UserRole.CLIENT.value)
    stmt = _client_filters(stmt, search, city, province)
    if status == "active":
        stmt = stmt.where(User.is_active.is_(True))
    elif status == "inactive":
        stmt = stmt.where(User.is_active.is_(False))
    stmt = stmt.order_by(User.created_at.desc(), User.id)
    return await _page_of_clients(db, stmt, params)


async def _get_client_or_404(db: AsyncSession, client_id: str) -> User:
    result = await db.execute(select(User).where(User.id == client_id, User.role == UserRole.CLIENT.value))
    client = result.scalar_one_or_none()
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.get("/{client_id}", response_model=ClientRead)
async def get_client(
    client_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """A client; visible to admins and to lawyers the client has consulted"""
    client = await _get_client_or_404(db, client_id)
    lawyer_id = None
    if current_user.role != UserRole.ADMIN.value:
        if current_user.role != UserRole.LAWYER.value:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        lawyer_id = current_user.id
    totals = await _consultation_totals(db, [client.id], lawyer_id)
    count, last_date = totals.get(client.id, (0, None))
    if lawyer_id and not count:
        raise HTTPException(status_code=404, detail="Client not found")
    return ClientRead.from_model(client, count, normalize_datetime(last_date))


@router.patch("/{client_id}/status", response_model=ClientRead)
async def set_client_status(
    client_id: str,
    payload: ClientStatusUpdate,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Activate or deactivate a client account"""
    client = await _get_client_or_404(db, client_id)
    client.is_active = payload.is_active
    client.deactivation_reason = None if payload.is_active else payload.reason
    await record_activity(
        db, client, "account_activated" if payload.is_active else "account_deactivated",
        {"by": admin.id, "reason": payload.reason},
    )
    await db.commit()
    await db.refresh(client)
    logger.info(f"Client {client.id} {'activated' if payload.is_active else 'deactivated'} by admin {admin.id}")
    return ClientRead.from_model(client)
