"""AI assistant chat sessions (REST side; messages flow over /ws/chat)"""
import logging

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies.security import get_current_user
from ..models import ChatMessage, ChatSession, User
from ..schemas.chat import AttachmentRead, ChatMessageRead, ChatSessionDetail, ChatSessionRead, SessionRename
from ..schemas.common import MessageResponse, Page, PaginationParams
from ..services import chat_sessions
from ..services.listing import pagination_params, paginate_query
from ..services.uploads import DOCUMENT_TYPES, store_upload

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/sessions", response_model=Page[ChatSessionRead])
async def list_sessions(
    params: PaginationParams = Depends(pagination_params),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's conversations, most recently active first"""
    stmt = (
        select(ChatSession)
        .where(ChatSession.user_id == current_user.id)
        .order_by(ChatSession.updated_at.desc(), ChatSession.created_at.desc(), ChatSession.id)
    )
    rows, meta = await paginate_query(db, stmt, params)
    return Page[ChatSessionRead](items=[ChatSessionRead.model_validate(s) for s in rows], meta=meta)


@router.get("/sessions/{session_id}", response_model=ChatSessionDetail)
async def get_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await chat_sessions.get_session(db, current_user, session_id)
    messages = await chat_sessions.list_messages(db, session.id)
    return ChatSessionDetail(
        **ChatSessionRead.model_validate(session).model_dump(),
        messages=[ChatMessageRead.model_validate(m) for m in messages],
    )


@router.patch("/sessions/{session_id}", response_model=ChatSessionRead)
async def rename_session(
    session_id: str,
    payload: SessionRename,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await chat_sessions.get_session(db, current_user, session_id)
    session.title = payload.title.strip()
    await db.commit()
    await db.refresh(session)
    return ChatSessionRead.model_validate(session)


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def delete_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await chat_sessions.get_session(db, current_user, session_id)
    await db.execute(delete(ChatMessage).where(ChatMessage.session_id == session.id))
    await db.delete(session)
    await db.commit()
    logger.info(f"Chat session {session_id} deleted by {current_user.id}")
    return MessageResponse(message="Chat session deleted")


@router.post(
    "/sessions/{session_id}/attachments",
    response_model=AttachmentRead,
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    session_id: str,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload a file for a later chat_message (PDF, image, doc or docx; 5MB at most).

    The returned metadata goes into the `attachments` list of the message.
    """
    await chat_sessions.get_session(db, current_user, session_id)
    stored = await store_upload(file, f"chat/{session_id}", DOCUMENT_TYPES)
    return AttachmentRead(**stored)
