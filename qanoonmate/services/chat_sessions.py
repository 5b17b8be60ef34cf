"""Storage of AI assistant conversations"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFoundError
from ..models import ChatMessage, ChatSession, User

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New chat"
TITLE_LENGTH = 60


async def create_session(db: AsyncSession, user: User, title: Optional[str] = None) -> ChatSession:
    session = ChatSession(user_id=user.id, title=(title or "").strip()[:200] or DEFAULT_TITLE)
    db.add(session)
    await db.flush()
    logger.info(f"Chat session {session.id} started by user {user.id}")
    return session


async def get_session(db: AsyncSession, user: User, session_id: Optional[str]) -> ChatSession:
    """Session owned by the user; NotFoundError otherwise."""
    if not session_id:
        raise NotFoundError("Chat session not found", {"session_id": session_id})
    result = await db.execute(
        select(ChatSession).where(ChatSession.id == session_id, ChatSession.user_id == user.id)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError("Chat session not found", {"session_id": session_id})
    return session


async def list_messages(db: AsyncSession, session_id: str) -> List[ChatMessage]:
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id)
    )
    return list(result.scalars().all())


async def add_message(
    db: AsyncSession,
    session: ChatSession,
    sender: str,
    content: str,
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> ChatMessage:
    """
    Store a message. The first user message names an untitled session.

    created_at is set here so messages of one second keep their order.
    """
    message = ChatMessage(
        session_id=session.id,
        sender=sender,
        content=content,
        attachments=list(attachments or []),
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    if sender == "user" and session.title == DEFAULT_TITLE and content:
        session.title = content[:TITLE_LENGTH]
    await db.flush()
    await db.refresh(message)
    return message


def history_for_prompt(messages: List[ChatMessage]) -> List[Dict[str, str]]:
    return [{"sender": m.sender, "content": m.content} for m in messages if m.content]
