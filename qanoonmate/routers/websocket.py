"""
WebSocket endpoints.

- /ws/consultations/{consultation_id}?token=: live consultation updates
- /ws/chat?token=: AI legal assistant conversation
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from ..config import settings
from ..database import AsyncSessionLocal
from ..exceptions import AssistantError, QanoonMateError
from ..dependencies.security import get_user_from_token
from ..models import Consultation, User
from ..schemas.chat import ChatMessageFrame, StartChatFrame
from ..schemas.consultations import ConsultationRead
from ..services import chat_sessions
from ..services.assistant_client import AssistantClient, build_messages, iter_chunks
from ..services.consultation_lifecycle import ensure_can_view

logger = logging.getLogger(__name__)
router = APIRouter()


class ConnectionManager:
    """Open consultation sockets, grouped by consultation id"""

    def __init__(self):
        # consultation_id -> [(websocket, viewer)]
        self.active_connections: Dict[str, List[Tuple[WebSocket, User]]] = {}

    async def connect(self, websocket: WebSocket, consultation_id: str, viewer: User):
        await websocket.accept()
        self.active_connections.setdefault(consultation_id, []).append((websocket, viewer))
        logger.info(
            f"WebSocket connected for consultation {consultation_id}. "
            f"Total connections: {len(self.active_connections[consultation_id])}"
        )

    def disconnect(self, websocket: WebSocket, consultation_id: str):
        connections = self.active_connections.get(consultation_id)
        if connections is None:
            return
        self.active_connections[consultation_id] = [c for c in connections if c[0] is not websocket]
        if not self.active_connections[consultation_id]:
            del self.active_connections[consultation_id]
        logger.info(f"WebSocket disconnected for consultation {consultation_id}")

    async def broadcast_to_consultation(self, consultation: Consultation):
        """Send the new state to every subscriber, rendered for that subscriber."""
        connections = self.active_connections.get(consultation.id)
        if not connections:
            return

        disconnected = []
        for websocket, viewer in list(connections):
            message = {
                "type": "update",
                "data": ConsultationRead.from_model(consultation, viewer=viewer).model_dump(mode="json"),
            }
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning(f"Failed to send to WebSocket client: {e}")
                disconnected.append(websocket)

        for websocket in disconnected:
            self.disconnect(websocket, consultation.id)


manager = ConnectionManager()


async def _authenticate(websocket: WebSocket) -> Optional[User]:
    """User from the `token` query parameter; closes the socket when it is invalid."""
    token = websocket.query_params.get("token")
    async with AsyncSessionLocal() as db:
        try:
            return await get_user_from_token(db, token)
        except HTTPException as exc:
            logger.warning(f"WebSocket authentication failed: {exc.detail}")
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return None


@router.websocket("/consultations/{consultation_id}")
async def consultation_socket(websocket: WebSocket, consultation_id: str):
    """
    Live updates of one consultation.

    Messages:
    - `{"type": "initial", "data": {...}}` current state after connecting
    - `{"type": "update", "data": {...}}` after every change
    - `{"type": "error", "message": "..."}`

    Send `"ping"` to keep the connection alive; the server answers `"pong"`.
    """
    user = await _authenticate(websocket)
    if user is None:
        return

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(Consultation).where(Consultation.id == consultation_id))
        consultation = result.scalar_one_or_none()
        if consultation is not None:
            try:
                ensure_can_view(consultation, user)
            except QanoonMateError:
                consultation = None

    await manager.connect(websocket, consultation_id, user)
    try:
        if consultation is None:
            await websocket.send_json({"type": "error", "message": f"Consultation {consultation_id} not found"})
            await websocket.close()
            manager.disconnect(websocket, consultation_id)
            return

        await websocket.send_json({
            "type": "initial",
            "data": ConsultationRead.from_model(consultation, viewer=user).model_dump(mode="json"),
        })
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        manager.disconnect(websocket, consultation_id)


async def notify_consultation_update(consultation: Consultation):
    """
    Push a consultation's new state to its subscribers.

    Args:
        consultation: consultation after commit and refresh
    """
    await manager.broadcast_to_consultation(consultation)


# ----------------------------------------------------------------------------
# AI assistant chat
# ----------------------------------------------------------------------------

async def _emit(websocket: WebSocket, event: str, data: Dict[str, Any]):
    await websocket.send_json({"event": event, "data": data})


async def _start_chat(websocket: WebSocket, user: User, data: Dict[str, Any]):
    frame = StartChatFrame.model_validate(data)
    async with AsyncSessionLocal() as db:
        session = await chat_sessions.create_session(db, user, frame.title)
        await db.commit()
    await _emit(websocket, "session-started", {"session_id": session.id, "title": session.title})


async def _chat_message(websocket: WebSocket, user: User, data: Dict[str, Any]):
    """
    Store the user message, ask the assistant and stream its reply.

    Emits message-received for the stored user message, then message-stream
    chunks of the reply; the last chunk has done=true.
    """
    frame = ChatMessageFrame.model_validate(data)
    content = frame.message.strip()
    attachments = [a.model_dump() for a in frame.attachments]
    if not content and not attachments:
        await _emit(websocket, "error", {"message": "Message cannot be empty"})
        return

    async with AsyncSessionLocal() as db:
        session = await chat_sessions.get_session(db, user, frame.session_id)
        stored = await chat_sessions.add_message(db, session, "user", content, attachments)
        history = chat_sessions.history_for_prompt(await chat_sessions.list_messages(db, session.id))
        await db.commit()

    await _emit(websocket, "message-received", {
        "id": stored.id,
        "session_id": session.id,
        "content": stored.content,
        "attachments": stored.attachments,
    })

    try:
        reply = await AssistantClient().complete(build_messages(history, attachments), session_id=session.id)
    except AssistantError as exc:
        logger.error(f"Assistant failed for session {session.id}: {exc.message}")
        await _emit(websocket, "error", {"message": "The assistant is unavailable right now. Please try again."})
        return

    async with AsyncSessionLocal() as db:
        session = await chat_sessions.get_session(db, user, session.id)
        answer = await chat_sessions.add_message(db, session, "assistant", reply)
        await db.commit()

    chunks = list(iter_chunks(reply, settings.ASSISTANT_STREAM_CHUNK))
    for index, chunk in enumerate(chunks):
        await _emit(websocket, "message-stream", {
            "id": answer.id,
            "session_id": session.id,
            "content": chunk,
            "done": index == len(chunks) - 1,
        })


@router.websocket("/chat")
async def chat_socket(websocket: WebSocket):
    """
    AI legal assistant.

    Frames are JSON `{"event": ..., "data": {...}}`:
    - start_chat {title?} -> session-started {session_id}
    - chat_message {session_id, message, attachments?} -> message-received, message-stream...
    - ping -> pong
    Failures are reported as `error {message}`; the socket stays open.
    """
    user = await _authenticate(websocket)
    if user is None:
        return
    await websocket.accept()

    try:
        while True:
            raw = await websocket.receive_text()
            if raw == "ping":
                await websocket.send_text("pong")
                continue
            try:
                frame = json.loads(raw)
            except ValueError:
                await _emit(websocket, "error", {"message": "Invalid message format"})
                continue
            if not isinstance(frame, dict):
                await _emit(websocket, "error", {"message": "Invalid message format"})
                continue

            event = frame.get("event")
            data = frame.get("data") if isinstance(frame.get("data"), dict) else {}
            try:
                if event == "ping":
                    await _emit(websocket, "pong", {})
                elif event == "start_chat":
                    await _start_chat(websocket, user, data)
                elif event == "chat_message":
                    await _chat_message(websocket, user, data)
                else:
                    await _emit(websocket, "error", {"message": f"Unknown event '{event}'"})
            except QanoonMateError as exc:
                await _emit(websocket, "error", {"message": exc.message})
            except PydanticValidationError as exc:
                await _emit(websocket, "error", {
                    "message": "Invalid message format",
                    "errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()],
                })
    except WebSocketDisconnect:
        logger.info(f"Chat socket closed for user {user.id}")
