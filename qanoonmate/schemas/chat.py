"""AI assistant chat schemas"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class ChatSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: Optional[str] = None
    sender: str
    content: str
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ChatSessionDetail(ChatSessionRead):
    messages: List[ChatMessageRead] = Field(default_factory=list)


class SessionRename(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class AttachmentRead(BaseModel):
    id: str
    name: str
    url: str
    file_type: str
    file_size: int
    uploaded_at: str


class StartChatFrame(BaseModel):
    """`start_chat` event data"""
    title: Optional[str] = Field(default=None, max_length=200)


class ChatMessageFrame(BaseModel):
    """`chat_message` event data; attachments come from the attachment upload endpoint"""
    session_id: Optional[str] = None
    message: str = ""
    attachments: List[AttachmentRead] = Field(default_factory=list)
