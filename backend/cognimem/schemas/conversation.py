"""
Conversation Schemas

Pydantic models for conversations, messages, turns and contacts.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import Field

from .base import CamelModel, RequestModel


class ConversationCreate(RequestModel):
    title: Optional[str] = None
    namespace: Optional[str] = None


class ConversationResponse(CamelModel):
    id: str
    title: Optional[str] = None
    namespace: Optional[str] = None
    created_at: datetime


class MessageCreate(RequestModel):
    """Append a message; mentioned entities are linked to it."""
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str = Field(..., min_length=1)
    mentioned_entity_ids: List[str] = []


class MessageResponse(CamelModel):
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime


class TurnRequest(RequestModel):
    """A user message that should get an assistant reply."""
    content: str = Field(..., min_length=1)
    mentioned_entity_ids: List[str] = []


class TurnResponse(CamelModel):
    user_message: MessageResponse
    assistant_message: MessageResponse
    context_run_id: str
    extraction_queued: bool


class ContactCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = []


class ContactResponse(CamelModel):
    id: str
    name: str
    email: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = []
    created_at: datetime
