from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.request import DocumentType, PartyRole, RequestKind


class DocumentOut(BaseModel):
    id: str
    request_id: str
    request_type: RequestKind
    document_name: str
    document_type: DocumentType
    file_path: str
    file_url: Optional[str] = None
    uploaded_by: str
    uploaded_by_role: PartyRole
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class DocumentListResponse(BaseModel):
    items: List[DocumentOut]


class MessageCreate(BaseModel):
    message: str = Field(..., max_length=5000)


class MessageOut(BaseModel):
    id: str
    request_id: str
    request_type: RequestKind
    sender_id: str
    sender_role: PartyRole
    message: str
    is_read: bool
    created_at: Optional[datetime] = None


class MessageListResponse(BaseModel):
    items: List[MessageOut]
    unread: int = 0


class MarkReadResponse(BaseModel):
    updated: int
