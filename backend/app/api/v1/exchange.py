"""Documents and messages on a request, shared by owners and staff."""

from __future__ import annotations

import mimetypes
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, get_current_user
from app.core.dependencies import get_db
from app.core.storage import DocumentStorage, get_document_storage
from app.schemas.exchange import (
    DocumentListResponse,
    DocumentOut,
    MarkReadResponse,
    MessageCreate,
    MessageListResponse,
    MessageOut,
)
from app.schemas.request import RequestKind
from app.services import exchange_service
from app.services.request_service import get_request_for
from app.utils.rate_limit import get_client_ip, get_user_agent

router = APIRouter()


def _attachment_header(filename: str) -> str:
    encoded = quote(filename)
    if encoded != filename:
        return f"attachment; filename*=utf-8''{encoded}"
    return f'attachment; filename="{filename}"'


@router.get("/requests/{kind}/{request_id}/documents", response_model=DocumentListResponse)
async def list_documents(
    kind: RequestKind,
    request_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    storage: DocumentStorage = Depends(get_document_storage),
    db: Session = Depends(get_db),
):
    target = get_request_for(db, kind, request_id, current_user)
    documents = exchange_service.list_documents(db, request=target, session=current_user)
    return DocumentListResponse(items=[exchange_service.document_to_out(d, storage) for d in documents])


@router.post("/requests/{kind}/{request_id}/documents", response_model=DocumentOut, status_code=201)
async def upload_document(
    kind: RequestKind,
    request_id: str,
    request: Request,
    document_type: Optional[str] = Form(None),
    description: Optional[str] = Form(None, max_length=1000),
    file: Optional[UploadFile] = File(None),
    current_user: CurrentUser = Depends(get_current_user),
    storage: DocumentStorage = Depends(get_document_storage),
    db: Session = Depends(get_db),
):
    target = get_request_for(db, kind, request_id, current_user)
    content = await file.read() if file is not None else None
    document = exchange_service.upload_document(
        db,
        request=target,
        session=current_user,
        storage=storage,
        document_type=document_type,
        filename=file.filename if file is not None else None,
        content=content,
        content_type=file.content_type if file is not None else None,
        description=description,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return exchange_service.document_to_out(document, storage)


@router.get("/requests/{kind}/{request_id}/documents/{document_id}/download")
async def download_document(
    kind: RequestKind,
    request_id: str,
    document_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    storage: DocumentStorage = Depends(get_document_storage),
    db: Session = Depends(get_db),
):
    target = get_request_for(db, kind, request_id, current_user)
    document, content = exchange_service.download_document(
        db,
        request=target,
        document_id=document_id,
        session=current_user,
        storage=storage,
    )
    media_type = mimetypes.guess_type(document.document_name)[0] or "application/octet-stream"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": _attachment_header(document.document_name)},
    )


@router.delete("/requests/{kind}/{request_id}/documents/{document_id}", status_code=204)
async def delete_document(
    kind: RequestKind,
    request_id: str,
    document_id: str,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    storage: DocumentStorage = Depends(get_document_storage),
    db: Session = Depends(get_db),
):
    target = get_request_for(db, kind, request_id, current_user)
    exchange_service.delete_document(
        db,
        request=target,
        document_id=document_id,
        session=current_user,
        storage=storage,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return None


@router.get("/requests/{kind}/{request_id}/messages", response_model=MessageListResponse)
async def list_messages(
    kind: RequestKind,
    request_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = get_request_for(db, kind, request_id, current_user)
    messages = exchange_service.list_messages(db, request=target, session=current_user)
    return MessageListResponse(
        items=[exchange_service.message_to_out(m) for m in messages],
        unread=exchange_service.unread_count(db, request=target, session=current_user),
    )


@router.post("/requests/{kind}/{request_id}/messages", response_model=MessageOut, status_code=201)
async def send_message(
    kind: RequestKind,
    request_id: str,
    payload: MessageCreate,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = get_request_for(db, kind, request_id, current_user)
    message = exchange_service.send_message(
        db,
        request=target,
        session=current_user,
        body=payload.message,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return exchange_service.message_to_out(message)


@router.post("/requests/{kind}/{request_id}/messages/read", response_model=MarkReadResponse)
async def mark_messages_read(
    kind: RequestKind,
    request_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = get_request_for(db, kind, request_id, current_user)
    updated = exchange_service.mark_messages_read(db, request=target, session=current_user)
    return MarkReadResponse(updated=updated)
