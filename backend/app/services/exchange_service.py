"""Documents and messages exchanged between a client and staff on a request.

Both attach to (request id, request kind). Lists are newest first and
unpaginated.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser
from app.core.config import get_settings
from app.core.storage import DocumentStorage, build_document_path
from app.models.request import RequestDocument, RequestMessage
from app.schemas.exchange import DocumentOut, MessageOut
from app.schemas.request import DocumentType
from app.services.errors import AuthorizationError, ExternalServiceError, NotFound, ValidationFailed
from app.services.request_service import count_unread, ensure_request_access
from app.services.transition_service import AnyRequest, create_audit_log

logger = logging.getLogger(__name__)


def document_to_out(document: RequestDocument, storage: Optional[DocumentStorage] = None) -> DocumentOut:
    return DocumentOut(
        id=str(document.id),
        request_id=str(document.request_id),
        request_type=document.request_type,
        document_name=document.document_name,
        document_type=document.document_type,
        file_path=document.file_path,
        file_url=storage.public_url(document.file_path) if storage else None,
        uploaded_by=document.uploaded_by,
        uploaded_by_role=document.uploaded_by_role,
        description=document.description,
        created_at=document.created_at,
    )


def message_to_out(message: RequestMessage) -> MessageOut:
    return MessageOut(
        id=str(message.id),
        request_id=str(message.request_id),
        request_type=message.request_type,
        sender_id=message.sender_id,
        sender_role=message.sender_role,
        message=message.message,
        is_read=bool(message.is_read),
        created_at=message.created_at,
    )


# ─── Documents ─────────────────────────────────────────


def _parse_document_type(value: Optional[str]) -> DocumentType:
    if not value:
        raise ValidationFailed("Sélectionnez le type de document", fields=["document_type"])
    try:
        return DocumentType(value)
    except ValueError:
        raise ValidationFailed("Type de document inconnu", fields=["document_type"])


def upload_document(
    db: Session,
    *,
    request: AnyRequest,
    session: Optional[CurrentUser],
    storage: DocumentStorage,
    document_type: Optional[str],
    filename: Optional[str],
    content: Optional[bytes],
    content_type: Optional[str],
    description: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> RequestDocument:
    """Store the blob, then insert the row.

    Type and file are checked before the blob store is touched. When the row
    insert fails the blob is deleted again; a failed delete is logged as an
    orphan for support to clean up.
    """
    actor = ensure_request_access(request, session)
    doc_type = _parse_document_type(document_type)
    if not content:
        raise ValidationFailed("Sélectionnez un fichier", fields=["file"])
    if len(content) > get_settings().max_document_bytes:
        raise ValidationFailed("Fichier trop volumineux", fields=["file"])

    path = build_document_path(actor.id, str(request.id), doc_type.value, filename)
    try:
        storage.upload(path, content, content_type)
    except ExternalServiceError:
        logger.warning("Document upload failed request=%s path=%s", request.id, path)
        raise

    document = RequestDocument(
        request_id=request.id,
        request_type=request.kind,
        document_name=(filename or path.rsplit("/", 1)[-1])[:255],
        document_type=doc_type.value,
        file_path=path,
        uploaded_by=actor.id,
        uploaded_by_role=actor.party,
        description=(description or "").strip() or None,
    )
    db.add(document)
    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="DOCUMENT_UPLOADED",
        old_value=None,
        new_value={"document_type": doc_type.value, "file_path": path},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Document row insert failed request=%s path=%s", request.id, path)
        try:
            storage.delete([path])
        except ExternalServiceError:
            logger.warning("Orphaned document blob bucket=%s path=%s", storage.bucket, path)
        create_audit_log(
            db,
            entity_type=f"{request.kind}_request",
            entity_id=str(request.id),
            action="DOCUMENT_STORE_FAILED",
            old_value=None,
            new_value={"file_path": path},
            actor_type=actor.role,
            actor_id=actor.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.commit()
        raise ExternalServiceError("Enregistrement du document impossible") from exc

    db.refresh(document)
    return document


def list_documents(db: Session, *, request: AnyRequest, session: Optional[CurrentUser]) -> list[RequestDocument]:
    ensure_request_access(request, session)
    return (
        db.execute(
            select(RequestDocument)
            .where(RequestDocument.request_id == request.id, RequestDocument.request_type == request.kind)
            .order_by(desc(RequestDocument.created_at))
        )
        .scalars()
        .all()
    )


def _get_document(db: Session, request: AnyRequest, document_id: str) -> RequestDocument:
    try:
        parsed_id = uuid.UUID(str(document_id))
    except ValueError:
        raise NotFound("Document introuvable")
    document = db.execute(
        select(RequestDocument).where(
            RequestDocument.id == parsed_id,
            RequestDocument.request_id == request.id,
            RequestDocument.request_type == request.kind,
        )
    ).scalar_one_or_none()
    if document is None:
        raise NotFound("Document introuvable")
    return document


def download_document(
    db: Session,
    *,
    request: AnyRequest,
    document_id: str,
    session: Optional[CurrentUser],
    storage: DocumentStorage,
) -> tuple[RequestDocument, bytes]:
    """Owner or staff. The bucket is private, so bytes go through the API."""
    ensure_request_access(request, session)
    document = _get_document(db, request, document_id)
    try:
        content = storage.download(document.file_path)
    except ExternalServiceError:
        logger.warning("Document download failed request=%s path=%s", request.id, document.file_path)
        raise
    return document, content


def delete_document(
    db: Session,
    *,
    request: AnyRequest,
    document_id: str,
    session: Optional[CurrentUser],
    storage: DocumentStorage,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Uploader or staff only. The row goes first; the blob delete is best effort."""
    actor = ensure_request_access(request, session)
    document = _get_document(db, request, document_id)
    if not actor.is_admin and document.uploaded_by != actor.id:
        raise AuthorizationError("Seul l'auteur du document peut le supprimer")

    path = document.file_path
    db.delete(document)
    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="DOCUMENT_DELETED",
        old_value={"file_path": path, "document_type": document.document_type},
        new_value=None,
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    try:
        storage.delete([path])
    except ExternalServiceError:
        logger.warning("Orphaned document blob bucket=%s path=%s", storage.bucket, path)


# ─── Messages ──────────────────────────────────────────


def send_message(
    db: Session,
    *,
    request: AnyRequest,
    session: Optional[CurrentUser],
    body: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> RequestMessage:
    actor = ensure_request_access(request, session)
    text = (body or "").strip()
    if not text:
        raise ValidationFailed("Le message ne peut pas être vide", fields=["message"])

    message = RequestMessage(
        request_id=request.id,
        request_type=request.kind,
        sender_id=actor.id,
        sender_role=actor.party,
        message=text,
        is_read=False,
    )
    db.add(message)
    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="MESSAGE_SENT",
        old_value=None,
        new_value={"sender_role": actor.party, "length": len(text)},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(message)
    return message


def list_messages(db: Session, *, request: AnyRequest, session: Optional[CurrentUser]) -> list[RequestMessage]:
    ensure_request_access(request, session)
    return (
        db.execute(
            select(RequestMessage)
            .where(RequestMessage.request_id == request.id, RequestMessage.request_type == request.kind)
            .order_by(desc(RequestMessage.created_at))
        )
        .scalars()
        .all()
    )


def mark_messages_read(db: Session, *, request: AnyRequest, session: Optional[CurrentUser]) -> int:
    """Mark everything the other party sent as read. Returns the number of rows changed."""
    actor = ensure_request_access(request, session)
    result = db.execute(
        update(RequestMessage)
        .where(
            RequestMessage.request_id == request.id,
            RequestMessage.request_type == request.kind,
            RequestMessage.sender_role != actor.party,
            RequestMessage.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return int(result.rowcount or 0)


def unread_count(db: Session, *, request: AnyRequest, session: Optional[CurrentUser]) -> int:
    actor = ensure_request_access(request, session)
    return count_unread(db, request, reader_role=actor.party)
