"""Blob store for exchanged documents (Supabase Storage)."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from supabase import create_client

from app.core.config import get_settings
from app.services.errors import ExternalServiceError

logger = logging.getLogger(__name__)


def _file_extension(filename: Optional[str]) -> str:
    if not filename:
        return "bin"
    return Path(filename).suffix.lower().lstrip(".") or "bin"


def build_document_path(
    owner_id: str,
    request_id: str,
    tag: str,
    filename: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> str:
    """``{owner}/{request}/{timestamp}_{tag}.{ext}``; the owner is the uploader."""
    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000)
    return f"{owner_id}/{request_id}/{stamp}_{tag}.{_file_extension(filename)}"


def get_storage_client():
    settings = get_settings()
    key = settings.supabase_service_role_key or settings.supabase_key
    if not settings.supabase_url or not key:
        raise ExternalServiceError("Stockage de fichiers non configuré")
    return create_client(settings.supabase_url, key)


def _result_error(result):
    if isinstance(result, dict):
        return result.get("error")
    return getattr(result, "error", None)


class DocumentStorage:
    """upload / download / public_url / delete against one bucket."""

    def __init__(self, client=None, bucket: Optional[str] = None) -> None:
        self._client = client
        self.bucket = bucket or get_settings().documents_bucket

    @property
    def client(self):
        if self._client is None:
            self._client = get_storage_client()
        return self._client

    def upload(self, path: str, content: bytes, content_type: Optional[str]) -> str:
        options = {"content-type": content_type} if content_type else None
        try:
            result = self.client.storage.from_(self.bucket).upload(path, content, options)
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError("Échec de l'envoi du fichier") from exc
        if _result_error(result):
            raise ExternalServiceError("Échec de l'envoi du fichier")
        return path

    def download(self, path: str) -> bytes:
        try:
            return self.client.storage.from_(self.bucket).download(path)
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError("Fichier indisponible") from exc

    def public_url(self, path: str) -> str:
        settings = get_settings()
        return f"{settings.supabase_url}/storage/v1/object/public/{self.bucket}/{path}"

    def delete(self, paths: list[str]) -> None:
        try:
            result = self.client.storage.from_(self.bucket).remove(paths)
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError("Suppression du fichier impossible") from exc
        if _result_error(result):
            raise ExternalServiceError("Suppression du fichier impossible")


def get_document_storage() -> DocumentStorage:
    return DocumentStorage()
