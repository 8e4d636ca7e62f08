import logging
import threading
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from jwt import PyJWKClient

from app.core.config import get_settings
from app.services.errors import AuthenticationRequired, AuthorizationError

logger = logging.getLogger(__name__)

ROLE_ADMIN = "ADMIN"
ROLE_CLIENT = "CLIENT"
ALLOWED_ROLES = {ROLE_ADMIN, ROLE_CLIENT}

_jwks_client: Optional[PyJWKClient] = None
_jwks_lock = threading.Lock()


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    """Return a cached PyJWKClient (with built-in key caching)."""
    global _jwks_client
    if _jwks_client is not None:
        return _jwks_client
    with _jwks_lock:
        if _jwks_client is not None:
            return _jwks_client
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
        return _jwks_client


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated session value threaded into every service call."""

    id: str
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def party(self) -> str:
        """Lower-case role as stored on documents and messages."""
        return "admin" if self.is_admin else "client"


def require_role(session: Optional[CurrentUser], role: str) -> CurrentUser:
    """Single capability check applied before any role-restricted mutation."""
    if session is None or not session.id:
        raise AuthenticationRequired("Authentification requise")
    if session.role != role:
        raise AuthorizationError("Action non autorisée")
    return session


def require_session(session: Optional[CurrentUser]) -> CurrentUser:
    if session is None or not session.id:
        raise AuthenticationRequired("Authentification requise")
    return session


def _extract_role(payload: dict) -> Optional[str]:
    # Role comes only from app_metadata; user_metadata is user-editable in Supabase Auth.
    app_meta = payload.get("app_metadata") or {}
    raw = app_meta.get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def _decode_options(settings):
    audience = (settings.supabase_jwt_audience or "").strip()
    decode_kwargs = {}
    options = {}
    if audience:
        decode_kwargs["audience"] = audience
        options["verify_aud"] = True
    else:
        options["verify_aud"] = False
    return decode_kwargs, options


def _try_hs256(token: str, settings, decode_kwargs: dict, options: dict):
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError:
        return None


def _try_es256(token: str, settings, decode_kwargs: dict, options: dict):
    supabase_url = (settings.supabase_url or "").rstrip("/")
    if not supabase_url:
        return None
    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
    try:
        client = _get_jwks_client(jwks_url)
        signing_key = client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            options=options,
            **decode_kwargs,
        )
    except (jwt.InvalidTokenError, jwt.PyJWKClientError) as exc:
        logger.debug("ES256 verification failed: %s", exc)
        return None


def decode_access_token(token: str) -> CurrentUser:
    settings = get_settings()
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "SUPABASE_JWT_SECRET non configuré")

    decode_kwargs, options = _decode_options(settings)

    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        raise HTTPException(401, "Jeton invalide")

    payload = None
    if header.get("alg", "") == "ES256":
        payload = _try_es256(token, settings, decode_kwargs, options)
        if payload is None and settings.supabase_jwt_secret:
            payload = _try_hs256(token, settings, decode_kwargs, options)
    else:
        if settings.supabase_jwt_secret:
            payload = _try_hs256(token, settings, decode_kwargs, options)
        if payload is None:
            payload = _try_es256(token, settings, decode_kwargs, options)

    if payload is None or not payload.get("sub"):
        raise HTTPException(401, "Jeton invalide")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Rôle manquant")

    return CurrentUser(id=str(payload["sub"]), role=role, email=payload.get("email"))


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Jeton Bearer manquant")
    return decode_access_token(authorization.split(" ", 1)[1].strip())


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Accès refusé")
        return user

    return _dependency
