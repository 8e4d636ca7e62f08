"""Session endpoints proxied to Supabase Auth.

Tokens are issued and revoked by Supabase; this API only relays them and reads
the role from ``app_metadata`` when a token is presented.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from app.core.auth import CurrentUser, get_current_user
from app.core.config import get_settings
from app.schemas.auth import (
    AcceptedResponse,
    MeResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    SignInRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RESET_ACCEPTED_MESSAGE = "Si un compte existe pour cette adresse, un e-mail de réinitialisation a été envoyé"


def _auth_base() -> tuple[str, dict[str, str], float]:
    settings = get_settings()
    base_url = (settings.supabase_url or "").rstrip("/")
    if not base_url or not settings.supabase_key:
        raise HTTPException(500, "Supabase Auth non configuré")
    headers = {"apikey": settings.supabase_key, "Content-Type": "application/json"}
    return f"{base_url}/auth/v1", headers, settings.auth_timeout_seconds


def _token_response(payload: dict[str, Any], *, fallback_refresh: Optional[str] = None) -> TokenResponse:
    access_token = payload.get("access_token")
    if not access_token:
        raise HTTPException(502, "Réponse d'authentification invalide")
    expires_at = payload.get("expires_at")
    if expires_at is None and payload.get("expires_in"):
        expires_at = int(time.time()) + int(payload["expires_in"])
    return TokenResponse(
        access_token=access_token,
        refresh_token=payload.get("refresh_token") or fallback_refresh,
        expires_at=int(expires_at) if expires_at is not None else None,
        user=payload.get("user"),
    )


async def _post(path: str, *, json_body: dict, bearer: Optional[str] = None) -> httpx.Response:
    base, headers, timeout = _auth_base()
    if bearer:
        headers = {**headers, "Authorization": f"Bearer {bearer}"}
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(f"{base}{path}", headers=headers, json=json_body)
    except httpx.RequestError as exc:
        logger.warning("Supabase Auth unreachable path=%s: %s", path, exc)
        raise HTTPException(502, "Service d'authentification indisponible") from exc


@router.post("/auth/sign-in", response_model=TokenResponse)
async def sign_in(payload: SignInRequest):
    resp = await _post(
        "/token?grant_type=password",
        json_body={"email": str(payload.email), "password": payload.password},
    )
    if resp.status_code != 200:
        raise HTTPException(401, "Identifiants invalides")
    return _token_response(resp.json())


@router.post("/auth/refresh", response_model=TokenResponse)
async def refresh_session(request: Request):
    try:
        body = json.loads(await request.body() or b"{}")
    except ValueError:
        raise HTTPException(400, "Corps JSON invalide")
    refresh_token = body.get("refresh_token") if isinstance(body, dict) else None
    if not refresh_token or not isinstance(refresh_token, str):
        raise HTTPException(400, "refresh_token manquant")

    resp = await _post("/token?grant_type=refresh_token", json_body={"refresh_token": refresh_token})
    if resp.status_code != 200:
        raise HTTPException(401, "Session expirée, reconnectez-vous")
    return _token_response(resp.json(), fallback_refresh=refresh_token)


@router.post("/auth/sign-out", status_code=204)
async def sign_out(authorization: Optional[str] = Header(None, alias="Authorization")):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Jeton Bearer manquant")
    token = authorization.split(" ", 1)[1].strip()
    resp = await _post("/logout", json_body={}, bearer=token)
    if resp.status_code not in {200, 204}:
        # An already revoked session is still signed out.
        logger.info("Supabase logout returned status=%s", resp.status_code)
    return None


@router.post("/auth/password-reset", response_model=AcceptedResponse, status_code=202)
async def request_password_reset(payload: PasswordResetRequest):
    body: dict[str, Any] = {"email": str(payload.email)}
    redirect = get_settings().password_reset_redirect_url
    if redirect:
        body["redirect_to"] = redirect
    resp = await _post("/recover", json_body=body)
    if resp.status_code >= 500:
        raise HTTPException(502, "Service d'authentification indisponible")
    # Same answer whether or not the address exists.
    return AcceptedResponse(detail=RESET_ACCEPTED_MESSAGE)


@router.post("/auth/password-reset/confirm", response_model=AcceptedResponse)
async def confirm_password_reset(payload: PasswordResetConfirm):
    base, headers, timeout = _auth_base()
    headers = {**headers, "Authorization": f"Bearer {payload.access_token}"}
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.put(f"{base}/user", headers=headers, json={"password": payload.password})
    except httpx.RequestError as exc:
        logger.warning("Supabase Auth unreachable path=/user: %s", exc)
        raise HTTPException(502, "Service d'authentification indisponible") from exc
    if resp.status_code != 200:
        raise HTTPException(401, "Lien de réinitialisation invalide ou expiré")
    return AcceptedResponse(detail="Mot de passe mis à jour")


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: CurrentUser = Depends(get_current_user)):
    return MeResponse(user_id=current_user.id, role=current_user.role, email=current_user.email)
