from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    access_token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    token_type: str = "bearer"
    user: Optional[Dict[str, Any]] = None


class MeResponse(BaseModel):
    user_id: str
    role: str
    email: Optional[str] = None


class AcceptedResponse(BaseModel):
    detail: str
