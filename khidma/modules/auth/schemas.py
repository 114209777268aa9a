"""
Auth Module - Pydantic Schemas (DTOs)
NEVER expose SQLAlchemy models directly in API responses.
"""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from khidma.modules.auth.models import UserType


# ============== OTP Schemas ==============

class SendOtpRequest(BaseModel):
    phone: str = Field(..., min_length=8, max_length=20, examples=["+22222123456"])


class VerifyOtpRequest(BaseModel):
    phone: str = Field(..., min_length=8, max_length=20)
    code: str = Field(..., min_length=6, max_length=6)


class OtpResponse(BaseModel):
    success: bool
    message: str | None = None


# ============== Token Schemas ==============

class Token(BaseModel):
    """Access + refresh token pair returned on login."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user_id: uuid.UUID
    user_type: UserType


class TokenPayload(BaseModel):
    """JWT payload. `sid` carries the opaque session token."""
    sub: str
    sid: str
    exp: datetime
    iat: datetime
    user_type: UserType | None = None


class RefreshRequest(BaseModel):
    user_id: uuid.UUID
    refresh_token: str
    device_id: str = Field(..., min_length=1, max_length=255)


# ============== User Schemas ==============

class RegisterRequest(BaseModel):
    """Sign-up after the phone was verified by OTP."""
    phone: str = Field(..., min_length=8, max_length=20)
    password: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., max_length=100)
    user_type: UserType = UserType.CUSTOMER
    device_id: str = Field(..., min_length=1, max_length=255)


class LoginRequest(BaseModel):
    phone: str = Field(..., min_length=8, max_length=20)
    password: str = Field(..., min_length=1, max_length=128)
    device_id: str = Field(..., min_length=1, max_length=255)


class PhoneCheckResponse(BaseModel):
    exists: bool


class ProfileUpdateRequest(BaseModel):
    name: str = Field(..., max_length=200)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    phone: str
    name: str
    user_type: UserType
    rating: float | None = None
    balance: Decimal
    photo_url: str | None = None
    approval_status: str
    rejection_reason: str | None = None
    onboarding_status: str
    current_onboarding_step: int
    onboarding_completed_at: datetime | None = None
    created_at: datetime
