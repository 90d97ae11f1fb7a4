"""User request/response schemas."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.core.constants import OAuthProvider


class UserRead(BaseModel):
    id: int
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    status: str
    is_admin: bool
    email_verified: bool
    two_factor_enabled: bool
    phone: Optional[str] = None
    phone_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=2048)


class SecurityInfo(BaseModel):
    failed_login_attempts: int
    is_locked: bool
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    last_login_ip: Optional[str] = None
    two_factor_enabled: bool
    phone_verified: bool
    email_verified: bool


class SessionRead(BaseModel):
    id: str
    session_token: str
    created_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    ip_address: Optional[str] = None
    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    is_active: bool
    is_current: bool
    location_display: str
    security_flags: Optional[Dict[str, Any]] = None
    location_details: Optional[Dict[str, Any]] = None


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_url: str
    qrcode_data_url: str
    backup_codes: List[str]


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8)


class PhoneRequest(BaseModel):
    phone: str = Field(..., min_length=6, max_length=20)


class PhoneVerifyRequest(BaseModel):
    code: str = Field(..., min_length=4, max_length=10)


class OAuthAccountRead(BaseModel):
    id: int
    provider: str
    provider_id: str
    provider_email: Optional[str] = None
    provider_username: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OAuthLinkRequest(BaseModel):
    provider: OAuthProvider
    provider_id: str = Field(..., min_length=1, max_length=255)
    provider_email: Optional[EmailStr] = None
    provider_username: Optional[str] = None
    access_token: Optional[str] = None
    id_token: Optional[str] = None
