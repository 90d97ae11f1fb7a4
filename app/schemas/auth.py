from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
import re


def _check_password_strength(v: str) -> str:
    """Password must contain uppercase, lowercase, digit, special char"""
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain uppercase letter')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain lowercase letter')
    if not re.search(r'[0-9]', v):
        raise ValueError('Password must contain digit')
    if not re.search(r'[!@#$%^&*]', v):
        raise ValueError('Password must contain special character')
    return v


class RegisterRequest(BaseModel):
    """Email/password registration request"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    display_name: Optional[str] = Field(None, max_length=255)

    @field_validator('password')
    def password_strength(cls, v):
        return _check_password_strength(v)


class LoginRequest(BaseModel):
    """Email/password login request, with the second factor when enabled"""
    email: EmailStr
    password: str
    totp_code: Optional[str] = Field(None, min_length=6, max_length=8)
    backup_code: Optional[str] = Field(None, max_length=32)


class RefreshTokenRequest(BaseModel):
    """Request to refresh access token"""
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None
    revoke_all: bool = False


class EmailRequest(BaseModel):
    email: EmailStr


class VerifyEmailRequest(BaseModel):
    token: str


class ChangePasswordRequest(BaseModel):
    """Request to change password"""
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str

    @field_validator('new_password')
    def password_strength(cls, v):
        return _check_password_strength(v)

    @field_validator('confirm_password')
    def passwords_match(cls, v, info):
        new_password = info.data.get('new_password') if info and info.data else None
        if new_password and v != new_password:
            raise ValueError('Passwords must match')
        return v


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str

    @field_validator('new_password')
    def password_strength(cls, v):
        return _check_password_strength(v)

    @field_validator('confirm_password')
    def passwords_match(cls, v, info):
        new_password = info.data.get('new_password') if info and info.data else None
        if new_password and v != new_password:
            raise ValueError('Passwords must match')
        return v


class OAuthLoginRequest(BaseModel):
    """Provider account claimed by the client; access_token or id_token proves ownership"""
    provider_id: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    access_token: Optional[str] = None
    id_token: Optional[str] = None
