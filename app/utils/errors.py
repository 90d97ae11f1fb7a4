"""Typed errors raised by the auth core.

Every error carries a stable machine-readable ``code``, the HTTP status the
boundary layer should answer with, a human message (``detail``) and an
optional ``details`` mapping.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException
from starlette import status


class AuthError(HTTPException):
    code: str = "AUTH_ERROR"
    status_code_default: int = status.HTTP_400_BAD_REQUEST
    message: str = "Authentication error"

    def __init__(self, detail: Optional[str] = None, **details: Any):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.message,
        )
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "code": self.code,
            "message": self.detail,
            "details": self.details,
        }


# Authentication


class InvalidCredentialsError(AuthError):
    code = "INVALID_CREDENTIALS"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    message = "Invalid credentials"


class InvalidRefreshError(AuthError):
    code = "INVALID_REFRESH"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    message = "Invalid refresh token"


class InvalidTokenError(AuthError):
    code = "INVALID_TOKEN"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    message = "Invalid token"


class InvalidLinkTokenError(InvalidTokenError):
    """Email-verification or password-reset token that does not match."""

    status_code_default = status.HTTP_400_BAD_REQUEST


# Authorization / account state


class AccountLockedError(AuthError):
    code = "ACCOUNT_LOCKED"
    status_code_default = status.HTTP_423_LOCKED
    message = "Account locked"

    def __init__(self, remaining_minutes: int):
        super().__init__(
            f"Account locked. Try again in {remaining_minutes} minutes",
            remaining_minutes=remaining_minutes,
        )
        self.remaining_minutes = remaining_minutes


class AccountSuspendedError(AuthError):
    code = "ACCOUNT_SUSPENDED"
    status_code_default = status.HTTP_403_FORBIDDEN
    message = "Account suspended"


class EmailNotVerifiedError(AuthError):
    code = "NEEDS_EMAIL_VERIFICATION"
    status_code_default = status.HTTP_403_FORBIDDEN
    message = "Email not verified"


class AdminRequiredError(AuthError):
    code = "ADMIN_REQUIRED"
    status_code_default = status.HTTP_403_FORBIDDEN
    message = "Administrator privileges required"


# Conflicts


class EmailTakenError(AuthError):
    code = "EMAIL_TAKEN"
    status_code_default = status.HTTP_409_CONFLICT
    message = "Email already in use"


class AccountAlreadyLinkedError(AuthError):
    code = "ACCOUNT_ALREADY_LINKED"
    status_code_default = status.HTTP_409_CONFLICT
    message = "This OAuth account is already linked to another user"


class EmailAlreadyVerifiedError(AuthError):
    code = "EMAIL_ALREADY_VERIFIED"
    message = "Email already verified"


class PhoneAlreadyVerifiedError(AuthError):
    code = "PHONE_ALREADY_VERIFIED"
    status_code_default = status.HTTP_409_CONFLICT
    message = "Phone number already verified"


# Not found


class UserNotFoundError(AuthError):
    code = "USER_NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND
    message = "User not found"


class SessionNotFoundError(AuthError):
    code = "SESSION_NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND
    message = "Session not found"


class OAuthAccountNotFoundError(AuthError):
    code = "OAUTH_ACCOUNT_NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND
    message = "OAuth account not found"


# MFA / verification


class TOTPRequiredError(AuthError):
    code = "TOTP_REQUIRED"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    message = "Two-factor code required"


class InvalidVerificationCodeError(AuthError):
    code = "INVALID_VERIFICATION_CODE"
    message = "Invalid or expired verification code"


class TwoFactorNotInitializedError(AuthError):
    code = "TWO_FACTOR_NOT_INITIALIZED"
    message = "Two-factor authentication has not been set up"


class TwoFactorUnavailableError(AuthError):
    code = "TWO_FACTOR_UNAVAILABLE"
    status_code_default = status.HTTP_403_FORBIDDEN
    message = "Two-factor enrollment is disabled"


class VerificationThrottledError(AuthError):
    code = "VERIFICATION_THROTTLED"
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Please wait before requesting a new verification code"


class InvalidPhoneFormatError(AuthError):
    code = "INVALID_PHONE_FORMAT"
    message = "Invalid phone number format"


class NoPhoneToVerifyError(AuthError):
    code = "NO_PHONE_TO_VERIFY"
    message = "No phone number to verify"


class InvalidProviderAccountError(AuthError):
    code = "INVALID_PROVIDER_ACCOUNT"
    message = "Invalid provider account"
