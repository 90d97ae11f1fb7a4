"""Service layer package."""

__all__ = [
    "audit_service",
    "auth_service",
    "email_service",
    "geolocation_service",
    "lockout",
    "mfa_service",
    "oauth_service",
    "session_service",
    "sms_service",
    "token_service",
    "user_service",
]
