"""Persistence models for users, credentials and sessions."""

__all__ = [
    "base",
    "user",
    "refresh_token",
    "two_factor",
    "session",
    "oauth_account",
    "audit",
]
