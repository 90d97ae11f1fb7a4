from sqlalchemy import Column, String, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import relationship, validates
from app.core.database import Base
from app.core.constants import UserStatus
from app.models.base import IDMixin, TimestampMixin


class User(IDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=True)  # null for OAuth-only accounts

    # Profile
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)

    # Account status
    status = Column(String(32), default=UserStatus.PENDING_VERIFICATION.value, index=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Email verification / password reset (single-use, stored hashed)
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token_hash = Column(String(64), nullable=True, index=True)
    email_verification_expires_at = Column(DateTime, nullable=True)
    password_reset_token_hash = Column(String(64), nullable=True, index=True)
    password_reset_expires_at = Column(DateTime, nullable=True)

    # Two-factor
    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    two_factor_secret = Column(String(64), nullable=True)

    # Lockout
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)

    # Login tracking
    last_login_at = Column(DateTime, nullable=True)
    last_login_ip = Column(String(45), nullable=True)

    # Phone
    phone = Column(String(20), index=True, nullable=True)
    phone_verified = Column(Boolean, default=False, nullable=False)

    # Soft delete
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    backup_codes = relationship("TwoFactorBackupCode", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    oauth_accounts = relationship("OAuthAccount", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.email}>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @validates("phone")
    def normalize_phone(self, key, value):
        return value or None

    @validates("email")
    def normalize_email(self, key, value):
        return value.strip().lower() if value else value
