"""Tracked login sessions shown to users ("where you are logged in").

These rows are informational. Token validity lives in the refresh ledger and
the access-session cache; a session row is only ever deactivated.
"""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, JSON
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.core.security import utcnow


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_token = Column(String(64), unique=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_accessed_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    # Snapshot taken at creation, never re-resolved
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    device_type = Column(String(32), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    location = Column(JSON, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    user = relationship("User", back_populates="sessions")
