"""Base SQLAlchemy model utilities."""
from sqlalchemy import Column, DateTime, Integer
from app.core.security import utcnow


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class IDMixin:
    id = Column(Integer, primary_key=True, index=True)
