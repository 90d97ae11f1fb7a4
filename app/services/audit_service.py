"""Best-effort security audit trail."""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.security import utcnow
from app.models.audit import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    REFRESH = "token_refresh"
    REGISTER = "register"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFIED = "email_verified"
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    SESSION_REVOKED = "session_revoked"
    OAUTH_LINKED = "oauth_linked"
    OAUTH_UNLINKED = "oauth_unlinked"
    ACCOUNT_DELETED = "account_deleted"


class AuditService:
    """Writes go through their own DB session so a failed insert never
    disturbs the caller's transaction."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        enabled: bool = settings.AUDIT_LOG_ENABLED,
    ):
        self.session_factory = session_factory
        self.enabled = enabled

    def record(
        self,
        action: str,
        resource: str = "auth",
        *,
        user_id: Optional[int] = None,
        success: bool = True,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        if not self.enabled:
            return
        db = self.session_factory()
        try:
            db.add(AuditLog(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                details=details,
                success=success,
                ip_address=ip_address,
                user_agent=user_agent,
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to record audit event {action} for user {user_id}: {e}")
        finally:
            db.close()

    @staticmethod
    def purge_older_than(db: Session, retention_days: int = settings.AUDIT_LOG_RETENTION_DAYS) -> int:
        cutoff = utcnow() - timedelta(days=retention_days)
        result = db.execute(
            delete(AuditLog)
            .where(AuditLog.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Purged {result.rowcount} audit log entries older than {retention_days} days")
        return result.rowcount
