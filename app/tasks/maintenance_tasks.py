# app/tasks/maintenance_tasks.py
from celery import shared_task
import logging

from app.core.config import settings
from app.core.database import SessionLocal
from app.services.audit_service import AuditService
from app.services.session_service import SessionTracker
from app.services.token_service import RefreshTokenLedger

logger = logging.getLogger(__name__)


@shared_task(name="app.tasks.maintenance_tasks.sweep_expired_sessions")
def sweep_expired_sessions() -> int:
    """Deactivate tracked sessions past their expiry."""
    db = SessionLocal()
    try:
        return SessionTracker.sweep_expired(db)
    except Exception:
        logger.exception("Session sweep failed")
        db.rollback()
        raise
    finally:
        db.close()


@shared_task(name="app.tasks.maintenance_tasks.purge_audit_logs")
def purge_audit_logs(retention_days: int = settings.AUDIT_LOG_RETENTION_DAYS) -> int:
    db = SessionLocal()
    try:
        return AuditService.purge_older_than(db, retention_days)
    except Exception:
        logger.exception("Audit log purge failed")
        db.rollback()
        raise
    finally:
        db.close()


@shared_task(name="app.tasks.maintenance_tasks.purge_refresh_tokens")
def purge_refresh_tokens() -> int:
    """Delete refresh-token rows that expired or were revoked over 30 days ago."""
    db = SessionLocal()
    try:
        purged = RefreshTokenLedger.purge(db)
        logger.info(f"Purged {purged} stale refresh tokens")
        return purged
    except Exception:
        logger.exception("Refresh token purge failed")
        db.rollback()
        raise
    finally:
        db.close()
