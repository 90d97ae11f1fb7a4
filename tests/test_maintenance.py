"""Scheduled maintenance jobs, run inline."""
from datetime import timedelta

from app.core.security import utcnow
from app.models.audit import AuditLog
from app.models.session import UserSession
from app.tasks.celery_app import celery_app
from app.tasks.maintenance_tasks import purge_audit_logs, purge_refresh_tokens, sweep_expired_sessions


def test_beat_schedule_registers_every_job():
    tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert tasks == {
        "app.tasks.maintenance_tasks.sweep_expired_sessions",
        "app.tasks.maintenance_tasks.purge_audit_logs",
        "app.tasks.maintenance_tasks.purge_refresh_tokens",
    }


def test_sweep_expired_sessions_task(db_session, make_user):
    user = make_user()
    past = utcnow() - timedelta(hours=1)
    db_session.add(UserSession(
        user_id=user.id, session_token="expired-token",
        created_at=past, last_accessed_at=past, expires_at=past,
    ))
    db_session.commit()

    assert sweep_expired_sessions() == 1
    assert sweep_expired_sessions() == 0


def test_purge_audit_logs_task(db_session):
    db_session.add_all([
        AuditLog(action="login", resource="auth", created_at=utcnow() - timedelta(days=100)),
        AuditLog(action="login", resource="auth"),
    ])
    db_session.commit()

    assert purge_audit_logs(90) == 1
    assert db_session.query(AuditLog).count() == 1


def test_purge_refresh_tokens_task(db_session):
    assert purge_refresh_tokens() == 0
