"""Failed-attempt counter and time-boxed account lockout.

States per user, driven by ``failed_login_attempts`` and ``locked_until``:

* normal: no active lock, attempts below the threshold
* locked: ``locked_until`` is in the future

On a failed password or MFA attempt:

1. while locked, nothing changes;
2. if a lock has expired, it is cleared and the attempt counts as the
   first of a new window (attempts = 1, not 0);
3. otherwise attempts is incremented;
4. reaching ``max_attempts`` sets ``locked_until = now + lockout_duration``.

A successful login clears both fields.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import utcnow
from app.models.user import User
from app.utils.errors import AccountLockedError

logger = logging.getLogger(__name__)


class LockoutGuard:
    def __init__(
        self,
        max_attempts: int = settings.MAX_LOGIN_ATTEMPTS,
        lockout_duration: timedelta = timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration

    @staticmethod
    def is_locked(user: User, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return bool(user.locked_until and user.locked_until > now)

    @staticmethod
    def remaining_minutes(user: User, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        if not user.locked_until or user.locked_until <= now:
            return 0
        return math.ceil((user.locked_until - now).total_seconds() / 60)

    def ensure_not_locked(self, user: User, now: Optional[datetime] = None) -> None:
        """Reject the attempt before any credential is evaluated."""
        now = now or utcnow()
        if self.is_locked(user, now):
            raise AccountLockedError(self.remaining_minutes(user, now))

    def register_failure(self, db: Session, user: User, now: Optional[datetime] = None) -> None:
        now = now or utcnow()

        if self.is_locked(user, now):
            logger.warning(
                f"Failed login attempt for locked user {user.id} "
                f"({self.remaining_minutes(user, now)} minutes remaining)"
            )
            return

        if user.locked_until is not None:
            logger.info(
                f"Lockout period expired for user {user.id}, clearing lockout and resetting attempts to 1 "
                f"(previous attempts: {user.failed_login_attempts})"
            )
            db.execute(
                update(User)
                .where(User.id == user.id)
                .values(failed_login_attempts=1, locked_until=None)
                .execution_options(synchronize_session=False)
            )
        else:
            # Increment in SQL so concurrent failures are not lost
            db.execute(
                update(User)
                .where(User.id == user.id)
                .values(failed_login_attempts=User.failed_login_attempts + 1)
                .execution_options(synchronize_session=False)
            )
        db.flush()
        db.refresh(user)

        if user.failed_login_attempts >= self.max_attempts:
            user.locked_until = now + self.lockout_duration
            logger.warning(
                f"Account locked for user {user.id} after {user.failed_login_attempts} failed attempts "
                f"until {user.locked_until.isoformat()}"
            )
        db.commit()

    def register_success(self, db: Session, user: User, ip_address: Optional[str] = None) -> None:
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = utcnow()
        user.last_login_ip = ip_address or None
        db.commit()
