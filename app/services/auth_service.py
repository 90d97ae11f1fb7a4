from datetime import timedelta
from typing import Any, Dict, Optional, Tuple
import logging
import uuid

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import UserStatus
from app.core.security import (
    hash_password, verify_password, hash_token, generate_opaque_token, utcnow,
)
from app.models.session import UserSession
from app.models.user import User
from app.services.audit_service import AuditAction, AuditService
from app.services.email_service import EmailService
from app.services.lockout import LockoutGuard
from app.services.mfa_service import MFAService
from app.services.session_service import SessionTracker
from app.services.token_service import DeviceContext, TokenPair, TokenService
from app.utils.errors import (
    AccountSuspendedError, EmailAlreadyVerifiedError, EmailNotVerifiedError,
    EmailTakenError, InvalidCredentialsError, InvalidLinkTokenError,
    SessionNotFoundError, TOTPRequiredError,
)
from app.utils.user_agent import parse_user_agent

logger = logging.getLogger(__name__)

_BLOCKED_STATUSES = (UserStatus.SUSPENDED.value, UserStatus.INACTIVE.value)


def is_blocked(user: User) -> bool:
    return user.is_deleted or user.status in _BLOCKED_STATUSES


class AuthService:
    """Register/login/refresh/logout and the email-link flows."""

    def __init__(
        self,
        tokens: TokenService,
        sessions: SessionTracker,
        lockout: LockoutGuard,
        mfa: MFAService,
        email: EmailService,
        audit: AuditService,
        email_verification_required: bool = settings.EMAIL_VERIFICATION_REQUIRED,
    ):
        self.tokens = tokens
        self.sessions = sessions
        self.lockout = lockout
        self.mfa = mfa
        self.email = email
        self.audit = audit
        self.email_verification_required = email_verification_required

    async def register(
        self,
        db: Session,
        email: str,
        password: str,
        display_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        background: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        email = email.strip().lower()
        if db.query(User).filter(User.email == email).first():
            raise EmailTakenError()

        user = User(
            email=email,
            password_hash=hash_password(password),
            display_name=display_name,
            status=UserStatus.PENDING_VERIFICATION.value,
        )
        verification_token = None
        if self.email_verification_required:
            verification_token = self._set_verification_token(user)
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"User registered: {user.id}")
        self.audit.record(AuditAction.REGISTER, "user", user_id=user.id, ip_address=ip_address, user_agent=user_agent)

        if verification_token:
            self.email.dispatch(background, self.email.send_verification_email, user.email, verification_token)
            return {"user": user, "tokens": None, "session_id": None}

        tokens, _ = await self.start_session(db, user, ip_address, user_agent)
        return {"user": user, "tokens": tokens, "session_id": tokens.session_id}

    async def login(
        self,
        db: Session,
        email: str,
        password: str,
        totp_code: Optional[str] = None,
        backup_code: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        now = utcnow()
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if not user or not user.password_hash:
            self.audit.record(
                AuditAction.LOGIN_FAILED, success=False, details={"email": email, "reason": "unknown_user"},
                ip_address=ip_address, user_agent=user_agent,
            )
            raise InvalidCredentialsError()

        # A locked account's password is never evaluated
        self.lockout.ensure_not_locked(user, now)

        if not verify_password(password, user.password_hash):
            self.lockout.register_failure(db, user, now)
            self._record_failure(user, "bad_password", ip_address, user_agent)
            raise InvalidCredentialsError()

        if self.email_verification_required and not user.email_verified:
            raise EmailNotVerifiedError()

        if is_blocked(user):
            raise AccountSuspendedError()

        if user.two_factor_enabled:
            if not self.mfa.check_second_factor(db, user, totp_code, backup_code):
                # A failed second factor counts exactly like a bad password
                self.lockout.register_failure(db, user, now)
                self._record_failure(user, "bad_second_factor", ip_address, user_agent)
                raise TOTPRequiredError()

        self.lockout.register_success(db, user, ip_address)
        tokens, _ = await self.start_session(db, user, ip_address, user_agent)
        self.audit.record(AuditAction.LOGIN, user_id=user.id, ip_address=ip_address, user_agent=user_agent)
        logger.info(f"User {user.id} logged in from {ip_address or 'unknown'}")
        return {"user": user, "tokens": tokens, "session_id": tokens.session_id}

    async def start_session(
        self,
        db: Session,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[TokenPair, Optional[UserSession]]:
        """Issue a token pair bound to a new tracked session.

        The session row is recorded best-effort; a failure there never fails
        the login that is already authenticated.
        """
        session_id = str(uuid.uuid4())
        device = DeviceContext(
            ip_address=ip_address,
            user_agent=user_agent,
            device_info=parse_user_agent(user_agent) if user_agent else None,
        )
        tokens = await self.tokens.issue_pair(db, user, session_id=session_id, device=device)
        session = None
        try:
            session = await self.sessions.create(db, user.id, ip_address, user_agent, session_id=session_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to record session for user {user.id}: {e}")
        return tokens, session

    async def refresh(self, db: Session, refresh_token: str) -> TokenPair:
        tokens = await self.tokens.rotate(db, refresh_token)
        self.audit.record(AuditAction.REFRESH, resource_id=tokens.session_id)
        return tokens

    async def logout(
        self,
        db: Session,
        user_id: int,
        jti: Optional[str] = None,
        refresh_token: Optional[str] = None,
        session_id: Optional[str] = None,
        revoke_all: bool = False,
    ) -> Dict[str, int]:
        if revoke_all:
            access = await self.tokens.revoke_all_access(user_id)
            refresh = self.tokens.ledger.revoke_all(db, user_id)
            sessions = self.sessions.deactivate_all(db, user_id)
            logger.info(f"User {user_id} logged out everywhere ({access} access, {refresh} refresh, {sessions} sessions)")
            self.audit.record(AuditAction.LOGOUT, user_id=user_id, details={"revoke_all": True})
            return {"access_revoked": access, "refresh_revoked": refresh, "sessions_revoked": sessions}

        await self.tokens.revoke_access(user_id, jti)
        refresh = 0
        if refresh_token and self.tokens.ledger.revoke(db, user_id, refresh_token):
            refresh = 1
        sessions = 0
        if session_id:
            try:
                await self.sessions.revoke(db, user_id, session_id)
                sessions = 1
            except SessionNotFoundError:
                pass
        self.audit.record(AuditAction.LOGOUT, user_id=user_id, resource_id=session_id)
        return {"access_revoked": 1 if jti else 0, "refresh_revoked": refresh, "sessions_revoked": sessions}

    def verify_email(self, db: Session, token: str) -> User:
        user = db.query(User).filter(User.email_verification_token_hash == hash_token(token)).first()
        if not user or not user.email_verification_expires_at or user.email_verification_expires_at <= utcnow():
            raise InvalidLinkTokenError("Invalid or expired verification token")

        user.email_verified = True
        if user.status == UserStatus.PENDING_VERIFICATION.value:
            user.status = UserStatus.ACTIVE.value
        user.email_verification_token_hash = None
        user.email_verification_expires_at = None
        db.commit()
        self.audit.record(AuditAction.EMAIL_VERIFIED, "user", user_id=user.id)
        return user

    def resend_verification(self, db: Session, email: str, background: Optional[BackgroundTasks] = None) -> None:
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if not user or user.is_deleted:
            # Unknown addresses get the same answer as known ones
            logger.info("Verification resend requested for an unknown email")
            return
        if user.email_verified:
            raise EmailAlreadyVerifiedError()
        token = self._set_verification_token(user)
        db.commit()
        self.email.dispatch(background, self.email.send_verification_email, user.email, token)

    def forgot_password(self, db: Session, email: str, background: Optional[BackgroundTasks] = None) -> None:
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if not user or is_blocked(user):
            logger.info("Password reset requested for an unknown or disabled email")
            return
        token = generate_opaque_token()
        user.password_reset_token_hash = hash_token(token)
        user.password_reset_expires_at = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        db.commit()
        self.email.dispatch(background, self.email.send_password_reset_email, user.email, token)

    async def reset_password(self, db: Session, token: str, new_password: str) -> User:
        user = db.query(User).filter(User.password_reset_token_hash == hash_token(token)).first()
        if not user or not user.password_reset_expires_at or user.password_reset_expires_at <= utcnow():
            raise InvalidLinkTokenError("Invalid or expired reset token")

        user.password_hash = hash_password(new_password)
        user.password_reset_token_hash = None
        user.password_reset_expires_at = None
        user.failed_login_attempts = 0
        user.locked_until = None
        db.commit()

        # Whoever held the old password loses every live token
        self.tokens.ledger.revoke_all(db, user.id)
        await self.tokens.revoke_all_access(user.id)
        self.sessions.deactivate_all(db, user.id)
        self.audit.record(AuditAction.PASSWORD_RESET, "user", user_id=user.id)
        logger.info(f"Password reset completed for user {user.id}")
        return user

    def change_password(self, db: Session, user: User, current_password: str, new_password: str) -> None:
        if not user.password_hash or not verify_password(current_password, user.password_hash):
            self.audit.record(AuditAction.PASSWORD_CHANGE, "user", user_id=user.id, success=False)
            raise InvalidCredentialsError("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        db.commit()
        self.audit.record(AuditAction.PASSWORD_CHANGE, "user", user_id=user.id)
        logger.info(f"Password changed for user {user.id}")

    @staticmethod
    def _set_verification_token(user: User) -> str:
        token = generate_opaque_token()
        user.email_verification_token_hash = hash_token(token)
        user.email_verification_expires_at = utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
        return token

    def _record_failure(self, user: User, reason: str, ip_address: Optional[str], user_agent: Optional[str]) -> None:
        self.audit.record(
            AuditAction.LOGIN_FAILED,
            user_id=user.id,
            success=False,
            details={"reason": reason, "failed_attempts": user.failed_login_attempts},
            ip_address=ip_address,
            user_agent=user_agent,
        )
