import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from app.core.constants import UserStatus
from app.core.security import utcnow
from app.models.two_factor import TwoFactorBackupCode
from app.models.user import User
from app.services.audit_service import AuditAction, AuditService
from app.services.lockout import LockoutGuard
from app.services.session_service import SessionTracker
from app.services.sms_service import SMSService, format_phone_number, validate_phone_number
from app.services.token_service import TokenService
from app.utils.errors import (
    InvalidPhoneFormatError, InvalidVerificationCodeError, NoPhoneToVerifyError,
    PhoneAlreadyVerifiedError, UserNotFoundError,
)

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("display_name", "avatar_url")


class UserService:
    def __init__(
        self,
        tokens: TokenService,
        sessions: SessionTracker,
        sms: SMSService,
        audit: AuditService,
    ):
        self.tokens = tokens
        self.sessions = sessions
        self.sms = sms
        self.audit = audit

    @staticmethod
    def get_user(db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id, User.deleted_at.is_(None)).first()
        if not user:
            raise UserNotFoundError()
        return user

    @staticmethod
    def update_profile(db: Session, user: User, data: Dict[str, Any]) -> User:
        for key in PROFILE_FIELDS:
            if key in data:
                setattr(user, key, data[key])
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def security_info(user: User) -> Dict[str, Any]:
        return {
            "failed_login_attempts": user.failed_login_attempts,
            "is_locked": LockoutGuard.is_locked(user),
            "locked_until": user.locked_until,
            "last_login_at": user.last_login_at,
            "last_login_ip": user.last_login_ip,
            "two_factor_enabled": user.two_factor_enabled,
            "phone_verified": user.phone_verified,
            "email_verified": user.email_verified,
        }

    async def delete_account(self, db: Session, user: User) -> None:
        """Soft delete: the row stays for audit and session history."""
        refresh = self.tokens.ledger.revoke_all(db, user.id)
        access = await self.tokens.revoke_all_access(user.id)
        self.sessions.deactivate_all(db, user.id)

        user.status = UserStatus.INACTIVE.value
        user.two_factor_enabled = False
        user.two_factor_secret = None
        user.deleted_at = utcnow()
        db.query(TwoFactorBackupCode).filter(TwoFactorBackupCode.user_id == user.id).delete(
            synchronize_session=False
        )
        db.commit()

        logger.info(f"Account {user.id} deleted ({refresh} refresh tokens, {access} access sessions revoked)")
        self.audit.record(AuditAction.ACCOUNT_DELETED, "user", user_id=user.id)

    async def send_phone_verification(self, db: Session, user: User, phone: str) -> Dict[str, Any]:
        if not validate_phone_number(phone):
            raise InvalidPhoneFormatError()
        formatted = format_phone_number(phone)

        taken = (
            db.query(User)
            .filter(User.phone == formatted, User.phone_verified.is_(True), User.id != user.id)
            .first()
        )
        if taken:
            raise PhoneAlreadyVerifiedError("Phone number already verified by another user")

        sent = await self.sms.send_verification_code(formatted, user.id)
        user.phone = formatted
        user.phone_verified = False
        db.commit()
        return {"phone": formatted, "sent": sent}

    async def verify_phone(self, db: Session, user: User, code: str) -> Dict[str, Any]:
        if not user.phone:
            raise NoPhoneToVerifyError()
        if user.phone_verified:
            raise PhoneAlreadyVerifiedError()
        if not await self.sms.verify_code(user.phone, code):
            raise InvalidVerificationCodeError()
        user.phone_verified = True
        db.commit()
        logger.info(f"Phone verified for user {user.id}")
        return {"phone": user.phone, "verified": True}
