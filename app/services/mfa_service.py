"""TOTP and backup-code second factor."""
import base64
import logging
from io import BytesIO
from typing import List, Optional

import pyotp
import qrcode
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import BACKUP_CODE_COUNT
from app.core.security import generate_backup_code, hash_password, verify_password, utcnow
from app.models.two_factor import TwoFactorBackupCode
from app.models.user import User
from app.utils.errors import InvalidVerificationCodeError, TwoFactorNotInitializedError

logger = logging.getLogger(__name__)


def _qr_data_uri(data: str) -> str:
    buf = BytesIO()
    qrcode.make(data).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class MFAService:
    # Accept the previous and next 30s step as well as the current one
    VALID_WINDOW = 1

    def __init__(self, issuer_name: str = settings.APP_NAME):
        self.issuer_name = issuer_name

    def verify_totp(self, secret: Optional[str], code: Optional[str]) -> bool:
        if not secret or not code:
            return False
        try:
            return pyotp.TOTP(secret).verify(code.strip(), valid_window=self.VALID_WINDOW)
        except (TypeError, ValueError):
            # Malformed secret; treated like a wrong code
            logger.warning("TOTP verification attempted with a malformed secret")
            return False

    def consume_backup_code(self, db: Session, user: User, code: Optional[str]) -> bool:
        """Mark the first unused code matching ``code`` as used."""
        if not code:
            return False
        candidates = (
            db.query(TwoFactorBackupCode)
            .filter(TwoFactorBackupCode.user_id == user.id, TwoFactorBackupCode.used_at.is_(None))
            .all()
        )
        normalized = code.strip().upper()
        for candidate in candidates:
            if not verify_password(normalized, candidate.code_hash):
                continue
            result = db.execute(
                update(TwoFactorBackupCode)
                .where(TwoFactorBackupCode.id == candidate.id, TwoFactorBackupCode.used_at.is_(None))
                .values(used_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount == 1:
                logger.info(f"Backup code consumed for user {user.id}")
                return True
            # Lost a race with a concurrent use of the same code
            return False
        return False

    def check_second_factor(
        self,
        db: Session,
        user: User,
        code: Optional[str] = None,
        backup_code: Optional[str] = None,
    ) -> bool:
        if code and self.verify_totp(user.two_factor_secret, code):
            return True
        return self.consume_backup_code(db, user, backup_code)

    def setup(self, db: Session, user: User) -> dict:
        """Create a new secret and backup codes; 2FA stays off until ``verify`` succeeds."""
        secret = pyotp.random_base32()
        otpauth_url = pyotp.TOTP(secret).provisioning_uri(
            name=user.email, issuer_name=self.issuer_name
        )
        qrcode_data_url = _qr_data_uri(otpauth_url)

        user.two_factor_secret = secret
        user.two_factor_enabled = False
        backup_codes = self._replace_backup_codes(db, user)
        db.commit()

        logger.info(f"Two-factor setup started for user {user.id}")
        return {
            "secret": secret,
            "otpauth_url": otpauth_url,
            "qrcode_data_url": qrcode_data_url,
            "backup_codes": backup_codes,
        }

    def verify(self, db: Session, user: User, code: str) -> bool:
        if not user.two_factor_secret:
            raise TwoFactorNotInitializedError()
        verified = self.verify_totp(user.two_factor_secret, code)
        if verified and not user.two_factor_enabled:
            user.two_factor_enabled = True
            db.commit()
            logger.info(f"Two-factor enabled for user {user.id}")
        return verified

    def disable(self, db: Session, user: User, code: str) -> None:
        if not user.two_factor_secret:
            raise TwoFactorNotInitializedError()
        if not self.verify_totp(user.two_factor_secret, code):
            raise InvalidVerificationCodeError()
        user.two_factor_enabled = False
        user.two_factor_secret = None
        db.query(TwoFactorBackupCode).filter(TwoFactorBackupCode.user_id == user.id).delete(
            synchronize_session=False
        )
        db.commit()
        logger.info(f"Two-factor disabled for user {user.id}")

    def regenerate_backup_codes(self, db: Session, user: User) -> List[str]:
        if not user.two_factor_secret:
            raise TwoFactorNotInitializedError()
        codes = self._replace_backup_codes(db, user)
        db.commit()
        return codes

    def remaining_backup_codes(self, db: Session, user: User) -> int:
        return (
            db.query(TwoFactorBackupCode)
            .filter(TwoFactorBackupCode.user_id == user.id, TwoFactorBackupCode.used_at.is_(None))
            .count()
        )

    @staticmethod
    def _replace_backup_codes(db: Session, user: User) -> List[str]:
        db.query(TwoFactorBackupCode).filter(TwoFactorBackupCode.user_id == user.id).delete(
            synchronize_session=False
        )
        raw_codes = [generate_backup_code() for _ in range(BACKUP_CODE_COUNT)]
        db.add_all(
            TwoFactorBackupCode(user_id=user.id, code_hash=hash_password(raw))
            for raw in raw_codes
        )
        return raw_codes
