"""Refresh-token ledger and access/refresh pair issuance."""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import update, or_, delete
from sqlalchemy.orm import Session

from app.cache.cache_service import AccessSessionCache
from app.core.constants import TOKEN_TYPE, UserStatus
from app.core.security import hash_token, token_matches, utcnow
from app.core.tokens import TokenCodec
from app.models.refresh_token import RefreshToken
from app.models.user import User
from app.utils.errors import InvalidRefreshError, InvalidTokenError

logger = logging.getLogger(__name__)


@dataclass
class DeviceContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: Optional[str] = None
    token_type: str = field(default=TOKEN_TYPE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }


def _new_jti() -> str:
    return str(uuid.uuid4())


class RefreshTokenLedger:
    """Persistent record of issued refresh tokens.

    ``rotate`` is a single transaction whose first statement is a
    compare-and-set revoke of the presented jti. Of two concurrent rotations
    of the same token only one can flip ``revoked_at`` from NULL; the other
    sees zero affected rows and fails with ``INVALID_REFRESH``.
    """

    def __init__(self, codec: TokenCodec):
        self.codec = codec

    def issue(
        self,
        db: Session,
        user: User,
        session_id: Optional[str] = None,
        device: Optional[DeviceContext] = None,
        *,
        commit: bool = True,
    ) -> str:
        jti = _new_jti()
        token = self.codec.sign_refresh(
            {"sub": user.id, "email": user.email, "sid": session_id}, jti
        )
        device = device or DeviceContext()
        db.add(RefreshToken(
            user_id=user.id,
            jti=jti,
            token_hash=hash_token(token),
            session_id=session_id,
            expires_at=utcnow() + self.codec.refresh_ttl,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            device_info=device.device_info,
        ))
        if commit:
            db.commit()
        return token

    def rotate(self, db: Session, refresh_token: str) -> Tuple[User, str, RefreshToken]:
        """Revoke the presented token and persist its successor atomically.

        Returns the owning user, the new plaintext refresh token and the
        revoked row (for its session id and device context).
        """
        try:
            payload = self.codec.verify_refresh(refresh_token)
        except InvalidTokenError:
            raise InvalidRefreshError("Invalid refresh token")

        jti = payload.get("jti")
        if not jti:
            raise InvalidRefreshError("Invalid token format")
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            raise InvalidRefreshError("Invalid refresh token")

        now = utcnow()
        try:
            result = db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.jti == jti,
                    RefreshToken.user_id == user_id,
                    RefreshToken.revoked_at.is_(None),
                )
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                logger.warning(f"Refresh token reuse or unknown jti for user {user_id} (jti={jti})")
                raise InvalidRefreshError("Refresh token not found or already revoked")

            record = (
                db.query(RefreshToken)
                .populate_existing()
                .filter(RefreshToken.jti == jti)
                .one()
            )
            if not token_matches(refresh_token, record.token_hash):
                db.rollback()
                logger.warning(f"Refresh token hash mismatch for jti {jti}")
                raise InvalidRefreshError("Invalid refresh token")
            if record.expires_at <= now:
                db.rollback()
                raise InvalidRefreshError("Refresh token expired")

            user = db.query(User).filter(User.id == user_id).first()
            if not user or user.deleted_at or user.status in (
                UserStatus.SUSPENDED.value,
                UserStatus.INACTIVE.value,
            ):
                db.rollback()
                raise InvalidRefreshError("Invalid refresh token")

            new_token = self.issue(
                db,
                user,
                session_id=record.session_id,
                device=DeviceContext(
                    ip_address=record.ip_address,
                    user_agent=record.user_agent,
                    device_info=record.device_info,
                ),
                commit=False,
            )
            db.commit()
        except InvalidRefreshError:
            raise
        except Exception:
            db.rollback()
            raise

        return user, new_token, record

    def revoke(self, db: Session, user_id: int, refresh_token: str) -> bool:
        """Revoke one refresh token presented by its owner. Unknown tokens are a no-op."""
        try:
            payload = self.codec.verify_refresh(refresh_token)
        except InvalidTokenError:
            return False
        jti = payload.get("jti")
        if not jti or str(payload.get("sub")) != str(user_id):
            return False
        result = db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.jti == jti,
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount > 0

    def revoke_session(self, db: Session, user_id: int, session_id: str) -> int:
        result = db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.session_id == session_id,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    def revoke_all(self, db: Session, user_id: int, *, commit: bool = True) -> int:
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if commit:
            db.commit()
        return result.rowcount

    @staticmethod
    def purge(db: Session, older_than: timedelta = timedelta(days=30)) -> int:
        """Delete rows that expired or were revoked before the cutoff."""
        cutoff = utcnow() - older_than
        result = db.execute(
            delete(RefreshToken)
            .where(or_(RefreshToken.expires_at < cutoff, RefreshToken.revoked_at < cutoff))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount


class TokenService:
    """Issues access/refresh pairs and validates access tokens."""

    def __init__(self, codec: TokenCodec, ledger: RefreshTokenLedger, cache: AccessSessionCache):
        self.codec = codec
        self.ledger = ledger
        self.cache = cache

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.codec.access_ttl.total_seconds())

    async def issue_pair(
        self,
        db: Session,
        user: User,
        session_id: Optional[str] = None,
        device: Optional[DeviceContext] = None,
    ) -> TokenPair:
        refresh_token = self.ledger.issue(db, user, session_id=session_id, device=device)
        access_token = await self._issue_access(user, session_id)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl_seconds,
            session_id=session_id,
        )

    async def rotate(self, db: Session, refresh_token: str) -> TokenPair:
        user, new_refresh, previous = self.ledger.rotate(db, refresh_token)
        access_token = await self._issue_access(user, previous.session_id)
        logger.info(f"Refresh token rotated for user {user.id}")
        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh,
            expires_in=self.access_ttl_seconds,
            session_id=previous.session_id,
        )

    async def verify_access(self, token: str) -> Dict[str, Any]:
        claims = self.codec.verify_access(token)
        jti = claims.get("jti")
        if jti and not await self.cache.exists(jti):
            raise InvalidTokenError("Token revoked")
        return claims

    async def revoke_access(self, user_id: Any, jti: Optional[str]) -> None:
        if jti:
            await self.cache.delete(jti, user_id)

    async def revoke_all_access(self, user_id: Any) -> int:
        return await self.cache.delete_all_for_user(user_id)

    async def _issue_access(self, user: User, session_id: Optional[str]) -> str:
        jti = _new_jti()
        token = self.codec.sign_access(
            {"sub": user.id, "email": user.email, "sid": session_id}, jti
        )
        await self.cache.put(
            jti,
            {"user_id": user.id, "email": user.email, "session_id": session_id},
            ttl_seconds=self.access_ttl_seconds,
        )
        return token
