"""Device- and location-enriched session records."""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.cache.cache_service import AccessSessionCache
from app.core.config import settings
from app.core.constants import SESSION_TOKEN_PREVIEW_LENGTH
from app.core.security import generate_opaque_token, utcnow
from app.models.session import UserSession
from app.services.geolocation_service import GeolocationService
from app.services.token_service import RefreshTokenLedger
from app.utils.errors import SessionNotFoundError
from app.utils.user_agent import parse_user_agent

logger = logging.getLogger(__name__)


def location_display(location: Optional[Dict[str, Any]]) -> str:
    if not isinstance(location, dict):
        return "Unknown"
    city, country = location.get("city"), location.get("country")
    if city and country:
        return f"{city}, {country}"
    return country or city or "Unknown"


def security_flags(location: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not isinstance(location, dict):
        return None
    return {
        "is_vpn": bool(location.get("is_vpn")),
        "is_tor": bool(location.get("is_tor")),
        "is_proxy": bool(location.get("is_proxy")),
        "is_datacenter": bool(location.get("is_datacenter")),
        "is_mobile": bool(location.get("is_mobile")),
        "risk_score": location.get("risk_score") or 0,
    }


def location_details(location: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not isinstance(location, dict):
        return None
    coordinates = None
    if location.get("latitude") and location.get("longitude"):
        coordinates = {"latitude": location["latitude"], "longitude": location["longitude"]}
    return {
        "region": location.get("region"),
        "zipcode": location.get("zipcode"),
        "localtime": location.get("localtime"),
        "asn": location.get("asn"),
        "org": location.get("org"),
        "isp_name": location.get("isp"),
        "coordinates": coordinates,
    }


class SessionTracker:
    def __init__(
        self,
        ledger: RefreshTokenLedger,
        cache: AccessSessionCache,
        geolocation: GeolocationService,
        lifetime: timedelta = timedelta(days=settings.SESSION_EXPIRE_DAYS),
    ):
        self.ledger = ledger
        self.cache = cache
        self.geolocation = geolocation
        self.lifetime = lifetime

    async def create(
        self,
        db: Session,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> UserSession:
        device = parse_user_agent(user_agent) if user_agent else None
        location = await self.geolocation.lookup(ip_address)

        now = utcnow()
        record = UserSession(
            user_id=user_id,
            session_token=generate_opaque_token(),
            created_at=now,
            last_accessed_at=now,
            expires_at=now + self.lifetime,
            ip_address=ip_address or None,
            user_agent=user_agent or None,
            device_type=device["device_type"] if device else None,
            browser=device["browser"] if device else None,
            os=device["os"] if device else None,
            location=location,
            is_active=True,
        )
        if session_id:
            record.id = session_id
        db.add(record)
        db.commit()
        db.refresh(record)

        logger.info(
            f"Session {record.id} created for user {user_id} "
            f"({record.device_type or 'unknown'} / {record.browser or 'Unknown'} / {location_display(location)})"
        )
        return record

    def list(self, db: Session, user_id: int, current_session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        sessions = (
            db.query(UserSession)
            .filter(
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
                UserSession.expires_at > utcnow(),
            )
            .order_by(UserSession.last_accessed_at.desc())
            .all()
        )
        return [self.describe(s, current_session_id) for s in sessions]

    @staticmethod
    def describe(record: UserSession, current_session_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": record.id,
            "session_token": f"{record.session_token[:SESSION_TOKEN_PREVIEW_LENGTH]}...",
            "created_at": record.created_at,
            "last_accessed_at": record.last_accessed_at,
            "expires_at": record.expires_at,
            "ip_address": record.ip_address,
            "device_type": record.device_type,
            "browser": record.browser,
            "os": record.os,
            "location": record.location,
            "is_active": record.is_active,
            "is_current": bool(current_session_id) and record.id == current_session_id,
            "location_display": location_display(record.location),
            "security_flags": security_flags(record.location),
            "location_details": location_details(record.location),
        }

    def touch(self, db: Session, session_id: Optional[str], ip_address: Optional[str] = None) -> None:
        """Bump ``last_accessed_at``; failures are logged and ignored."""
        if not session_id:
            return
        values: Dict[str, Any] = {"last_accessed_at": utcnow()}
        if ip_address:
            values["ip_address"] = ip_address
        try:
            db.execute(
                update(UserSession)
                .where(
                    UserSession.id == session_id,
                    UserSession.is_active.is_(True),
                    UserSession.expires_at > utcnow(),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to update session access for {session_id}: {e}")

    async def revoke(self, db: Session, user_id: int, session_id: str) -> None:
        record = (
            db.query(UserSession)
            .filter(
                UserSession.id == session_id,
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
            )
            .first()
        )
        if not record:
            raise SessionNotFoundError()

        record.is_active = False
        db.commit()
        revoked_refresh = self.ledger.revoke_session(db, user_id, session_id)
        revoked_access = await self.cache.delete_for_session(user_id, session_id)
        logger.info(
            f"Session {session_id} revoked for user {user_id} "
            f"(token {record.session_token[:SESSION_TOKEN_PREVIEW_LENGTH]}..., "
            f"{revoked_refresh} refresh, {revoked_access} access)"
        )

    async def revoke_all(self, db: Session, user_id: int, except_session_id: Optional[str] = None) -> int:
        query = db.query(UserSession.id).filter(
            UserSession.user_id == user_id, UserSession.is_active.is_(True)
        )
        if except_session_id:
            query = query.filter(UserSession.id != except_session_id)
        session_ids = [row.id for row in query.all()]
        if not session_ids:
            return 0

        result = db.execute(
            update(UserSession)
            .where(UserSession.id.in_(session_ids), UserSession.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        for session_id in session_ids:
            self.ledger.revoke_session(db, user_id, session_id)
            await self.cache.delete_for_session(user_id, session_id)

        logger.info(
            f"Revoked {result.rowcount} sessions for user {user_id} "
            f"(kept current: {bool(except_session_id)})"
        )
        return result.rowcount

    def deactivate_all(self, db: Session, user_id: int) -> int:
        """Deactivate every row without touching tokens; callers revoke those themselves."""
        result = db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    @staticmethod
    def sweep_expired(db: Session) -> int:
        """Deactivate expired rows. Safe to run repeatedly and alongside live traffic."""
        result = db.execute(
            update(UserSession)
            .where(UserSession.expires_at < utcnow(), UserSession.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Expired sessions swept: {result.rowcount}")
        return result.rowcount

    @staticmethod
    def stats(db: Session) -> Dict[str, int]:
        now = utcnow()
        return {
            "active_sessions": db.query(UserSession)
            .filter(UserSession.is_active.is_(True), UserSession.expires_at > now)
            .count(),
            "total_sessions": db.query(UserSession).count(),
            "sessions_last_24h": db.query(UserSession)
            .filter(UserSession.created_at >= now - timedelta(hours=24))
            .count(),
        }
