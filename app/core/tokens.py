"""Signing and verification of access and refresh JWTs.

Both token kinds carry ``sub`` (user id), ``email``, ``iss``, ``aud``,
``iat``, ``exp``, ``jti`` and a ``type`` claim. The algorithm is fixed per
deployment: with ``HS256`` access and refresh tokens use separate secrets,
with ``RS256`` both are signed by the private key and verified with the
public key.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from app.core.config import Settings
from app.utils.errors import InvalidTokenError

ACCESS = "access"
REFRESH = "refresh"
SUPPORTED_ALGORITHMS = ("HS256", "RS256")


class TokenCodec:
    def __init__(
        self,
        *,
        algorithm: str,
        issuer: str,
        audience: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        leeway_seconds: int,
        secret: Optional[str] = None,
        refresh_secret: Optional[str] = None,
        private_key: Optional[str] = None,
        public_key: Optional[str] = None,
    ):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported JWT algorithm: {algorithm}")
        if algorithm == "RS256":
            if not private_key or not public_key:
                raise ValueError("RS256 requires JWT_PRIVATE_KEY and JWT_PUBLIC_KEY")
            self._keys = {
                ACCESS: (private_key, public_key),
                REFRESH: (private_key, public_key),
            }
        else:
            if not secret or not refresh_secret:
                raise ValueError("HS256 requires JWT_SECRET and JWT_REFRESH_SECRET")
            self._keys = {
                ACCESS: (secret, secret),
                REFRESH: (refresh_secret, refresh_secret),
            }
        if leeway_seconds < 0 or leeway_seconds > 300:
            raise ValueError("JWT leeway must be between 0 and 300 seconds")

        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.leeway_seconds = leeway_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            leeway_seconds=settings.JWT_LEEWAY_SECONDS,
            secret=settings.JWT_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            private_key=settings.JWT_PRIVATE_KEY,
            public_key=settings.JWT_PUBLIC_KEY,
        )

    def sign_access(self, claims: Dict[str, Any], jti: str) -> str:
        return self._sign(ACCESS, claims, jti, self.access_ttl)

    def sign_refresh(self, claims: Dict[str, Any], jti: str) -> str:
        return self._sign(REFRESH, claims, jti, self.refresh_ttl)

    def verify_access(self, token: str) -> Dict[str, Any]:
        return self._verify(ACCESS, token)

    def verify_refresh(self, token: str) -> Dict[str, Any]:
        return self._verify(REFRESH, token)

    def _sign(self, kind: str, claims: Dict[str, Any], jti: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload["sub"] = str(payload["sub"])
        payload.update({
            "type": kind,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + ttl,
        })
        if jti:
            payload["jti"] = jti
        signing_key, _ = self._keys[kind]
        return jwt.encode(payload, signing_key, algorithm=self.algorithm)

    def _verify(self, kind: str, token: str) -> Dict[str, Any]:
        if not token:
            raise InvalidTokenError("Token missing")
        _, verify_key = self._keys[kind]
        try:
            payload = jwt.decode(
                token,
                verify_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"leeway": self.leeway_seconds},
            )
        except JWTError as exc:
            raise InvalidTokenError("Invalid or expired token") from exc

        if payload.get("type") != kind or not payload.get("sub"):
            raise InvalidTokenError("Invalid token type")
        return payload
