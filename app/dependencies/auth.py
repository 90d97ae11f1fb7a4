from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.user import User
from app.services.auth_service import AuthService, is_blocked
from app.services.mfa_service import MFAService
from app.services.oauth_service import OAuthService
from app.services.session_service import SessionTracker
from app.services.token_service import TokenService
from app.services.user_service import UserService
from app.utils.errors import AccountSuspendedError, InvalidTokenError

security = HTTPBearer(auto_error=False)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_session_tracker(request: Request) -> SessionTracker:
    return request.app.state.session_tracker


def get_mfa_service(request: Request) -> MFAService:
    return request.app.state.mfa_service


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_oauth_service(request: Request) -> OAuthService:
    return request.app.state.oauth_service


async def get_current_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    tokens: TokenService = Depends(get_token_service),
) -> Dict[str, Any]:
    """Verify the bearer token and that its jti is still live."""
    if not credentials or not credentials.credentials:
        raise InvalidTokenError("Missing bearer token")
    return await tokens.verify_access(credentials.credentials)


async def get_current_user(
    claims: Dict[str, Any] = Depends(get_current_claims),
    db: Session = Depends(get_db),
) -> User:
    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise InvalidTokenError("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise InvalidTokenError("User not found")
    if is_blocked(user):
        raise AccountSuspendedError()
    return user
