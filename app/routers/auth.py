from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.constants import OAuthProvider
from app.core.database import get_db
from app.dependencies.auth import (
    get_auth_service, get_current_claims, get_current_user, get_oauth_service,
)
from app.dependencies.rate_limit import rate_limit, strict_rate_limit
from app.models.user import User
from app.schemas.auth import (
    ChangePasswordRequest, EmailRequest, LoginRequest, LogoutRequest,
    OAuthLoginRequest, RefreshTokenRequest, RegisterRequest,
    ResetPasswordRequest, VerifyEmailRequest,
)
from app.schemas.user import UserRead
from app.services.auth_service import AuthService
from app.services.oauth_service import OAuthIdentity, OAuthService
from app.utils.helpers import format_response, get_client_ip, get_user_agent

router = APIRouter(prefix="/auth", tags=["authentication"])


def _auth_payload(result: Dict[str, Any]) -> Dict[str, Any]:
    tokens = result.get("tokens")
    return {
        "user": UserRead.model_validate(result["user"]).model_dump(mode="json"),
        "tokens": tokens.to_dict() if tokens else None,
        "session_id": result.get("session_id"),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    _: bool = Depends(strict_rate_limit),
):
    """
    Register with email/password
    - Verification required: account stays pending, a link is emailed, no tokens
    - Otherwise: tokens and a tracked session are returned right away
    """
    result = await auth.register(
        db,
        email=payload.email,
        password=payload.password,
        display_name=payload.display_name,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        background=background_tasks,
    )
    return format_response(_auth_payload(result))


@router.post("/login")
async def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    _: bool = Depends(strict_rate_limit),
):
    result = await auth.login(
        db,
        email=payload.email,
        password=payload.password,
        totp_code=payload.totp_code,
        backup_code=payload.backup_code,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return format_response(_auth_payload(result))


@router.post("/refresh")
async def refresh(
    payload: RefreshTokenRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    _: bool = Depends(rate_limit),
):
    tokens = await auth.refresh(db, payload.refresh_token)
    return format_response(tokens.to_dict())


@router.post("/logout")
async def logout(
    payload: LogoutRequest,
    db: Session = Depends(get_db),
    claims: Dict[str, Any] = Depends(get_current_claims),
    current_user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    result = await auth.logout(
        db,
        current_user.id,
        jti=claims.get("jti"),
        refresh_token=payload.refresh_token,
        session_id=claims.get("sid"),
        revoke_all=payload.revoke_all,
    )
    return format_response(result)


@router.post("/verify-email")
async def verify_email(
    payload: VerifyEmailRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    _: bool = Depends(rate_limit),
):
    user = auth.verify_email(db, payload.token)
    return format_response({"email": user.email, "email_verified": True})


@router.post("/resend-verification")
async def resend_verification(
    payload: EmailRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    _: bool = Depends(strict_rate_limit),
):
    auth.resend_verification(db, payload.email, background=background_tasks)
    return format_response({"message": "If the account exists, a verification email was sent."})


@router.post("/forgot-password")
async def forgot_password(
    payload: EmailRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    _: bool = Depends(strict_rate_limit),
):
    """Request a password reset email. The answer never reveals whether the email exists."""
    auth.forgot_password(db, payload.email, background=background_tasks)
    return format_response({"message": "If the email exists, a reset link was sent."})


@router.post("/reset-password")
async def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    _: bool = Depends(strict_rate_limit),
):
    """Reset password using token sent to email."""
    await auth.reset_password(db, payload.token, payload.new_password)
    return format_response({"message": "Password updated. Please log in again."})


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.change_password(db, current_user, payload.current_password, payload.new_password)
    return format_response({"message": "Password changed"})


@router.post("/oauth/{provider}")
async def oauth_login(
    provider: OAuthProvider,
    payload: OAuthLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    oauth: OAuthService = Depends(get_oauth_service),
    _: bool = Depends(rate_limit),
):
    """
    Complete an OAuth login
    - The identity is checked against the provider before anything else
    - Finds the linked account, else matches the provider-verified email, else creates the user
    """
    identity = OAuthIdentity(
        provider=provider.value,
        provider_id=payload.provider_id,
        email=payload.email,
        username=payload.username,
        display_name=payload.display_name,
        avatar_url=payload.avatar_url,
        access_token=payload.access_token,
        id_token=payload.id_token,
    )
    result = await oauth.login_with_identity(
        db, identity, ip_address=get_client_ip(request), user_agent=get_user_agent(request)
    )
    return format_response(_auth_payload(result))
