from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.dependencies.auth import (
    get_current_claims, get_current_user, get_mfa_service, get_oauth_service,
    get_session_tracker, get_user_service,
)
from app.dependencies.rate_limit import strict_rate_limit
from app.models.user import User
from app.schemas.user import (
    OAuthAccountRead, OAuthLinkRequest, PhoneRequest, PhoneVerifyRequest,
    ProfileUpdate, SecurityInfo, SessionRead, TwoFactorCodeRequest,
    TwoFactorSetupResponse, UserRead,
)
from app.services.audit_service import AuditAction
from app.services.mfa_service import MFAService
from app.services.oauth_service import OAuthIdentity, OAuthService
from app.services.session_service import SessionTracker
from app.services.user_service import UserService
from app.utils.errors import InvalidVerificationCodeError, TwoFactorUnavailableError
from app.utils.helpers import format_response, get_client_ip

router = APIRouter(prefix="/users/me", tags=["users"])


@router.get("")
async def get_profile(current_user: User = Depends(get_current_user)):
    return format_response(UserRead.model_validate(current_user).model_dump(mode="json"))


@router.patch("")
async def update_profile(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    user = users.update_profile(db, current_user, payload.model_dump(exclude_unset=True))
    return format_response(UserRead.model_validate(user).model_dump(mode="json"))


@router.delete("", status_code=status.HTTP_200_OK)
async def delete_account(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    await users.delete_account(db, current_user)
    return format_response({"message": "Account deleted"})


@router.get("/security")
async def security_info(
    current_user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return format_response(SecurityInfo(**users.security_info(current_user)).model_dump(mode="json"))


# Sessions


@router.get("/sessions")
async def list_sessions(
    request: Request,
    db: Session = Depends(get_db),
    claims: Dict[str, Any] = Depends(get_current_claims),
    current_user: User = Depends(get_current_user),
    sessions: SessionTracker = Depends(get_session_tracker),
):
    current_session_id = claims.get("sid")
    sessions.touch(db, current_session_id, get_client_ip(request))
    items = sessions.list(db, current_user.id, current_session_id)
    return format_response([SessionRead(**item).model_dump(mode="json") for item in items])


@router.delete("/sessions/{session_id}")
async def revoke_session(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    sessions: SessionTracker = Depends(get_session_tracker),
):
    await sessions.revoke(db, current_user.id, session_id)
    return format_response({"message": "Session revoked"})


@router.delete("/sessions")
async def revoke_other_sessions(
    db: Session = Depends(get_db),
    claims: Dict[str, Any] = Depends(get_current_claims),
    current_user: User = Depends(get_current_user),
    sessions: SessionTracker = Depends(get_session_tracker),
):
    """Revoke every session except the one making the request."""
    count = await sessions.revoke_all(db, current_user.id, except_session_id=claims.get("sid"))
    return format_response({"revoked": count})


# Two-factor


@router.post("/2fa/setup")
async def setup_two_factor(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
):
    # Existing enrollments stay enforced at login
    if not settings.TWO_FACTOR_ENABLED:
        raise TwoFactorUnavailableError()
    return format_response(TwoFactorSetupResponse(**mfa.setup(db, current_user)).model_dump())


@router.post("/2fa/verify")
async def verify_two_factor(
    payload: TwoFactorCodeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
    users: UserService = Depends(get_user_service),
    _: bool = Depends(strict_rate_limit),
):
    if not mfa.verify(db, current_user, payload.code):
        raise InvalidVerificationCodeError()
    users.audit.record(AuditAction.TWO_FACTOR_ENABLED, "user", user_id=current_user.id)
    return format_response({"two_factor_enabled": True})


@router.post("/2fa/disable")
async def disable_two_factor(
    payload: TwoFactorCodeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
    users: UserService = Depends(get_user_service),
    _: bool = Depends(strict_rate_limit),
):
    mfa.disable(db, current_user, payload.code)
    users.audit.record(AuditAction.TWO_FACTOR_DISABLED, "user", user_id=current_user.id)
    return format_response({"two_factor_enabled": False})


@router.post("/2fa/backup-codes")
async def regenerate_backup_codes(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
):
    return format_response({"backup_codes": mfa.regenerate_backup_codes(db, current_user)})


# Phone


@router.post("/phone")
async def send_phone_verification(
    payload: PhoneRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return format_response(await users.send_phone_verification(db, current_user, payload.phone))


@router.post("/phone/verify")
async def verify_phone(
    payload: PhoneVerifyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return format_response(await users.verify_phone(db, current_user, payload.code))


# OAuth accounts


@router.get("/oauth-accounts")
async def list_oauth_accounts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    oauth: OAuthService = Depends(get_oauth_service),
):
    accounts = oauth.list_accounts(db, current_user.id)
    return format_response([OAuthAccountRead.model_validate(a).model_dump(mode="json") for a in accounts])


@router.post("/oauth-accounts", status_code=status.HTTP_201_CREATED)
async def link_oauth_account(
    payload: OAuthLinkRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    oauth: OAuthService = Depends(get_oauth_service),
):
    """Manual linking; restricted to administrators."""
    identity = OAuthIdentity(
        provider=payload.provider.value,
        provider_id=payload.provider_id,
        email=payload.provider_email,
        username=payload.provider_username,
        access_token=payload.access_token,
        id_token=payload.id_token,
    )
    account = await oauth.link_account(db, current_user, identity, actor=current_user)
    return format_response(OAuthAccountRead.model_validate(account).model_dump(mode="json"))


@router.delete("/oauth-accounts/{account_id}")
async def unlink_oauth_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    oauth: OAuthService = Depends(get_oauth_service),
):
    oauth.unlink_account(db, current_user.id, account_id)
    return format_response({"message": "OAuth account unlinked"})
