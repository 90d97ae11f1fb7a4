"""OAuth account linking and OAuth-based login.

OAuth logins are accepted only after the provider confirms the account with
the user's token, and users are matched by the email the provider reports.
Manual links through ``OAuthService.link_account`` need an admin actor.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from google.auth.transport import requests
from google.oauth2 import id_token
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.constants import OAuthProvider, UserStatus
from app.models.oauth_account import OAuthAccount
from app.models.user import User
from app.services.audit_service import AuditAction
from app.services.auth_service import AuthService, is_blocked
from app.utils.errors import (
    AccountAlreadyLinkedError, AccountSuspendedError, AdminRequiredError,
    InvalidProviderAccountError, OAuthAccountNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class OAuthIdentity:
    """External identity as presented by the client, unverified until checked."""

    provider: str
    provider_id: str
    email: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    access_token: Optional[str] = None
    id_token: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderValidation:
    is_valid: bool
    verified_email: Optional[str] = None
    verified_username: Optional[str] = None
    error: Optional[str] = None


class ProviderValidator:
    GITHUB_AUTHENTICATED_USER_URL = "https://api.github.com/user"
    GITHUB_USER_BY_ID_URL = "https://api.github.com/user/{provider_id}"
    GITHUB_USER_BY_LOGIN_URL = "https://api.github.com/users/{provider_id}"
    GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
    LINKEDIN_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
    MICROSOFT_ME_URL = "https://graph.microsoft.com/v1.0/me"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        google_client_id: Optional[str] = settings.GOOGLE_CLIENT_ID,
        timeout: float = 5.0,
    ):
        self.client = client
        self.google_client_id = google_client_id
        self.timeout = timeout

    async def validate(self, identity: OAuthIdentity, require_token: bool = False) -> ProviderValidation:
        """Check ``identity`` with its provider.

        With ``require_token`` the caller must prove ownership through a token;
        otherwise GitHub accounts are only checked for existence.
        """
        try:
            if identity.provider == OAuthProvider.GITHUB.value:
                if require_token:
                    return await self._validate_bearer(
                        identity, self.GITHUB_AUTHENTICATED_USER_URL, id_field="id", name_field="login"
                    )
                return await self._validate_github(identity.provider_id)
            if identity.provider == OAuthProvider.GOOGLE.value:
                return await self._validate_google(identity)
            if identity.provider == OAuthProvider.LINKEDIN.value:
                return await self._validate_bearer(
                    identity, self.LINKEDIN_USERINFO_URL, id_field="sub",
                    email_verified_field="email_verified",
                    extra_headers={"LinkedIn-Version": "202405", "X-Restli-Protocol-Version": "2.0.0"},
                )
            if identity.provider == OAuthProvider.MICROSOFT.value:
                return await self._validate_bearer(
                    identity, self.MICROSOFT_ME_URL, id_field="id",
                    email_fields=("mail", "userPrincipalName"), name_field="displayName",
                )
            return ProviderValidation(False, error="Unsupported provider")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Provider validation error for {identity.provider}: {e}")
            return ProviderValidation(False, error=f"Validation failed: {e}")

    async def _get(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        if self.client is not None:
            return await self.client.get(url, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=headers)

    async def _validate_github(self, provider_id: str) -> ProviderValidation:
        response = await self._get(self.GITHUB_USER_BY_ID_URL.format(provider_id=provider_id))
        if response.status_code != 200 and not provider_id.isdigit():
            response = await self._get(self.GITHUB_USER_BY_LOGIN_URL.format(provider_id=provider_id))
        if response.status_code == 200:
            data = response.json()
            return ProviderValidation(True, data.get("email"), data.get("login"))
        return ProviderValidation(False, error=f"GitHub user '{provider_id}' not found")

    async def _validate_google(self, identity: OAuthIdentity) -> ProviderValidation:
        if identity.id_token and self.google_client_id:
            try:
                info = await run_in_threadpool(
                    id_token.verify_oauth2_token, identity.id_token, requests.Request(), self.google_client_id
                )
            except ValueError as e:
                return ProviderValidation(False, error=f"Invalid Google id token: {e}")
            if info.get("sub") != identity.provider_id:
                return ProviderValidation(False, error="Token belongs to a different Google account")
            email = info.get("email") if info.get("email_verified") else None
            return ProviderValidation(True, email, info.get("name"))
        return await self._validate_bearer(
            identity, self.GOOGLE_USERINFO_URL, id_field="id", email_verified_field="verified_email"
        )

    async def _validate_bearer(
        self,
        identity: OAuthIdentity,
        url: str,
        id_field: str,
        email_fields: tuple = ("email",),
        name_field: str = "name",
        extra_headers: Optional[Dict[str, str]] = None,
        email_verified_field: Optional[str] = None,
    ) -> ProviderValidation:
        if not identity.access_token:
            logger.warning(f"{identity.provider} validation attempted without access token for {identity.provider_id}")
            return ProviderValidation(False, error=f"{identity.provider} validation requires an access token")

        headers = {"Authorization": f"Bearer {identity.access_token}", **(extra_headers or {})}
        response = await self._get(url, headers=headers)
        if response.status_code != 200:
            return ProviderValidation(False, error=f"Invalid {identity.provider} access token")
        data = response.json()
        if str(data.get(id_field)) != str(identity.provider_id):
            return ProviderValidation(False, error="Token belongs to a different account")
        email = next((data[f] for f in email_fields if data.get(f)), None)
        if email_verified_field and not data.get(email_verified_field):
            email = None
        return ProviderValidation(True, email, data.get(name_field))


class OAuthService:
    def __init__(self, auth: AuthService, validator: ProviderValidator):
        self.auth = auth
        self.validator = validator

    async def link_account(
        self,
        db: Session,
        user: User,
        identity: OAuthIdentity,
        actor: User,
    ) -> OAuthAccount:
        """Manually link ``identity`` to ``user`` on behalf of admin ``actor``.

        Only GitHub accounts can be checked without the user's token, so a
        failed check rejects GitHub links and is logged for the others.
        """
        if not actor.is_admin:
            logger.warning(
                f"Non-admin user {actor.id} attempted manual OAuth linking "
                f"({identity.provider}:{identity.provider_id})"
            )
            raise AdminRequiredError("Manual OAuth account linking is restricted to administrators")

        existing = self._linked_account(db, identity)
        if existing:
            if existing.user_id != user.id:
                logger.warning(
                    f"OAuth link conflict: {identity.provider}:{identity.provider_id} "
                    f"belongs to user {existing.user_id}, requested by user {user.id}"
                )
                raise AccountAlreadyLinkedError()
            return existing

        validation = await self.validator.validate(identity)
        if not validation.is_valid:
            logger.warning(f"Failed {identity.provider} provider validation for user {user.id}: {validation.error}")
            if identity.provider == OAuthProvider.GITHUB.value:
                raise InvalidProviderAccountError(f"Invalid {identity.provider} account: {validation.error}")
            logger.warning(f"Proceeding with unvalidated {identity.provider} account for user {user.id}")
        return self._store_link(db, user, identity, validation, actor)

    async def login_with_identity(
        self,
        db: Session,
        identity: OAuthIdentity,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        # Client-supplied fields are never trusted; the provider must vouch for the account
        validation = await self.validator.validate(identity, require_token=True)
        if not validation.is_valid:
            logger.warning(
                f"Rejected {identity.provider} login for {identity.provider_id}: {validation.error}"
            )
            raise InvalidProviderAccountError(f"Invalid {identity.provider} account: {validation.error}")

        linked = self._linked_account(db, identity)
        user = linked.user if linked else self._find_or_create_user(db, identity, validation)
        if is_blocked(user):
            raise AccountSuspendedError()
        if not linked:
            self._store_link(db, user, identity, validation)

        self.auth.lockout.register_success(db, user, ip_address)
        tokens, _ = await self.auth.start_session(db, user, ip_address, user_agent)
        self.auth.audit.record(
            AuditAction.LOGIN, user_id=user.id, details={"provider": identity.provider},
            ip_address=ip_address, user_agent=user_agent,
        )
        return {"user": user, "tokens": tokens, "session_id": tokens.session_id}

    @staticmethod
    def _linked_account(db: Session, identity: OAuthIdentity) -> Optional[OAuthAccount]:
        return (
            db.query(OAuthAccount)
            .filter(OAuthAccount.provider == identity.provider, OAuthAccount.provider_id == identity.provider_id)
            .first()
        )

    def _store_link(
        self,
        db: Session,
        user: User,
        identity: OAuthIdentity,
        validation: ProviderValidation,
        actor: Optional[User] = None,
    ) -> OAuthAccount:
        provider_email = validation.verified_email if validation.is_valid else None
        if provider_email is None and actor is not None:
            # An admin-entered email is kept as metadata only
            provider_email = identity.email
        provider_username = validation.verified_username or identity.username

        account = OAuthAccount(
            user_id=user.id,
            provider=identity.provider,
            provider_id=identity.provider_id,
            provider_email=provider_email,
            provider_username=provider_username,
            raw_profile=identity.raw or None,
        )
        db.add(account)
        try:
            db.commit()
        except IntegrityError:
            # Same provider account linked concurrently
            db.rollback()
            raise AccountAlreadyLinkedError()
        db.refresh(account)

        logger.info(
            f"OAuth account {identity.provider}:{identity.provider_id} linked to user {user.id} "
            f"(manual: {actor is not None})"
        )
        self.auth.audit.record(
            AuditAction.OAUTH_LINKED, "oauth_account", user_id=user.id, resource_id=str(account.id),
            details={"provider": identity.provider, "actor_id": actor.id if actor else None},
        )
        return account

    @staticmethod
    def _find_or_create_user(db: Session, identity: OAuthIdentity, validation: ProviderValidation) -> User:
        email = validation.verified_email.strip().lower() if validation.verified_email else None
        user = db.query(User).filter(User.email == email).first() if email else None
        if user:
            return user

        user = User(
            email=email or f"{identity.provider}_{identity.provider_id}@oauth.local",
            display_name=identity.display_name or validation.verified_username or identity.username,
            avatar_url=identity.avatar_url,
            status=UserStatus.ACTIVE.value,
            email_verified=bool(email),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.id} created from {identity.provider} login")
        return user

    @staticmethod
    def list_accounts(db: Session, user_id: int) -> List[OAuthAccount]:
        return (
            db.query(OAuthAccount)
            .filter(OAuthAccount.user_id == user_id)
            .order_by(OAuthAccount.created_at.asc())
            .all()
        )

    def unlink_account(self, db: Session, user_id: int, account_id: int) -> None:
        account = (
            db.query(OAuthAccount)
            .filter(OAuthAccount.id == account_id, OAuthAccount.user_id == user_id)
            .first()
        )
        if not account:
            raise OAuthAccountNotFoundError()
        provider = account.provider
        db.delete(account)
        db.commit()
        self.auth.audit.record(
            AuditAction.OAUTH_UNLINKED, "oauth_account", user_id=user_id, resource_id=str(account_id),
            details={"provider": provider},
        )
