from contextlib import asynccontextmanager
from typing import Callable, Optional
import logging

import httpx
from fastapi import FastAPI
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from redis import asyncio as aioredis

from app.cache.cache_service import AccessSessionCache
from app.core.config import settings
from app.core.logger import setup_logging
from app.core.tokens import TokenCodec
from app.middleware.cors import configure_cors
from app.middleware.logging import RequestLoggerMiddleware
from app.middleware import error_handler
from app.services.audit_service import AuditService
from app.services.auth_service import AuthService
from app.services.email_service import EmailService, send_email
from app.services.geolocation_service import GeolocationService
from app.services.lockout import LockoutGuard
from app.services.mfa_service import MFAService
from app.services.oauth_service import OAuthService, ProviderValidator
from app.services.session_service import SessionTracker
from app.services.sms_service import SMSService, TwilioVerifyProvider
from app.services.token_service import RefreshTokenLedger, TokenService
from app.services.user_service import UserService
from app.utils.errors import AuthError

# Routers
from app.routers import auth as auth_router
from app.routers import users as users_router
from app.routers import health as health_router

logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    redis_client: aioredis.Redis,
    http_client: Optional[httpx.AsyncClient] = None,
    *,
    email_sender: Callable[..., bool] = send_email,
    sms_provider: Optional[TwilioVerifyProvider] = None,
    provider_validator: Optional[ProviderValidator] = None,
    geolocation: Optional[GeolocationService] = None,
    audit: Optional[AuditService] = None,
) -> None:
    """Build the process-wide service graph and hang it on ``app.state``."""
    codec = TokenCodec.from_settings(settings)
    ledger = RefreshTokenLedger(codec)
    cache = AccessSessionCache(redis_client, ttl_seconds=int(codec.access_ttl.total_seconds()))
    tokens = TokenService(codec, ledger, cache)
    audit = audit or AuditService()
    sessions = SessionTracker(ledger, cache, geolocation or GeolocationService(http_client))
    auth = AuthService(
        tokens=tokens,
        sessions=sessions,
        lockout=LockoutGuard(),
        mfa=MFAService(),
        email=EmailService(email_sender),
        audit=audit,
    )

    app.state.redis = redis_client
    app.state.token_service = tokens
    app.state.session_tracker = sessions
    app.state.mfa_service = auth.mfa
    app.state.auth_service = auth
    app.state.user_service = UserService(tokens, sessions, SMSService(redis_client, sms_provider), audit)
    app.state.oauth_service = OAuthService(auth, provider_validator or ProviderValidator(http_client))


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = not hasattr(app.state, "auth_service")
    if owned:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
        http_client = httpx.AsyncClient(timeout=settings.GEOLOCATION_TIMEOUT_SECONDS)
        configure_services(app, redis_client, http_client)
        logger.info("Services configured")
    yield
    if owned:
        await http_client.aclose()
        await redis_client.close()


def create_app(redis_client: Optional[aioredis.Redis] = None, **service_overrides) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Passing ``redis_client`` wires the services immediately instead of in the
    lifespan, which is how tests inject their doubles.
    """
    setup_logging()
    description = (
        "Authentication and identity backend.\n\n"
        "Credential and OAuth login, JWT issuance and rotation, two-factor "
        "authentication, session tracking and account lockout."
    )

    openapi_tags = [
        {"name": "authentication", "description": "Register, login, token refresh, logout and email-link flows."},
        {"name": "users", "description": "Profile, sessions, two-factor, phone and linked OAuth accounts."},
        {"name": "health", "description": "Health checks and service status endpoints."},
    ]

    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        description=description,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )

    if redis_client is not None:
        configure_services(app, redis_client, **service_overrides)

    # Middleware
    configure_cors(app)
    app.add_middleware(RequestLoggerMiddleware)

    # Exception handlers
    app.add_exception_handler(AuthError, error_handler.auth_error_handler)
    app.add_exception_handler(FastAPIHTTPException, error_handler.http_exception_handler)

    # Include routers
    app.include_router(health_router.router)
    app.include_router(auth_router.router)
    app.include_router(users_router.router)

    return app


app = create_app()
