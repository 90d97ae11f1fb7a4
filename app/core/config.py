import os
from typing import Optional, List
from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str = os.getenv("ENV", "local")
    APP_NAME: str = os.getenv("APP_NAME", "Auth Backend")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DATABASE_ECHO: bool = _bool("DATABASE_ECHO", "False")
    DATABASE_POOL_SIZE: int = int(os.getenv("DATABASE_POOL_SIZE", 20))
    DATABASE_MAX_OVERFLOW: int = int(os.getenv("DATABASE_MAX_OVERFLOW", 10))

    # Redis
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_SOCKET_TIMEOUT: float = float(os.getenv("REDIS_SOCKET_TIMEOUT", 5))

    # JWT
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_SECRET: Optional[str] = os.getenv("JWT_SECRET")
    JWT_REFRESH_SECRET: Optional[str] = os.getenv("JWT_REFRESH_SECRET")
    JWT_PRIVATE_KEY: Optional[str] = os.getenv("JWT_PRIVATE_KEY")
    JWT_PUBLIC_KEY: Optional[str] = os.getenv("JWT_PUBLIC_KEY")
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "auth-backend")
    JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "auth-frontend")
    JWT_LEEWAY_SECONDS: int = int(os.getenv("JWT_LEEWAY_SECONDS", 30))
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 7))

    # Lockout
    MAX_LOGIN_ATTEMPTS: int = int(os.getenv("MAX_LOGIN_ATTEMPTS", 5))
    LOCKOUT_DURATION_MINUTES: int = int(os.getenv("LOCKOUT_DURATION_MINUTES", 15))

    # Feature flags
    EMAIL_VERIFICATION_REQUIRED: bool = _bool("EMAIL_VERIFICATION_REQUIRED", "True")
    TWO_FACTOR_ENABLED: bool = _bool("TWO_FACTOR_ENABLED", "True")

    # Single-use tokens stored on the user row
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = int(os.getenv("EMAIL_VERIFICATION_EXPIRE_HOURS", 24))
    PASSWORD_RESET_EXPIRE_MINUTES: int = int(os.getenv("PASSWORD_RESET_EXPIRE_MINUTES", 60))

    # Tracked sessions
    SESSION_EXPIRE_DAYS: int = int(os.getenv("SESSION_EXPIRE_DAYS", 30))
    SESSION_CLEANUP_INTERVAL_HOURS: int = int(os.getenv("SESSION_CLEANUP_INTERVAL_HOURS", 24))

    # Audit
    AUDIT_LOG_ENABLED: bool = _bool("AUDIT_LOG_ENABLED", "True")
    AUDIT_LOG_RETENTION_DAYS: int = int(os.getenv("AUDIT_LOG_RETENTION_DAYS", 90))

    # Geolocation
    GEOLOCATION_API_URL: str = os.getenv("GEOLOCATION_API_URL", "https://api.ipquery.io")
    GEOLOCATION_TIMEOUT_SECONDS: float = float(os.getenv("GEOLOCATION_TIMEOUT_SECONDS", 3))
    USE_REAL_GEOLOCATION_IN_DEV: bool = _bool("USE_REAL_GEOLOCATION_IN_DEV", "False")

    # Email
    SENDER_NAME: str = os.getenv("SENDER_NAME", "Auth Backend Team")
    SMTP_HOST: Optional[str] = os.getenv("SMTP_HOST")
    SMTP_PORT: Optional[int] = int(os.getenv("SMTP_PORT", 587))
    SMTP_USER: Optional[str] = os.getenv("SMTP_USER")
    SMTP_PASSWORD: Optional[str] = os.getenv("SMTP_PASSWORD")

    # Frontend URLs
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:4200")
    FRONTEND_EMAIL_VERIFICATION_URL: str = os.getenv(
        "FRONTEND_EMAIL_VERIFICATION_URL", "http://localhost:4200/auth/verify-email"
    )
    FRONTEND_PASSWORD_RESET_URL: str = os.getenv(
        "FRONTEND_PASSWORD_RESET_URL", "http://localhost:4200/auth/reset-password"
    )

    # SMS (Twilio Verify)
    TWILIO_ACCOUNT_SID: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_VERIFY_SERVICE_SID: Optional[str] = os.getenv("TWILIO_VERIFY_SERVICE_SID")
    SMS_DEFAULT_COUNTRY_CODE: str = os.getenv("SMS_DEFAULT_COUNTRY_CODE", "+51")
    SMS_RESEND_INTERVAL_SECONDS: int = int(os.getenv("SMS_RESEND_INTERVAL_SECONDS", 60))
    SMS_VERIFICATION_TTL_SECONDS: int = int(os.getenv("SMS_VERIFICATION_TTL_SECONDS", 600))
    SMS_MAX_VERIFY_ATTEMPTS: int = int(os.getenv("SMS_MAX_VERIFY_ATTEMPTS", 3))

    # Google OAuth
    GOOGLE_CLIENT_ID: Optional[str] = os.getenv("GOOGLE_CLIENT_ID")

    # CORS
    BACKEND_CORS_ORIGINS: Optional[str] = os.getenv("BACKEND_CORS_ORIGINS")

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = _bool("RATE_LIMIT_ENABLED", "True")
    RATE_LIMIT_REQUESTS: int = int(os.getenv("RATE_LIMIT_REQUESTS", 100))
    RATE_LIMIT_PERIOD_SECONDS: int = int(os.getenv("RATE_LIMIT_PERIOD_SECONDS", 60))
    # Proxies whose X-Forwarded-For uvicorn honours when setting the client address
    FORWARDED_ALLOW_IPS: str = os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1")

    # Celery
    CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", REDIS_URL)

    @property
    def cors_origins(self) -> List[str]:
        if not self.BACKEND_CORS_ORIGINS:
            return []
        return [o.strip() for o in self.BACKEND_CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
