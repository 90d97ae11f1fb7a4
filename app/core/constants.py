"""Application constants such as account statuses and Redis key layouts."""
from enum import Enum


class UserStatus(str, Enum):
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class OAuthProvider(str, Enum):
    GOOGLE = "google"
    GITHUB = "github"
    MICROSOFT = "microsoft"
    LINKEDIN = "linkedin"


TOKEN_TYPE = "Bearer"
BACKUP_CODE_COUNT = 10
SESSION_TOKEN_PREVIEW_LENGTH = 8

# Redis key layouts
ACCESS_SESSION_KEY = "jwt:session:{jti}"
USER_JTI_SET_KEY = "jwt:user:{user_id}:jtis"
SMS_VERIFICATION_KEY = "sms:verification:{phone}"
SMS_RESEND_LOCK_KEY = "sms:resend:{phone}"
