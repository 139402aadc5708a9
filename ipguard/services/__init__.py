from .admin import TrustOverrideService, serialize_record
from .ban_check import BanCheckResult, BanCheckService
from .geolocation import GeolocationClient, GeolocationResult
from .login import (
    IpStatus,
    LoginError,
    LoginOrchestrator,
    LoginOutcome,
    LoginRequest,
    TrustState,
    build_login_orchestrator,
)
from .notifications import (
    DatabaseTemplateStore,
    NotificationDispatcher,
    NotificationError,
    RenderedEmail,
    SmtpMailTransport,
)
from .trust_store import TrustStore
from .verification import VerificationCodeIssuer, generate_code

__all__ = [
    "BanCheckResult",
    "BanCheckService",
    "DatabaseTemplateStore",
    "GeolocationClient",
    "GeolocationResult",
    "IpStatus",
    "LoginError",
    "LoginOrchestrator",
    "LoginOutcome",
    "LoginRequest",
    "NotificationDispatcher",
    "NotificationError",
    "RenderedEmail",
    "SmtpMailTransport",
    "TrustOverrideService",
    "TrustState",
    "TrustStore",
    "VerificationCodeIssuer",
    "build_login_orchestrator",
    "generate_code",
    "serialize_record",
]
