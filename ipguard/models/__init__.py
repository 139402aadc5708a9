from .auth import AccountStatus, User
from .db import Base
from .log import LoginDecisionLog, TrustOverrideLog
from .templates import EmailTemplate
from .trust import TrustRecord, VerificationCode

__all__ = [
	"AccountStatus",
	"Base",
	"EmailTemplate",
	"LoginDecisionLog",
	"TrustOverrideLog",
	"TrustRecord",
	"User",
	"VerificationCode",
]
