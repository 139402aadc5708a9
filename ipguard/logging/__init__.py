from .audit import AuditLogger
from .logger import get_logger, log_login_decision

__all__ = ["AuditLogger", "get_logger", "log_login_decision"]
