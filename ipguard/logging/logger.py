from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

logger = logging.getLogger("ipguard.login")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"ipguard.{name}")


def log_login_decision(
    user_id: int | None,
    ip_address: str | None,
    decision: str,
    reason: str,
    metadata: Mapping[str, Any] | None = None,
) -> None:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "user_id": user_id,
        "ip_address": ip_address,
        "decision": decision,
        "reason": reason,
        "metadata": dict(metadata) if metadata else {},
    }
    logger.info(json.dumps(entry, default=str))
