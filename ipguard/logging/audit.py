from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from sqlalchemy.orm import Session

from ipguard.models import LoginDecisionLog, TrustOverrideLog, TrustRecord


class AuditLogger:
    def __init__(self, session: Session, logger: logging.Logger | None = None) -> None:
        self.session = session
        self.logger = logger or logging.getLogger("ipguard.audit")

    def record_login_decision(
        self,
        user_id: int | None,
        ip_address: str | None,
        decision: str,
        reason: str,
        context: Mapping[str, Any] | None = None,
    ) -> LoginDecisionLog:
        entry = LoginDecisionLog(
            user_id=user_id,
            ip_address=ip_address,
            decision=decision,
            reason=reason,
            context=dict(context) if context else {},
        )
        self._persist(entry, "login_decision")
        return entry

    def record_trust_override(
        self,
        record: TrustRecord,
        actor: str,
        previous_is_banned: bool,
        previous_is_approved: bool,
        context: Mapping[str, Any] | None = None,
    ) -> TrustOverrideLog:
        entry = TrustOverrideLog(
            user_id=record.user_id,
            ip_address_id=record.id,
            ip_address=record.ip_address,
            actor=actor,
            previous_is_banned=previous_is_banned,
            previous_is_approved=previous_is_approved,
            is_banned=record.is_banned,
            is_approved=record.is_approved,
            context=dict(context) if context else {},
        )
        self._persist(entry, "trust_override")
        return entry

    def _persist(self, entry: Any, category: str) -> None:
        self.session.add(entry)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(entry)
        self._log_entry(category, entry)

    def _log_entry(self, category: str, entry: Any) -> None:
        payload = {"category": category}
        for column in entry.__table__.columns:
            payload[column.name] = getattr(entry, column.name)
        self.logger.info(json.dumps(payload, default=str))
