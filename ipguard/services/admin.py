from __future__ import annotations

from typing import Any

from ipguard.logging import AuditLogger, get_logger
from ipguard.models import TrustRecord
from ipguard.services.login import LoginError, TrustState
from ipguard.services.trust_store import TrustStore

logger = get_logger("admin")


def serialize_record(record: TrustRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "userId": record.user_id,
        "ipAddress": record.ip_address,
        "isApproved": bool(record.is_approved),
        "isBanned": bool(record.is_banned),
        "status": TrustState.from_record(record).value,
        "country": record.country,
        "region": record.region,
        "city": record.city,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "isp": record.isp,
        "userAgent": record.user_agent,
        "lastSeenAt": record.last_seen_at.isoformat() if record.last_seen_at else None,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


class TrustOverrideService:
    def __init__(self, trust_store: TrustStore, audit_logger: AuditLogger | None = None) -> None:
        self.trust_store = trust_store
        self.audit_logger = audit_logger

    def list_addresses(self, user_id: int) -> list[TrustRecord]:
        return self.trust_store.list_for_user(user_id)

    def update(
        self,
        user_id: int,
        ip_address_id: Any,
        is_banned: bool | None = None,
        is_approved: bool | None = None,
        actor: str = "admin",
    ) -> TrustRecord:
        if ip_address_id in (None, "") or (is_banned is None and is_approved is None):
            raise LoginError("missing_fields", "Missing required fields", 400)
        for value in (is_banned, is_approved):
            if value is not None and not isinstance(value, bool):
                raise LoginError("invalid_payload", "isBanned and isApproved must be booleans", 400)
        try:
            record_id = int(ip_address_id)
        except (TypeError, ValueError) as exc:
            raise LoginError("invalid_payload", "ipAddressId must be an integer", 400) from exc

        record = self.trust_store.get_by_id(record_id)
        if record is None or record.user_id != user_id:
            raise LoginError("not_found", "IP address not found", 404)

        previous_banned = bool(record.is_banned)
        previous_approved = bool(record.is_approved)
        record = self.trust_store.set_flags(record, is_banned=is_banned, is_approved=is_approved)
        action = self._describe(is_banned, is_approved)
        logger.info(
            "Trust override user_id=%s ip=%s action=%s actor=%s state=%s",
            user_id,
            record.ip_address,
            action,
            actor,
            TrustState.from_record(record).value,
        )
        if self.audit_logger:
            self.audit_logger.record_trust_override(
                record,
                actor,
                previous_is_banned=previous_banned,
                previous_is_approved=previous_approved,
                context={"action": action},
            )
        return record

    def _describe(self, is_banned: bool | None, is_approved: bool | None) -> str:
        if is_banned:
            return "banned"
        if is_banned is False and is_approved is None:
            return "unbanned"
        if is_approved is False:
            return "revoked"
        return "approved"
