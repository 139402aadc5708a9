from __future__ import annotations

from dataclasses import dataclass

from ipguard.services.login import LoginError
from ipguard.services.trust_store import TrustStore
from ipguard.utils.addresses import normalize_address


@dataclass(frozen=True)
class BanCheckResult:
    ip_address: str
    is_banned: bool

    def to_payload(self) -> dict:
        return {"ipAddress": self.ip_address, "isBanned": self.is_banned}


class BanCheckService:
    """Unauthenticated pre-flight check of an address against every account's bans."""

    def __init__(self, trust_store: TrustStore) -> None:
        self.trust_store = trust_store

    def check(self, public_ip: str | None) -> BanCheckResult:
        if not public_ip or not str(public_ip).strip():
            raise LoginError("missing_address", "IP address is required", 400)
        try:
            address = normalize_address(str(public_ip))
        except ValueError as exc:
            raise LoginError("invalid_address", "Invalid IP address", 400) from exc
        return BanCheckResult(ip_address=address, is_banned=self.trust_store.is_banned_anywhere(address))
