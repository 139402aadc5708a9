from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Protocol

from sqlalchemy.orm import Session

from ipguard.auth import AuthError, AuthService
from ipguard.config import Settings
from ipguard.logging import AuditLogger, log_login_decision
from ipguard.models import TrustRecord, User
from ipguard.services.geolocation import GeolocationClient, GeolocationResult
from ipguard.services.notifications import (
    DatabaseTemplateStore,
    MailTransport,
    NotificationDispatcher,
    NotificationError,
)
from ipguard.services.trust_store import TrustStore
from ipguard.services.verification import VerificationCodeIssuer
from ipguard.utils.addresses import AddressResolution, normalize_address, resolve_address

UNRESOLVED_MESSAGE = "Unable to determine your IP address. Verification required."
CHALLENGE_MESSAGE = "Verification code sent to your email"


class TrustState(Enum):
    UNKNOWN = "unknown"
    PENDING = "pending"
    APPROVED = "approved"
    BANNED = "banned"

    @classmethod
    def from_record(cls, record: TrustRecord | None) -> "TrustState":
        if record is None:
            return cls.UNKNOWN
        # Ban wins over approval whatever the stored flags say.
        if record.is_banned:
            return cls.BANNED
        if record.is_approved:
            return cls.APPROVED
        return cls.PENDING


@dataclass(eq=False)
class LoginError(Exception):
    code: str
    message: str
    status_code: int = 400

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class LoginRequest:
    email: str | None
    password: str | None
    verification_code: str | None = None
    public_ip: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    remote_addr: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class LoginOutcome:
    requires_verification: bool
    state: TrustState
    ip_address: str | None
    user_id: int
    message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": True, "requiresVerification": self.requires_verification}
        if self.message:
            payload["message"] = self.message
        return payload


@dataclass(frozen=True)
class IpStatus:
    ip_address: str | None
    ip_status: str
    is_banned: bool
    is_approved: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "ipAddress": self.ip_address,
            "ipStatus": self.ip_status,
            "isBanned": self.is_banned,
            "isApproved": self.is_approved,
        }


class Geolocator(Protocol):
    def lookup(self, address: str) -> GeolocationResult | None:
        ...


class LoginOrchestrator:
    def __init__(
        self,
        auth_service: AuthService,
        trust_store: TrustStore,
        code_issuer: VerificationCodeIssuer,
        geolocator: Geolocator,
        dispatcher: NotificationDispatcher,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.auth_service = auth_service
        self.trust_store = trust_store
        self.code_issuer = code_issuer
        self.geolocator = geolocator
        self.dispatcher = dispatcher
        self.audit_logger = audit_logger

    def login(self, request: LoginRequest, now: datetime | None = None) -> LoginOutcome:
        moment = now or datetime.now(timezone.utc)
        if not request.email or not request.password:
            raise LoginError("missing_fields", "Email and password are required", 400)

        user = self._authenticate(request.email, request.password)

        resolution = resolve_address(request.public_ip, request.headers, request.remote_addr)
        if not resolution.is_resolved:
            self._record(user.id, None, "verification_required", "address_unresolved")
            return LoginOutcome(
                requires_verification=True,
                state=TrustState.UNKNOWN,
                ip_address=None,
                user_id=user.id,
                message=UNRESOLVED_MESSAGE,
            )

        address = resolution.address
        record = self.trust_store.get(user.id, address)
        state = TrustState.from_record(record)

        if state is TrustState.BANNED:
            self._record(user.id, address, "rejected", "address_banned", {"source": resolution.source})
            raise LoginError("address_banned", "Login from this IP address is not allowed", 403)

        # A submitted code is always checked, even for an approved address.
        if request.verification_code:
            return self._complete_verification(user, address, state, request, resolution, moment)

        if state is TrustState.APPROVED:
            self.trust_store.upsert(user.id, address, {"user_agent": request.user_agent}, now=moment)
            self._record(user.id, address, "allowed", "address_approved", {"source": resolution.source})
            return LoginOutcome(False, state, address, user.id)

        return self._issue_challenge(user, address, state, request, resolution, moment)

    def ip_status(
        self,
        user_id: int,
        public_ip: str | None,
        headers: Mapping[str, str],
        remote_addr: str | None = None,
    ) -> IpStatus:
        resolution = resolve_address(public_ip, headers, remote_addr)
        if not resolution.is_resolved:
            return IpStatus(None, "not_verified", False, False)
        record = self.trust_store.get(user_id, resolution.address)
        state = TrustState.from_record(record)
        if state is TrustState.BANNED:
            label = "banned"
        elif state is TrustState.APPROVED:
            label = "approved"
        else:
            label = "not_verified"
        return IpStatus(
            ip_address=resolution.address,
            ip_status=label,
            is_banned=bool(record and record.is_banned),
            is_approved=bool(record and record.is_approved),
        )

    def track_address(
        self,
        user_id: int,
        raw_address: str | None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> TrustRecord:
        if not raw_address or not str(raw_address).strip():
            raise LoginError("missing_address", "IP address is required", 400)
        try:
            address = normalize_address(str(raw_address))
        except ValueError as exc:
            raise LoginError("invalid_address", "Invalid IP address", 400) from exc
        existing = self.trust_store.get(user_id, address)
        if TrustState.from_record(existing) is TrustState.BANNED:
            self._record(user_id, address, "rejected", "tracking_banned_address")
            raise LoginError("address_banned", "IP address is banned", 403)
        geolocation = self._geolocate(address)
        patch = {"user_agent": user_agent}
        if geolocation:
            patch.update(geolocation.as_patch())
        return self.trust_store.upsert(user_id, address, patch, now=now)

    def _authenticate(self, email: str, password: str) -> User:
        try:
            return self.auth_service.authenticate(email, password)
        except AuthError as exc:
            if exc.code == "account_suspended":
                self._record(None, None, "rejected", "account_suspended", {"email": email.strip().lower()})
                raise LoginError("account_suspended", "Your account has been suspended", 403) from exc
            self._record(None, None, "rejected", "invalid_credentials")
            raise LoginError("invalid_credentials", "Invalid email or password", 401) from exc

    def _complete_verification(
        self,
        user: User,
        address: str,
        state: TrustState,
        request: LoginRequest,
        resolution: AddressResolution,
        moment: datetime,
    ) -> LoginOutcome:
        if not self.code_issuer.verify(user.id, address, request.verification_code or "", now=moment):
            self._record(user.id, address, "rejected", "invalid_code", {"state": state.value})
            raise LoginError("invalid_code", "Invalid or expired verification code", 400)

        geolocation = self._geolocate(address)
        patch: dict[str, Any] = {"is_approved": True, "user_agent": request.user_agent}
        if geolocation:
            patch.update(geolocation.as_patch())
        self.trust_store.upsert(user.id, address, patch, now=moment)
        self._record(
            user.id,
            address,
            "allowed",
            "code_verified",
            {"previous_state": state.value, "source": resolution.source},
        )
        return LoginOutcome(False, TrustState.APPROVED, address, user.id)

    def _issue_challenge(
        self,
        user: User,
        address: str,
        state: TrustState,
        request: LoginRequest,
        resolution: AddressResolution,
        moment: datetime,
    ) -> LoginOutcome:
        geolocation = self._geolocate(address)
        patch: dict[str, Any] = {"is_approved": False, "user_agent": request.user_agent}
        if geolocation:
            patch.update(geolocation.as_patch())
        self.trust_store.upsert(user.id, address, patch, now=moment)
        issued = self.code_issuer.issue(user.id, address, now=moment)

        try:
            self.dispatcher.send_login_code(user, issued.code, address, geolocation)
        except NotificationError as exc:
            self._record(user.id, address, "error", exc.code, {"state": state.value})
            raise LoginError(exc.code, exc.message, 500) from exc

        self._record(
            user.id,
            address,
            "verification_required",
            "challenge_issued",
            {"previous_state": state.value, "source": resolution.source, "code_id": issued.id},
        )
        return LoginOutcome(True, TrustState.PENDING, address, user.id, message=CHALLENGE_MESSAGE)

    def _geolocate(self, address: str) -> GeolocationResult | None:
        try:
            return self.geolocator.lookup(address)
        except Exception as exc:
            log_login_decision(None, address, "geolocation", "lookup_failed", {"error": str(exc)})
            return None

    def _record(
        self,
        user_id: int | None,
        address: str | None,
        decision: str,
        reason: str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        log_login_decision(user_id, address, decision, reason, metadata=context)
        if self.audit_logger:
            self.audit_logger.record_login_decision(user_id, address, decision, reason, context=context)


def build_login_orchestrator(
    settings: Settings,
    session: Session,
    geolocator: Geolocator | None = None,
    transport: MailTransport | None = None,
) -> LoginOrchestrator:
    auth_service = AuthService(session, settings.jwt_secret, session_ttl_seconds=settings.token_ttl_seconds)
    trust_store = TrustStore(session)
    code_issuer = VerificationCodeIssuer(session, ttl_minutes=settings.verification_code_ttl_minutes)
    resolved_geolocator = geolocator or GeolocationClient(
        base_url=settings.geolocation_base_url,
        timeout_seconds=settings.geolocation_timeout_seconds,
    )
    dispatcher = NotificationDispatcher(
        settings.mail,
        DatabaseTemplateStore(session),
        transport=transport,
        code_ttl_minutes=settings.verification_code_ttl_minutes,
    )
    return LoginOrchestrator(
        auth_service=auth_service,
        trust_store=trust_store,
        code_issuer=code_issuer,
        geolocator=resolved_geolocator,
        dispatcher=dispatcher,
        audit_logger=AuditLogger(session),
    )
