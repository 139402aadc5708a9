from __future__ import annotations

from functools import wraps
from typing import Any, Mapping

from flask import Flask, g, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ipguard.auth import AuthError, AuthService
from ipguard.config import Settings, load_settings
from ipguard.logging import AuditLogger, get_logger
from ipguard.models import Base
from ipguard.services import (
    BanCheckService,
    GeolocationClient,
    LoginError,
    LoginRequest,
    TrustOverrideService,
    TrustStore,
    build_login_orchestrator,
    serialize_record,
)
from ipguard.services.login import Geolocator
from ipguard.services.notifications import MailTransport

from .commands import register_commands

logger = get_logger("api")

AUTH_ERROR_STATUS = {
    "token_expired": 401,
    "invalid_token": 401,
    "forbidden": 403,
}


def _engine_for(database_url: str):
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, future=True, pool_pre_ping=True)


def _json_body() -> Mapping[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int)):
        return None
    value = str(value).strip()
    return value or None


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_app(
    settings: Settings | None = None,
    geolocator: Geolocator | None = None,
    mail_transport: MailTransport | None = None,
) -> Flask:
    resolved_settings = settings or load_settings()
    app = Flask(__name__)
    app.config["SETTINGS"] = resolved_settings

    engine = _engine_for(resolved_settings.database_url)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    Base.metadata.create_all(engine)
    app.extensions["ipguard.engine"] = engine
    app.extensions["ipguard.sessionmaker"] = SessionLocal

    resolved_geolocator = geolocator or GeolocationClient(
        base_url=resolved_settings.geolocation_base_url,
        timeout_seconds=resolved_settings.geolocation_timeout_seconds,
    )

    def get_session() -> Session:
        return SessionLocal()

    def require_token(role: str):
        def decorator(fn):
            @wraps(fn)
            def wrapper(*args, **kwargs):
                token = _bearer_token()
                if not token:
                    return jsonify({"error": "Unauthorized"}), 401
                with get_session() as db:
                    auth = AuthService(db, resolved_settings.jwt_secret)
                    try:
                        g.token = auth.authorize(token, role)
                    except AuthError as exc:
                        status = AUTH_ERROR_STATUS.get(exc.code, 401)
                        message = "Forbidden" if status == 403 else "Unauthorized"
                        return jsonify({"error": message}), status
                return fn(*args, **kwargs)

            return wrapper

        return decorator

    def token_user_id() -> int:
        try:
            return int(g.token.get("sub"))
        except (TypeError, ValueError) as exc:
            raise LoginError("invalid_token", "Unauthorized", 401) from exc

    @app.errorhandler(LoginError)
    def handle_login_error(exc: LoginError):
        return jsonify({"error": exc.message}), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        logger.exception("Database error while handling %s %s", request.method, request.path)
        return jsonify({"error": "Failed to process request. Please try again."}), 500

    @app.after_request
    def after_request(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        if resolved_settings.app_env not in ("development", "test"):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    @app.route("/health")
    def health():
        try:
            with engine.connect() as connection:
                connection.execute(text("select 1"))
        except SQLAlchemyError:
            logger.exception("Health check failed")
            return jsonify({"error": "database_unavailable"}), 503
        return jsonify({"status": "ok"})

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = _json_body()
        login_request = LoginRequest(
            email=_text(data, "email"),
            password=data.get("password") if isinstance(data.get("password"), str) else None,
            verification_code=_text(data, "verificationCode"),
            public_ip=_text(data, "publicIp"),
            headers=request.headers,
            remote_addr=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        with get_session() as db:
            orchestrator = build_login_orchestrator(
                resolved_settings,
                db,
                geolocator=resolved_geolocator,
                transport=mail_transport,
            )
            outcome = orchestrator.login(login_request)
        return jsonify(outcome.to_payload())

    @app.route("/api/check-ip-ban", methods=["POST"])
    def check_ip_ban():
        data = _json_body()
        with get_session() as db:
            result = BanCheckService(TrustStore(db)).check(_text(data, "publicIp"))
        return jsonify(result.to_payload())

    @app.route("/api/users/<int:user_id>/ip-addresses", methods=["GET"])
    @require_token("admin")
    def list_ip_addresses(user_id: int):
        with get_session() as db:
            service = TrustOverrideService(TrustStore(db))
            records = [serialize_record(r) for r in service.list_addresses(user_id)]
        return jsonify(records)

    @app.route("/api/users/<int:user_id>/ip-addresses", methods=["PATCH"])
    @require_token("admin")
    def update_ip_address(user_id: int):
        data = _json_body()
        actor = f"user:{g.token.get('sub')}"
        with get_session() as db:
            service = TrustOverrideService(TrustStore(db), audit_logger=AuditLogger(db))
            record = service.update(
                user_id,
                data.get("ipAddressId"),
                is_banned=data.get("isBanned"),
                is_approved=data.get("isApproved"),
                actor=actor,
            )
            payload = serialize_record(record)
        return jsonify(payload)

    @app.route("/api/user/ip-status", methods=["POST"])
    @require_token("viewer")
    def ip_status():
        data = _json_body()
        user_id = token_user_id()
        with get_session() as db:
            orchestrator = build_login_orchestrator(
                resolved_settings,
                db,
                geolocator=resolved_geolocator,
                transport=mail_transport,
            )
            status = orchestrator.ip_status(user_id, _text(data, "publicIp"), request.headers, request.remote_addr)
        return jsonify(status.to_payload())

    @app.route("/api/user/track-ip", methods=["POST"])
    @require_token("viewer")
    def track_ip():
        data = _json_body()
        user_id = token_user_id()
        user_agent = _text(data, "userAgent") or request.headers.get("User-Agent")
        with get_session() as db:
            orchestrator = build_login_orchestrator(
                resolved_settings,
                db,
                geolocator=resolved_geolocator,
                transport=mail_transport,
            )
            record = orchestrator.track_address(user_id, _text(data, "ipAddress"), user_agent)
            payload = serialize_record(record)
        return jsonify({"success": True, "ipRecord": payload})

    register_commands(app, SessionLocal, resolved_settings)
    return app
