from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import jwt
from passlib.hash import argon2
from sqlalchemy.orm import Session

from ipguard.models import AccountStatus, User

ROLES = ("admin", "viewer")


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    return argon2.hash(secrets.token_urlsafe(16))


class AuthError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


class AuthService:
    def __init__(
        self,
        session: Session,
        jwt_secret: str,
        session_ttl_seconds: int = 3600,
    ) -> None:
        self.session = session
        self.jwt_secret = jwt_secret
        self.session_ttl_seconds = session_ttl_seconds

    def register_user(
        self,
        email: str,
        password: str,
        role: str = "viewer",
        first_name: str = "",
        last_name: str = "",
        status: AccountStatus = AccountStatus.ACTIVE,
    ) -> User:
        normalized_email = self.normalize_email(email)
        if not normalized_email:
            raise AuthError("invalid_email")
        if role not in ROLES:
            raise AuthError("invalid_role")
        existing = self.session.query(User).filter_by(email=normalized_email).first()
        if existing:
            raise AuthError("user_exists")
        user = User(
            email=normalized_email,
            password_hash=self.hash_password(password),
            role=role,
            first_name=first_name,
            last_name=last_name,
            status=AccountStatus(status).value,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def authenticate(self, email: str, password: str) -> User:
        """Check credentials and account status.

        Unknown accounts and wrong passwords fail with the same code so the
        caller cannot tell them apart.
        """
        user = self.session.query(User).filter_by(email=self.normalize_email(email)).first()
        if not user:
            # Same argon2 cost as a real password check.
            self._verify_password(password, _dummy_password_hash())
            raise AuthError("invalid_credentials")
        if not self._verify_password(password, user.password_hash):
            raise AuthError("invalid_credentials")
        if user.is_suspended:
            raise AuthError("account_suspended")
        return user

    def set_status(self, user: User, status: AccountStatus) -> User:
        user.status = AccountStatus(status).value
        self.session.commit()
        self.session.refresh(user)
        return user

    def issue_token_for_user(self, user: User, now: datetime | None = None) -> str:
        moment = now or datetime.now(timezone.utc)
        exp = moment + timedelta(seconds=self.session_ttl_seconds)
        payload = {"sub": str(user.id), "role": user.role, "exp": exp, "iat": moment}
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def verify_token(self, token: str) -> dict:
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError as exc:
            raise AuthError("token_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthError("invalid_token") from exc
        return payload

    def authorize(self, token: str, required_role: str) -> dict:
        payload = self.verify_token(token)
        role = payload.get("role")
        if required_role == "viewer":
            allowed = role in ROLES
        elif required_role == "admin":
            allowed = role == "admin"
        else:
            raise AuthError("invalid_role")
        if not allowed:
            raise AuthError("forbidden")
        return payload

    def hash_password(self, password: str) -> str:
        return argon2.hash(password)

    def normalize_email(self, email: str) -> str:
        return (email or "").strip().lower()

    def _verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return argon2.verify(password, password_hash)
        except ValueError:
            return False
