from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ipguard.models import VerificationCode

CODE_LENGTH = 6
DEFAULT_TTL_MINUTES = 10


def generate_code(length: int = CODE_LENGTH) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class VerificationCodeIssuer:
    def __init__(self, session: Session, ttl_minutes: int = DEFAULT_TTL_MINUTES) -> None:
        self.session = session
        self.ttl_minutes = ttl_minutes

    def issue(self, user_id: int, address: str, now: datetime | None = None) -> VerificationCode:
        moment = now or datetime.now(timezone.utc)
        entry = VerificationCode(
            user_id=user_id,
            ip_address=address,
            code=generate_code(),
            expires=moment + timedelta(minutes=self.ttl_minutes),
            used=False,
            created_at=moment,
        )
        self.session.add(entry)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(entry)
        return entry

    def verify(self, user_id: int, address: str, code: str, now: datetime | None = None) -> bool:
        """Consume the newest live code matching the pair; False leaves state untouched."""
        submitted = (code or "").strip()
        if len(submitted) != CODE_LENGTH or not submitted.isdigit():
            return False
        moment = now or datetime.now(timezone.utc)
        stmt = (
            select(VerificationCode)
            .where(
                VerificationCode.user_id == user_id,
                VerificationCode.ip_address == address,
                VerificationCode.code == submitted,
                VerificationCode.used.is_(False),
                VerificationCode.expires > moment,
            )
            .order_by(VerificationCode.created_at.desc(), VerificationCode.id.desc())
        )
        entry = self.session.scalars(stmt).first()
        if entry is None:
            return False
        # Conditional update so two concurrent submissions cannot both consume it.
        consume = (
            update(VerificationCode)
            .where(VerificationCode.id == entry.id, VerificationCode.used.is_(False))
            .values(used=True)
            .execution_options(synchronize_session="fetch")
        )
        try:
            result = self.session.execute(consume)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return result.rowcount == 1
