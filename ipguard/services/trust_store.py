from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ipguard.models import TrustRecord

PATCHABLE_FIELDS = (
    "is_approved",
    "is_banned",
    "country",
    "region",
    "city",
    "latitude",
    "longitude",
    "isp",
    "user_agent",
)


class TrustStore:
    """Point lookups and upserts of trust records keyed by (user, address)."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int, address: str) -> TrustRecord | None:
        stmt = select(TrustRecord).where(TrustRecord.user_id == user_id, TrustRecord.ip_address == address)
        return self.session.scalars(stmt).first()

    def get_by_id(self, record_id: int) -> TrustRecord | None:
        return self.session.get(TrustRecord, record_id)

    def list_for_user(self, user_id: int) -> list[TrustRecord]:
        stmt = (
            select(TrustRecord)
            .where(TrustRecord.user_id == user_id)
            .order_by(TrustRecord.last_seen_at.desc(), TrustRecord.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def is_banned_anywhere(self, address: str) -> bool:
        stmt = (
            select(TrustRecord.id)
            .where(TrustRecord.ip_address == address, TrustRecord.is_banned.is_(True))
            .limit(1)
        )
        return self.session.scalars(stmt).first() is not None

    def upsert(
        self,
        user_id: int,
        address: str,
        patch: Mapping[str, Any] | None = None,
        touch: bool = True,
        now: datetime | None = None,
    ) -> TrustRecord:
        """Create the record as pending or merge non-null patch fields into it."""
        moment = now or datetime.now(timezone.utc)
        changes = self._clean_patch(patch)
        record = self.get(user_id, address)
        if record is None:
            record = TrustRecord(
                user_id=user_id,
                ip_address=address,
                is_approved=False,
                is_banned=False,
                last_seen_at=moment,
            )
            self._apply(record, changes)
            self.session.add(record)
            try:
                self.session.commit()
            except IntegrityError:
                # Another request created the same pair first.
                self.session.rollback()
                record = self.get(user_id, address)
                if record is None:
                    raise
                return self._update(record, changes, touch, moment)
            self.session.refresh(record)
            return record
        return self._update(record, changes, touch, moment)

    def set_flags(
        self,
        record: TrustRecord,
        is_banned: bool | None = None,
        is_approved: bool | None = None,
    ) -> TrustRecord:
        if is_banned is not None:
            record.is_banned = bool(is_banned)
        if is_approved is not None:
            record.is_approved = bool(is_approved)
        self._commit()
        self.session.refresh(record)
        return record

    def clear_all(self) -> int:
        deleted = self.session.query(TrustRecord).delete()
        self._commit()
        return int(deleted or 0)

    def _update(self, record: TrustRecord, changes: Mapping[str, Any], touch: bool, moment: datetime) -> TrustRecord:
        self._apply(record, changes)
        if touch:
            record.last_seen_at = moment
        self._commit()
        self.session.refresh(record)
        return record

    def _apply(self, record: TrustRecord, changes: Mapping[str, Any]) -> None:
        for key, value in changes.items():
            setattr(record, key, value)

    def _clean_patch(self, patch: Mapping[str, Any] | None) -> dict[str, Any]:
        if not patch:
            return {}
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown trust record fields: {', '.join(sorted(unknown))}")
        return {key: value for key, value in patch.items() if value is not None}

    def _commit(self) -> None:
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
