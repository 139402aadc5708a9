from __future__ import annotations

import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from ipguard.logging import AuditLogger
from ipguard.models import Base, TrustOverrideLog, User
from ipguard.services import LoginError, TrustOverrideService, TrustStore, serialize_record


class TrustOverrideTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.session = Session(self.engine)
        self.owner = User(email="owner@example.com", password_hash="x")
        self.stranger = User(email="stranger@example.com", password_hash="x")
        self.session.add_all([self.owner, self.stranger])
        self.session.commit()
        self.store = TrustStore(self.session)
        self.service = TrustOverrideService(self.store, audit_logger=AuditLogger(self.session))
        self.record = self.store.upsert(
            self.owner.id,
            "1.2.3.4",
            {"is_approved": True, "country": "Norway", "city": "Oslo"},
            now=datetime(2026, 2, 1, tzinfo=timezone.utc),
        )

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def test_ban_keeps_approval_flag(self) -> None:
        updated = self.service.update(self.owner.id, self.record.id, is_banned=True, actor="user:1")
        self.assertTrue(updated.is_banned)
        self.assertTrue(updated.is_approved)
        self.assertEqual(serialize_record(updated)["status"], "banned")

    def test_revoke_keeps_history(self) -> None:
        updated = self.service.update(self.owner.id, str(self.record.id), is_approved=False)
        self.assertFalse(updated.is_approved)
        self.assertEqual(updated.city, "Oslo")
        self.assertEqual(serialize_record(updated)["status"], "pending")

    def test_override_is_audited(self) -> None:
        self.service.update(self.owner.id, self.record.id, is_banned=True, actor="user:9")
        self.service.update(self.owner.id, self.record.id, is_banned=False, actor="user:9")
        entries = self.session.query(TrustOverrideLog).order_by(TrustOverrideLog.id).all()
        self.assertEqual([e.context["action"] for e in entries], ["banned", "unbanned"])
        self.assertFalse(entries[0].previous_is_banned)
        self.assertTrue(entries[0].is_banned)
        self.assertEqual(entries[1].actor, "user:9")

    def test_validation_errors(self) -> None:
        cases = (
            ((self.owner.id, None), {"is_banned": True}, 400),
            ((self.owner.id, self.record.id), {}, 400),
            ((self.owner.id, self.record.id), {"is_banned": "yes"}, 400),
            ((self.owner.id, "abc"), {"is_approved": True}, 400),
            ((self.owner.id, 9999), {"is_banned": True}, 404),
            ((self.stranger.id, self.record.id), {"is_banned": True}, 404),
        )
        for args, kwargs, status in cases:
            with self.subTest(args=args, kwargs=kwargs):
                with self.assertRaises(LoginError) as ctx:
                    self.service.update(*args, **kwargs)
                self.assertEqual(ctx.exception.status_code, status)
        self.assertFalse(self.store.get(self.owner.id, "1.2.3.4").is_banned)

    def test_list_and_serialize(self) -> None:
        self.store.upsert(self.owner.id, "5.6.7.8", now=datetime(2026, 2, 2, tzinfo=timezone.utc))
        payload = [serialize_record(r) for r in self.service.list_addresses(self.owner.id)]
        self.assertEqual([p["ipAddress"] for p in payload], ["5.6.7.8", "1.2.3.4"])
        self.assertEqual(payload[1]["country"], "Norway")
        self.assertEqual(payload[1]["status"], "approved")
        self.assertEqual(payload[0]["status"], "pending")
        self.assertTrue(payload[0]["lastSeenAt"].startswith("2026-02-02"))
        self.assertEqual(self.service.list_addresses(self.stranger.id), [])


if __name__ == "__main__":
    unittest.main()
