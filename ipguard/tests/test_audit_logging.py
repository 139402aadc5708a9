from __future__ import annotations

import json
import logging
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from ipguard.logging import AuditLogger, log_login_decision
from ipguard.models import Base, LoginDecisionLog, TrustOverrideLog, User
from ipguard.services.trust_store import TrustStore


class AuditLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.session = Session(self.engine)
        self.audit = AuditLogger(self.session)
        self.user = User(email="audit@example.com", password_hash="x")
        self.session.add(self.user)
        self.session.commit()

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def test_record_login_decision_persists(self) -> None:
        entry = self.audit.record_login_decision(
            self.user.id,
            "1.2.3.4",
            "verification_required",
            "challenge_issued",
            context={"source": "client"},
        )
        stored = self.session.query(LoginDecisionLog).filter_by(id=entry.id).one()
        self.assertEqual(stored.ip_address, "1.2.3.4")
        self.assertEqual(stored.decision, "verification_required")
        self.assertEqual(stored.context["source"], "client")

    def test_record_trust_override_persists(self) -> None:
        record = TrustStore(self.session).upsert(self.user.id, "5.6.7.8", {"is_approved": True})
        record.is_banned = True
        self.session.commit()
        entry = self.audit.record_trust_override(
            record,
            "user:1",
            previous_is_banned=False,
            previous_is_approved=True,
            context={"action": "banned"},
        )
        stored = self.session.query(TrustOverrideLog).filter_by(id=entry.id).one()
        self.assertEqual(stored.ip_address_id, record.id)
        self.assertFalse(stored.previous_is_banned)
        self.assertTrue(stored.is_banned)
        self.assertEqual(stored.context["action"], "banned")

    def test_audit_entries_are_logged_as_json(self) -> None:
        with self.assertLogs("ipguard.audit", level="INFO") as captured:
            self.audit.record_login_decision(None, None, "rejected", "invalid_credentials")
        payload = json.loads(captured.records[0].getMessage())
        self.assertEqual(payload["category"], "login_decision")
        self.assertEqual(payload["reason"], "invalid_credentials")

    def test_log_login_decision_writes_json_line(self) -> None:
        with self.assertLogs("ipguard.login", level=logging.INFO) as captured:
            log_login_decision(7, "1.2.3.4", "allowed", "address_approved", {"source": "headers"})
        payload = json.loads(captured.records[0].getMessage())
        self.assertEqual(payload["user_id"], 7)
        self.assertEqual(payload["metadata"], {"source": "headers"})

    def test_logs_are_immutable(self) -> None:
        entry = self.audit.record_login_decision(self.user.id, "1.2.3.4", "allowed", "code_verified")
        entry.reason = "changed"
        with self.assertRaises(ValueError):
            self.session.commit()
        self.session.rollback()
        with self.assertRaises(ValueError):
            self.session.delete(entry)
            self.session.commit()
        self.session.rollback()
        self.assertEqual(self.session.query(LoginDecisionLog).count(), 1)


if __name__ == "__main__":
    unittest.main()
