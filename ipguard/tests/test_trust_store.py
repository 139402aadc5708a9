from __future__ import annotations

import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from ipguard.models import Base, TrustRecord, User
from ipguard.services.trust_store import TrustStore


class TrustStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.session = Session(self.engine)
        self.user = self._user("owner@example.com")
        self.other = self._user("other@example.com")
        self.store = TrustStore(self.session)

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def _user(self, email: str) -> User:
        user = User(email=email, password_hash="x")
        self.session.add(user)
        self.session.commit()
        return user

    def test_upsert_creates_pending_record(self) -> None:
        record = self.store.upsert(self.user.id, "1.2.3.4", {"user_agent": "curl/8"})
        self.assertFalse(record.is_approved)
        self.assertFalse(record.is_banned)
        self.assertEqual(record.user_agent, "curl/8")
        self.assertIsNotNone(record.last_seen_at)
        self.assertEqual(self.store.get(self.user.id, "1.2.3.4").id, record.id)

    def test_upsert_merges_only_present_fields(self) -> None:
        self.store.upsert(self.user.id, "1.2.3.4", {"country": "Norway", "city": "Oslo", "latitude": 59.9})
        record = self.store.upsert(self.user.id, "1.2.3.4", {"country": None, "city": "Bergen", "is_approved": True})
        self.assertEqual(record.country, "Norway")
        self.assertEqual(record.city, "Bergen")
        self.assertEqual(record.latitude, 59.9)
        self.assertTrue(record.is_approved)
        self.assertEqual(self.session.query(TrustRecord).count(), 1)

    def test_upsert_touch_updates_last_seen(self) -> None:
        earlier = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
        later = earlier + timedelta(hours=2)
        self.store.upsert(self.user.id, "1.2.3.4", now=earlier)
        untouched = self.store.upsert(self.user.id, "1.2.3.4", {"isp": "ACME"}, touch=False, now=later)
        self.assertEqual(untouched.last_seen_at.replace(tzinfo=None), earlier.replace(tzinfo=None))
        touched = self.store.upsert(self.user.id, "1.2.3.4", now=later)
        self.assertEqual(touched.last_seen_at.replace(tzinfo=None), later.replace(tzinfo=None))

    def test_upsert_rejects_unknown_fields(self) -> None:
        with self.assertRaises(ValueError):
            self.store.upsert(self.user.id, "1.2.3.4", {"user_id": 99})

    def test_records_are_scoped_per_account(self) -> None:
        self.store.upsert(self.user.id, "1.2.3.4", {"is_approved": True})
        self.assertIsNone(self.store.get(self.other.id, "1.2.3.4"))
        self.store.upsert(self.other.id, "1.2.3.4")
        self.assertEqual(self.session.query(TrustRecord).count(), 2)
        self.assertFalse(self.store.get(self.other.id, "1.2.3.4").is_approved)

    def test_list_for_user_orders_by_last_seen(self) -> None:
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        self.store.upsert(self.user.id, "1.2.3.4", now=base)
        self.store.upsert(self.user.id, "5.6.7.8", now=base + timedelta(days=1))
        self.store.upsert(self.other.id, "8.8.8.8", now=base + timedelta(days=2))
        addresses = [r.ip_address for r in self.store.list_for_user(self.user.id)]
        self.assertEqual(addresses, ["5.6.7.8", "1.2.3.4"])

    def test_is_banned_anywhere_checks_every_account(self) -> None:
        self.store.upsert(self.user.id, "5.6.7.8")
        self.assertFalse(self.store.is_banned_anywhere("5.6.7.8"))
        record = self.store.upsert(self.other.id, "5.6.7.8")
        self.store.set_flags(record, is_banned=True)
        self.assertTrue(self.store.is_banned_anywhere("5.6.7.8"))
        self.assertFalse(self.store.is_banned_anywhere("1.2.3.4"))

    def test_set_flags_leaves_omitted_flag(self) -> None:
        record = self.store.upsert(self.user.id, "1.2.3.4", {"is_approved": True})
        record = self.store.set_flags(record, is_banned=True)
        self.assertTrue(record.is_banned)
        self.assertTrue(record.is_approved)

    def test_clear_all_deletes_every_record(self) -> None:
        self.store.upsert(self.user.id, "1.2.3.4")
        self.store.upsert(self.other.id, "5.6.7.8")
        self.assertEqual(self.store.clear_all(), 2)
        self.assertEqual(self.store.list_for_user(self.user.id), [])


class TrustStoreRaceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmpdir.name, "trust.db")
        self.engine = create_engine(f"sqlite+pysqlite:///{path}", future=True)
        Base.metadata.create_all(self.engine)
        self.session = Session(self.engine)
        self.user = User(email="race@example.com", password_hash="x")
        self.session.add(self.user)
        self.session.commit()
        self.user_id = self.user.id
        self.store = TrustStore(self.session)

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_concurrent_create_becomes_update(self) -> None:
        real_get = self.store.get
        inserted = []

        def get_after_other_request_inserts(user_id: int, address: str):
            if not inserted:
                inserted.append(address)
                with Session(self.engine) as other:
                    other.add(
                        TrustRecord(
                            user_id=user_id,
                            ip_address=address,
                            is_approved=False,
                            is_banned=False,
                            isp="First Writer",
                            last_seen_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
                        )
                    )
                    other.commit()
                return None
            return real_get(user_id, address)

        with mock.patch.object(self.store, "get", side_effect=get_after_other_request_inserts):
            record = self.store.upsert(self.user_id, "1.2.3.4", {"user_agent": "curl/8"})

        self.assertEqual(inserted, ["1.2.3.4"])
        self.assertEqual(self.session.query(TrustRecord).count(), 1)
        self.assertEqual(record.isp, "First Writer")
        self.assertEqual(record.user_agent, "curl/8")
        self.assertFalse(record.is_approved)
        self.assertFalse(record.is_banned)


if __name__ == "__main__":
    unittest.main()
