"""Tests for the Account data model."""

import unittest
from datetime import datetime

from tracker.account import Account, AccountStatus


class TestAccount(unittest.TestCase):

    def _make(self, **overrides):
        defaults = dict(
            account_number="123456",
            license="LIC-001",
            expire_date_raw="31/12/2568 23:59",
        )
        defaults.update(overrides)
        return Account(**defaults)

    def test_defaults(self):
        a = self._make()
        self.assertEqual(a.status, AccountStatus.VALID)
        self.assertFalse(a.notified)
        self.assertIsNone(a.recipient_id)
        self.assertIsNone(a.last_notified_status)
        self.assertIsNone(a.last_nearly_expired_notified_at)
        self.assertFalse(a.is_linked)

    def test_resolved_expiry_is_derived(self):
        a = self._make()
        self.assertEqual(a.expire_date_resolved, datetime(2025, 12, 31, 23, 59))

    def test_set_expire_date_recomputes(self):
        a = self._make()
        a.set_expire_date("01/01/2570 00:00")
        self.assertEqual(a.expire_date_resolved, datetime(2027, 1, 1))
        a.set_expire_date("not a date")
        self.assertIsNone(a.expire_date_resolved)
        self.assertEqual(a.expire_date_raw, "not a date")

    def test_status_strings_are_coerced(self):
        a = self._make(status="expired", last_notified_status="expired")
        self.assertEqual(a.status, AccountStatus.EXPIRED)
        self.assertEqual(a.last_notified_status, AccountStatus.EXPIRED)

    def test_is_expired_at(self):
        a = self._make()
        self.assertFalse(a.is_expired_at(datetime(2025, 12, 31, 23, 0)))
        self.assertTrue(a.is_expired_at(datetime(2026, 1, 1)))
        self.assertFalse(self._make(expire_date_raw="").is_expired_at(datetime(2030, 1, 1)))

    def test_dict_round_trip(self):
        a = self._make(
            recipient_id="U123",
            status=AccountStatus.EXPIRED,
            notified=True,
            last_notified_status=AccountStatus.EXPIRED,
            last_nearly_expired_notified_at=datetime(2025, 12, 29, 9, 0),
            plan=12,
            platform="mt5",
        )
        data = a.to_dict()
        self.assertEqual(data["status"], "expired")
        self.assertEqual(data["expire_date_resolved"], "2025-12-31T23:59:00")

        restored = Account.from_dict(data)
        self.assertEqual(restored, a)
        self.assertEqual(restored.expire_date_resolved, a.expire_date_resolved)

    def test_from_dict_ignores_stale_resolved_value(self):
        data = self._make().to_dict()
        data["expire_date_resolved"] = "1999-01-01T00:00:00"
        restored = Account.from_dict(data)
        self.assertEqual(restored.expire_date_resolved, datetime(2025, 12, 31, 23, 59))


if __name__ == "__main__":
    unittest.main()
