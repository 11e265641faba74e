import sys
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.usage_limit import (  # noqa: E402
    UsageConfigValidationError,
    UsageLimiter,
    format_time_until_reset,
)
from app.core.usage_store import InMemoryUsageStorage  # noqa: E402
from app.schemas.usage import UNLIMITED, AdminConfig, UsageRecord  # noqa: E402

ADMIN = "owner@example.com"
START = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class UsageLimiterTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(START)
        self.storage = InMemoryUsageStorage()
        self.limiter = UsageLimiter(self.storage, admin_email=ADMIN, clock=self.clock)

    def test_unknown_identity_has_two_remaining(self):
        decision = self.limiter.evaluate("new@example.com")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, 2)
        self.assertIsNone(decision.reset_at)

    def test_evaluate_does_not_create_records(self):
        self.limiter.evaluate("new@example.com")
        self.assertEqual(self.storage.read_usage(), {})

    def test_three_uses_in_window_exhaust_quota(self):
        identity = "u@x.com"
        self.assertEqual(self.limiter.evaluate(identity).remaining, 2)

        self.limiter.record(identity)
        self.assertEqual(self.storage.read_usage()[identity].count, 1)
        self.assertEqual(self.limiter.evaluate(identity).remaining, 1)

        self.clock.advance(hours=1)
        self.limiter.record(identity)
        self.clock.advance(hours=1)
        self.limiter.record(identity)

        decision = self.limiter.evaluate(identity)
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.remaining, 0)
        self.assertEqual(decision.reset_at, START + timedelta(hours=24))

    def test_increment_keeps_window_start(self):
        identity = "keep@example.com"
        self.limiter.record(identity)
        self.clock.advance(hours=5)
        self.limiter.record(identity)
        record = self.storage.read_usage()[identity]
        self.assertEqual(record.count, 2)
        self.assertEqual(record.window_start, START)

    def test_expired_window_reads_as_fresh_until_next_record(self):
        identity = "stale@example.com"
        self.storage.write_usage({identity: UsageRecord(count=3, window_start=START - timedelta(hours=25))})

        decision = self.limiter.evaluate(identity)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, 2)
        self.assertEqual(self.storage.read_usage()[identity].count, 3)

        self.limiter.record(identity)
        record = self.storage.read_usage()[identity]
        self.assertEqual(record.count, 1)
        self.assertEqual(record.window_start, START)

    def test_window_boundary_is_inclusive(self):
        identity = "edge@example.com"
        self.storage.write_usage({identity: UsageRecord(count=3, window_start=START - timedelta(hours=24))})
        self.assertTrue(self.limiter.evaluate(identity).allowed)

        self.storage.write_usage(
            {identity: UsageRecord(count=3, window_start=START - timedelta(hours=24) + timedelta(seconds=1))}
        )
        self.assertFalse(self.limiter.evaluate(identity).allowed)

    def test_admin_is_unlimited_and_never_recorded(self):
        self.storage.write_usage({ADMIN: UsageRecord(count=10, window_start=START)})
        decision = self.limiter.evaluate(ADMIN)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, UNLIMITED)

        self.limiter.record(ADMIN)
        self.assertEqual(self.storage.read_usage()[ADMIN].count, 10)

    def test_no_admin_without_configured_email(self):
        limiter = UsageLimiter(self.storage, admin_email=None, clock=self.clock)
        self.assertFalse(limiter.is_admin("admin@example.com"))
        self.assertFalse(limiter.is_admin(""))
        self.assertEqual(limiter.evaluate("admin@example.com").remaining, 2)

    def test_allow_listed_identity_is_unlimited(self):
        identity = "friend@example.com"
        self.storage.write_usage({identity: UsageRecord(count=5, window_start=START)})
        self.storage.write_admin(AdminConfig(allow_list=[identity]))

        self.assertEqual(self.limiter.evaluate(identity).remaining, UNLIMITED)
        self.limiter.record(identity)
        self.assertEqual(self.storage.read_usage()[identity].count, 5)

    def test_disabling_limit_keeps_counts_for_later(self):
        identity = "toggle@example.com"
        for _ in range(3):
            self.limiter.record(identity)
        self.assertFalse(self.limiter.evaluate(identity).allowed)

        self.limiter.update_admin_config({"rateLimitEnabled": False})
        decision = self.limiter.evaluate(identity)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, UNLIMITED)
        self.limiter.record(identity)

        self.limiter.update_admin_config({"rateLimitEnabled": True})
        self.assertFalse(self.limiter.evaluate(identity).allowed)
        self.assertEqual(self.storage.read_usage()[identity].count, 3)

    def test_unreadable_store_fails_open(self):
        self.storage.fail_reads = True
        decision = self.limiter.evaluate("anyone@example.com")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, UNLIMITED)

    def test_record_swallows_write_failures(self):
        self.storage.fail_writes = True
        with self.assertLogs("app.core.usage_limit", level="ERROR"):
            self.limiter.record("anyone@example.com")
        self.storage.fail_writes = False
        self.assertEqual(self.storage.read_usage(), {})

    def test_custom_quota(self):
        limiter = UsageLimiter(self.storage, admin_email=ADMIN, quota=5, clock=self.clock)
        self.assertEqual(limiter.evaluate("q@example.com").remaining, 4)

    def test_concurrent_records_in_process_are_not_lost(self):
        identity = "busy@example.com"
        limiter = UsageLimiter(self.storage, admin_email=ADMIN, quota=1000, clock=self.clock)
        threads = [threading.Thread(target=limiter.record, args=(identity,)) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(self.storage.read_usage()[identity].count, 20)


class AdminConfigTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryUsageStorage()
        self.limiter = UsageLimiter(self.storage, admin_email=ADMIN, clock=FakeClock(START))

    def test_defaults(self):
        config = self.limiter.get_admin_config()
        self.assertTrue(config.rate_limit_enabled)
        self.assertEqual(config.allow_list, [])

    def test_get_falls_back_to_defaults_when_unreadable(self):
        self.storage.write_admin(AdminConfig(rate_limit_enabled=False))
        self.storage.fail_reads = True
        config = self.limiter.get_admin_config()
        self.assertTrue(config.rate_limit_enabled)

    def test_update_merges_partial_fields(self):
        self.limiter.update_admin_config({"whitelistedUsers": ["a@b.co"]})
        updated = self.limiter.update_admin_config({"rateLimitEnabled": False})
        self.assertFalse(updated.rate_limit_enabled)
        self.assertEqual(updated.allow_list, ["a@b.co"])
        self.assertEqual(self.storage.read_admin(), updated)

    def test_update_deduplicates_allow_list(self):
        updated = self.limiter.update_admin_config({"whitelistedUsers": ["a@b.co", "c@d.io", "a@b.co"]})
        self.assertEqual(updated.allow_list, ["a@b.co", "c@d.io"])

    def test_update_rejects_malformed_email_without_writing(self):
        self.limiter.update_admin_config({"whitelistedUsers": ["keep@example.com"]})
        with self.assertRaisesRegex(UsageConfigValidationError, "Invalid email format: not-an-email"):
            self.limiter.update_admin_config(
                {"rateLimitEnabled": False, "whitelistedUsers": ["ok@example.com", "not-an-email"]}
            )
        stored = self.storage.read_admin()
        self.assertTrue(stored.rate_limit_enabled)
        self.assertEqual(stored.allow_list, ["keep@example.com"])

    def test_update_rejects_non_boolean_flag(self):
        with self.assertRaisesRegex(UsageConfigValidationError, "rateLimitEnabled must be a boolean"):
            self.limiter.update_admin_config({"rateLimitEnabled": "false"})
        self.assertTrue(self.storage.read_admin().rate_limit_enabled)

    def test_update_rejects_non_list_allow_list(self):
        with self.assertRaisesRegex(UsageConfigValidationError, "must be an array"):
            self.limiter.update_admin_config({"whitelistedUsers": "a@b.co"})

    def test_update_rejects_unknown_keys(self):
        with self.assertRaisesRegex(UsageConfigValidationError, "Unknown admin setting"):
            self.limiter.update_admin_config({"quota": 10})

    def test_update_rejects_non_mapping_payload(self):
        with self.assertRaises(UsageConfigValidationError):
            self.limiter.update_admin_config(["a@b.co"])


class UsageReportTests(unittest.TestCase):
    def test_time_until_reset_labels(self):
        self.assertEqual(format_time_until_reset(0), "Reset now")
        self.assertEqual(format_time_until_reset(-30), "Reset now")
        self.assertEqual(format_time_until_reset(3 * 3600 + 25 * 60 + 10), "3h 25m")
        self.assertEqual(format_time_until_reset(59), "0h 0m")

    def test_report_rows(self):
        storage = InMemoryUsageStorage(
            usage={
                "fresh@example.com": UsageRecord(count=2, window_start=START - timedelta(hours=2)),
                "old@example.com": UsageRecord(count=3, window_start=START - timedelta(hours=30)),
            }
        )
        limiter = UsageLimiter(storage, admin_email=ADMIN, clock=FakeClock(START))
        rows = {row.identity: row for row in limiter.usage_report()}

        self.assertEqual(set(rows), {"fresh@example.com", "old@example.com"})
        self.assertEqual(rows["fresh@example.com"].time_until_reset, "22h 0m")
        self.assertEqual(rows["fresh@example.com"].resets_in_seconds, 22 * 3600)
        self.assertEqual(rows["fresh@example.com"].quota, 3)
        self.assertEqual(rows["old@example.com"].time_until_reset, "Reset now")
        self.assertEqual(rows["old@example.com"].resets_in_seconds, 0)

    def test_list_usage_empty_when_unreadable(self):
        storage = InMemoryUsageStorage(usage={"x@example.com": UsageRecord(count=1, window_start=START)})
        storage.fail_reads = True
        limiter = UsageLimiter(storage, admin_email=ADMIN)
        self.assertEqual(limiter.list_usage(), {})


if __name__ == "__main__":
    unittest.main()
