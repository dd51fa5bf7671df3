"""
Unit tests for LastWillWatchdog.

Covers:
  - run_once with and without a due ledger
  - health check driven liveness reports
  - degraded-service escalation after repeated failures
  - loop shutdown once the ledger is terminated, with a termination notice

Redis and Telegram are MagicMocks; the ledger runs on a real in-process chain.
"""

import unittest
from unittest import mock

import httpx

from last_will_guardian.chain import Chain
from last_will_guardian.exceptions import TransferFailure
from last_will_guardian.ledger import WatchdogLedger
from last_will_guardian.watchdog import LastWillWatchdog

OWNER = "0xowner"
TARGET = "0xtarget"
HEIR = "0xheir"
TIMEOUT = 600


def _make_watchdog(use_service_account: bool = True):
    chain = Chain(timestamp=10_000)
    ledger = WatchdogLedger.create(chain, OWNER, TARGET, [HEIR], [100], TIMEOUT, use_service_account)
    chain.fund(TARGET, 1_000)
    chain.send_value(TARGET, ledger.address, 1_000)
    watchdog = LastWillWatchdog(
        chain,
        ledger,
        redis_client=mock.MagicMock(),
        telegram_client=mock.MagicMock(),
        follow_wall_clock=False,
    )
    return chain, ledger, watchdog


def _health_check_settings():
    fake = mock.MagicMock()
    fake.health_check_enabled = True
    fake.target_health_url = "http://target.local/health"
    fake.health_check_timeout_seconds = 1.0
    fake.check_interval_seconds = 0
    return fake


class TestRunOnce(unittest.TestCase):

    def setUp(self):
        self.chain, self.ledger, self.watchdog = _make_watchdog()

    def test_not_due_records_nothing(self):
        receipt = self.watchdog.run_once()

        self.assertFalse(receipt.triggered)
        self.watchdog.redis.record_receipt.assert_not_called()
        self.watchdog.telegram.send_alert.assert_not_called()
        self.watchdog.redis.set_last_active.assert_called_once_with(self.ledger.last_active_ts)

    def test_due_sweeps_journals_and_notifies(self):
        self.chain.increase_time(TIMEOUT)

        receipt = self.watchdog.run_once()

        self.assertTrue(receipt.triggered)
        self.assertEqual(self.chain.balance_of(HEIR), 1_000)
        self.watchdog.redis.record_receipt.assert_called_once_with(receipt)
        self.watchdog.telegram.send_alert.assert_called_once()
        message = self.watchdog.telegram.send_alert.call_args[0][0]
        self.assertIn("LAST WILL EXECUTED", message)
        self.assertIn(HEIR, message)

    def test_drained_ledger_does_not_notify_again(self):
        self.chain.increase_time(TIMEOUT)
        self.watchdog.run_once()
        self.watchdog.telegram.send_alert.reset_mock()

        receipt = self.watchdog.run_once()

        self.assertTrue(receipt.triggered)
        self.watchdog.telegram.send_alert.assert_not_called()

    def test_drained_ledger_is_journaled_once(self):
        self.chain.increase_time(TIMEOUT)

        for _ in range(5):
            self.watchdog.run_once()

        self.watchdog.redis.record_receipt.assert_called_once()
        self.assertEqual(self.watchdog.redis.set_last_active.call_count, 5)

    def test_success_resets_error_counter(self):
        self.watchdog._consecutive_errors = 3
        self.watchdog.run_once()
        self.assertEqual(self.watchdog._consecutive_errors, 0)


class TestHealthCheck(unittest.TestCase):

    def test_healthy_target_keeps_funds_in_place(self):
        chain, ledger, watchdog = _make_watchdog(use_service_account=True)
        chain.increase_time(TIMEOUT)

        with mock.patch("last_will_guardian.watchdog.settings", _health_check_settings()), \
                mock.patch("last_will_guardian.watchdog.httpx.get") as get:
            get.return_value = mock.MagicMock(status_code=200)
            receipt = watchdog.run_once()

        self.assertFalse(receipt.triggered)
        self.assertEqual(ledger.last_active_ts, chain.timestamp)
        self.assertEqual(chain.balance_of(HEIR), 0)

    def test_unreachable_target_does_not_count_as_alive(self):
        chain, ledger, watchdog = _make_watchdog(use_service_account=True)
        chain.increase_time(TIMEOUT)

        with mock.patch("last_will_guardian.watchdog.settings", _health_check_settings()), \
                mock.patch("last_will_guardian.watchdog.httpx.get") as get:
            get.side_effect = httpx.ConnectError("connection refused")
            receipt = watchdog.run_once()

        self.assertTrue(receipt.triggered)
        self.assertEqual(chain.balance_of(HEIR), 1_000)

    def test_unhealthy_status_does_not_count_as_alive(self):
        chain, ledger, watchdog = _make_watchdog(use_service_account=True)
        chain.increase_time(TIMEOUT)

        with mock.patch("last_will_guardian.watchdog.settings", _health_check_settings()), \
                mock.patch("last_will_guardian.watchdog.httpx.get") as get:
            get.return_value = mock.MagicMock(status_code=503)
            receipt = watchdog.run_once()

        self.assertTrue(receipt.triggered)

    def test_liveness_skipped_without_service_account(self):
        chain, ledger, watchdog = _make_watchdog(use_service_account=False)
        before = ledger.last_active_ts
        chain.increase_time(60)

        self.assertIsNone(watchdog.report_liveness())
        self.assertEqual(ledger.last_active_ts, before)


class TestErrorHandling(unittest.TestCase):

    def setUp(self):
        self.chain, self.ledger, self.watchdog = _make_watchdog()

    def test_degraded_alert_sent_once_at_threshold(self):
        for _ in range(LastWillWatchdog._ERROR_ALERT_THRESHOLD + 2):
            self.watchdog._record_error(TransferFailure("token refused"))

        self.watchdog.telegram.send_alert.assert_called_once()
        self.assertIn("DEGRADED", self.watchdog.telegram.send_alert.call_args[0][0])

    def test_alert_failure_is_logged_not_raised(self):
        self.watchdog.telegram.send_alert.side_effect = RuntimeError("telegram down")
        for _ in range(LastWillWatchdog._ERROR_ALERT_THRESHOLD):
            self.watchdog._record_error(RuntimeError("boom"))
        self.assertEqual(self.watchdog._consecutive_errors, LastWillWatchdog._ERROR_ALERT_THRESHOLD)

    def test_degraded_alert_escapes_error_text(self):
        for _ in range(LastWillWatchdog._ERROR_ALERT_THRESHOLD):
            self.watchdog._record_error(RuntimeError("<Response [500]> & retry"))

        message = self.watchdog.telegram.send_alert.call_args[0][0]
        self.assertIn("&lt;Response [500]&gt; &amp; retry", message)
        self.assertNotIn("<Response", message)

    def test_loop_stops_when_ledger_terminated(self):
        self.ledger.terminate(TARGET)
        self.watchdog._running = True

        with mock.patch("last_will_guardian.watchdog.time.sleep") as sleep:
            self.watchdog._run_monitoring_loop()

        self.assertFalse(self.watchdog._running)
        sleep.assert_not_called()

        terminated = self.ledger.event_log[-1]
        self.watchdog.redis.record_receipt.assert_called_once_with(terminated)
        self.watchdog.telegram.send_alert.assert_called_once()
        message = self.watchdog.telegram.send_alert.call_args[0][0]
        self.assertIn("LAST WILL TERMINATED", message)
        self.assertIn("Refunded to target: 1000", message)

    def test_loop_keeps_running_after_errors(self):
        calls = []

        def flaky_run_once():
            calls.append(1)
            if len(calls) == 3:
                self.watchdog._running = False
            raise RuntimeError("transient")

        self.watchdog._running = True
        self.watchdog.run_once = flaky_run_once
        with mock.patch("last_will_guardian.watchdog.time.sleep"):
            self.watchdog._run_monitoring_loop()

        self.assertEqual(len(calls), 3)
        self.assertEqual(self.watchdog._consecutive_errors, 3)
