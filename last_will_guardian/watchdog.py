"""Last Will Watchdog - polls the ledger on behalf of the service account.

The watchdog plays the owner role: it attests the target's liveness when an
external health check passes and calls ``check`` on a fixed cadence so that
distribution happens promptly once the target goes quiet.
"""

import html
import logging
import time
from typing import Optional

import httpx

from .alerting.dispatcher import NotificationDispatcher
from .alerting.telegram_client import TelegramClient
from .chain import Chain
from .config import settings
from .exceptions import ContractTerminated, LedgerError
from .ledger import WatchdogLedger
from .models import Receipt
from .redis_client import RedisClient

logger = logging.getLogger(__name__)


def connect_journal(redis_client: RedisClient) -> bool:
    """Connect the receipt journal, leaving it inert if Redis is down."""
    try:
        redis_client.connect()
    except Exception:
        # Journal is optional; distribution must not depend on it.
        logger.warning("Redis unavailable, receipts will not be journaled")
        redis_client.client = None
        return False
    return True


class LastWillWatchdog:
    """Keeps a watchdog ledger checked and reports every distribution."""

    # Number of consecutive monitoring-loop errors before sending a degraded alert.
    _ERROR_ALERT_THRESHOLD = 5

    def __init__(
        self,
        chain: Chain,
        ledger: WatchdogLedger,
        redis_client: Optional[RedisClient] = None,
        telegram_client: Optional[TelegramClient] = None,
        follow_wall_clock: bool = True,
    ):
        self.chain = chain
        self.ledger = ledger
        self.redis = redis_client or RedisClient()
        self.telegram = telegram_client or TelegramClient()
        self.dispatcher = NotificationDispatcher(self.telegram)
        self.follow_wall_clock = follow_wall_clock
        self._running = False
        self._consecutive_errors = 0

    def start(self):
        """Connect side channels and run the monitoring loop."""
        logger.info(f"Starting Last Will Watchdog for ledger {self.ledger.address}")

        if self.redis.client is None:
            connect_journal(self.redis)

        self._running = True
        self._run_monitoring_loop()

    def stop(self):
        """Stop monitoring. Safe to call more than once."""
        if not self._running and self.redis.client is None:
            return
        logger.info("Stopping Last Will Watchdog...")
        self._running = False
        self.redis.close()
        logger.info("Last Will Watchdog shutdown complete")

    def _run_monitoring_loop(self):
        logger.info(f"Starting monitoring loop (interval: {settings.check_interval_seconds}s)")

        while self._running:
            try:
                self.run_once()
            except ContractTerminated:
                logger.info(f"Ledger {self.ledger.address} is terminated, nothing left to watch")
                self._report_termination()
                self._running = False
                break
            except Exception as e:
                self._record_error(e)

            time.sleep(settings.check_interval_seconds)

    def run_once(self) -> Receipt:
        """One poll: optional liveness attestation, then ``check``."""
        if self.follow_wall_clock:
            self._sync_clock()

        if settings.health_check_enabled and self._target_is_healthy():
            self.report_liveness()

        receipt = self.ledger.check(self.ledger.owner)

        if receipt.triggered and receipt.moved_assets:
            self.redis.record_receipt(receipt)
            self.dispatcher.notify(self.ledger.address, receipt)
        elif receipt.triggered:
            logger.debug("Ledger already drained, nothing to distribute")
        else:
            logger.debug(f"Target still within timeout, {self.ledger.seconds_until_due()}s until due")

        self.redis.set_last_active(self.ledger.last_active_ts)

        if self._consecutive_errors > 0:
            logger.info(f"Monitoring loop recovered after {self._consecutive_errors} consecutive error(s)")
        self._consecutive_errors = 0
        return receipt

    def _report_termination(self):
        """Journal and announce the receipt that terminated the ledger."""
        receipts = [r for r in self.ledger.event_log if r.operation == "terminate"]
        if not receipts:
            return
        receipt = receipts[-1]
        self.redis.record_receipt(receipt)
        try:
            self.dispatcher.notify(self.ledger.address, receipt)
        except Exception as e:
            logger.error(f"Failed to announce termination: {e}")

    def report_liveness(self) -> Optional[Receipt]:
        """Send a zero-value transfer from the owner to reset the timer.

        Only meaningful when the ledger accepts the service account as a
        liveness source.
        """
        if not self.ledger.use_service_account:
            logger.debug("Service account liveness disabled on this ledger, skipping heartbeat")
            return None
        receipt = self.chain.send_value(self.ledger.owner, self.ledger.address, 0)
        logger.info(f"Reported target liveness at {self.chain.timestamp}")
        return receipt

    def _target_is_healthy(self) -> bool:
        """True if the target's health endpoint answers 200."""
        try:
            response = httpx.get(
                settings.target_health_url,
                timeout=settings.health_check_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Target health check failed: {e}")
            return False
        if response.status_code != 200:
            logger.warning(f"Target health check returned {response.status_code}")
            return False
        return True

    def _sync_clock(self):
        now = int(time.time())
        if now > self.chain.timestamp:
            self.chain.increase_time(now - self.chain.timestamp)

    def _record_error(self, e: Exception):
        self._consecutive_errors += 1
        level = logging.WARNING if isinstance(e, LedgerError) else logging.ERROR
        logger.log(
            level,
            f"Error in monitoring loop (consecutive: {self._consecutive_errors}): {e}",
            exc_info=not isinstance(e, LedgerError),
        )

        if self._consecutive_errors == self._ERROR_ALERT_THRESHOLD:
            logger.critical(
                f"Last Will Watchdog: {self._consecutive_errors} consecutive monitoring failures. "
                f"Distribution may be STALLED. Last error: {e}"
            )
            try:
                self.telegram.send_alert(
                    f"🚨 LAST WILL WATCHDOG DEGRADED\n\n"
                    f"{self._consecutive_errors} consecutive monitoring failures.\n"
                    f"Ledger: {self.ledger.address}\n\n"
                    f"Last error: {html.escape(str(e))}"
                )
            except Exception as alert_exc:
                logger.error(f"Failed to send degraded-service alert: {alert_exc}")
