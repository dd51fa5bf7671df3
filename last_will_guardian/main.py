"""Last Will Guardian - Entry Point.

Builds a watchdog ledger from settings and keeps it checked:
1. Health check passes → service account reports the target alive
2. Target silent past the timeout → assets swept to beneficiaries
3. Every distribution → journaled to Redis and announced on Telegram
"""

import logging
import os
import signal
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from .chain import Chain, SimpleToken
from .config import settings
from .ledger import WatchdogLedger
from .redis_client import RedisClient
from .watchdog import LastWillWatchdog, connect_journal

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)

logger = logging.getLogger(__name__)

# Global watchdog instance for signal handling
watchdog: LastWillWatchdog = None


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info(f"Received signal {signum}, shutting down...")
    if watchdog:
        watchdog.stop()
    sys.exit(0)


def _start_health_server() -> None:
    """Start a minimal HTTP health server on a daemon thread."""
    port = int(os.environ.get("HEALTH_PORT", "8080"))

    class _Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == "/health":
                self.send_response(200)
                self.end_headers()
                self.wfile.write(b"ok")
            else:
                self.send_response(404)
                self.end_headers()

        def log_message(self, *args):
            pass  # suppress HTTP access logs

    server = HTTPServer(("", port), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info(f"Health server listening on :{port}/health")


def build_ledger(chain: Chain, last_active_ts: Optional[int] = None) -> WatchdogLedger:
    """Create the ledger described by settings.

    ``last_active_ts`` is the activity timestamp journaled before a restart,
    so a restart does not hand the target a fresh timeout.
    """
    pairs = settings.beneficiary_pairs
    ledger = WatchdogLedger.create(
        chain,
        owner=settings.owner_address,
        target=settings.target_address,
        beneficiaries=[address for address, _ in pairs],
        percents=[percent for _, percent in pairs],
        timeout_seconds=settings.timeout_seconds,
        use_service_account=settings.use_service_account,
        last_active_ts=last_active_ts,
    )

    tokens = settings.token_address_list
    if tokens:
        for address in tokens:
            if not chain.has_token(address):
                # The in-process chain starts empty; stand up the configured contracts.
                chain.deploy_token(SimpleToken, address=address)
        ledger.register_tokens(tokens)
        logger.info(f"Sweeping {len(tokens)} token(s) alongside native currency")
    return ledger


def main():
    """Main entry point."""
    global watchdog

    _start_health_server()

    logger.info("=" * 60)
    logger.info("LAST WILL GUARDIAN")
    logger.info("=" * 60)

    logger.info(f"Target: {settings.target_address}")
    logger.info(f"Service account: {settings.owner_address} (enabled: {settings.use_service_account})")
    logger.info(f"Timeout: {settings.timeout_seconds}s")
    logger.info(f"Check interval: {settings.check_interval_seconds}s")
    logger.info(f"Health check enabled: {settings.health_check_enabled}")
    logger.info(f"Redis: {settings.redis_host}:{settings.redis_port}")
    logger.info(f"Telegram enabled: {settings.telegram_enabled}")

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        redis_client = RedisClient()
        connect_journal(redis_client)
        persisted = redis_client.get_last_active()
        if persisted is not None:
            logger.info(f"Resuming from activity journaled before restart: {persisted}")

        chain = Chain()
        ledger = build_ledger(chain, last_active_ts=persisted)
        watchdog = LastWillWatchdog(chain, ledger, redis_client=redis_client)
        watchdog.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if watchdog:
            watchdog.stop()


if __name__ == "__main__":
    main()
