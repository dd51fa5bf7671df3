"""Turns ledger receipts into human readable notifications."""

import logging
from typing import Optional

from ..models import EventKind, Receipt
from .telegram_client import TelegramClient

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Formats sweep and termination receipts and sends them via Telegram."""

    def __init__(self, telegram_client: TelegramClient):
        self.telegram = telegram_client

    def notify(self, ledger_address: str, receipt: Receipt) -> bool:
        """Send a notification for ``receipt`` if it moved any assets.

        Returns:
            True if a message was sent successfully
        """
        message = self.format_receipt(ledger_address, receipt)
        if message is None:
            return False
        success = self.telegram.send_alert(message)
        if not success:
            logger.error(f"Notification for {receipt.operation} on {ledger_address} was not delivered")
        return success

    def format_receipt(self, ledger_address: str, receipt: Receipt) -> Optional[str]:
        """Build the message text, or None when there is nothing worth reporting."""
        if receipt.triggered:
            return self._format_sweep(ledger_address, receipt)

        killed = receipt.find(EventKind.KILLED)
        if killed is not None:
            return (
                f"🛑 LAST WILL TERMINATED\n"
                f"Ledger: {ledger_address}\n"
                f"Refunded to target: {killed.args.get('refunded', 0)}"
            )
        return None

    def _format_sweep(self, ledger_address: str, receipt: Receipt) -> Optional[str]:
        if not receipt.moved_assets:
            # Only rounding remainders were left, nothing changed hands.
            return None

        triggered = receipt.find(EventKind.TRIGGERED)
        lines = [
            "🚨 LAST WILL EXECUTED",
            f"Ledger: {ledger_address}",
            f"Native balance swept: {triggered.args['balance'] if triggered else 0}",
        ]
        for log in receipt.funds_sent:
            if log.args["amount"] > 0:
                lines.append(f"  {log.args['recipient']} ({log.args['percent']}%): {log.args['amount']}")
        for log in receipt.tokens_sent:
            if log.args["amount"] > 0:
                lines.append(
                    f"  token {log.args['token']} → {log.args['recipient']} "
                    f"({log.args['percent']}%): {log.args['amount']}"
                )
        return "\n".join(lines)
