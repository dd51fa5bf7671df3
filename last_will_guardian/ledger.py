"""Watchdog ledger - the dead man's switch state machine.

Holds native currency and a bounded registry of tokens for a monitored
``target``. Once the target has been silent for ``timeout_seconds`` a check
sweeps every held asset to the beneficiaries, split by percentage.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .chain import Chain, TokenService
from .exceptions import (
    CapacityExceeded,
    ContractTerminated,
    InvalidConfiguration,
    LedgerError,
    ReentrantCall,
    TransferFailure,
    Unauthorized,
)
from .models import (
    Beneficiary,
    EventKind,
    LedgerEvent,
    LedgerStatus,
    Receipt,
    WillConfiguration,
)

logger = logging.getLogger(__name__)


def build_configuration(
    owner: str,
    target: str,
    beneficiaries: Sequence[str],
    percents: Sequence[int],
    timeout_seconds: int,
    use_service_account: bool,
) -> WillConfiguration:
    """Validate creation parameters and freeze them into a configuration."""
    if len(beneficiaries) != len(percents):
        raise InvalidConfiguration(
            f"Got {len(beneficiaries)} beneficiaries but {len(percents)} percents"
        )
    if not beneficiaries:
        raise InvalidConfiguration("At least one beneficiary is required")
    for percent in percents:
        if isinstance(percent, bool) or not isinstance(percent, int) or percent < 0:
            raise InvalidConfiguration(f"Percent must be a non-negative integer, got {percent!r}")
    if sum(percents) != 100:
        raise InvalidConfiguration(f"Percents must sum to 100, got {sum(percents)}")
    if isinstance(timeout_seconds, bool) or not isinstance(timeout_seconds, int) or timeout_seconds < 0:
        raise InvalidConfiguration(f"Timeout must be a non-negative integer, got {timeout_seconds!r}")
    if not target:
        raise InvalidConfiguration("Target address is required")

    return WillConfiguration(
        owner=owner,
        target=target,
        timeout_seconds=timeout_seconds,
        use_service_account=bool(use_service_account),
        beneficiaries=tuple(
            Beneficiary(recipient=recipient, percent=percent)
            for recipient, percent in zip(beneficiaries, percents)
        ),
    )


class WatchdogLedger:
    """Custody ledger that pays out to beneficiaries when the target goes quiet.

    Every state-changing call is all-or-nothing: a failure rolls back balance
    changes on the chain and the ledger's own state before re-raising.
    """

    TOKEN_ADDRESSES_LIMIT = 10

    def __init__(self, chain: Chain, address: str, configuration: WillConfiguration, created_at: int):
        self._chain = chain
        self.address = address
        self.configuration = configuration
        self._last_active_ts = created_at
        self._token_addresses: List[str] = []
        self._status = LedgerStatus.ACTIVE
        self._sweeping = False
        self._event_log: List[Receipt] = []

    @classmethod
    def create(
        cls,
        chain: Chain,
        owner: str,
        target: str,
        beneficiaries: Sequence[str],
        percents: Sequence[int],
        timeout_seconds: int,
        use_service_account: bool = False,
        last_active_ts: Optional[int] = None,
    ) -> "WatchdogLedger":
        """Deploy a new ledger on ``chain`` created by ``owner``.

        ``last_active_ts`` carries activity observed before this deployment,
        e.g. journaled by a previous service run. It never lies in the future.
        """
        configuration = build_configuration(
            owner=owner,
            target=target,
            beneficiaries=list(beneficiaries),
            percents=list(percents),
            timeout_seconds=timeout_seconds,
            use_service_account=use_service_account,
        )
        created_at = chain.timestamp
        if last_active_ts is not None:
            created_at = min(int(last_active_ts), chain.timestamp)
        ledger = cls(chain, chain.allocate_address(), configuration, created_at)
        chain.attach(ledger.address, ledger)
        logger.info(
            f"Ledger {ledger.address} created for target {target}: "
            f"{len(configuration.beneficiaries)} beneficiaries, timeout {timeout_seconds}s, "
            f"service account {'on' if configuration.use_service_account else 'off'}"
        )
        return ledger

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self.configuration.owner

    @property
    def target(self) -> str:
        return self.configuration.target

    @property
    def timeout_seconds(self) -> int:
        return self.configuration.timeout_seconds

    @property
    def use_service_account(self) -> bool:
        return self.configuration.use_service_account

    @property
    def beneficiaries(self) -> Tuple[Beneficiary, ...]:
        return self.configuration.beneficiaries

    @property
    def last_active_ts(self) -> int:
        return self._last_active_ts

    @property
    def token_addresses(self) -> Tuple[str, ...]:
        return tuple(self._token_addresses)

    @property
    def balance(self) -> int:
        return self._chain.balance_of(self.address)

    @property
    def status(self) -> LedgerStatus:
        return self._status

    @property
    def is_terminated(self) -> bool:
        return self._status == LedgerStatus.TERMINATED

    @property
    def event_log(self) -> List[Receipt]:
        return list(self._event_log)

    def seconds_until_due(self) -> int:
        """Seconds left before a check would sweep; 0 once the timeout has passed."""
        elapsed = self._chain.timestamp - self._last_active_ts
        return max(0, self.timeout_seconds - elapsed)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def receive(self, sender: str, amount: int, timestamp: int) -> Receipt:
        """Account for inbound value already credited by the chain.

        Value from the target, or from the owner when the service account is
        enabled, resets the inactivity timer.
        """
        self._ensure_callable("receive")

        if self.configuration.resets_activity(sender):
            self._last_active_ts = timestamp
            logger.debug(f"Ledger {self.address}: activity from {sender} at {timestamp}")

        receipt = Receipt(
            operation="receive",
            caller=sender,
            timestamp=timestamp,
            logs=[LedgerEvent(EventKind.VALUE_RECEIVED, {"sender": sender, "amount": amount})],
        )
        return self._commit(receipt)

    def register_token(self, token_address: str, caller: str = "") -> Receipt:
        return self.register_tokens([token_address], caller=caller)

    def register_tokens(self, token_addresses: Iterable[str], caller: str = "") -> Receipt:
        """Append token addresses to the registry, all or none.

        Returns:
            Receipt with one ``TokenAdded`` record per address, in order

        Raises:
            CapacityExceeded: the batch would overflow the registry or repeats
                an address already present.
        """
        self._ensure_callable("register_tokens")
        if isinstance(token_addresses, str):
            raise TypeError("register_tokens expects a sequence of addresses, not a single string")
        batch = list(token_addresses)

        if len(self._token_addresses) + len(batch) > self.TOKEN_ADDRESSES_LIMIT:
            raise CapacityExceeded(
                f"Registry holds {len(self._token_addresses)} of {self.TOKEN_ADDRESSES_LIMIT} "
                f"tokens, cannot add {len(batch)} more"
            )
        seen = set(self._token_addresses)
        for token_address in batch:
            if token_address in seen:
                raise CapacityExceeded(f"Token {token_address} is already registered")
            seen.add(token_address)

        self._token_addresses.extend(batch)
        logger.info(f"Ledger {self.address}: registered {len(batch)} token(s), {len(self._token_addresses)} total")
        receipt = Receipt(
            operation="register_tokens",
            caller=caller,
            timestamp=self._chain.timestamp,
            logs=[LedgerEvent(EventKind.TOKEN_ADDED, {"token": address}) for address in batch],
        )
        return self._commit(receipt)

    def check(self, caller: str) -> Receipt:
        """Sweep all assets to the beneficiaries if the target timed out.

        Before the timeout this is a no-op that only records the check, so it
        can be polled at any cadence.
        """
        self._ensure_callable("check")
        if self.use_service_account and caller != self.owner:
            logger.warning(f"Ledger {self.address}: check refused for {caller}")
            raise Unauthorized("check", caller)

        now = self._chain.timestamp
        inactive_for = now - self._last_active_ts

        if inactive_for < self.timeout_seconds:
            logger.debug(
                f"Ledger {self.address}: target active {inactive_for}s ago, "
                f"{self.timeout_seconds - inactive_for}s until due"
            )
            receipt = Receipt(
                operation="check",
                caller=caller,
                timestamp=now,
                logs=[LedgerEvent(EventKind.CHECKED, {"is_accident": False})],
            )
            return self._commit(receipt)

        with self._atomic():
            self._sweeping = True
            try:
                logs = self._sweep()
            finally:
                self._sweeping = False

        logger.warning(
            f"Ledger {self.address}: target inactive for {inactive_for}s, "
            f"swept {len(logs) - 2} transfer record(s)"
        )
        return self._commit(Receipt(operation="check", caller=caller, timestamp=now, logs=logs))

    def terminate(self, caller: str) -> Receipt:
        """Refund the remaining native balance to the target and shut down."""
        self._ensure_callable("terminate")
        if caller != self.target:
            logger.warning(f"Ledger {self.address}: terminate refused for {caller}")
            raise Unauthorized("terminate", caller)

        now = self._chain.timestamp
        with self._atomic():
            remaining = self.balance
            self._send_native(self.target, remaining)
            self._status = LedgerStatus.TERMINATED
            self._chain.destroy(self.address)

        logger.info(f"Ledger {self.address}: terminated by target, refunded {remaining}")
        receipt = Receipt(
            operation="terminate",
            caller=caller,
            timestamp=now,
            logs=[LedgerEvent(EventKind.KILLED, {"by_user": True, "refunded": remaining})],
        )
        return self._commit(receipt)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sweep(self) -> List[LedgerEvent]:
        balance = self.balance
        logs = [
            LedgerEvent(EventKind.CHECKED, {"is_accident": True}),
            LedgerEvent(EventKind.TRIGGERED, {"balance": balance}),
        ]

        for beneficiary in self.beneficiaries:
            amount = beneficiary.share_of(balance)
            self._send_native(beneficiary.recipient, amount)
            logs.append(LedgerEvent(EventKind.FUNDS_SENT, {
                "recipient": beneficiary.recipient,
                "amount": amount,
                "percent": beneficiary.percent,
            }))

        for token_address in self._token_addresses:
            token = self._resolve_token(token_address)
            token_balance = self._token_balance(token)
            for beneficiary in self.beneficiaries:
                amount = beneficiary.share_of(token_balance)
                self._send_tokens(token, beneficiary.recipient, amount)
                logs.append(LedgerEvent(EventKind.TOKENS_SENT, {
                    "token": token_address,
                    "recipient": beneficiary.recipient,
                    "amount": amount,
                    "percent": beneficiary.percent,
                }))

        return logs

    def _send_native(self, recipient: str, amount: int) -> None:
        if amount == 0:
            return
        try:
            self._chain.send_value(self.address, recipient, amount)
        except TransferFailure:
            raise
        except LedgerError as e:
            raise TransferFailure(f"Sending {amount} to {recipient} failed: {e}") from e

    def _resolve_token(self, token_address: str) -> TokenService:
        try:
            return self._chain.token(token_address)
        except LookupError as e:
            raise TransferFailure(str(e)) from e

    def _token_balance(self, token: TokenService) -> int:
        try:
            return int(token.balance_of(self.address))
        except Exception as e:
            raise TransferFailure(f"balance_of failed on token {token.address}: {e}") from e

    def _send_tokens(self, token: TokenService, recipient: str, amount: int) -> None:
        if amount == 0:
            return
        try:
            ok = token.transfer(self.address, recipient, amount)
        except Exception as e:
            raise TransferFailure(f"Token {token.address} transfer to {recipient} raised: {e}") from e
        if not ok:
            raise TransferFailure(f"Token {token.address} refused transfer of {amount} to {recipient}")

    def _ensure_callable(self, operation: str) -> None:
        if self.is_terminated:
            raise ContractTerminated(f"Ledger {self.address} is terminated, {operation} rejected")
        if self._sweeping:
            raise ReentrantCall(f"{operation} called on ledger {self.address} during a sweep")

    def snapshot(self) -> Any:
        """Capture mutable state so the chain can roll it back with balances."""
        return (
            self._last_active_ts,
            list(self._token_addresses),
            self._status,
            list(self._event_log),
        )

    def restore(self, state: Any) -> None:
        last_active_ts, token_addresses, status, event_log = state
        self._last_active_ts = last_active_ts
        self._token_addresses = list(token_addresses)
        self._status = status
        self._event_log = list(event_log)

    @contextmanager
    def _atomic(self):
        # The chain snapshot covers this ledger and every contract the call reaches.
        snapshot_id = self._chain.snapshot()
        try:
            yield
        except Exception as e:
            self._chain.revert(snapshot_id)
            logger.error(f"Ledger {self.address}: call rolled back: {e}")
            raise
        self._chain.release(snapshot_id)

    def _commit(self, receipt: Receipt) -> Receipt:
        self._event_log.append(receipt)
        return receipt
