"""In-process execution environment for the watchdog ledger.

The chain supplies everything the ledger treats as external: the current
timestamp, native balances, token contracts and all-or-nothing execution via
snapshots. It mirrors what a development node offers (``increaseTime``,
``snapshot``/``revert``) so ledgers can be driven deterministically.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Set

from .exceptions import ContractTerminated, TransferFailure

logger = logging.getLogger(__name__)


class TokenService(Protocol):
    """Fungible-token primitive the ledger calls as an opaque service.

    ``snapshot``/``restore`` let the chain roll token balances back together
    with native balances when a call fails.
    """

    address: str

    def balance_of(self, owner: str) -> int:
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


class SimpleToken:
    """Mintable fungible token with plain integer balances."""

    def __init__(self, address: str, symbol: str = "SIM"):
        self.address = address
        self.symbol = symbol
        self.total_supply = 0
        self._balances: Dict[str, int] = {}

    def mint(self, to: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Mint amount must be non-negative")
        self._balances[to] = self._balances.get(to, 0) + amount
        self.total_supply += amount

    def balance_of(self, owner: str) -> int:
        return self._balances.get(owner, 0)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(sender) < amount:
            return False
        self._balances[sender] = self.balance_of(sender) - amount
        self._balances[recipient] = self.balance_of(recipient) + amount
        return True

    def snapshot(self) -> Any:
        return dict(self._balances), self.total_supply

    def restore(self, state: Any) -> None:
        balances, total_supply = state
        self._balances = dict(balances)
        self.total_supply = total_supply


class Chain:
    """Clock, native balances and deployed contracts.

    Contracts attached with :meth:`attach` receive inbound value through their
    ``receive(sender, amount, timestamp)`` method. Contracts that also expose
    ``snapshot()``/``restore(state)`` are rolled back with the balances when a
    snapshot is reverted.
    """

    def __init__(self, timestamp: Optional[int] = None):
        self.timestamp = int(time.time()) if timestamp is None else int(timestamp)
        self._balances: Dict[str, int] = {}
        self._contracts: Dict[str, Any] = {}
        self._tokens: Dict[str, Any] = {}
        self._destroyed: Set[str] = set()
        self._snapshots: Dict[int, Any] = {}
        self._next_snapshot_id = 1
        self._next_address = 1

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def increase_time(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Time only moves forward")
        self.timestamp += int(seconds)
        return self.timestamp

    # ------------------------------------------------------------------
    # Addresses and contracts
    # ------------------------------------------------------------------

    def allocate_address(self) -> str:
        address = f"0x{self._next_address:040x}"
        self._next_address += 1
        return address

    def attach(self, address: str, contract: Any) -> None:
        self._contracts[address] = contract

    def contract(self, address: str) -> Optional[Any]:
        return self._contracts.get(address)

    def destroy(self, address: str) -> None:
        """Remove a contract; later value sent to it is rejected."""
        self._contracts.pop(address, None)
        self._destroyed.add(address)
        logger.info(f"Contract {address} destroyed")

    def is_destroyed(self, address: str) -> bool:
        return address in self._destroyed

    def deploy_token(
        self,
        factory: Callable[..., Any] = SimpleToken,
        address: Optional[str] = None,
        **kwargs,
    ) -> TokenService:
        """Deploy a token. ``factory`` receives the address, a fresh one unless given."""
        if address is not None and address in self._tokens:
            raise ValueError(f"A token is already deployed at {address}")
        token = factory(address or self.allocate_address(), **kwargs)
        missing = [name for name in ("balance_of", "transfer", "snapshot", "restore") if not hasattr(token, name)]
        if missing:
            raise TypeError(f"Token at {token.address} lacks {', '.join(missing)}")
        self._tokens[token.address] = token
        return token

    def has_token(self, address: str) -> bool:
        return address in self._tokens

    def token(self, address: str) -> TokenService:
        try:
            return self._tokens[address]
        except KeyError:
            raise LookupError(f"No token contract at {address}") from None

    # ------------------------------------------------------------------
    # Native currency
    # ------------------------------------------------------------------

    def fund(self, address: str, amount: int) -> None:
        """Credit freshly issued native currency, bypassing contract hooks."""
        if amount < 0:
            raise ValueError("Funding amount must be non-negative")
        self._balances[address] = self.balance_of(address) + amount

    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    def send_value(self, sender: str, recipient: str, amount: int) -> Any:
        """Move native currency and notify the recipient contract, if any.

        Returns whatever the recipient's ``receive`` returns, or None for
        plain accounts. The move is undone if the recipient rejects it.
        """
        if amount < 0:
            raise ValueError("Transfer amount must be non-negative")
        if recipient in self._destroyed:
            raise ContractTerminated(f"Contract {recipient} no longer exists")
        if self.balance_of(sender) < amount:
            raise TransferFailure(
                f"Insufficient balance: {sender} has {self.balance_of(sender)}, needs {amount}"
            )

        snapshot_id = self.snapshot()
        try:
            self._balances[sender] = self.balance_of(sender) - amount
            self._balances[recipient] = self.balance_of(recipient) + amount
            contract = self._contracts.get(recipient)
            result = None
            if contract is not None:
                result = contract.receive(sender, amount, self.timestamp)
        except Exception:
            self.revert(snapshot_id)
            raise
        self.release(snapshot_id)
        return result

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> int:
        snapshot_id = self._next_snapshot_id
        self._next_snapshot_id += 1
        self._snapshots[snapshot_id] = (
            dict(self._balances),
            dict(self._contracts),
            set(self._destroyed),
            {address: token.snapshot() for address, token in self._tokens.items()},
            {
                address: contract.snapshot()
                for address, contract in self._contracts.items()
                if hasattr(contract, "snapshot")
            },
        )
        return snapshot_id

    def revert(self, snapshot_id: int) -> None:
        """Restore state captured by ``snapshot_id``; later snapshots are dropped."""
        if snapshot_id not in self._snapshots:
            raise KeyError(f"Unknown snapshot {snapshot_id}")
        balances, contracts, destroyed, tokens, contract_states = self._snapshots[snapshot_id]
        self._balances = dict(balances)
        self._contracts = dict(contracts)
        self._destroyed = set(destroyed)
        for address, state in tokens.items():
            self._tokens[address].restore(state)
        for address, state in contract_states.items():
            contracts[address].restore(state)
        self.release(snapshot_id)

    def release(self, snapshot_id: int) -> None:
        """Forget ``snapshot_id`` and every snapshot taken after it."""
        for key in [k for k in self._snapshots if k >= snapshot_id]:
            del self._snapshots[key]
