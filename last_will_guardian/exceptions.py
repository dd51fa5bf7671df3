"""Errors raised by the watchdog ledger.

Every error is fatal to the call that raised it: the ledger rolls back all
balance and state changes made by that call before the exception propagates.
"""


class LedgerError(Exception):
    """Base class for all ledger failures."""


class Unauthorized(LedgerError):
    """Caller lacks the role required for the operation."""

    def __init__(self, operation: str, caller: str):
        self.operation = operation
        self.caller = caller
        super().__init__(f"{caller} is not allowed to call {operation}")


class CapacityExceeded(LedgerError):
    """Token registry is full or the address is already registered."""


class InvalidConfiguration(LedgerError):
    """Creation parameters are inconsistent."""


class TransferFailure(LedgerError):
    """A native or token transfer did not complete."""


class ContractTerminated(LedgerError):
    """The ledger has been terminated and no longer accepts calls."""


class ReentrantCall(LedgerError):
    """A call reached the ledger while a sweep was in progress."""
