"""Data models for Last Will Guardian."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EventKind(str, Enum):
    VALUE_RECEIVED = "ValueReceived"
    TOKEN_ADDED = "TokenAdded"
    CHECKED = "Checked"
    TRIGGERED = "Triggered"
    FUNDS_SENT = "FundsSent"
    TOKENS_SENT = "TokensSent"
    KILLED = "Killed"


class LedgerStatus(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Beneficiary:
    """Fixed recipient with a percentage share of every swept asset."""
    recipient: str
    percent: int

    def share_of(self, amount: int) -> int:
        """Floor of this beneficiary's share; the remainder stays behind."""
        return amount * self.percent // 100


@dataclass(frozen=True)
class WillConfiguration:
    """Immutable ledger configuration fixed at creation."""
    owner: str
    target: str
    timeout_seconds: int
    use_service_account: bool
    beneficiaries: Tuple[Beneficiary, ...]

    def resets_activity(self, sender: str) -> bool:
        """True if value from ``sender`` counts as a sign of life."""
        if sender == self.target:
            return True
        return self.use_service_account and sender == self.owner

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "target": self.target,
            "timeout_seconds": self.timeout_seconds,
            "use_service_account": self.use_service_account,
            "beneficiaries": [
                {"recipient": b.recipient, "percent": b.percent} for b in self.beneficiaries
            ],
        }


@dataclass
class LedgerEvent:
    """Record emitted by a ledger call."""
    event: EventKind
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.event.value, "args": dict(self.args)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEvent":
        return cls(event=EventKind(data["event"]), args=dict(data.get("args", {})))


@dataclass
class Receipt:
    """Outcome of one committed ledger call."""
    operation: str
    caller: str
    timestamp: int
    logs: List[LedgerEvent] = field(default_factory=list)

    @property
    def triggered(self) -> bool:
        return any(log.event == EventKind.TRIGGERED for log in self.logs)

    @property
    def funds_sent(self) -> List[LedgerEvent]:
        return [log for log in self.logs if log.event == EventKind.FUNDS_SENT]

    @property
    def tokens_sent(self) -> List[LedgerEvent]:
        return [log for log in self.logs if log.event == EventKind.TOKENS_SENT]

    @property
    def moved_assets(self) -> bool:
        """True if any payout in this receipt transferred a non-zero amount."""
        return any(log.args["amount"] > 0 for log in self.funds_sent + self.tokens_sent)

    def find(self, kind: EventKind) -> Optional[LedgerEvent]:
        for log in self.logs:
            if log.event == kind:
                return log
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "caller": self.caller,
            "timestamp": self.timestamp,
            "logs": [log.to_dict() for log in self.logs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Receipt":
        return cls(
            operation=data["operation"],
            caller=data["caller"],
            timestamp=int(data["timestamp"]),
            logs=[LedgerEvent.from_dict(log) for log in data.get("logs", [])],
        )
