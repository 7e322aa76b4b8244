"""Shared data models for the baker daemon.

CRITICAL: All amounts use Decimal and are stored as TEXT. Never use float for
balances, stakes, rewards or lottery power.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class AccountState(str, Enum):
    """Reconciliation state of an account."""

    SETTLED = "settled"  # amounts and lottery power reflect all known history
    PENDING = "pending"  # amounts updated, lottery power not yet recomputed


class RewardKind(str, Enum):
    """Kind of reward paid to an account in a block."""

    BAKING = "baking"
    TRANSACTION_FEE = "transaction_fee"
    FINALIZATION = "finalization"


@dataclass(frozen=True)
class Block:
    """A finalized block as recorded locally. Never mutated once stored."""

    height: int
    hash: str
    slot_time_ms: int
    baker: int


@dataclass(frozen=True)
class Watermark:
    """Highest block height fully and durably ingested."""

    height: int
    block_hash: str


@dataclass
class Account:
    """An account observed on chain, with its reconciled amounts."""

    id: int
    address: str
    available_amount: Decimal = Decimal("0")
    staked_amount: Decimal = Decimal("0")
    lottery_power: Decimal = Decimal("0")
    state: AccountState = AccountState.PENDING
    updated_height: int = 0

    @property
    def total_amount(self) -> Decimal:
        return self.available_amount + self.staked_amount


@dataclass(frozen=True)
class RewardEvent:
    """A reward extracted from a block summary, not yet bound to a stored account."""

    account: str
    amount: Decimal
    epoch_ms: int
    kind: RewardKind


@dataclass
class AccountReward:
    """A stored reward. Unique per (account_id, block_hash, kind)."""

    id: int
    account_id: int
    block_hash: str
    amount: Decimal
    epoch_ms: int
    kind: RewardKind


@dataclass(frozen=True)
class AccountUpdate:
    """New state of an account derived from the node at a given block.

    ``lottery_power`` is None when the birk parameters of the block could not
    be obtained; the update then leaves the account pending.
    """

    address: str
    height: int
    available_amount: Decimal
    staked_amount: Decimal
    lottery_power: Decimal | None = None

    @property
    def state(self) -> AccountState:
        if self.lottery_power is None:
            return AccountState.PENDING
        return AccountState.SETTLED


@dataclass(frozen=True)
class Pair:
    """A currency pair such as CCD/USD."""

    base: str
    quote: str

    @classmethod
    def parse(cls, value: str) -> "Pair":
        """Parse ``BASE/QUOTE`` or ``BASE:QUOTE`` into a Pair."""
        for separator in ("/", ":"):
            if separator in value:
                base, _, quote = value.partition(separator)
                if base and quote:
                    return cls(base.upper(), quote.upper())
        raise ValueError(f"invalid pair: {value!r}")

    @property
    def symbol(self) -> str:
        """ccxt unified symbol."""
        return f"{self.base}/{self.quote}"


@dataclass
class Price:
    """Latest known price of a pair."""

    pair: Pair
    bid: Decimal
    ask: Decimal
    daily_change_relative: Decimal = Decimal("0")
    high: Decimal = Decimal("0")
    low: Decimal = Decimal("0")
    updated_at_ms: int = 0


@dataclass
class ResourceStatus:
    """Resource usage of the host running the node. None means unavailable."""

    avg_cpu_load: float | None = None
    mem_free: int | None = None
    mem_total: int | None = None
    uptime_secs: int | None = None


@dataclass
class NodeStatus:
    """Snapshot of the node's identity and peering."""

    node_id: str | None
    baker_id: int | None
    is_baker_committee: bool
    is_finalizer_committee: bool
    uptime_ms: int
    peer_type: str
    peer_average_latency: float
    peer_count: int


@dataclass
class StatusReport:
    """A periodic report of host and node health."""

    timestamp_ms: int
    resources: ResourceStatus = field(default_factory=ResourceStatus)
    node: NodeStatus | None = None
