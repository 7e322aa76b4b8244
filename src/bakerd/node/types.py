"""Typed views of the node's JSON documents.

The node answers every query with a JSON document whose schema is defined by
the node itself (camelCase keys, amounts as decimal strings). Each type here
parses one document and raises MalformedResponseError on anything unexpected,
so that callers never handle raw dicts.

All amounts are converted to Decimal. Never use float for amounts.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from bakerd.exceptions import MalformedResponseError
from bakerd.models import Block, RewardEvent, RewardKind


def _require(doc: Any, key: str, document: str) -> Any:
    if not isinstance(doc, dict):
        raise MalformedResponseError(f"{document}: expected an object, got {type(doc).__name__}")
    if key not in doc or doc[key] is None:
        raise MalformedResponseError(f"{document}: missing field {key!r}")
    return doc[key]


def _decimal(value: Any, document: str) -> Decimal:
    if isinstance(value, bool):
        raise MalformedResponseError(f"{document}: invalid amount {value!r}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise MalformedResponseError(f"{document}: invalid amount {value!r}") from e
    if not amount.is_finite():
        raise MalformedResponseError(f"{document}: invalid amount {value!r}")
    return amount


def _list(doc: Any, key: str, document: str) -> list:
    value = _require(doc, key, document)
    if not isinstance(value, list):
        raise MalformedResponseError(f"{document}: {key} is not a list")
    return value


def _int(value: Any, document: str) -> int:
    if isinstance(value, bool):
        raise MalformedResponseError(f"{document}: invalid integer {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"{document}: invalid integer {value!r}") from e


def parse_slot_time(value: Any) -> int:
    """Convert an ISO-8601 slot time into Unix milliseconds."""
    if not isinstance(value, str):
        raise MalformedResponseError(f"BlockInfo: invalid slot time {value!r}")
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedResponseError(f"BlockInfo: invalid slot time {value!r}") from e
    return int(moment.timestamp() * 1000)


@dataclass(frozen=True)
class ConsensusStatus:
    """Subset of GetConsensusStatus used by the ingestion pipeline."""

    last_finalized_block: str
    last_finalized_height: int
    best_block: str | None = None
    best_height: int | None = None

    @classmethod
    def from_json(cls, doc: Any) -> "ConsensusStatus":
        best_height = doc.get("bestBlockHeight") if isinstance(doc, dict) else None
        return cls(
            last_finalized_block=str(_require(doc, "lastFinalizedBlock", "ConsensusStatus")),
            last_finalized_height=_int(
                _require(doc, "lastFinalizedBlockHeight", "ConsensusStatus"), "ConsensusStatus"
            ),
            best_block=doc.get("bestBlock"),
            best_height=_int(best_height, "ConsensusStatus") if best_height is not None else None,
        )


def parse_block_hashes(doc: Any) -> list[str]:
    """Parse the GetBlocksAtHeight document: a plain list of hashes."""
    if doc is None:
        return []
    if not isinstance(doc, list) or not all(isinstance(h, str) for h in doc):
        raise MalformedResponseError(f"BlocksAtHeight: expected a list of hashes, got {doc!r}")
    return list(doc)


@dataclass(frozen=True)
class BlockInfo:
    """GetBlockInfo document."""

    hash: str
    height: int
    slot_time_ms: int
    baker: int | None
    finalized: bool

    @classmethod
    def from_json(cls, doc: Any) -> "BlockInfo":
        baker = doc.get("blockBaker") if isinstance(doc, dict) else None
        return cls(
            hash=str(_require(doc, "blockHash", "BlockInfo")),
            height=_int(_require(doc, "blockHeight", "BlockInfo"), "BlockInfo"),
            slot_time_ms=parse_slot_time(_require(doc, "blockSlotTime", "BlockInfo")),
            baker=_int(baker, "BlockInfo") if baker is not None else None,
            finalized=bool(doc.get("finalized", False)),
        )

    def to_block(self) -> Block:
        """Local block record. Blocks without a baker are recorded with baker 0."""
        return Block(
            height=self.height,
            hash=self.hash,
            slot_time_ms=self.slot_time_ms,
            baker=self.baker if self.baker is not None else 0,
        )


@dataclass(frozen=True)
class BlockSummary:
    """GetBlockSummary document, reduced to the reward events it carries."""

    reward_events: list[RewardEvent]

    @classmethod
    def from_json(cls, doc: Any, slot_time_ms: int) -> "BlockSummary":
        """Extract reward events from the summary's special events.

        Every event is stamped with the block slot time. Unknown tags (mint,
        foundation rewards, ...) are ignored.
        """
        special_events = _list(doc, "specialEvents", "BlockSummary")

        events: list[RewardEvent] = []
        for special in special_events:
            tag = _require(special, "tag", "BlockSummary")
            if tag == "BakingRewards":
                for entry in _list(special, "bakerRewards", "BakingRewards"):
                    events.append(
                        _reward(
                            _require(entry, "address", "BakingRewards"),
                            _require(entry, "amount", "BakingRewards"),
                            slot_time_ms,
                            RewardKind.BAKING,
                        )
                    )
            elif tag == "FinalizationRewards":
                for entry in _list(special, "finalizationRewards", "FinalizationRewards"):
                    events.append(
                        _reward(
                            _require(entry, "address", "FinalizationRewards"),
                            _require(entry, "amount", "FinalizationRewards"),
                            slot_time_ms,
                            RewardKind.FINALIZATION,
                        )
                    )
            elif tag == "BlockReward":
                events.append(
                    _reward(
                        _require(special, "baker", "BlockReward"),
                        _require(special, "bakerReward", "BlockReward"),
                        slot_time_ms,
                        RewardKind.TRANSACTION_FEE,
                    )
                )
            elif tag == "PaydayAccountReward":
                account = _address(_require(special, "account", "PaydayAccountReward"))
                for key, kind in (
                    ("bakerReward", RewardKind.BAKING),
                    ("transactionFees", RewardKind.TRANSACTION_FEE),
                    ("finalizationReward", RewardKind.FINALIZATION),
                ):
                    amount = _decimal(special.get(key, "0"), "PaydayAccountReward")
                    if amount != 0:
                        events.append(_reward(account, amount, slot_time_ms, kind))
        return cls(reward_events=events)

    @property
    def recipients(self) -> list[str]:
        """Distinct reward recipients, in order of first appearance."""
        return list(dict.fromkeys(e.account for e in self.reward_events))


def _address(account: Any) -> str:
    if not isinstance(account, str) or not account:
        raise MalformedResponseError(f"BlockSummary: invalid reward account {account!r}")
    return account


def _reward(account: Any, amount: Any, epoch_ms: int, kind: RewardKind) -> RewardEvent:
    return RewardEvent(_address(account), _decimal(amount, "BlockSummary"), epoch_ms, kind)


@dataclass(frozen=True)
class AccountBalance:
    """GetAccountInfo document, reduced to the available and staked amounts."""

    available_amount: Decimal
    staked_amount: Decimal

    @classmethod
    def from_json(cls, doc: Any) -> "AccountBalance":
        total = _decimal(_require(doc, "accountAmount", "AccountInfo"), "AccountInfo")
        baker = doc.get("accountBaker")
        if baker is None:
            staked = Decimal("0")
        elif isinstance(baker, dict):
            staked = _decimal(_require(baker, "stakedAmount", "AccountInfo"), "AccountInfo")
        else:
            raise MalformedResponseError("AccountInfo: accountBaker is not an object")
        return cls(available_amount=total - staked, staked_amount=staked)


@dataclass(frozen=True)
class BirkBaker:
    """A baker entry of the birk parameters."""

    account: str
    baker_id: int
    lottery_power: Decimal


@dataclass(frozen=True)
class BirkParameters:
    """GetBirkParameters document: the baking committee of a block."""

    bakers: list[BirkBaker]

    @classmethod
    def from_json(cls, doc: Any) -> "BirkParameters":
        entries = _list(doc, "bakers", "BirkParameters")
        return cls(
            bakers=[
                BirkBaker(
                    account=str(_require(entry, "bakerAccount", "BirkParameters")),
                    baker_id=_int(_require(entry, "bakerId", "BirkParameters"), "BirkParameters"),
                    lottery_power=_decimal(
                        _require(entry, "bakerLotteryPower", "BirkParameters"), "BirkParameters"
                    ),
                )
                for entry in entries
            ]
        )

    def lottery_power(self, address: str) -> Decimal:
        """Lottery power of the account, zero if it is not in the committee."""
        for baker in self.bakers:
            if baker.account == address:
                return baker.lottery_power
        return Decimal("0")


@dataclass(frozen=True)
class NodeInfo:
    """NodeInfo response: identity and committee membership of the node."""

    node_id: str | None
    baker_id: int | None
    is_baker_committee: bool
    is_finalizer_committee: bool
    peer_type: str

    @classmethod
    def from_json(cls, doc: Any) -> "NodeInfo":
        if not isinstance(doc, dict):
            raise MalformedResponseError("NodeInfo: expected an object")
        baker_id = doc.get("consensusBakerId")
        return cls(
            node_id=doc.get("nodeId"),
            baker_id=_int(baker_id, "NodeInfo") if baker_id is not None else None,
            is_baker_committee=doc.get("consensusBakerCommittee") == "ACTIVE_IN_COMMITTEE",
            is_finalizer_committee=bool(doc.get("consensusFinalizerCommittee", False)),
            peer_type=str(doc.get("peerType", "Node")),
        )


@dataclass(frozen=True)
class PeerStats:
    """PeerStats response: averaged latency over connected peers."""

    peer_count: int
    avg_latency: float

    @classmethod
    def from_json(cls, doc: Any) -> "PeerStats":
        peers = _list(doc, "peerstats", "PeerStats")
        latencies = [_latency(p) for p in peers]
        avg = sum(latencies) / len(latencies) if latencies else 0.0
        return cls(peer_count=len(peers), avg_latency=avg)


def _latency(peer: Any) -> float:
    latency = _require(peer, "latency", "PeerStats")
    if isinstance(latency, bool) or not isinstance(latency, (int, float, str)):
        raise MalformedResponseError(f"PeerStats: invalid latency {latency!r}")
    try:
        return float(latency)
    except ValueError as e:
        raise MalformedResponseError(f"PeerStats: invalid latency {latency!r}") from e
