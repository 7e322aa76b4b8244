"""Node query layer -- typed access to the baker node's JSON API."""

from bakerd.node.client import NodeClient
from bakerd.node.http_client import HttpNodeClient
from bakerd.node.types import (
    AccountBalance,
    BirkBaker,
    BirkParameters,
    BlockInfo,
    BlockSummary,
    ConsensusStatus,
    NodeInfo,
    PeerStats,
)

__all__ = [
    "AccountBalance",
    "BirkBaker",
    "BirkParameters",
    "BlockInfo",
    "BlockSummary",
    "ConsensusStatus",
    "HttpNodeClient",
    "NodeClient",
    "NodeInfo",
    "PeerStats",
]
