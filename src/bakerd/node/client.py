"""Abstract node client interface.

Defines the contract for all node query implementations. The ingestion
pipeline, the reconciliation engine and the status job depend only on this
interface, keeping transport details isolated in the concrete implementation.

Every method either returns a parsed document or raises a NodeError:
NodeUnavailableError for transport failures and timeouts, NodeResponseError
for documents that do not match the node's schema.
"""

from abc import ABC, abstractmethod

from bakerd.node.types import (
    AccountBalance,
    BirkParameters,
    BlockInfo,
    BlockSummary,
    ConsensusStatus,
    NodeInfo,
    PeerStats,
)


class NodeClient(ABC):
    """Abstract base class for baker node query clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying transport."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying transport."""
        ...

    @abstractmethod
    async def get_consensus_status(self) -> ConsensusStatus:
        """Return the consensus status, including the last finalized height."""
        ...

    @abstractmethod
    async def get_blocks_at_height(self, height: int) -> list[str]:
        """Return the hashes of the blocks at the given height.

        Normally exactly one for a finalized height. An empty list means the
        block is not available on the node yet.
        """
        ...

    @abstractmethod
    async def get_block_info(self, block_hash: str) -> BlockInfo:
        """Return height, slot time and baker of a block."""
        ...

    @abstractmethod
    async def get_block_summary(self, block_hash: str, slot_time_ms: int) -> BlockSummary:
        """Return the reward events of a block, stamped with its slot time."""
        ...

    @abstractmethod
    async def get_account_info(self, block_hash: str, address: str) -> AccountBalance | None:
        """Return the balances of an account at a block, None if the account is unknown."""
        ...

    @abstractmethod
    async def get_birk_parameters(self, block_hash: str) -> BirkParameters:
        """Return the baking committee (lottery powers) at a block."""
        ...

    @abstractmethod
    async def get_node_info(self) -> NodeInfo:
        """Return the identity and committee membership of the node."""
        ...

    @abstractmethod
    async def get_peer_uptime(self) -> int:
        """Return the uptime of the node in milliseconds."""
        ...

    @abstractmethod
    async def get_peer_stats(self) -> PeerStats:
        """Return statistics over the connected peers."""
        ...
