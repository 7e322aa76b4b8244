"""Reconciliation engine -- derives authoritative account state from the node.

An account is either settled (amounts and lottery power reflect all known
history) or pending (amounts updated, lottery power not yet recomputed).

For each block, prepare() queries the node for the new balances of every
reward recipient and for the block's birk parameters. It never touches the
database, so all network I/O is over before the caller opens the height's
transaction. apply() then writes each account in a single UPDATE inside that
transaction.

Transitions:
  settled -> pending: balances fetched but the birk parameters were not
                      available; the stale lottery power is kept.
  pending -> settled: the birk parameters were obtained, either for a later
                      block touching the account or in settle_pending().
"""

from bakerd.exceptions import MalformedResponseError, NodeUnavailableError
from bakerd.logging import get_logger
from bakerd.models import AccountUpdate, Block, Watermark
from bakerd.node.client import NodeClient
from bakerd.node.types import BirkParameters
from bakerd.storage.store import Store

logger = get_logger(__name__)


class ReconciliationEngine:
    """Keeps account balances and lottery power in step with ingested blocks.

    Args:
        node: Node query client.
        store: Local store.
    """

    def __init__(self, node: NodeClient, store: Store) -> None:
        self._node = node
        self._store = store

    async def prepare(self, block: Block, addresses: list[str]) -> list[AccountUpdate]:
        """Fetch the state of each address as of ``block``.

        Raises NodeError when an account cannot be fetched; the caller aborts
        the run. A missing birk parameters document only leaves the updates
        pending.
        """
        if not addresses:
            return []

        birk = await self._birk_parameters(block.hash)

        updates: list[AccountUpdate] = []
        for address in addresses:
            balance = await self._node.get_account_info(block.hash, address)
            if balance is None:
                raise MalformedResponseError(
                    f"AccountInfo: reward recipient {address} unknown at block {block.hash}"
                )
            updates.append(
                AccountUpdate(
                    address=address,
                    height=block.height,
                    available_amount=balance.available_amount,
                    staked_amount=balance.staked_amount,
                    lottery_power=birk.lottery_power(address) if birk is not None else None,
                )
            )
        return updates

    async def apply(self, updates: list[AccountUpdate]) -> int:
        """Write prepared updates. Must run inside the caller's transaction.

        Returns the number of accounts written.
        """
        written = 0
        for update in updates:
            if await self._store.update_account(update):
                written += 1
        return written

    async def settle_pending(self, watermark: Watermark) -> int:
        """Recompute every pending account at the watermark block.

        All node queries are issued first, then the accounts are written in
        one transaction. Returns the number of accounts settled. Raises
        NodeError if the node cannot answer; accounts stay pending.
        """
        pending = await self._store.get_pending_accounts()
        if not pending:
            return 0

        birk = await self._node.get_birk_parameters(watermark.block_hash)

        updates: list[AccountUpdate] = []
        for account in pending:
            balance = await self._node.get_account_info(watermark.block_hash, account.address)
            if balance is None:
                logger.warning(
                    "pending_account_unknown",
                    address=account.address,
                    height=watermark.height,
                )
                continue
            updates.append(
                AccountUpdate(
                    address=account.address,
                    height=watermark.height,
                    available_amount=balance.available_amount,
                    staked_amount=balance.staked_amount,
                    lottery_power=birk.lottery_power(account.address),
                )
            )

        async with self._store.transaction():
            settled = await self.apply(updates)

        logger.info(
            "pending_accounts_settled",
            pending=len(pending),
            settled=settled,
            height=watermark.height,
        )
        return settled

    async def _birk_parameters(self, block_hash: str) -> BirkParameters | None:
        try:
            return await self._node.get_birk_parameters(block_hash)
        except NodeUnavailableError as e:
            logger.warning("birk_parameters_unavailable", block_hash=block_hash, error=str(e))
            return None

