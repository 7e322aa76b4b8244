"""Tests for ReconciliationEngine -- the settled/pending account state machine."""

from decimal import Decimal

import pytest

from bakerd.exceptions import MalformedResponseError, NodeUnavailableError
from bakerd.models import AccountState, AccountUpdate, Block, Watermark

from conftest import SEED_HEIGHT

ALICE = "4xSZuHfLqhxbVbq6A1NsGvvSXdw3khcGVyJdBQETeamcFQ2K3f"
BOB = "3ZFGxLtnUUSJGW2WqjMh1DDjxyq5rnytCwkSqxFTpsWSFdQnNn"


def _block(node, height: int) -> Block:
    h = node.add_block(
        height,
        balances={ALICE: ("10", "90"), BOB: ("5", "0")},
        lottery={ALICE: "0.9"},
    )
    info = node.infos[h]
    return info.to_block()


async def _create_accounts(store, *addresses: str) -> None:
    async with store.transaction():
        for address in addresses:
            await store.upsert_account(address)


class TestPrepare:
    @pytest.mark.asyncio
    async def test_reads_balances_and_lottery_power(self, node, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)

        updates = await reconciler.prepare(block, [ALICE, BOB])

        assert updates == [
            AccountUpdate(ALICE, block.height, Decimal("10"), Decimal("90"), Decimal("0.9")),
            AccountUpdate(BOB, block.height, Decimal("5"), Decimal("0"), Decimal("0")),
        ]
        assert [u.state for u in updates] == [AccountState.SETTLED, AccountState.SETTLED]

    @pytest.mark.asyncio
    async def test_birk_unavailable_makes_updates_pending(self, node, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)
        node.birk_unavailable.add(block.hash)

        updates = await reconciler.prepare(block, [ALICE])

        assert updates[0].lottery_power is None
        assert updates[0].state == AccountState.PENDING

    @pytest.mark.asyncio
    async def test_account_info_failure_propagates(self, node, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)
        node.failures["get_account_info"] = NodeUnavailableError("timeout")

        with pytest.raises(NodeUnavailableError):
            await reconciler.prepare(block, [ALICE])

    @pytest.mark.asyncio
    async def test_unknown_account_is_malformed(self, node, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)

        with pytest.raises(MalformedResponseError):
            await reconciler.prepare(block, ["unknown-address"])

    @pytest.mark.asyncio
    async def test_no_recipients_queries_nothing(self, node, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)

        assert await reconciler.prepare(block, []) == []
        assert node.calls == []


class TestApply:
    @pytest.mark.asyncio
    async def test_apply_inside_transaction(self, store, reconciler) -> None:
        await _create_accounts(store, ALICE)

        async with store.transaction():
            written = await reconciler.apply(
                [AccountUpdate(ALICE, 5, Decimal("1"), Decimal("2"), Decimal("0.1"))]
            )

        assert written == 1
        account = await store.get_account(ALICE)
        assert account.total_amount == Decimal("3")
        assert account.state == AccountState.SETTLED

    @pytest.mark.asyncio
    async def test_apply_outside_transaction_raises(self, store, reconciler) -> None:
        await _create_accounts(store, ALICE)

        with pytest.raises(RuntimeError):
            await reconciler.apply([AccountUpdate(ALICE, 5, Decimal("1"), Decimal("2"))])


class TestSettlePending:
    @pytest.mark.asyncio
    async def test_nothing_pending_queries_nothing(self, node, reconciler) -> None:
        assert await reconciler.settle_pending(Watermark(SEED_HEIGHT, "h")) == 0
        assert node.calls == []

    @pytest.mark.asyncio
    async def test_pending_accounts_become_settled(self, node, store, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)
        await _create_accounts(store, ALICE, BOB)

        settled = await reconciler.settle_pending(Watermark(block.height, block.hash))

        assert settled == 2
        assert await store.get_pending_accounts() == []
        alice = await store.get_account(ALICE)
        assert alice.lottery_power == Decimal("0.9")
        assert alice.updated_height == block.height

    @pytest.mark.asyncio
    async def test_birk_failure_keeps_accounts_pending(self, node, store, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)
        node.birk_unavailable.add(block.hash)
        await _create_accounts(store, ALICE)

        with pytest.raises(NodeUnavailableError):
            await reconciler.settle_pending(Watermark(block.height, block.hash))

        assert [a.address for a in await store.get_pending_accounts()] == [ALICE]

    @pytest.mark.asyncio
    async def test_account_unknown_at_watermark_stays_pending(self, node, store, reconciler) -> None:
        block = _block(node, SEED_HEIGHT + 1)
        await _create_accounts(store, ALICE, "unknown-address")

        settled = await reconciler.settle_pending(Watermark(block.height, block.hash))

        assert settled == 1
        assert [a.address for a in await store.get_pending_accounts()] == ["unknown-address"]
