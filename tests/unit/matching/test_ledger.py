"""
Unit tests for src/matching/ledger.py
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.matching import CreditInvariantError, CreditLedger, NotEligibleError
from tests.fixtures.intents import make_intent

# Import fixtures
pytest_plugins = ["tests.fixtures.matching"]


# ============================================================
# apply_consume tests
# ============================================================


class TestApplyConsume:
    """Tests for CreditLedger.apply_consume."""

    def test_consume_one(self):
        """One credit moves from remaining to used."""
        credits = make_intent(1, remaining=3).credits()
        updated = CreditLedger.apply_consume(credits)
        assert updated.total_matches_used == 1
        assert updated.total_matches_remaining == 2
        assert updated.is_in_flow is True
        assert updated.is_balanced is True

    def test_last_credit_leaves_flow(self):
        """Reaching 0 remaining removes the intent from the flow."""
        updated = CreditLedger.apply_consume(make_intent(1, remaining=1).credits())
        assert updated.total_matches_remaining == 0
        assert updated.is_in_flow is False

    def test_never_negative(self):
        """Consuming more than remaining is an invariant violation."""
        credits = make_intent(1, remaining=1).credits()
        with pytest.raises(CreditInvariantError):
            CreditLedger.apply_consume(credits, 2)

    def test_zero_rejected(self):
        """Consuming 0 credits is rejected."""
        with pytest.raises(CreditInvariantError):
            CreditLedger.apply_consume(make_intent(1).credits(), 0)

    def test_unbalanced_rejected(self):
        """Counters already out of balance are never written back."""
        credits = make_intent(1, remaining=3).credits().model_copy(
            update={"total_matches_purchased": 10}
        )
        with pytest.raises(CreditInvariantError):
            CreditLedger.apply_consume(credits)

    def test_input_unchanged(self):
        """The locked snapshot is not mutated."""
        credits = make_intent(1, remaining=3).credits()
        CreditLedger.apply_consume(credits)
        assert credits.total_matches_remaining == 3


# ============================================================
# consume / refund tests
# ============================================================


class TestLedgerTransactions:
    """Tests for consume and refund against the store."""

    @pytest.mark.asyncio
    async def test_consume_committed(self, store, ledger):
        """Consumed credits are visible after commit."""
        store.add(make_intent(1, remaining=2))

        async with store.transaction() as tx:
            locked = await tx.lock_intents([1])
            await ledger.consume(tx, locked[1])

        intent = await store.get_intent(1)
        assert intent.total_matches_used == 1
        assert intent.total_matches_remaining == 1

    @pytest.mark.asyncio
    async def test_consume_rolled_back(self, store, ledger):
        """A failing transaction leaves credits untouched."""
        store.add(make_intent(1, remaining=2))

        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                locked = await tx.lock_intents([1])
                await ledger.consume(tx, locked[1])
                raise RuntimeError("boom")

        intent = await store.get_intent(1)
        assert intent.total_matches_remaining == 2
        assert store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_refund(self, store, ledger, matching_settings):
        """Refund lowers remaining and sets the cooldown."""
        store.add(make_intent(1, remaining=3))
        before = datetime.now(timezone.utc)

        updated = await ledger.refund(1)

        assert updated.total_matches_refunded == 1
        assert updated.total_matches_remaining == 2
        assert updated.is_balanced is True
        assert updated.refund_cooldown_until >= before + timedelta(
            days=matching_settings.refund_cooldown_days
        )
        assert (await store.get_intent(1)).total_matches_refunded == 1

    @pytest.mark.asyncio
    async def test_refund_last_credit_leaves_flow(self, store, ledger):
        """Refunding the last credit removes the intent from the flow."""
        store.add(make_intent(1, remaining=1))
        updated = await ledger.refund(1)
        assert updated.is_in_flow is False
        assert (await store.get_intent(1)).is_eligible is False

    @pytest.mark.asyncio
    async def test_refund_too_many(self, store, ledger):
        """Refunding more than remaining raises and writes nothing."""
        store.add(make_intent(1, remaining=1))
        with pytest.raises(CreditInvariantError):
            await ledger.refund(1, 2)
        assert (await store.get_intent(1)).total_matches_remaining == 1

    @pytest.mark.asyncio
    async def test_refund_unknown_intent(self, ledger):
        """Unknown intent cannot be refunded."""
        with pytest.raises(NotEligibleError):
            await ledger.refund(99)
