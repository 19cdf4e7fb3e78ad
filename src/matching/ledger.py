"""
Credit ledger.

Credits are only mutated here, always on intents locked by the current
transaction. Counters keep remaining = purchased - used - refunded.
"""

from datetime import datetime, timedelta, timezone

from loguru import logger

from config.settings import MatchingSettings
from src.matching.errors import CreditInvariantError, NotEligibleError
from src.matching.store import MatchingStore, MatchingTransaction
from src.modules.intents import IntentCredits

ledger_log = logger.bind(module="Ledger")


class CreditLedger:
    """Consume and refund match credits."""

    def __init__(self, store: MatchingStore, settings: MatchingSettings):
        self._store = store
        self._settings = settings

    @staticmethod
    def apply_consume(credits: IntentCredits, n: int = 1) -> IntentCredits:
        """
        Compute counters after consuming n credits.

        Leaves the flow when remaining reaches 0.

        Raises:
            CreditInvariantError: Remaining would go negative or counters are unbalanced
        """
        remaining = credits.total_matches_remaining - n
        if n <= 0 or remaining < 0:
            raise CreditInvariantError(
                f"Cannot consume {n} credit(s), {credits.total_matches_remaining} left",
                intent_id=credits.intent_id,
            )
        updated = credits.model_copy(update={
            "total_matches_used": credits.total_matches_used + n,
            "total_matches_remaining": remaining,
            "is_in_flow": credits.is_in_flow and remaining > 0,
        })
        if not updated.is_balanced:
            raise CreditInvariantError(
                f"Unbalanced counters after consume: {updated.model_dump()}",
                intent_id=credits.intent_id,
            )
        return updated

    async def consume(
        self, tx: MatchingTransaction, credits: IntentCredits, n: int = 1
    ) -> IntentCredits:
        """
        Consume n credits of an intent locked by tx.

        Args:
            tx: Open formation transaction holding the row lock
            credits: Credit state read under that lock
            n: Number of credits

        Returns:
            Updated credit state
        """
        updated = self.apply_consume(credits, n)
        await tx.update_credits(updated)
        if not updated.is_in_flow and credits.is_in_flow:
            ledger_log.info(f"Intent {credits.intent_id} out of credits, removed from flow")
        return updated

    async def refund(self, intent_id: int, n: int = 1) -> IntentCredits:
        """
        Refund n unused credits in a transaction of its own.

        Increments refunded, lowers remaining and sets the refund cooldown.
        An intent reaching 0 remaining leaves the flow.

        Args:
            intent_id: Intent ID
            n: Number of credits to refund

        Returns:
            Updated credit state

        Raises:
            NotEligibleError: Intent not found
            CreditInvariantError: Fewer than n credits remaining
        """
        async with self._store.transaction() as tx:
            locked = await tx.lock_intents([intent_id])
            credits = locked.get(intent_id)
            if credits is None:
                raise NotEligibleError(f"Intent {intent_id} not found", intent_id=intent_id)

            remaining = credits.total_matches_remaining - n
            if n <= 0 or remaining < 0:
                raise CreditInvariantError(
                    f"Cannot refund {n} credit(s), {credits.total_matches_remaining} left",
                    intent_id=intent_id,
                )

            cooldown = datetime.now(timezone.utc) + timedelta(
                days=self._settings.refund_cooldown_days
            )
            updated = credits.model_copy(update={
                "total_matches_refunded": credits.total_matches_refunded + n,
                "total_matches_remaining": remaining,
                "is_in_flow": credits.is_in_flow and remaining > 0,
                "refund_cooldown_until": cooldown,
            })
            await tx.update_credits(updated)

        ledger_log.info(
            f"Refunded {n} credit(s) on intent {intent_id}, {remaining} left, "
            f"cooldown until {cooldown:%Y-%m-%d}"
        )
        return updated
