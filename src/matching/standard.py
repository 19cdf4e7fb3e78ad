"""
STANDARD match formation.

A reciprocal pair is written in one transaction: both intents locked and
re-checked, one credit consumed on each side, two match rows sharing a
group id. Notifications go out only after commit.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from config.settings import MatchingSettings
from src.matching.checks import CheckStep, Direction, EdgeEvaluation, StepLog
from src.matching.errors import (
    DuplicateMatchError,
    FormationTimeoutError,
    InvariantViolation,
    NotEligibleError,
    TransientMatchingError,
)
from src.matching.ledger import CreditLedger
from src.matching.notifications import NotificationSink, notify_created
from src.matching.store import MatchingStore, MatchingTransaction
from src.matching.tracing import MatchTracer
from src.modules.intents import Intent, IntentCredits
from src.modules.matches import (
    MatchType,
    NewMatch,
    StandardEvaluationSummary,
    StandardSnapshot,
)


@dataclass
class FormationOutcome:
    """Result of one formation attempt."""

    created: bool
    match_ids: list[int] = field(default_factory=list)
    rollback_reason: Optional[str] = None
    # Credit state after commit, keyed by intent id
    credits: dict[int, IntentCredits] = field(default_factory=dict)

    @property
    def removed_from_flow(self) -> list[int]:
        """Intents whose credits ran out in this formation."""
        return [i for i, c in self.credits.items() if not c.is_in_flow]


def _step_details(evaluation: EdgeEvaluation, step: CheckStep, direction: Direction) -> dict:
    log = evaluation.step(step, direction)
    return dict(log.details) if log else {}


def build_standard_snapshot(
    seeker: Intent,
    target: Intent,
    evaluation: EdgeEvaluation,
    run_id: Optional[str],
    created_at: datetime,
) -> StandardSnapshot:
    """
    Freeze both parties and the reasons they matched.

    Args:
        seeker: Row seeker (receives the target's home)
        target: Row target
        evaluation: Reciprocal evaluation, from the pair's original seeker view
        run_id: Matching run id
        created_at: Formation time
    """
    forward, reverse = Direction.SEEKER_WANTS_TARGET, Direction.TARGET_WANTS_SEEKER
    summary = StandardEvaluationSummary(
        date_overlap=_step_details(evaluation, CheckStep.DATE_OVERLAP, forward),
        seeker_zone_check=_step_details(evaluation, CheckStep.ZONE, forward),
        target_zone_check=_step_details(evaluation, CheckStep.ZONE, reverse),
        reasons=[f"{s.step.value}/{s.direction.value}: {s.reason}" for s in evaluation.steps],
    )
    return StandardSnapshot(
        run_id=run_id,
        created_at=created_at,
        seeker_intent_id=seeker.id,
        target_intent_id=target.id,
        seeker_home=seeker.home,
        target_home=target.home,
        seeker_search=seeker.search,
        target_search=target.search,
        evaluation=summary,
    )


def _swap_directions(evaluation: EdgeEvaluation) -> EdgeEvaluation:
    """Same steps seen from the other party."""
    swapped = EdgeEvaluation()
    for s in evaluation.steps:
        direction = (
            Direction.TARGET_WANTS_SEEKER
            if s.direction == Direction.SEEKER_WANTS_TARGET
            else Direction.SEEKER_WANTS_TARGET
        )
        swapped.steps.append(StepLog(s.step, direction, s.passed, s.reason, s.details))
    return swapped


class StandardMatchFormer:
    """Create reciprocal STANDARD matches."""

    def __init__(
        self,
        store: MatchingStore,
        ledger: CreditLedger,
        notifier: NotificationSink,
        settings: MatchingSettings,
    ):
        self._store = store
        self._ledger = ledger
        self._notifier = notifier
        self._settings = settings

    async def form(
        self,
        seeker: Intent,
        target: Intent,
        evaluation: EdgeEvaluation,
        tracer: MatchTracer,
    ) -> FormationOutcome:
        """
        Form a STANDARD pair in one bounded transaction.

        Invariant violations roll back and are reported on the outcome.

        Raises:
            FormationTimeoutError: Transaction exceeded its timeout
            TransientMatchingError: Lock or connection failure
        """
        intent_ids = sorted([seeker.id, target.id])
        tracer.log_transaction("START", intent_ids, type=MatchType.STANDARD.value)
        try:
            match_ids, credits = await asyncio.wait_for(
                self._form_in_transaction(seeker, target, evaluation, tracer.run_id),
                timeout=self._settings.transaction_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            tracer.log_transaction("ROLLBACK", intent_ids, reason=FormationTimeoutError.code)
            raise FormationTimeoutError(
                f"STANDARD formation {intent_ids} timed out", intent_id=seeker.id
            ) from e
        except InvariantViolation as e:
            tracer.log_transaction("ROLLBACK", intent_ids, reason=e.code, detail=str(e))
            return FormationOutcome(created=False, rollback_reason=e.code)
        except TransientMatchingError as e:
            tracer.log_transaction("ROLLBACK", intent_ids, reason=e.code)
            raise

        tracer.log_transaction("COMMIT", intent_ids, match_ids=match_ids)
        tracer.log_match_created(match_ids[0], seeker.id, target.id, target.home_id)
        tracer.log_match_created(match_ids[1], target.id, seeker.id, seeker.home_id)
        await notify_created(self._notifier, match_ids)
        return FormationOutcome(created=True, match_ids=match_ids, credits=credits)

    async def _lock_and_recheck(
        self, tx: MatchingTransaction, seeker: Intent, target: Intent
    ) -> dict[int, IntentCredits]:
        locked = await tx.lock_intents([seeker.id, target.id])
        for intent in (seeker, target):
            credits = locked.get(intent.id)
            if credits is None or not credits.is_eligible:
                raise NotEligibleError(f"Intent {intent.id} no longer eligible", intent_id=intent.id)
        if await tx.has_active_match([(seeker.id, target.id)]):
            raise DuplicateMatchError(
                f"Active match already exists between {seeker.id} and {target.id}",
                intent_id=seeker.id,
            )
        return locked

    async def _form_in_transaction(
        self,
        seeker: Intent,
        target: Intent,
        evaluation: EdgeEvaluation,
        run_id: str,
    ) -> tuple[list[int], dict[int, IntentCredits]]:
        now = datetime.now(timezone.utc)
        group_id = uuid4()

        async with self._store.transaction() as tx:
            locked = await self._lock_and_recheck(tx, seeker, target)

            credits = {
                seeker.id: await self._ledger.consume(tx, locked[seeker.id]),
                target.id: await self._ledger.consume(tx, locked[target.id]),
            }

            rows = [
                NewMatch(
                    seeker_intent_id=seeker.id,
                    target_intent_id=target.id,
                    target_home_id=target.home_id,
                    type=MatchType.STANDARD,
                    group_id=group_id,
                    snapshot=build_standard_snapshot(seeker, target, evaluation, run_id, now),
                ),
                NewMatch(
                    seeker_intent_id=target.id,
                    target_intent_id=seeker.id,
                    target_home_id=seeker.home_id,
                    type=MatchType.STANDARD,
                    group_id=group_id,
                    snapshot=build_standard_snapshot(
                        target, seeker, _swap_directions(evaluation), run_id, now
                    ),
                ),
            ]
            match_ids = [await tx.insert_match(row) for row in rows]

        return match_ids, credits
