"""
Matching engine.

Orchestrates candidate selection, STANDARD formation and TRIANGLE formation
for one seeker or for every eligible seeker (sweep). Each seeker runs under
a leased claim; a failure for one seeker never stops the others.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import AsyncIterator, Awaitable, Callable, Optional

from loguru import logger

from config.settings import MatchingSettings
from src.matching.checks import DateTolerance, evaluate_reciprocal
from src.matching.errors import MatchingError
from src.matching.leases import LeasedClaim, intent_claim_key
from src.matching.ledger import CreditLedger
from src.matching.notifications import NotificationSink
from src.matching.standard import StandardMatchFormer
from src.matching.store import MatchingStore
from src.matching.tracing import CandidateEvaluation, FinalResult, MatchTracer, SweepSummary
from src.matching.triangle import TriangleMatcher
from src.modules.intents import Intent

engine_log = logger.bind(module="Engine")


@dataclass
class SeekerResult:
    """What happened to one seeker in a run."""

    intent_id: int
    claimed: bool = True
    eligible: bool = True
    candidates_considered: int = 0
    standard_rows: int = 0
    triangle_rows: int = 0
    matched_intents: set[int] = field(default_factory=set)
    matched_users: set[int] = field(default_factory=set)
    removed_from_flow: set[int] = field(default_factory=set)
    last_rejection: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.standard_rows > 0 or self.triangle_rows > 0


SeekerPhase = Callable[[Intent, MatchTracer, SeekerResult], Awaitable[None]]


class MatchingEngine:
    """Entry points of the matching engine."""

    def __init__(
        self,
        store: MatchingStore,
        ledger: CreditLedger,
        notifier: NotificationSink,
        claims: LeasedClaim,
        settings: MatchingSettings,
        today: Optional[date] = None,
    ):
        """
        Initialize engine.

        Args:
            store: Persistence
            ledger: Credit ledger
            notifier: Notification sink, called after commit
            claims: Leased claims on seekers
            settings: Matching settings (limits, tolerance, tracing)
            today: Fixed reference day for open-ended date windows
        """
        self._store = store
        self._claims = claims
        self._settings = settings
        self._today = today
        self._tolerance = DateTolerance(settings.date_tolerance_ratio, settings.min_tolerance_days)
        self._standard = StandardMatchFormer(store, ledger, notifier, settings)
        self._triangle = TriangleMatcher(store, ledger, notifier, settings)

    # ========== Preview ==========

    async def find_candidate_matches(
        self, seeker_intent_id: int, tracer: Optional[MatchTracer] = None
    ) -> list[CandidateEvaluation]:
        """
        Evaluate every candidate of a seeker without locking or writing.

        Args:
            seeker_intent_id: Seeker intent ID
            tracer: Optional tracer (debug / traced pair logging)

        Returns:
            One evaluation per candidate, in candidate id order

        Raises:
            IntentDataError: Seeker has no usable Home or Search
        """
        seeker = await self._store.get_intent(seeker_intent_id)
        if seeker is None:
            engine_log.warning(f"Intent {seeker_intent_id} not found")
            return []

        tracer = tracer or MatchTracer(self._settings)
        evaluations = []
        for target in await self._store.find_candidates(seeker, self._settings.candidate_limit):
            evaluation = evaluate_reciprocal(seeker, target, self._tolerance, self._today)
            final = FinalResult.COMPATIBLE if evaluation.passed else FinalResult.REJECTED
            tracer.record_evaluation(seeker, target, evaluation, final)
            evaluations.append(CandidateEvaluation(target.id, target.user_id, evaluation))
        return evaluations

    # ========== Per-seeker phases ==========

    async def _run_standard(self, seeker: Intent, tracer: MatchTracer, result: SeekerResult) -> None:
        """Scan candidates in id order, forming pairs while the seeker has credits."""
        candidates = await self._store.find_candidates(seeker, self._settings.candidate_limit)
        result.candidates_considered += len(candidates)
        if not candidates:
            result.last_rejection = "No candidates"

        for target in candidates:
            if not seeker.is_eligible:
                break

            evaluation = evaluate_reciprocal(seeker, target, self._tolerance, self._today)
            if not evaluation.passed:
                tracer.record_evaluation(seeker, target, evaluation, FinalResult.REJECTED)
                rejection = evaluation.rejection
                result.last_rejection = (
                    f"{rejection.step.value}/{rejection.direction.value}: {rejection.reason}"
                )
                continue

            outcome = await self._standard.form(seeker, target, evaluation, tracer)
            if not outcome.created:
                tracer.record_evaluation(seeker, target, evaluation, FinalResult.REJECTED)
                result.last_rejection = outcome.rollback_reason
                continue

            tracer.record_evaluation(seeker, target, evaluation, FinalResult.MATCH_CREATED)
            result.standard_rows += len(outcome.match_ids)
            result.matched_intents.update({seeker.id, target.id})
            result.matched_users.update({seeker.user_id, target.user_id})
            result.removed_from_flow.update(outcome.removed_from_flow)

            credits = outcome.credits[seeker.id]
            seeker = seeker.model_copy(update={
                "total_matches_used": credits.total_matches_used,
                "total_matches_remaining": credits.total_matches_remaining,
                "is_in_flow": credits.is_in_flow,
            })

    async def _run_triangle(
        self,
        seeker: Intent,
        tracer: MatchTracer,
        result: SeekerResult,
        excluded_users: set[int],
        formed_triples: set[frozenset[int]],
    ) -> None:
        search = await self._triangle.find_and_form(
            seeker, tracer, excluded_users, formed_triples, self._today
        )
        result.triangle_rows += search.rows_created
        for triangle in search.triangles:
            result.matched_intents.update(triangle.intent_ids)
            result.matched_users.update({triangle.a.user_id, triangle.b.user_id, triangle.c.user_id})
        for outcome in search.outcomes:
            result.removed_from_flow.update(outcome.removed_from_flow)
        if not search.triangles and search.last_rejection:
            result.last_rejection = search.last_rejection

    async def _with_claim(
        self, intent_id: int, tracer: MatchTracer, phase: SeekerPhase
    ) -> SeekerResult:
        """Run a phase for a seeker while holding its leased claim."""
        result = SeekerResult(intent_id=intent_id)
        key = intent_claim_key(intent_id)
        async with self._claims.held(key, self._settings.lock_ttl_seconds) as acquired:
            if not acquired:
                result.claimed = False
                return result

            seeker = await self._store.get_intent(intent_id)
            if seeker is None or not seeker.is_eligible:
                result.eligible = False
                return result

            await phase(seeker, tracer, result)
        return result

    async def process_seeker(
        self, intent_id: int, tracer: Optional[MatchTracer] = None
    ) -> SeekerResult:
        """
        STANDARD then TRIANGLE for one seeker, under its leased claim.

        TRIANGLE only runs when the seeker got no STANDARD match.

        Raises:
            MatchingError: Transient or permanent failure for this seeker
        """
        tracer = tracer or MatchTracer(self._settings)

        async def phase(seeker: Intent, tr: MatchTracer, result: SeekerResult) -> None:
            await self._run_standard(seeker, tr, result)
            if result.matched or not self._settings.triangle_enabled:
                return
            fresh = await self._store.get_intent(seeker.id)
            if fresh is not None and fresh.is_eligible:
                await self._run_triangle(fresh, tr, result, set(), set())

        return await self._with_claim(intent_id, tracer, phase)

    # ========== Sweep ==========

    async def _iter_eligible_ids(self) -> AsyncIterator[int]:
        """All eligible seeker ids in ascending order, paged."""
        after_id = 0
        while True:
            page = await self._store.list_eligible_seeker_ids(
                self._settings.sweep_batch_size, after_id
            )
            if not page:
                return
            for intent_id in page:
                yield intent_id
            after_id = page[-1]

    async def _isolated(
        self,
        intent_id: int,
        tracer: MatchTracer,
        summary: SweepSummary,
        phase: SeekerPhase,
    ) -> Optional[SeekerResult]:
        """Run a seeker phase; its failure is counted and logged, never propagated."""
        try:
            return await self._with_claim(intent_id, tracer, phase)
        except MatchingError as e:
            summary.seekers_failed += 1
            summary.unmatched_reasons[intent_id] = e.code
            tracer.log.error(f"[{tracer.run_id}] Seeker {intent_id} failed [{e.code}]: {e}")
        except Exception as e:
            summary.seekers_failed += 1
            summary.unmatched_reasons[intent_id] = type(e).__name__
            tracer.log.exception(f"[{tracer.run_id}] Seeker {intent_id} failed unexpectedly: {e}")
        return None

    async def run_matching_sweep(self, tracer: Optional[MatchTracer] = None) -> SweepSummary:
        """
        Run matching for every eligible seeker.

        STANDARD pass over all seekers first (id order), then the TRIANGLE
        pass over seekers left unmatched. Users matched in the STANDARD pass
        are excluded from every triangle role.

        Returns:
            SweepSummary of the run
        """
        tracer = tracer or MatchTracer(self._settings)
        summary = SweepSummary(run_id=tracer.run_id)
        matched_intents: set[int] = set()
        standard_users: set[int] = set()
        removed: set[int] = set()
        last_reasons: dict[int, str] = {}
        processed: list[int] = []

        tracer.log.info(f"[{tracer.run_id}] Matching sweep started")

        async for intent_id in self._iter_eligible_ids():
            result = await self._isolated(intent_id, tracer, summary, self._run_standard)
            if result is None or not result.claimed or not result.eligible:
                continue
            processed.append(intent_id)
            summary.seekers_processed += 1
            summary.candidates_considered += result.candidates_considered
            summary.standard_rows_created += result.standard_rows
            matched_intents.update(result.matched_intents)
            standard_users.update(result.matched_users)
            removed.update(result.removed_from_flow)
            if result.last_rejection:
                last_reasons[intent_id] = result.last_rejection

        if self._settings.triangle_enabled:
            formed_triples: set[frozenset[int]] = set()

            async def triangle_phase(seeker: Intent, tr: MatchTracer, result: SeekerResult) -> None:
                await self._run_triangle(seeker, tr, result, standard_users, formed_triples)

            for intent_id in processed:
                if intent_id in matched_intents:
                    continue
                result = await self._isolated(intent_id, tracer, summary, triangle_phase)
                if result is None or not result.claimed or not result.eligible:
                    continue
                summary.triangle_rows_created += result.triangle_rows
                matched_intents.update(result.matched_intents)
                removed.update(result.removed_from_flow)
                if result.last_rejection:
                    last_reasons[intent_id] = result.last_rejection

        summary.users_removed_from_flow = len(removed)
        for intent_id in processed:
            if intent_id not in matched_intents:
                summary.unmatched_reasons[intent_id] = last_reasons.get(intent_id, "No candidates")
        summary.duration_ms = tracer.elapsed_ms
        tracer.log_summary(summary)
        return summary
