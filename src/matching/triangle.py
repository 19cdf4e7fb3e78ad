"""
TRIANGLE match detection and formation.

For a seeker A with no reciprocal partner, look for B and C such that
A wants B's home, B wants C's home and C wants A's home, with no mutual
edge anywhere in the cycle (those pairs belong to STANDARD matching).

    outgoing  = X that A accepts, X not accepting A
    incoming  = Y accepting A, A not accepting Y
    triangle  = (A, X, Y) where X accepts Y and Y does not accept X

Pairs are tried in (X, Y) id order, each at most once, within per-seeker
caps on triangles and attempts.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from loguru import logger

from config.settings import MatchingSettings
from src.matching.checks import DateTolerance, EdgeEvaluation, accepts, evaluate_edge
from src.matching.errors import (
    DuplicateMatchError,
    FormationTimeoutError,
    InvariantViolation,
    LockContentionError,
    NotEligibleError,
    TransientMatchingError,
    TriangleReuseError,
)
from src.matching.ledger import CreditLedger
from src.matching.notifications import NotificationSink, notify_created
from src.matching.standard import FormationOutcome
from src.matching.store import MatchingStore
from src.matching.tracing import MatchTracer
from src.modules.intents import Intent, IntentCredits
from src.modules.matches import (
    ChainLink,
    MatchType,
    NewMatch,
    TriangleParticipant,
    TriangleSnapshot,
)

triangle_log = logger.bind(module="Triangle")


@dataclass
class TriangleCandidate:
    """A closed cycle A -> B -> C -> A with the evaluation of each edge."""

    a: Intent
    b: Intent
    c: Intent
    a_to_b: EdgeEvaluation
    b_to_c: EdgeEvaluation
    c_to_a: EdgeEvaluation

    @property
    def intent_ids(self) -> list[int]:
        return [self.a.id, self.b.id, self.c.id]

    @property
    def lock_key(self) -> str:
        """Advisory lock key on the sorted intent triple."""
        return "matching:triangle:" + ":".join(str(i) for i in sorted(self.intent_ids))

    @property
    def edges(self) -> list[tuple[int, int]]:
        return [(self.a.id, self.b.id), (self.b.id, self.c.id), (self.c.id, self.a.id)]


@dataclass
class TriangleSearchResult:
    """Outcome of the triangle search for one seeker."""

    triangles: list[TriangleCandidate] = field(default_factory=list)
    outcomes: list[FormationOutcome] = field(default_factory=list)
    attempts: int = 0
    last_rejection: Optional[str] = None

    @property
    def rows_created(self) -> int:
        return sum(len(o.match_ids) for o in self.outcomes if o.created)


def build_triangle_snapshot(
    triangle: TriangleCandidate,
    group_id: UUID,
    run_id: Optional[str],
    created_at: datetime,
) -> TriangleSnapshot:
    """Freeze the three participants, the chain and why each edge holds."""
    roles = {"A": triangle.a, "B": triangle.b, "C": triangle.c}
    participants = {
        role: TriangleParticipant(
            intent_id=intent.id,
            user_id=intent.user_id,
            name=intent.display_name,
            home_id=intent.home_id,
            home_address=intent.home.address_formatted,
        )
        for role, intent in roles.items()
    }
    chain = [
        ChainLink(role="A", intent_id=triangle.a.id, gets_home_id=triangle.b.home_id, from_role="B"),
        ChainLink(role="B", intent_id=triangle.b.id, gets_home_id=triangle.c.home_id, from_role="C"),
        ChainLink(role="C", intent_id=triangle.c.id, gets_home_id=triangle.a.home_id, from_role="A"),
    ]
    return TriangleSnapshot(
        run_id=run_id,
        group_id=group_id,
        created_at=created_at,
        participants=participants,
        chain=chain,
        homes={i.home_id: i.home for i in roles.values()},
        searches={i.id: i.search for i in roles.values()},
        edge_evaluations={
            "A_to_B": [s.to_dict() for s in triangle.a_to_b.steps],
            "B_to_C": [s.to_dict() for s in triangle.b_to_c.steps],
            "C_to_A": [s.to_dict() for s in triangle.c_to_a.steps],
        },
    )


class TriangleMatcher:
    """Find and form TRIANGLE matches for a seeker."""

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
        self._tolerance = DateTolerance(settings.date_tolerance_ratio, settings.min_tolerance_days)

    async def find_and_form(
        self,
        seeker: Intent,
        tracer: MatchTracer,
        excluded_users: Optional[set[int]] = None,
        formed_triples: Optional[set[frozenset[int]]] = None,
        today: Optional[date] = None,
    ) -> TriangleSearchResult:
        """
        Search triangles closing on the seeker and form them.

        Args:
            seeker: Seeker intent (role A)
            tracer: Run tracer
            excluded_users: Users that already got a STANDARD match this run
            formed_triples: Intent triples formed earlier in this run
            today: Reference day for open-ended date windows

        Returns:
            TriangleSearchResult

        Raises:
            FormationTimeoutError: A formation exceeded its timeout
            TransientMatchingError: Lock or connection failure
        """
        excluded_users = excluded_users or set()
        formed_triples = formed_triples if formed_triples is not None else set()
        result = TriangleSearchResult()

        if seeker.user_id in excluded_users:
            return result

        limit = self._settings.candidate_limit
        outgoing = [
            x for x in await self._store.find_candidates(seeker, limit)
            if x.user_id not in excluded_users
            and accepts(seeker, x, self._tolerance, today)
            and not accepts(x, seeker, self._tolerance, today)
        ]
        incoming = [
            y for y in await self._store.find_incoming(seeker, limit)
            if y.user_id not in excluded_users
            and accepts(y, seeker, self._tolerance, today)
            and not accepts(seeker, y, self._tolerance, today)
        ]
        outgoing.sort(key=lambda i: i.id)
        incoming.sort(key=lambda i: i.id)

        if not outgoing or not incoming:
            result.last_rejection = "TRIANGLE: no outgoing or incoming edge"
            return result

        remaining = seeker.total_matches_remaining
        max_triangles = min(remaining, self._settings.max_triangles_per_seeker)
        max_attempts = self._settings.max_triangle_attempts
        attempted: set[tuple[int, int]] = set()
        # B and C already in a triangle with this seeker
        used: set[int] = set()
        current = seeker

        for x in outgoing:
            for y in incoming:
                if len(result.triangles) >= max_triangles or result.attempts >= max_attempts:
                    return result
                if x.id in used:
                    break
                if y.id == x.id or y.id in used or (x.id, y.id) in attempted:
                    continue
                if len({current.user_id, x.user_id, y.user_id}) < 3:
                    continue

                attempted.add((x.id, y.id))
                result.attempts += 1

                b_to_c = evaluate_edge(x, y, self._tolerance, today=today)
                if not b_to_c.passed:
                    rejection = b_to_c.rejection
                    result.last_rejection = f"TRIANGLE {rejection.step.value}: {rejection.reason}"
                    continue
                if accepts(y, x, self._tolerance, today):
                    continue

                triangle = TriangleCandidate(
                    a=current,
                    b=x,
                    c=y,
                    a_to_b=evaluate_edge(current, x, self._tolerance, today=today),
                    b_to_c=b_to_c,
                    c_to_a=evaluate_edge(y, current, self._tolerance, today=today),
                )
                triple = frozenset(triangle.intent_ids)
                if triple in formed_triples:
                    result.last_rejection = TriangleReuseError.code
                    continue

                outcome = await self.form(triangle, tracer)
                result.outcomes.append(outcome)
                if not outcome.created:
                    result.last_rejection = f"TRIANGLE {outcome.rollback_reason}"
                    continue

                result.triangles.append(triangle)
                formed_triples.add(triple)
                used.update({x.id, y.id})
                seeker_credits = outcome.credits[current.id]
                current = current.model_copy(update={
                    "total_matches_used": seeker_credits.total_matches_used,
                    "total_matches_remaining": seeker_credits.total_matches_remaining,
                    "is_in_flow": seeker_credits.is_in_flow,
                })
                if not current.is_eligible:
                    return result

        return result

    async def form(self, triangle: TriangleCandidate, tracer: MatchTracer) -> FormationOutcome:
        """
        Form one triangle in a bounded transaction.

        A held advisory lock on the triple skips the triangle (LOCK_CONTENTION).

        Raises:
            FormationTimeoutError: Transaction exceeded its timeout
            TransientMatchingError: Lock or connection failure
        """
        intent_ids = triangle.intent_ids
        tracer.log_transaction("START", intent_ids, type=MatchType.TRIANGLE.value)
        try:
            match_ids, credits = await asyncio.wait_for(
                self._form_in_transaction(triangle, tracer.run_id),
                timeout=self._settings.transaction_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            tracer.log_transaction("ROLLBACK", intent_ids, reason=FormationTimeoutError.code)
            raise FormationTimeoutError(
                f"TRIANGLE formation {intent_ids} timed out", intent_id=triangle.a.id
            ) from e
        except (InvariantViolation, LockContentionError) as e:
            tracer.log_transaction("ROLLBACK", intent_ids, reason=e.code, detail=str(e))
            return FormationOutcome(created=False, rollback_reason=e.code)
        except TransientMatchingError as e:
            tracer.log_transaction("ROLLBACK", intent_ids, reason=e.code)
            raise

        tracer.log_transaction("COMMIT", intent_ids, match_ids=match_ids)
        pairs = [(triangle.a, triangle.b), (triangle.b, triangle.c), (triangle.c, triangle.a)]
        for match_id, (seeker, target) in zip(match_ids, pairs):
            tracer.log_match_created(match_id, seeker.id, target.id, target.home_id)
        await notify_created(self._notifier, match_ids)
        return FormationOutcome(created=True, match_ids=match_ids, credits=credits)

    async def _form_in_transaction(
        self, triangle: TriangleCandidate, run_id: str
    ) -> tuple[list[int], dict[int, IntentCredits]]:
        now = datetime.now(timezone.utc)
        group_id = uuid4()

        async with self._store.transaction() as tx:
            if not await tx.try_advisory_lock(triangle.lock_key):
                raise LockContentionError(f"Triangle {triangle.intent_ids} is being formed elsewhere")

            locked = await tx.lock_intents(triangle.intent_ids)
            for intent_id in triangle.intent_ids:
                credits = locked.get(intent_id)
                if credits is None or not credits.is_eligible:
                    raise NotEligibleError(f"Intent {intent_id} no longer eligible", intent_id=intent_id)

            if await tx.has_active_match(triangle.edges):
                raise DuplicateMatchError(
                    f"Active match already exists inside triangle {triangle.intent_ids}",
                    intent_id=triangle.a.id,
                )

            credits = {}
            for intent_id in triangle.intent_ids:
                credits[intent_id] = await self._ledger.consume(tx, locked[intent_id])

            snapshot = build_triangle_snapshot(triangle, group_id, run_id, now)
            rows = [
                NewMatch(
                    seeker_intent_id=seeker.id,
                    target_intent_id=target.id,
                    target_home_id=target.home_id,
                    type=MatchType.TRIANGLE,
                    group_id=group_id,
                    snapshot=snapshot,
                )
                for seeker, target in [
                    (triangle.a, triangle.b),
                    (triangle.b, triangle.c),
                    (triangle.c, triangle.a),
                ]
            ]
            match_ids = [await tx.insert_match(row) for row in rows]

        triangle_log.debug(f"Triangle {triangle.intent_ids} committed as group {group_id}")
        return match_ids, credits
