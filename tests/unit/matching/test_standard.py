"""
Unit tests for src/matching/standard.py
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from src.matching import (
    CheckStep,
    Direction,
    FormationTimeoutError,
    MatchTracer,
    TransientMatchingError,
    evaluate_reciprocal,
)
from src.matching.standard import StandardMatchFormer, build_standard_snapshot
from src.modules.matches import MatchStatus, MatchType, StandardSnapshot
from tests.fixtures.intents import make_intent
from tests.fixtures.matching import RecordingNotificationSink

# Import fixtures
pytest_plugins = ["tests.fixtures.intents", "tests.fixtures.matching"]

TODAY = date(2026, 12, 1)
NOW = datetime(2026, 12, 1, tzinfo=timezone.utc)


@pytest.fixture
def former(store, ledger, notifier, matching_settings) -> StandardMatchFormer:
    return StandardMatchFormer(store, ledger, notifier, matching_settings)


@pytest.fixture
def tracer(matching_settings) -> MatchTracer:
    return MatchTracer(matching_settings, run_id="run-test")


async def _form(former, store, tracer, seeker_id=1, target_id=2):
    seeker = await store.get_intent(seeker_id)
    target = await store.get_intent(target_id)
    evaluation = evaluate_reciprocal(seeker, target, today=TODAY)
    return await former.form(seeker, target, evaluation, tracer)


# ============================================================
# Snapshot tests
# ============================================================


class TestBuildStandardSnapshot:
    """Tests for build_standard_snapshot."""

    def test_freezes_both_parties(self, seeker_a, candidate_b):
        """Snapshot keeps homes, searches and the evaluation summary."""
        evaluation = evaluate_reciprocal(seeker_a, candidate_b, today=TODAY)
        snapshot = build_standard_snapshot(seeker_a, candidate_b, evaluation, "run-x", NOW)

        assert snapshot.snapshot_version == 1
        assert snapshot.seeker_home.rent == 900
        assert snapshot.target_home.rent == 800
        assert snapshot.seeker_search.max_rent == 1000
        assert snapshot.evaluation.date_overlap["a_start"] == "2027-01-01"
        assert snapshot.evaluation.target_zone_check["matched_zone"] == "Paris"
        assert any(r.startswith("BUDGET/SEEKER_WANTS_TARGET") for r in snapshot.evaluation.reasons)


# ============================================================
# Formation tests
# ============================================================


class TestStandardFormation:
    """Tests for StandardMatchFormer.form."""

    @pytest.mark.asyncio
    async def test_creates_reciprocal_rows(self, former, store, notifier, tracer, seeker_a, candidate_b):
        """A compatible pair yields two NEW rows with a shared group."""
        store.add(seeker_a, candidate_b)

        outcome = await _form(former, store, tracer)

        assert outcome.created is True
        assert len(store.matches) == 2
        forward, backward = store.matches
        assert (forward.seeker_intent_id, forward.target_intent_id) == (1, 2)
        assert (backward.seeker_intent_id, backward.target_intent_id) == (2, 1)
        assert forward.target_home_id == candidate_b.home_id
        assert backward.target_home_id == seeker_a.home_id
        assert forward.group_id == backward.group_id
        assert forward.created_at == backward.created_at
        assert {m.status for m in store.matches} == {MatchStatus.NEW}
        assert {m.type for m in store.matches} == {MatchType.STANDARD}
        assert notifier.match_ids == outcome.match_ids

    @pytest.mark.asyncio
    async def test_consumes_one_credit_each(self, former, store, tracer, seeker_a, candidate_b):
        """Both intents are decremented by exactly 1."""
        store.add(seeker_a, candidate_b)

        await _form(former, store, tracer)

        assert store.intents[1].total_matches_remaining == seeker_a.total_matches_remaining - 1
        assert store.intents[2].total_matches_remaining == candidate_b.total_matches_remaining - 1
        assert store.total_used() == len(store.matches)

    @pytest.mark.asyncio
    async def test_reverse_snapshot_swaps_sides(self, former, store, tracer, seeker_a, candidate_b):
        """Each row's snapshot is written from its own seeker's view."""
        store.add(seeker_a, candidate_b)

        await _form(former, store, tracer)

        forward, backward = store.matches
        assert isinstance(backward.snapshot, StandardSnapshot)
        assert backward.snapshot.seeker_intent_id == 2
        assert backward.snapshot.seeker_home.id == candidate_b.home_id
        assert forward.snapshot.evaluation.seeker_zone_check["matched_zone"] == "P"
        assert backward.snapshot.evaluation.target_zone_check["matched_zone"] == "P"

    @pytest.mark.asyncio
    async def test_last_credit_removes_from_flow(self, former, store, tracer):
        """An intent spending its last credit leaves the flow."""
        store.add(make_intent(1, remaining=1), make_intent(2, remaining=2))

        outcome = await _form(former, store, tracer)

        assert outcome.removed_from_flow == [1]
        assert store.intents[1].is_in_flow is False
        assert store.intents[2].is_in_flow is True

    @pytest.mark.asyncio
    async def test_recheck_not_eligible(self, former, store, tracer):
        """A target that ran out of credits since selection rolls back."""
        store.add(make_intent(1), make_intent(2, remaining=1))
        seeker = await store.get_intent(1)
        target = await store.get_intent(2)
        evaluation = evaluate_reciprocal(seeker, target, today=TODAY)
        store.add(make_intent(2, remaining=0, used=1, in_flow=False))

        outcome = await former.form(seeker, target, evaluation, tracer)

        assert outcome.created is False
        assert outcome.rollback_reason == "NOT_ELIGIBLE"
        assert store.matches == []
        assert store.intents[1].total_matches_remaining == 3

    @pytest.mark.asyncio
    async def test_existing_match_is_duplicate(self, former, store, tracer):
        """A second formation for the same pair is rejected."""
        store.add(make_intent(1), make_intent(2))
        await _form(former, store, tracer)

        outcome = await _form(former, store, tracer)

        assert outcome.created is False
        assert outcome.rollback_reason == "DUPLICATE_MATCH"
        assert len(store.matches) == 2
        assert store.total_used() == 2

    @pytest.mark.asyncio
    async def test_insert_failure_rolls_back_credits(self, former, store, tracer):
        """A failing insert leaves no rows and no consumed credit."""
        store.add(make_intent(1), make_intent(2))
        store.insert_error = TransientMatchingError("connection lost")

        with pytest.raises(TransientMatchingError):
            await _form(former, store, tracer)

        assert store.matches == []
        assert store.total_used() == 0
        assert store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_timeout(self, store, ledger, notifier, matching_settings, tracer):
        """A transaction over its time budget raises FormationTimeoutError."""
        settings = matching_settings.model_copy(update={"transaction_timeout_seconds": 0.05})
        former = StandardMatchFormer(store, ledger, notifier, settings)
        store.add(make_intent(1), make_intent(2))
        store.lock_delay = 1.0

        with pytest.raises(FormationTimeoutError):
            await _form(former, store, tracer)

        assert store.matches == []
        assert store.total_used() == 0

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_match(self, store, ledger, matching_settings, tracer):
        """A failing sink does not undo the commit."""
        former = StandardMatchFormer(store, ledger, RecordingNotificationSink(fail=True), matching_settings)
        store.add(make_intent(1), make_intent(2))

        outcome = await _form(former, store, tracer)

        assert outcome.created is True
        assert len(store.matches) == 2

    @pytest.mark.asyncio
    async def test_concurrent_formations_single_winner(self, former, store, tracer):
        """Two simultaneous formations of one pair create one pair only."""
        store.add(make_intent(1), make_intent(2))

        outcomes = await asyncio.gather(
            _form(former, store, tracer, 1, 2),
            _form(former, store, tracer, 2, 1),
        )

        assert sorted(o.created for o in outcomes) == [False, True]
        loser = next(o for o in outcomes if not o.created)
        assert loser.rollback_reason == "DUPLICATE_MATCH"
        assert len(store.matches) == 2
        assert store.intents[1].total_matches_remaining == 2
        assert store.intents[2].total_matches_remaining == 2

    @pytest.mark.asyncio
    async def test_rollback_logged(self, former, store, tracer, log_messages):
        """Rollbacks are logged at WARNING with their reason."""
        store.add(make_intent(1), make_intent(2))
        await _form(former, store, tracer)
        await _form(former, store, tracer)

        warnings = [m for level, _, m in log_messages if level == "WARNING"]
        assert any("[TX] ROLLBACK" in m and "DUPLICATE_MATCH" in m for m in warnings)


class TestEvaluationDirections:
    """Direction labels survive into stored snapshots."""

    @pytest.mark.asyncio
    async def test_reasons_per_direction(self, former, store, tracer, seeker_a, candidate_b):
        """Forward row lists seeker criteria first."""
        store.add(seeker_a, candidate_b)
        await _form(former, store, tracer)

        reasons = store.matches[0].snapshot.evaluation.reasons
        assert reasons[0].startswith(f"{CheckStep.ELIGIBILITY.value}/{Direction.SEEKER_WANTS_TARGET.value}")
