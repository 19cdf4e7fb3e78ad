"""
Unit tests for src/matching/checks.py
"""

from datetime import date

import pytest

from src.matching.checks import (
    CheckStep,
    DateTolerance,
    Direction,
    accepts,
    check_budget,
    check_date_overlap,
    check_eligibility,
    check_home_type,
    check_rooms,
    check_surface,
    check_zones,
    evaluate_edge,
    evaluate_reciprocal,
    haversine_distance,
)
from src.modules.intents import HomeType, Search, Zone
from tests.fixtures.intents import PARIS_LAT, PARIS_LNG, make_intent, make_zone

# Import fixtures
pytest_plugins = ["tests.fixtures.intents"]


def _search(**kwargs) -> Search:
    return Search(id=1, **kwargs)


# ============================================================
# haversine_distance tests
# ============================================================


class TestHaversineDistance:
    """Tests for haversine_distance function."""

    def test_same_point(self):
        """Distance from a point to itself is 0."""
        assert haversine_distance(PARIS_LAT, PARIS_LNG, PARIS_LAT, PARIS_LNG) == 0

    def test_paris_to_lyon(self):
        """Paris - Lyon is about 392km."""
        distance = haversine_distance(48.8566, 2.3522, 45.7640, 4.8357)
        assert 385_000 < distance < 400_000

    def test_symmetric(self):
        """Distance does not depend on direction."""
        ab = haversine_distance(48.85, 2.35, 48.90, 2.40)
        ba = haversine_distance(48.90, 2.40, 48.85, 2.35)
        assert ab == pytest.approx(ba)


# ============================================================
# check_eligibility tests
# ============================================================


class TestCheckEligibility:
    """Tests for check_eligibility function."""

    def test_eligible(self):
        """In flow, searching and with credits is eligible."""
        assert check_eligibility(make_intent(1)).passed is True

    def test_not_in_flow(self):
        """Out of flow is rejected."""
        result = check_eligibility(make_intent(1, in_flow=False))
        assert result.passed is False
        assert "not in flow" in result.reason

    def test_not_searching(self):
        """Paused search is rejected."""
        assert check_eligibility(make_intent(1, searching=False)).passed is False

    def test_no_credits(self):
        """Zero remaining credits is rejected."""
        result = check_eligibility(make_intent(1, remaining=0, used=3))
        assert result.passed is False
        assert result.details["remaining"] == 0


# ============================================================
# check_zones tests
# ============================================================


class TestCheckZones:
    """Tests for check_zones function."""

    def test_no_zones_accepts_anywhere(self):
        """Empty zone list accepts any location."""
        home = make_intent(1, lat=43.3, lng=5.4).home
        assert check_zones(home, []).passed is True

    def test_unusable_zones_ignored(self):
        """Zones without coordinates or radius do not restrict."""
        home = make_intent(1, lat=43.3, lng=5.4).home
        zones = [Zone(latitude=PARIS_LAT, longitude=PARIS_LNG), Zone(radius=1000)]
        result = check_zones(home, zones)
        assert result.passed is True
        assert result.details["zones_checked"] == []

    def test_inside_zone(self):
        """Home 3km from center of a 5km zone is accepted."""
        home = make_intent(1, lat=PARIS_LAT + 0.027).home
        result = check_zones(home, [make_zone(radius=5_000, label="P")])
        assert result.passed is True
        assert result.details["matched_zone"] == "P"
        assert 2_900 < result.details["distance"] < 3_100

    def test_any_zone_is_enough(self):
        """Home outside the first zone but inside the second is accepted."""
        home = make_intent(1, lat=45.764, lng=4.8357).home
        zones = [make_zone(radius=5_000, label="Paris"), make_zone(45.764, 4.8357, 2_000, "Lyon")]
        result = check_zones(home, zones)
        assert result.passed is True
        assert result.details["matched_zone"] == "Lyon"

    def test_outside_all_zones(self):
        """Rejection reports the closest zone and the gap."""
        home = make_intent(1, lat=PARIS_LAT + 0.09).home  # ~10km north
        result = check_zones(home, [make_zone(radius=5_000, label="P")])
        assert result.passed is False
        assert result.details["closest_zone"] == "P"
        assert 4_900 < result.details["gap"] < 5_100
        assert len(result.details["zones_checked"]) == 1


# ============================================================
# Range checks tests
# ============================================================


class TestRangeChecks:
    """Tests for budget, surface and rooms checks."""

    def test_budget_within(self):
        """Rent inside bounds passes."""
        home = make_intent(1, rent=800).home
        assert check_budget(home, _search(min_rent=500, max_rent=1000)).passed is True

    def test_budget_bounds_inclusive(self):
        """Rent equal to a bound passes."""
        home = make_intent(1, rent=1000).home
        assert check_budget(home, _search(min_rent=1000, max_rent=1000)).passed is True

    def test_budget_above_max(self):
        """Rent above max fails with structured details."""
        home = make_intent(1, rent=1200).home
        result = check_budget(home, _search(min_rent=500, max_rent=1000))
        assert result.passed is False
        assert result.details == {"candidate_rent": 1200, "min_rent": 500, "max_rent": 1000}

    def test_budget_missing_bounds(self):
        """Missing bounds are unbounded."""
        home = make_intent(1, rent=99_999).home
        assert check_budget(home, _search()).passed is True

    def test_surface_below_min(self):
        """Surface below min fails."""
        home = make_intent(1, surface=20).home
        result = check_surface(home, _search(min_surface=30))
        assert result.passed is False
        assert "below min" in result.reason

    def test_rooms_above_max(self):
        """Too many rooms fails."""
        home = make_intent(1, rooms=5).home
        assert check_rooms(home, _search(max_rooms=3)).passed is False


# ============================================================
# check_home_type tests
# ============================================================


class TestCheckHomeType:
    """Tests for check_home_type function."""

    def test_empty_accepts_any(self):
        """No accepted types means any type."""
        home = make_intent(1, home_type=HomeType.CHAMBRE).home
        assert check_home_type(home, _search(home_types=[])).passed is True

    def test_null_accepts_any(self):
        """NULL home types are read as empty."""
        home = make_intent(1, home_type=HomeType.T4).home
        assert check_home_type(home, _search(home_types=None)).passed is True

    def test_type_accepted(self):
        """Listed type passes."""
        home = make_intent(1, home_type=HomeType.T2).home
        assert check_home_type(home, _search(home_types=[HomeType.T2, HomeType.T3])).passed is True

    def test_type_rejected(self):
        """Unlisted type fails."""
        home = make_intent(1, home_type=HomeType.STUDIO).home
        result = check_home_type(home, _search(home_types=[HomeType.T2]))
        assert result.passed is False
        assert result.details["accepted_types"] == ["T2"]


# ============================================================
# check_date_overlap tests
# ============================================================


class TestCheckDateOverlap:
    """Tests for check_date_overlap function."""

    def test_overlap(self):
        """Overlapping windows pass."""
        a = _search(search_start_date=date(2027, 1, 1), search_end_date=date(2027, 1, 31))
        b = _search(search_start_date=date(2027, 1, 15), search_end_date=date(2027, 2, 15))
        assert check_date_overlap(a, b).passed is True

    def test_touching_windows_overlap(self):
        """Overlap is inclusive: same end and start day passes."""
        a = _search(search_start_date=date(2027, 1, 1), search_end_date=date(2027, 1, 31))
        b = _search(search_start_date=date(2027, 1, 31), search_end_date=date(2027, 2, 28))
        assert check_date_overlap(a, b).passed is True

    def test_disjoint(self):
        """Disjoint windows fail."""
        a = _search(search_start_date=date(2027, 1, 1), search_end_date=date(2027, 1, 31))
        b = _search(search_start_date=date(2027, 2, 10), search_end_date=date(2027, 2, 20))
        assert check_date_overlap(a, b).passed is False

    def test_symmetric(self):
        """Swapping sides gives the same answer."""
        a = _search(search_start_date=date(2027, 1, 1), search_end_date=date(2027, 1, 31))
        b = _search(search_start_date=date(2027, 2, 10), search_end_date=date(2027, 2, 20))
        tolerance = DateTolerance(min_days=7)
        assert check_date_overlap(a, b, tolerance).passed == check_date_overlap(b, a, tolerance).passed

    def test_ratio_tolerance_too_small(self):
        """10% of each window does not bridge a 10 day gap."""
        a = _search(search_start_date=date(2027, 1, 1), search_end_date=date(2027, 1, 31))
        b = _search(search_start_date=date(2027, 2, 10), search_end_date=date(2027, 2, 20))
        result = check_date_overlap(a, b, DateTolerance(ratio=0.1))
        assert result.passed is False
        assert result.details["a_tolerance_days"] == 3
        assert result.details["b_tolerance_days"] == 1

    def test_min_days_tolerance(self):
        """A 7 day minimum tolerance bridges the gap."""
        a = _search(search_start_date=date(2027, 1, 1), search_end_date=date(2027, 1, 31))
        b = _search(search_start_date=date(2027, 2, 10), search_end_date=date(2027, 2, 20))
        result = check_date_overlap(a, b, DateTolerance(ratio=0.1, min_days=7))
        assert result.passed is True
        assert result.details["a_expanded_end"] == "2027-02-07"

    def test_open_ended_defaults(self):
        """Missing start is today, missing end is far future."""
        a = _search()
        b = _search(search_start_date=date(2030, 6, 1), search_end_date=date(2030, 6, 30))
        result = check_date_overlap(a, b, today=date(2026, 12, 1))
        assert result.passed is True
        assert result.details["a_start"] == "2026-12-01"
        assert result.details["a_end"] == "2036-11-28"

    def test_window_ending_before_today(self):
        """An open window starting today misses a window already over."""
        a = _search(search_end_date=date(2027, 1, 31))
        b = _search(search_start_date=date(2026, 1, 1), search_end_date=date(2026, 2, 1))
        assert check_date_overlap(a, b, today=date(2026, 12, 1)).passed is False


# ============================================================
# evaluate_edge / evaluate_reciprocal tests
# ============================================================


class TestEvaluateEdge:
    """Tests for evaluate_edge and accepts."""

    def test_stops_at_first_failure(self):
        """A zone failure skips every later step."""
        searcher = make_intent(1, zones=[make_zone(radius=1_000)], max_rent=10)
        candidate = make_intent(2, lat=PARIS_LAT + 0.1)
        evaluation = evaluate_edge(searcher, candidate)
        assert evaluation.passed is False
        assert [s.step for s in evaluation.steps] == [CheckStep.ZONE]

    def test_step_order(self):
        """All steps run in fixed order when every check passes."""
        evaluation = evaluate_edge(make_intent(1), make_intent(2))
        assert evaluation.passed is True
        assert [s.step for s in evaluation.steps] == [
            CheckStep.ZONE,
            CheckStep.BUDGET,
            CheckStep.SURFACE,
            CheckStep.ROOMS,
            CheckStep.HOME_TYPE,
            CheckStep.DATE_OVERLAP,
        ]

    def test_without_dates(self):
        """include_dates=False drops the date step."""
        evaluation = evaluate_edge(make_intent(1), make_intent(2), include_dates=False)
        assert evaluation.step(CheckStep.DATE_OVERLAP, Direction.SEEKER_WANTS_TARGET) is None

    def test_accepts_is_directed(self):
        """A can accept B while B rejects A."""
        a = make_intent(1, rent=1000, max_rent=2000)
        b = make_intent(2, rent=1500, max_rent=900)
        assert accepts(a, b) is True
        assert accepts(b, a) is False


class TestEvaluateReciprocal:
    """Tests for evaluate_reciprocal function."""

    def test_compatible_pair(self, seeker_a, candidate_b):
        """Seeker and candidate accept each other."""
        evaluation = evaluate_reciprocal(seeker_a, candidate_b, today=date(2026, 12, 1))
        assert evaluation.passed is True
        assert evaluation.step(CheckStep.ZONE, Direction.TARGET_WANTS_SEEKER).passed is True
        assert evaluation.step(CheckStep.DATE_OVERLAP, Direction.TARGET_WANTS_SEEKER) is None

    def test_budget_rejection(self, seeker_a, expensive_b):
        """Rent 1200 against max 1000 is a BUDGET rejection in the seeker direction."""
        evaluation = evaluate_reciprocal(seeker_a, expensive_b, today=date(2026, 12, 1))
        rejection = evaluation.rejection
        assert evaluation.passed is False
        assert rejection.step == CheckStep.BUDGET
        assert rejection.direction == Direction.SEEKER_WANTS_TARGET
        assert rejection.passed is False
        assert rejection.details["candidate_rent"] == 1200
        assert rejection.details["max_rent"] == 1000

    def test_reverse_rejection(self, seeker_a):
        """Target refusing the seeker's home fails in the reverse direction."""
        picky = make_intent(2, rent=800, max_rent=500)
        evaluation = evaluate_reciprocal(seeker_a, picky, today=date(2026, 12, 1))
        assert evaluation.rejection.direction == Direction.TARGET_WANTS_SEEKER
        assert evaluation.rejection.step == CheckStep.BUDGET

    def test_ineligible_target(self, seeker_a, candidate_b):
        """Eligibility is checked before any criteria."""
        target = candidate_b.model_copy(update={"is_in_flow": False})
        evaluation = evaluate_reciprocal(seeker_a, target)
        assert evaluation.rejection.step == CheckStep.ELIGIBILITY
        assert len(evaluation.steps) == 2
