"""
Compatibility checks for housing exchange matching.

Every check is pure and returns a CheckResult carrying a reason and
structured details, so a rejection can always be explained.

A directed edge ``evaluate_edge(searcher, candidate)`` answers "does the
searcher's Search accept the candidate's Home". Checks run in a fixed
order and stop at the first failure.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from src.modules.intents.models import Home, Intent, Search, Zone

EARTH_RADIUS_M = 6_371_000
FAR_FUTURE_DAYS = 365 * 10


class CheckStep(str, Enum):
    """Named evaluation steps."""

    ELIGIBILITY = "ELIGIBILITY"
    ZONE = "ZONE"
    BUDGET = "BUDGET"
    SURFACE = "SURFACE"
    ROOMS = "ROOMS"
    HOME_TYPE = "HOME_TYPE"
    DATE_OVERLAP = "DATE_OVERLAP"


class Direction(str, Enum):
    """Which side's criteria are evaluated."""

    SEEKER_WANTS_TARGET = "SEEKER_WANTS_TARGET"
    TARGET_WANTS_SEEKER = "TARGET_WANTS_SEEKER"


@dataclass
class CheckResult:
    """Outcome of a single check."""

    passed: bool
    reason: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, reason: str, **details: Any) -> "CheckResult":
        return cls(True, reason, details)

    @classmethod
    def fail(cls, reason: str, **details: Any) -> "CheckResult":
        return cls(False, reason, details)


@dataclass
class StepLog:
    """A check result tagged with its step and direction."""

    step: CheckStep
    direction: Direction
    passed: bool
    reason: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "direction": self.direction.value,
            "passed": self.passed,
            "reason": self.reason,
            "details": self.details,
        }


@dataclass
class EdgeEvaluation:
    """Ordered step logs of an evaluation; stops at the first failure."""

    steps: list[StepLog] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(s.passed for s in self.steps)

    @property
    def rejection(self) -> Optional[StepLog]:
        """First failing step, if any."""
        for step in self.steps:
            if not step.passed:
                return step
        return None

    def step(self, name: CheckStep, direction: Direction) -> Optional[StepLog]:
        """Find a step log by name and direction."""
        for s in self.steps:
            if s.step == name and s.direction == direction:
                return s
        return None

    def add(self, step: CheckStep, direction: Direction, result: CheckResult) -> bool:
        self.steps.append(
            StepLog(step, direction, result.passed, result.reason, result.details)
        )
        return result.passed

    def extend(self, other: "EdgeEvaluation") -> bool:
        self.steps.extend(other.steps)
        return other.passed


@dataclass(frozen=True)
class DateTolerance:
    """Per-side expansion of search windows: max(duration * ratio, min_days)."""

    ratio: float = 0.0
    min_days: int = 0

    def days_for(self, start: date, end: date) -> int:
        duration = (end - start).days
        return max(round(duration * self.ratio), self.min_days)


# ========== Geometry ==========


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points.

    Returns:
        Distance in meters

    Examples:
        >>> round(haversine_distance(48.8566, 2.3522, 48.8566, 2.3522))
        0
    """
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


# ========== Individual checks ==========


def check_eligibility(intent: Intent) -> CheckResult:
    """Intent must be in flow, actively searching and have credits left."""
    details = {
        "intent_id": intent.id,
        "is_in_flow": intent.is_in_flow,
        "is_actively_searching": intent.is_actively_searching,
        "remaining": intent.total_matches_remaining,
    }
    if not intent.is_in_flow:
        return CheckResult.fail(f"Intent {intent.id} is not in flow", **details)
    if not intent.is_actively_searching:
        return CheckResult.fail(f"Intent {intent.id} is not actively searching", **details)
    if intent.total_matches_remaining <= 0:
        return CheckResult.fail(f"Intent {intent.id} has no credits left", **details)
    return CheckResult.ok(f"Intent {intent.id} is eligible", **details)


def check_zones(home: Home, zones: list[Zone]) -> CheckResult:
    """
    Home must lie within at least one usable zone.

    Zones missing coordinates or radius are ignored. With no usable zone,
    any location is accepted.
    """
    usable = [z for z in zones if z.is_usable]
    if not usable:
        return CheckResult.ok("No zone restriction", zones_checked=[])

    checked = []
    for zone in usable:
        distance = haversine_distance(home.lat, home.lng, zone.latitude, zone.longitude)
        passed = distance <= zone.radius
        checked.append({
            "label": zone.label,
            "zone_lat": zone.latitude,
            "zone_lng": zone.longitude,
            "radius": zone.radius,
            "distance": round(distance),
            "passed": passed,
        })
        if passed:
            return CheckResult.ok(
                f"Home within zone '{zone.label or 'unnamed'}'",
                matched_zone=zone.label,
                distance=round(distance),
                radius=zone.radius,
                home_lat=home.lat,
                home_lng=home.lng,
                zones_checked=checked,
            )

    closest = min(checked, key=lambda z: z["distance"])
    gap = closest["distance"] - closest["radius"]
    return CheckResult.fail(
        f"Home outside all {len(checked)} zones (closest '{closest['label'] or 'unnamed'}' "
        f"is {gap:.0f}m too far)",
        closest_zone=closest["label"],
        closest_distance=closest["distance"],
        closest_radius=closest["radius"],
        gap=round(gap),
        home_lat=home.lat,
        home_lng=home.lng,
        zones_checked=checked,
    )


def _check_range(
    label: str,
    value: float,
    low: float | None,
    high: float | None,
    value_key: str,
    low_key: str,
    high_key: str,
) -> CheckResult:
    details = {value_key: value, low_key: low, high_key: high}
    if low is not None and value < low:
        return CheckResult.fail(f"{label} {value} below min {low}", **details)
    if high is not None and value > high:
        return CheckResult.fail(f"{label} {value} above max {high}", **details)
    return CheckResult.ok(f"{label} {value} within range", **details)


def check_budget(home: Home, search: Search) -> CheckResult:
    """Rent within [min_rent, max_rent]; a missing bound is unbounded."""
    return _check_range(
        "Rent", home.rent, search.min_rent, search.max_rent,
        "candidate_rent", "min_rent", "max_rent",
    )


def check_surface(home: Home, search: Search) -> CheckResult:
    """Surface within [min_surface, max_surface]."""
    return _check_range(
        "Surface", home.surface, search.min_surface, search.max_surface,
        "candidate_surface", "min_surface", "max_surface",
    )


def check_rooms(home: Home, search: Search) -> CheckResult:
    """Room count within [min_rooms, max_rooms]."""
    return _check_range(
        "Rooms", home.nb_rooms, search.min_rooms, search.max_rooms,
        "candidate_rooms", "min_rooms", "max_rooms",
    )


def check_home_type(home: Home, search: Search) -> CheckResult:
    """Home type in accepted set; an empty set accepts any type."""
    accepted = [t.value for t in search.home_types]
    if not accepted:
        return CheckResult.ok("Any home type accepted", candidate_type=home.home_type.value)
    if home.home_type.value in accepted:
        return CheckResult.ok(
            f"Home type {home.home_type.value} accepted",
            candidate_type=home.home_type.value,
            accepted_types=accepted,
        )
    return CheckResult.fail(
        f"Home type {home.home_type.value} not in {accepted}",
        candidate_type=home.home_type.value,
        accepted_types=accepted,
    )


def check_date_overlap(
    search_a: Search,
    search_b: Search,
    tolerance: DateTolerance = DateTolerance(),
    today: Optional[date] = None,
) -> CheckResult:
    """
    Inclusive overlap of both search windows, each expanded by its tolerance.

    A missing start means today, a missing end means today + 10 years.
    """
    today = today or datetime.now(timezone.utc).date()
    far_future = today + timedelta(days=FAR_FUTURE_DAYS)

    start_a = search_a.search_start_date or today
    end_a = search_a.search_end_date or far_future
    start_b = search_b.search_start_date or today
    end_b = search_b.search_end_date or far_future

    tol_a = tolerance.days_for(start_a, end_a)
    tol_b = tolerance.days_for(start_b, end_b)

    exp_start_a = start_a - timedelta(days=tol_a)
    exp_end_a = end_a + timedelta(days=tol_a)
    exp_start_b = start_b - timedelta(days=tol_b)
    exp_end_b = end_b + timedelta(days=tol_b)

    details = {
        "a_start": start_a.isoformat(),
        "a_end": end_a.isoformat(),
        "b_start": start_b.isoformat(),
        "b_end": end_b.isoformat(),
        "a_tolerance_days": tol_a,
        "b_tolerance_days": tol_b,
        "a_expanded_start": exp_start_a.isoformat(),
        "a_expanded_end": exp_end_a.isoformat(),
        "b_expanded_start": exp_start_b.isoformat(),
        "b_expanded_end": exp_end_b.isoformat(),
    }

    if exp_start_a <= exp_end_b and exp_start_b <= exp_end_a:
        return CheckResult.ok("Date windows overlap", **details)
    return CheckResult.fail("Date windows do not overlap", **details)


# ========== Composite evaluations ==========


def evaluate_edge(
    searcher: Intent,
    candidate: Intent,
    tolerance: DateTolerance = DateTolerance(),
    *,
    direction: Direction = Direction.SEEKER_WANTS_TARGET,
    include_dates: bool = True,
    today: Optional[date] = None,
) -> EdgeEvaluation:
    """
    Does the searcher's Search accept the candidate's Home.

    Order: ZONE, BUDGET, SURFACE, ROOMS, HOME_TYPE, DATE_OVERLAP.
    Stops at the first failing step.

    Args:
        searcher: Intent whose criteria are applied
        candidate: Intent whose home is evaluated
        tolerance: Date window expansion
        direction: Direction label recorded on each step
        include_dates: Run the (symmetric) date overlap step
        today: Reference day for open-ended windows

    Returns:
        EdgeEvaluation with one StepLog per executed step
    """
    evaluation = EdgeEvaluation()
    home = candidate.home
    search = searcher.search

    ordered = [
        (CheckStep.ZONE, lambda: check_zones(home, search.zones)),
        (CheckStep.BUDGET, lambda: check_budget(home, search)),
        (CheckStep.SURFACE, lambda: check_surface(home, search)),
        (CheckStep.ROOMS, lambda: check_rooms(home, search)),
        (CheckStep.HOME_TYPE, lambda: check_home_type(home, search)),
    ]
    if include_dates:
        ordered.append((
            CheckStep.DATE_OVERLAP,
            lambda: check_date_overlap(search, candidate.search, tolerance, today),
        ))

    for step, run in ordered:
        if not evaluation.add(step, direction, run()):
            break
    return evaluation


def accepts(
    searcher: Intent,
    candidate: Intent,
    tolerance: DateTolerance = DateTolerance(),
    today: Optional[date] = None,
) -> bool:
    """Shortcut: True when the directed edge searcher -> candidate passes."""
    return evaluate_edge(searcher, candidate, tolerance, today=today).passed


def evaluate_reciprocal(
    seeker: Intent,
    target: Intent,
    tolerance: DateTolerance = DateTolerance(),
    today: Optional[date] = None,
) -> EdgeEvaluation:
    """
    Full STANDARD evaluation of a seeker/target pair.

    Eligibility of both sides, then the seeker's criteria on the target's
    home, then the target's criteria on the seeker's home (without the
    date step, which is symmetric).
    """
    evaluation = EdgeEvaluation()

    if not evaluation.add(
        CheckStep.ELIGIBILITY, Direction.SEEKER_WANTS_TARGET, check_eligibility(seeker)
    ):
        return evaluation
    if not evaluation.add(
        CheckStep.ELIGIBILITY, Direction.TARGET_WANTS_SEEKER, check_eligibility(target)
    ):
        return evaluation

    forward = evaluate_edge(
        seeker, target, tolerance,
        direction=Direction.SEEKER_WANTS_TARGET, today=today,
    )
    if not evaluation.extend(forward):
        return evaluation

    reverse = evaluate_edge(
        target, seeker, tolerance,
        direction=Direction.TARGET_WANTS_SEEKER, include_dates=False, today=today,
    )
    evaluation.extend(reverse)
    return evaluation
