"""
Intent builders for matching tests.

Every builder returns balanced counters:
purchased = used + refunded + remaining.
"""

from datetime import date

import pytest

from src.modules.intents import Home, HomeType, Intent, Search, Zone

# Paris, Place de l'Hotel de Ville
PARIS_LAT = 48.8566
PARIS_LNG = 2.3522


def make_zone(lat: float = PARIS_LAT, lng: float = PARIS_LNG, radius: float = 20_000, label: str = "Paris") -> Zone:
    return Zone(latitude=lat, longitude=lng, radius=radius, label=label)


def make_intent(
    intent_id: int,
    user_id: int | None = None,
    *,
    lat: float = PARIS_LAT,
    lng: float = PARIS_LNG,
    rent: float = 1000,
    surface: float = 40,
    rooms: int = 2,
    home_type: HomeType = HomeType.T2,
    min_rent: float | None = None,
    max_rent: float | None = None,
    min_surface: float | None = None,
    max_surface: float | None = None,
    min_rooms: int | None = None,
    max_rooms: int | None = None,
    home_types: list[HomeType] | None = None,
    start: date | None = date(2027, 1, 1),
    end: date | None = date(2027, 1, 31),
    zones: list[Zone] | None = None,
    remaining: int = 3,
    used: int = 0,
    refunded: int = 0,
    in_flow: bool = True,
    searching: bool = True,
) -> Intent:
    """
    Build a complete intent.

    Defaults: user id = intent id + 100, home id = intent id + 1000,
    search id = intent id + 2000, one 20km zone around central Paris and
    a home at its center, so default intents all accept each other.
    """
    user_id = user_id if user_id is not None else intent_id + 100
    return Intent(
        id=intent_id,
        user_id=user_id,
        first_name=f"User{user_id}",
        last_name="Test",
        home=Home(
            id=intent_id + 1000,
            user_id=user_id,
            lat=lat,
            lng=lng,
            address_formatted=f"{intent_id} rue de Rivoli, Paris",
            home_type=home_type,
            nb_rooms=rooms,
            surface=surface,
            rent=rent,
        ),
        search=Search(
            id=intent_id + 2000,
            min_rent=min_rent,
            max_rent=max_rent,
            min_surface=min_surface,
            max_surface=max_surface,
            min_rooms=min_rooms,
            max_rooms=max_rooms,
            home_types=home_types or [],
            search_start_date=start,
            search_end_date=end,
            zones=[make_zone()] if zones is None else zones,
        ),
        total_matches_purchased=remaining + used + refunded,
        total_matches_used=used,
        total_matches_refunded=refunded,
        total_matches_remaining=remaining,
        is_in_flow=in_flow,
        is_actively_searching=searching,
    )


def make_triangle(first_id: int = 1, remaining: int = 3) -> list[Intent]:
    """
    Three intents forming A -> B -> C -> A with no mutual edge.

    A (rent 1000) wants ~2000, B (rent 2000) wants ~3000,
    C (rent 3000) wants ~1000.
    """
    a, b, c = first_id, first_id + 1, first_id + 2
    return [
        make_intent(a, rent=1000, min_rent=1900, max_rent=2100, remaining=remaining),
        make_intent(b, rent=2000, min_rent=2900, max_rent=3100, remaining=remaining),
        make_intent(c, rent=3000, min_rent=900, max_rent=1100, remaining=remaining),
    ]


# ============================================================
# Scenario Fixtures
# ============================================================


@pytest.fixture
def seeker_a() -> Intent:
    """Seeker: budget 500-1000, 5km zone around P, January."""
    return make_intent(
        1,
        rent=900,
        min_rent=500,
        max_rent=1000,
        zones=[make_zone(radius=5_000, label="P")],
        start=date(2027, 1, 1),
        end=date(2027, 1, 31),
    )


@pytest.fixture
def candidate_b() -> Intent:
    """Candidate: rent 800, about 3km north of P, accepts the seeker's home."""
    return make_intent(
        2,
        lat=PARIS_LAT + 0.027,
        rent=800,
        min_rent=500,
        max_rent=1500,
        start=date(2027, 1, 15),
        end=date(2027, 2, 15),
    )


@pytest.fixture
def expensive_b() -> Intent:
    """Same candidate with rent 1200, above the seeker's max."""
    return make_intent(
        2,
        lat=PARIS_LAT + 0.027,
        rent=1200,
        min_rent=500,
        max_rent=1500,
        start=date(2027, 1, 15),
        end=date(2027, 2, 15),
    )


@pytest.fixture
def triangle_intents() -> list[Intent]:
    """A -> B -> C -> A, ids 1, 2, 3."""
    return make_triangle()
