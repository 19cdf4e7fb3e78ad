"""
Intent Models.

Pydantic models for intents and the home/search data they link.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class HomeType(str, Enum):
    """Home type codes."""

    CHAMBRE = "CHAMBRE"
    STUDIO = "STUDIO"
    T1 = "T1"
    T1_BIS = "T1_BIS"
    T2 = "T2"
    T2_BIS = "T2_BIS"
    T3 = "T3"
    T3_BIS = "T3_BIS"
    T4 = "T4"
    T5 = "T5"
    T6_PLUS = "T6_PLUS"


def to_utc_date(value: Any) -> date | None:
    """
    Normalize a date-like value to a whole UTC calendar day.

    Args:
        value: date, datetime (naive = UTC), ISO string or None

    Returns:
        date or None

    Examples:
        >>> to_utc_date("2026-01-31T23:30:00-02:00")
        datetime.date(2026, 2, 1)
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    raise ValueError(f"Cannot convert {value!r} to date")


class Home(BaseModel):
    """A listed home (what an intent offers)."""

    id: int
    user_id: int
    lat: float
    lng: float
    address_formatted: str | None = None
    home_type: HomeType
    nb_rooms: int
    surface: float
    rent: float
    description: str | None = None
    images: list[str] = Field(default_factory=list, description="Ordered image keys")


class Zone(BaseModel):
    """Search zone: center point + radius in meters."""

    id: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    radius: float | None = Field(None, description="Radius in meters")
    label: str | None = None

    @property
    def is_usable(self) -> bool:
        """Zones missing coordinates or radius are ignored by matching."""
        return (
            self.latitude is not None
            and self.longitude is not None
            and self.radius is not None
        )


class Search(BaseModel):
    """Acceptance criteria of a searcher."""

    id: int
    min_rent: float | None = None
    max_rent: float | None = None
    min_surface: float | None = None
    max_surface: float | None = None
    min_rooms: int | None = None
    max_rooms: int | None = None
    home_types: list[HomeType] = Field(default_factory=list, description="Empty = any type")
    search_start_date: date | None = None
    search_end_date: date | None = None
    zones: list[Zone] = Field(default_factory=list, max_length=5)

    @field_validator("search_start_date", "search_end_date", mode="before")
    @classmethod
    def normalize_dates(cls, v: Any) -> date | None:
        """Store whole-day UTC dates."""
        return to_utc_date(v)

    @field_validator("home_types", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        """NULL home types mean any type."""
        return v or []

    @property
    def usable_zones(self) -> list[Zone]:
        """Zones with coordinates and radius."""
        return [z for z in self.zones if z.is_usable]


class IntentCredits(BaseModel):
    """Credit counters and flow flags of an intent, as read under row lock."""

    intent_id: int
    user_id: int
    total_matches_purchased: int = 0
    total_matches_used: int = 0
    total_matches_refunded: int = 0
    total_matches_remaining: int = 0
    is_in_flow: bool = False
    is_actively_searching: bool = True
    refund_cooldown_until: datetime | None = None

    @property
    def is_eligible(self) -> bool:
        """Eligible for matching: in flow, searching, credits left."""
        return (
            self.is_in_flow
            and self.is_actively_searching
            and self.total_matches_remaining > 0
        )

    @property
    def is_balanced(self) -> bool:
        """remaining = purchased - used - refunded."""
        return self.total_matches_remaining == (
            self.total_matches_purchased
            - self.total_matches_used
            - self.total_matches_refunded
        )


class Intent(BaseModel):
    """A user's standing exchange declaration with its home and search."""

    id: int
    user_id: int
    first_name: str = ""
    last_name: str = ""
    home: Home
    search: Search
    total_matches_purchased: int = 0
    total_matches_used: int = 0
    total_matches_refunded: int = 0
    total_matches_remaining: int = 0
    is_in_flow: bool = False
    is_actively_searching: bool = True
    refund_cooldown_until: datetime | None = None

    @property
    def home_id(self) -> int:
        return self.home.id

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_eligible(self) -> bool:
        """Eligible for matching: in flow, searching, credits left."""
        return (
            self.is_in_flow
            and self.is_actively_searching
            and self.total_matches_remaining > 0
        )

    def credits(self) -> IntentCredits:
        """Credit view of this intent."""
        return IntentCredits(
            intent_id=self.id,
            user_id=self.user_id,
            total_matches_purchased=self.total_matches_purchased,
            total_matches_used=self.total_matches_used,
            total_matches_refunded=self.total_matches_refunded,
            total_matches_remaining=self.total_matches_remaining,
            is_in_flow=self.is_in_flow,
            is_actively_searching=self.is_actively_searching,
            refund_cooldown_until=self.refund_cooldown_until,
        )
