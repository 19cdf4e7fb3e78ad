"""Modules package - Domain modules with repository pattern."""

from src.modules.intents import (
    Home,
    HomeType,
    Intent,
    IntentRepository,
    Search,
    Zone,
)
from src.modules.matches import (
    Match,
    MatchRepository,
    MatchStatus,
    MatchType,
    NewMatch,
)

__all__ = [
    # Intents
    "Home",
    "HomeType",
    "Intent",
    "IntentRepository",
    "Search",
    "Zone",
    # Matches
    "Match",
    "MatchRepository",
    "MatchStatus",
    "MatchType",
    "NewMatch",
]
