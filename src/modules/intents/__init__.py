"""Intents module."""

from src.modules.intents.models import (
    Home,
    HomeType,
    Intent,
    IntentCredits,
    Search,
    Zone,
    to_utc_date,
)
from src.modules.intents.repository import (
    IncompleteIntentError,
    IntentRepository,
    intent_from_record,
)

__all__ = [
    "Home",
    "HomeType",
    "Intent",
    "IntentCredits",
    "Search",
    "Zone",
    "to_utc_date",
    "IntentRepository",
    "IncompleteIntentError",
    "intent_from_record",
]
