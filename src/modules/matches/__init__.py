"""Matches module."""

from src.modules.matches.models import (
    ALGORITHM_VERSION,
    ChainLink,
    Match,
    MatchStatus,
    MatchType,
    NewMatch,
    Snapshot,
    StandardEvaluationSummary,
    StandardSnapshot,
    TriangleParticipant,
    TriangleSnapshot,
    match_from_record,
    snapshot_adapter,
)
from src.modules.matches.repository import MatchRepository

__all__ = [
    "ALGORITHM_VERSION",
    "ChainLink",
    "Match",
    "MatchStatus",
    "MatchType",
    "NewMatch",
    "Snapshot",
    "StandardEvaluationSummary",
    "StandardSnapshot",
    "TriangleParticipant",
    "TriangleSnapshot",
    "match_from_record",
    "snapshot_adapter",
    "MatchRepository",
]
