"""
Match Models.

Pydantic models for match rows and their immutable snapshots.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from src.modules.intents.models import Home, Search

ALGORITHM_VERSION = "2.0"


class MatchStatus(str, Enum):
    """Lifecycle status of a match row."""

    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    NOT_INTERESTED = "NOT_INTERESTED"
    ARCHIVED = "ARCHIVED"


class MatchType(str, Enum):
    """STANDARD = reciprocal pair, TRIANGLE = 3-cycle."""

    STANDARD = "STANDARD"
    TRIANGLE = "TRIANGLE"


# ========== Snapshots ==========


class StandardEvaluationSummary(BaseModel):
    """Why a STANDARD pair matched."""

    date_overlap: dict[str, Any] = Field(default_factory=dict)
    seeker_zone_check: dict[str, Any] = Field(default_factory=dict)
    target_zone_check: dict[str, Any] = Field(default_factory=dict)
    reasons: list[str] = Field(default_factory=list)


class StandardSnapshot(BaseModel):
    """Frozen state of both parties of a STANDARD match."""

    snapshot_version: Literal[1] = 1
    algorithm_version: str = ALGORITHM_VERSION
    run_id: Optional[str] = None
    created_at: datetime
    seeker_intent_id: int
    target_intent_id: int
    seeker_home: Home
    target_home: Home
    seeker_search: Search
    target_search: Search
    evaluation: StandardEvaluationSummary


class TriangleParticipant(BaseModel):
    """One corner of a triangle."""

    intent_id: int
    user_id: int
    name: str = ""
    home_id: int
    home_address: Optional[str] = None


class ChainLink(BaseModel):
    """Who gets which home inside a triangle."""

    role: Literal["A", "B", "C"]
    intent_id: int
    gets_home_id: int
    from_role: Literal["A", "B", "C"]


class TriangleSnapshot(BaseModel):
    """Frozen state of the three parties of a TRIANGLE match."""

    snapshot_version: Literal[2] = 2
    algorithm_version: str = ALGORITHM_VERSION
    run_id: Optional[str] = None
    group_id: UUID
    created_at: datetime
    participants: dict[Literal["A", "B", "C"], TriangleParticipant]
    chain: list[ChainLink]
    homes: dict[int, Home]
    searches: dict[int, Search]
    edge_evaluations: dict[
        Literal["A_to_B", "B_to_C", "C_to_A"], list[dict[str, Any]]
    ] = Field(default_factory=dict)


Snapshot = Annotated[
    Union[StandardSnapshot, TriangleSnapshot],
    Field(discriminator="snapshot_version"),
]

snapshot_adapter: TypeAdapter[Snapshot] = TypeAdapter(Snapshot)


# ========== Match rows ==========


class NewMatch(BaseModel):
    """Match row to insert."""

    seeker_intent_id: int
    target_intent_id: int
    target_home_id: int
    type: MatchType
    status: MatchStatus = MatchStatus.NEW
    group_id: UUID
    snapshot: Snapshot

    @field_validator("snapshot", mode="before")
    @classmethod
    def parse_json_snapshot(cls, v: Any) -> Any:
        """jsonb columns come back from asyncpg as text."""
        if isinstance(v, (str, bytes)):
            return json.loads(v)
        return v

    @model_validator(mode="after")
    def snapshot_matches_type(self) -> "NewMatch":
        """STANDARD rows carry a StandardSnapshot, TRIANGLE rows a TriangleSnapshot."""
        expected = StandardSnapshot if self.type == MatchType.STANDARD else TriangleSnapshot
        if not isinstance(self.snapshot, expected):
            raise ValueError(
                f"{self.type.value} match carries snapshot version "
                f"{self.snapshot.snapshot_version}"
            )
        return self


class Match(NewMatch):
    """Persisted match row."""

    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status != MatchStatus.ARCHIVED


def match_from_record(record: dict) -> Match:
    """
    Build a Match from a database row.

    A missing or unknown type is never defaulted.

    Raises:
        pydantic.ValidationError: type, status or snapshot is invalid
    """
    return Match.model_validate(dict(record))
