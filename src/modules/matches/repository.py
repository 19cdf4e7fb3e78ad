"""
Match Repository.

Data access layer for persisted match rows.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from asyncpg import Pool
from loguru import logger
from pydantic import ValidationError

from src.modules.matches.models import Match, NewMatch, match_from_record

match_log = logger.bind(module="Matches")

MATCH_COLUMNS = """
    id, seeker_intent_id, target_intent_id, target_home_id,
    type, status, group_id, snapshot, created_at, updated_at
"""

INSERT_MATCH = """
INSERT INTO matches (
    seeker_intent_id, target_intent_id, target_home_id,
    type, status, group_id, snapshot, snapshot_version
) VALUES ($1, $2, $3, $4, $5, $6, $7::JSONB, $8)
RETURNING id
"""


def insert_args(match: NewMatch) -> tuple:
    """Positional arguments for INSERT_MATCH."""
    return (
        match.seeker_intent_id,
        match.target_intent_id,
        match.target_home_id,
        match.type.value,
        match.status.value,
        match.group_id,
        match.snapshot.model_dump_json(),
        match.snapshot.snapshot_version,
    )


class MatchRepository:
    """Repository for match database operations."""

    def __init__(self, pool: Pool):
        """
        Initialize repository with database connection pool.

        Args:
            pool: asyncpg connection pool
        """
        self._pool = pool

    @staticmethod
    def _parse_rows(rows: list) -> list[Match]:
        """Convert rows, logging and skipping rows that fail integrity checks."""
        matches = []
        for row in rows:
            try:
                matches.append(match_from_record(row))
            except ValidationError as e:
                match_log.error(
                    f"Match #{row['id']} excluded: invalid type or snapshot "
                    f"({e.error_count()} errors)"
                )
        return matches

    async def get_by_id(self, match_id: int) -> Optional[Match]:
        """
        Get a match by ID.

        Raises:
            pydantic.ValidationError: Row has an invalid type or snapshot
        """
        query = f"SELECT {MATCH_COLUMNS} FROM matches WHERE id = $1"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, match_id)
            return match_from_record(row) if row else None

    async def list_for_intent(self, intent_id: int) -> list[Match]:
        """
        Get matches where the intent is the seeker, newest first.

        Args:
            intent_id: Seeker intent ID

        Returns:
            List of valid matches
        """
        query = f"""
        SELECT {MATCH_COLUMNS} FROM matches
        WHERE seeker_intent_id = $1
        ORDER BY created_at DESC, id DESC
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, intent_id)
            return self._parse_rows(rows)

    async def list_by_group(self, group_id: UUID) -> list[Match]:
        """Get all rows of a STANDARD pair or TRIANGLE."""
        query = f"SELECT {MATCH_COLUMNS} FROM matches WHERE group_id = $1 ORDER BY id"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, group_id)
            return self._parse_rows(rows)

    async def insert(self, match: NewMatch) -> int:
        """Insert a match row. Returns the new ID."""
        async with self._pool.acquire() as conn:
            return await conn.fetchval(INSERT_MATCH, *insert_args(match))

    async def archive_stale(self, older_than: datetime) -> int:
        """
        Archive non-archived matches not updated since a cutoff.

        Args:
            older_than: Cutoff timestamp

        Returns:
            Number of rows archived
        """
        query = """
        UPDATE matches
        SET status = 'ARCHIVED', updated_at = NOW()
        WHERE status <> 'ARCHIVED'
          AND COALESCE(updated_at, created_at) < $1
        """
        async with self._pool.acquire() as conn:
            result = await conn.execute(query, older_than)
            # "UPDATE <n>"
            return int(result.split()[-1])
