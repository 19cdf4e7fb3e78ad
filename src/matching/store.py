"""
Matching persistence.

MatchingStore is the interface the engine works against: read queries for
seekers and candidates, plus formation transactions with row locks and
advisory locks. PostgresMatchingStore implements it on an asyncpg pool.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import asyncpg
from asyncpg import Pool
from loguru import logger
from pydantic import ValidationError

from src.matching.errors import (
    DuplicateMatchError,
    IntentDataError,
    LockContentionError,
    MatchIntegrityError,
    TransientMatchingError,
)
from src.modules.intents import IncompleteIntentError, Intent, IntentCredits, IntentRepository
from src.modules.matches import Match, MatchRepository, NewMatch
from src.modules.matches.repository import INSERT_MATCH, insert_args

store_log = logger.bind(module="Store")

# asyncpg errors worth a retry
TRANSIENT_PG_ERRORS = (
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.QueryCanceledError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
)


class MatchingTransaction(ABC):
    """Operations available inside a formation transaction."""

    @abstractmethod
    async def lock_intents(self, intent_ids: list[int]) -> dict[int, IntentCredits]:
        """
        Lock intent rows (ascending id order) and return their credit state.

        Missing intents are absent from the result.
        """

    @abstractmethod
    async def try_advisory_lock(self, key: str) -> bool:
        """Take a transaction-scoped advisory lock without waiting."""

    @abstractmethod
    async def has_active_match(self, edges: list[tuple[int, int]]) -> bool:
        """True if any (seeker, target) edge has a non-archived match, in either direction."""

    @abstractmethod
    async def update_credits(self, credits: IntentCredits) -> None:
        """Write credit counters and flow flags of a locked intent."""

    @abstractmethod
    async def insert_match(self, match: NewMatch) -> int:
        """Insert a match row. Returns the new ID."""


class MatchingStore(ABC):
    """Persistence interface of the matching engine."""

    @abstractmethod
    async def get_intent(self, intent_id: int) -> Optional[Intent]:
        """
        Get a full intent.

        Raises:
            IntentDataError: Home or Search missing or incomplete
        """

    @abstractmethod
    async def list_eligible_seeker_ids(self, limit: int, after_id: int = 0) -> list[int]:
        """Eligible intent ids greater than after_id, ascending."""

    @abstractmethod
    async def count_eligible(self) -> int:
        """Number of eligible intents."""

    @abstractmethod
    async def find_candidates(self, seeker: Intent, limit: int) -> list[Intent]:
        """Eligible candidates, other user, no active match with the seeker, by id."""

    @abstractmethod
    async def find_incoming(self, seeker: Intent, limit: int) -> list[Intent]:
        """Eligible intents whose search may accept the seeker's home, by id."""

    @abstractmethod
    async def list_matches_for_intent(self, intent_id: int) -> list[Match]:
        """Valid matches where the intent is the seeker."""

    @abstractmethod
    async def archive_stale_matches(self, older_than: datetime) -> int:
        """Archive active matches not updated since older_than."""

    @abstractmethod
    def transaction(self) -> "AsyncIterator[MatchingTransaction]":
        """
        Open a formation transaction (async context manager).

        Commits on normal exit, rolls back on exception.
        """


class PostgresMatchingTransaction(MatchingTransaction):
    """MatchingTransaction on a single asyncpg connection."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def lock_intents(self, intent_ids: list[int]) -> dict[int, IntentCredits]:
        query = """
        SELECT
            id AS intent_id, user_id,
            total_matches_purchased, total_matches_used,
            total_matches_refunded, total_matches_remaining,
            is_in_flow, is_actively_searching, refund_cooldown_until
        FROM intents
        WHERE id = ANY($1::INT[])
        ORDER BY id
        FOR UPDATE
        """
        rows = await self._conn.fetch(query, sorted(set(intent_ids)))
        return {row["intent_id"]: IntentCredits(**dict(row)) for row in rows}

    async def try_advisory_lock(self, key: str) -> bool:
        return await self._conn.fetchval(
            "SELECT pg_try_advisory_xact_lock(hashtext($1))", key
        )

    async def has_active_match(self, edges: list[tuple[int, int]]) -> bool:
        seekers = [a for a, _ in edges] + [b for _, b in edges]
        targets = [b for _, b in edges] + [a for a, _ in edges]
        query = """
        SELECT EXISTS (
            SELECT 1 FROM matches m
            JOIN UNNEST($1::INT[], $2::INT[]) AS e(seeker_id, target_id)
              ON m.seeker_intent_id = e.seeker_id AND m.target_intent_id = e.target_id
            WHERE m.status <> 'ARCHIVED'
        )
        """
        return await self._conn.fetchval(query, seekers, targets)

    async def update_credits(self, credits: IntentCredits) -> None:
        query = """
        UPDATE intents
        SET total_matches_used = $2,
            total_matches_refunded = $3,
            total_matches_remaining = $4,
            is_in_flow = $5,
            refund_cooldown_until = $6,
            updated_at = NOW()
        WHERE id = $1
        """
        await self._conn.execute(
            query,
            credits.intent_id,
            credits.total_matches_used,
            credits.total_matches_refunded,
            credits.total_matches_remaining,
            credits.is_in_flow,
            credits.refund_cooldown_until,
        )

    async def insert_match(self, match: NewMatch) -> int:
        return await self._conn.fetchval(INSERT_MATCH, *insert_args(match))


class PostgresMatchingStore(MatchingStore):
    """MatchingStore backed by PostgreSQL."""

    def __init__(self, pool: Pool, transaction_timeout_seconds: float = 10.0):
        """
        Initialize store.

        Args:
            pool: asyncpg connection pool
            transaction_timeout_seconds: statement/lock timeout inside formations
        """
        self._pool = pool
        self._intents = IntentRepository(pool)
        self._matches = MatchRepository(pool)
        self._timeout_ms = int(transaction_timeout_seconds * 1000)

    async def get_intent(self, intent_id: int) -> Optional[Intent]:
        try:
            return await self._intents.get_full(intent_id)
        except IncompleteIntentError as e:
            raise IntentDataError(str(e), intent_id=intent_id) from e

    async def list_eligible_seeker_ids(self, limit: int, after_id: int = 0) -> list[int]:
        return await self._intents.list_eligible_ids(limit, after_id)

    async def count_eligible(self) -> int:
        return await self._intents.count_eligible()

    async def find_candidates(self, seeker: Intent, limit: int) -> list[Intent]:
        return await self._intents.find_candidates(seeker, limit)

    async def find_incoming(self, seeker: Intent, limit: int) -> list[Intent]:
        return await self._intents.find_incoming(seeker, limit)

    async def list_matches_for_intent(self, intent_id: int) -> list[Match]:
        return await self._matches.list_for_intent(intent_id)

    async def get_match(self, match_id: int) -> Optional[Match]:
        """
        Get a match by ID.

        Raises:
            MatchIntegrityError: Persisted type or snapshot is invalid
        """
        try:
            return await self._matches.get_by_id(match_id)
        except ValidationError as e:
            store_log.error(f"Match #{match_id} failed integrity check: {e}")
            raise MatchIntegrityError(f"Match {match_id} has an invalid type or snapshot") from e

    async def archive_stale_matches(self, older_than: datetime) -> int:
        return await self._matches.archive_stale(older_than)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MatchingTransaction]:
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(f"SET LOCAL statement_timeout = {self._timeout_ms}")
                    await conn.execute(f"SET LOCAL lock_timeout = {self._timeout_ms}")
                    yield PostgresMatchingTransaction(conn)
        except asyncpg.exceptions.LockNotAvailableError as e:
            raise LockContentionError(str(e)) from e
        except asyncpg.exceptions.UniqueViolationError as e:
            # uq_matches_active_edge: a concurrent formation won the edge
            raise DuplicateMatchError(str(e)) from e
        except TRANSIENT_PG_ERRORS as e:
            store_log.warning(f"Transient database error: {type(e).__name__}: {e}")
            raise TransientMatchingError(str(e)) from e
