"""
Intent Repository.

Read-side data access for intents with their home, search and zones.
"""

from typing import Optional

from asyncpg import Pool
from loguru import logger

from src.modules.intents.models import Home, Intent, Search, Zone

intent_log = logger.bind(module="Intents")

# Degrees of latitude per kilometer, plus a safety margin on the bounding box
KM_PER_DEGREE = 111
BBOX_MARGIN_DEG = 0.5

INTENT_SELECT = """
SELECT
    i.id, i.user_id, i.home_id, i.search_id,
    i.total_matches_purchased, i.total_matches_used,
    i.total_matches_refunded, i.total_matches_remaining,
    i.is_in_flow, i.is_actively_searching, i.refund_cooldown_until,
    u.first_name, u.last_name,
    h.lat, h.lng, h.address_formatted, h.home_type, h.nb_rooms,
    h.surface, h.rent, h.description, h.image_keys,
    s.min_rent, s.max_rent, s.min_surface, s.max_surface,
    s.min_rooms, s.max_rooms, s.home_types,
    s.search_start_date, s.search_end_date
FROM intents i
JOIN users u ON u.id = i.user_id
LEFT JOIN homes h ON h.id = i.home_id
LEFT JOIN searches s ON s.id = i.search_id
"""

ELIGIBLE = """
    i.is_in_flow = TRUE
    AND i.is_actively_searching = TRUE
    AND i.total_matches_remaining > 0
    AND i.home_id IS NOT NULL
    AND i.search_id IS NOT NULL
"""

# $1 = seeker intent id, matched against candidate alias i
NO_ACTIVE_MATCH = """
    NOT EXISTS (
        SELECT 1 FROM matches m
        WHERE m.status <> 'ARCHIVED'
          AND (
              (m.seeker_intent_id = $1 AND m.target_intent_id = i.id)
              OR (m.seeker_intent_id = i.id AND m.target_intent_id = $1)
          )
    )
"""


class IncompleteIntentError(ValueError):
    """Intent row without a usable Home or Search."""

    def __init__(self, intent_id: int, message: str):
        super().__init__(f"Intent {intent_id}: {message}")
        self.intent_id = intent_id


def intent_from_record(record: dict, zones: list[Zone]) -> Intent:
    """
    Build an Intent from a joined row.

    Args:
        record: Row from INTENT_SELECT
        zones: Zones of the intent's search

    Returns:
        Intent

    Raises:
        IncompleteIntentError: Home or Search missing or incomplete
    """
    intent_id = record["id"]
    if record["home_id"] is None or record["lat"] is None:
        raise IncompleteIntentError(intent_id, "missing home")
    if record["search_id"] is None:
        raise IncompleteIntentError(intent_id, "missing search")
    for column in ("lng", "home_type", "nb_rooms", "surface", "rent"):
        if record[column] is None:
            raise IncompleteIntentError(intent_id, f"home has no {column}")

    home = Home(
        id=record["home_id"],
        user_id=record["user_id"],
        lat=record["lat"],
        lng=record["lng"],
        address_formatted=record["address_formatted"],
        home_type=record["home_type"],
        nb_rooms=record["nb_rooms"],
        surface=record["surface"],
        rent=record["rent"],
        description=record["description"],
        images=record["image_keys"] or [],
    )
    search = Search(
        id=record["search_id"],
        min_rent=record["min_rent"],
        max_rent=record["max_rent"],
        min_surface=record["min_surface"],
        max_surface=record["max_surface"],
        min_rooms=record["min_rooms"],
        max_rooms=record["max_rooms"],
        home_types=record["home_types"],
        search_start_date=record["search_start_date"],
        search_end_date=record["search_end_date"],
        zones=zones,
    )
    return Intent(
        id=intent_id,
        user_id=record["user_id"],
        first_name=record["first_name"] or "",
        last_name=record["last_name"] or "",
        home=home,
        search=search,
        total_matches_purchased=record["total_matches_purchased"],
        total_matches_used=record["total_matches_used"],
        total_matches_refunded=record["total_matches_refunded"],
        total_matches_remaining=record["total_matches_remaining"],
        is_in_flow=record["is_in_flow"],
        is_actively_searching=record["is_actively_searching"],
        refund_cooldown_until=record["refund_cooldown_until"],
    )


class IntentRepository:
    """Repository for intent read operations."""

    def __init__(self, pool: Pool):
        """
        Initialize repository with database connection pool.

        Args:
            pool: asyncpg connection pool
        """
        self._pool = pool

    async def _load_zones(self, conn, search_ids: list[int]) -> dict[int, list[Zone]]:
        """Fetch zones for several searches at once."""
        if not search_ids:
            return {}
        rows = await conn.fetch(
            """
            SELECT id, search_id, latitude, longitude, radius, label
            FROM search_zones
            WHERE search_id = ANY($1::INT[])
            ORDER BY search_id, id
            """,
            search_ids,
        )
        zones: dict[int, list[Zone]] = {}
        for row in rows:
            zones.setdefault(row["search_id"], []).append(
                Zone(
                    id=row["id"],
                    latitude=row["latitude"],
                    longitude=row["longitude"],
                    radius=row["radius"],
                    label=row["label"],
                )
            )
        return zones

    async def _build(self, conn, rows: list) -> list[Intent]:
        """Attach zones and convert rows, skipping incomplete candidates."""
        zones = await self._load_zones(
            conn, [r["search_id"] for r in rows if r["search_id"] is not None]
        )
        intents = []
        for row in rows:
            try:
                intents.append(intent_from_record(row, zones.get(row["search_id"], [])))
            except IncompleteIntentError as e:
                intent_log.warning(f"Skipping candidate: {e}")
        return intents

    async def get_full(self, intent_id: int) -> Optional[Intent]:
        """
        Get an intent with home, search and zones.

        Args:
            intent_id: Intent ID

        Returns:
            Intent or None if not found

        Raises:
            IncompleteIntentError: Home or Search missing
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(f"{INTENT_SELECT} WHERE i.id = $1", intent_id)
            if row is None:
                return None
            zones = await self._load_zones(
                conn, [row["search_id"]] if row["search_id"] is not None else []
            )
            return intent_from_record(row, zones.get(row["search_id"], []))

    async def list_eligible_ids(self, limit: int, after_id: int = 0) -> list[int]:
        """
        Get eligible seeker ids in ascending order (keyset pagination).

        Args:
            limit: Page size
            after_id: Last id of the previous page

        Returns:
            List of intent ids
        """
        query = f"""
        SELECT i.id FROM intents i
        WHERE {ELIGIBLE} AND i.id > $1
        ORDER BY i.id
        LIMIT $2
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, after_id, limit)
            return [row["id"] for row in rows]

    async def count_eligible(self) -> int:
        """Count intents currently eligible for matching."""
        query = f"SELECT COUNT(*) FROM intents i WHERE {ELIGIBLE}"
        async with self._pool.acquire() as conn:
            return await conn.fetchval(query)

    async def find_candidates(self, seeker: Intent, limit: int) -> list[Intent]:
        """
        Eligible intents whose home may satisfy the seeker's search.

        Prefilters on the seeker's rent/surface/rooms/type bounds and on a
        bounding box around its zones. The precise checks run in Python.

        Args:
            seeker: Seeker intent
            limit: Max candidates

        Returns:
            Candidates ordered by intent id
        """
        search = seeker.search
        bbox_sql, bbox_args = self._bbox_filter(search.usable_zones, first_param=9)
        type_sql = ""
        if search.home_types:
            type_sql = f"AND h.home_type = ANY(${9 + len(bbox_args)}::TEXT[])"
        query = f"""
        {INTENT_SELECT}
        WHERE {ELIGIBLE}
          AND i.id <> $1
          AND i.user_id <> $2
          AND ($3::FLOAT IS NULL OR h.rent >= $3)
          AND ($4::FLOAT IS NULL OR h.rent <= $4)
          AND ($5::FLOAT IS NULL OR h.surface >= $5)
          AND ($6::FLOAT IS NULL OR h.surface <= $6)
          AND ($7::INT IS NULL OR h.nb_rooms >= $7)
          AND ($8::INT IS NULL OR h.nb_rooms <= $8)
          AND {NO_ACTIVE_MATCH}
          {bbox_sql}
          {type_sql}
        ORDER BY i.id
        LIMIT {int(limit)}
        """
        args = [
            seeker.id,
            seeker.user_id,
            search.min_rent,
            search.max_rent,
            search.min_surface,
            search.max_surface,
            search.min_rooms,
            search.max_rooms,
            *bbox_args,
        ]
        if search.home_types:
            args.append([t.value for t in search.home_types])

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return await self._build(conn, rows)

    async def find_incoming(self, seeker: Intent, limit: int) -> list[Intent]:
        """
        Eligible intents whose search bounds accept the seeker's home.

        Zones are checked in Python.

        Args:
            seeker: Seeker intent
            limit: Max intents

        Returns:
            Intents ordered by id
        """
        home = seeker.home
        query = f"""
        {INTENT_SELECT}
        WHERE {ELIGIBLE}
          AND i.id <> $1
          AND i.user_id <> $2
          AND (s.min_rent IS NULL OR s.min_rent <= $3)
          AND (s.max_rent IS NULL OR s.max_rent >= $3)
          AND (s.min_surface IS NULL OR s.min_surface <= $4)
          AND (s.max_surface IS NULL OR s.max_surface >= $4)
          AND (s.min_rooms IS NULL OR s.min_rooms <= $5)
          AND (s.max_rooms IS NULL OR s.max_rooms >= $5)
          AND (s.home_types IS NULL OR cardinality(s.home_types) = 0 OR $6 = ANY(s.home_types))
          AND {NO_ACTIVE_MATCH}
        ORDER BY i.id
        LIMIT {int(limit)}
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                query,
                seeker.id,
                seeker.user_id,
                home.rent,
                home.surface,
                home.nb_rooms,
                home.home_type.value,
            )
            return await self._build(conn, rows)

    @staticmethod
    def _bbox_filter(zones: list[Zone], first_param: int) -> tuple[str, list[float]]:
        """
        Build an OR of bounding boxes around zones.

        Box half-size = radius in degrees + 0.5 degree margin.

        Returns:
            Tuple of (sql fragment, parameters)
        """
        if not zones:
            return "", []
        clauses = []
        args: list[float] = []
        idx = first_param
        for zone in zones:
            delta = zone.radius / 1000 / KM_PER_DEGREE + BBOX_MARGIN_DEG
            clauses.append(
                f"(h.lat BETWEEN ${idx} AND ${idx + 1} AND h.lng BETWEEN ${idx + 2} AND ${idx + 3})"
            )
            args.extend([
                zone.latitude - delta,
                zone.latitude + delta,
                zone.longitude - delta,
                zone.longitude + delta,
            ])
            idx += 4
        return f"AND ({' OR '.join(clauses)})", args
