"""Challenge persistence (tasks and participants stored as JSONB)"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from psycopg.types.json import Jsonb

from mindbloom.db.postgres.base import PostgresRepository, to_column
from mindbloom.models.challenge import Challenge

logger = logging.getLogger(__name__)


class PostgresChallengeRepository(PostgresRepository):
    table = "challenges"
    columns = (
        "id", "title", "description", "category", "difficulty", "creator_id",
        "start_date", "end_date", "duration", "is_private", "join_code",
        "max_participants", "tasks", "participants", "invited_user_ids", "completion_threshold",
        "xp_reward", "badge_reward_id", "is_active", "created_at", "updated_at", "version",
    )
    json_columns = ("tasks", "participants")

    async def create(self, challenge: Challenge) -> Challenge:
        # A join code collision surfaces as DuplicateKeyError (unique index)
        row = await self.insert(challenge, "create_challenge")
        return Challenge(**row)

    async def get(self, challenge_id: str) -> Optional[Challenge]:
        row = await self.get_by_id(challenge_id, "get_challenge")
        return Challenge(**row) if row else None

    async def get_by_join_code(self, join_code: str) -> Optional[Challenge]:
        row = await self.fetch_one(
            "get_challenge_by_join_code",
            "SELECT * FROM challenges WHERE join_code = %s",
            (join_code,),
        )
        return Challenge(**row) if row else None

    async def update(self, challenge: Challenge) -> Challenge:
        row = await self.versioned_update(challenge, "Challenge", "update_challenge")
        return Challenge(**row)

    async def delete(self, challenge_id: str) -> bool:
        return await self.delete_by_id(challenge_id, "delete_challenge")

    async def list_public_active(
        self,
        now: datetime,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 10,
        skip: int = 0,
    ) -> Tuple[List[Challenge], int]:
        category = to_column(category)
        pattern = None
        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
        where = """
            WHERE NOT is_private
              AND is_active
              AND end_date >= %s
              AND (%s::text IS NULL OR category = %s::text)
              AND (%s::text IS NULL OR title ILIKE %s::text OR description ILIKE %s::text)
        """
        params = (now, category, category, pattern, pattern, pattern)

        rows = await self.fetch_all(
            "list_public_challenges",
            f"SELECT * FROM challenges {where} ORDER BY start_date LIMIT %s OFFSET %s",
            params + (limit, skip),
        )
        count = await self.fetch_one(
            "count_public_challenges",
            f"SELECT COUNT(*) AS count FROM challenges {where}",
            params,
        )
        return [Challenge(**row) for row in rows], count["count"]

    async def list_for_user(self, user_id: str) -> List[Challenge]:
        rows = await self.fetch_all(
            "list_user_challenges",
            """
            SELECT * FROM challenges
            WHERE creator_id = %s OR participants @> %s
            ORDER BY start_date
            """,
            (user_id, Jsonb([{"user_id": user_id}])),
        )
        return [Challenge(**row) for row in rows]

    async def list_invited(self, user_id: str) -> List[Challenge]:
        rows = await self.fetch_all(
            "list_invited_challenges",
            "SELECT * FROM challenges WHERE %s = ANY(invited_user_ids) ORDER BY start_date",
            (user_id,),
        )
        return [Challenge(**row) for row in rows]
