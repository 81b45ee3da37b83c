"""User and XP log persistence"""
import logging
from datetime import datetime
from typing import List, Optional

from mindbloom.db.postgres.base import PostgresRepository
from mindbloom.models.user import User
from mindbloom.models.xp_log import XPLog

logger = logging.getLogger(__name__)


class PostgresUserRepository(PostgresRepository):
    table = "users"
    columns = (
        "id", "username", "email", "first_name", "last_name", "avatar", "is_admin",
        "level", "xp", "total_xp_earned", "streak_days", "last_check_in",
        "last_award_id", "last_award_level",
        "created_at", "updated_at", "version",
    )

    async def create(self, user: User) -> User:
        row = await self.insert(user, "create_user")
        logger.info(f"Created user {user.username} ({user.id})")
        return User(**row)

    async def get(self, user_id: str) -> Optional[User]:
        row = await self.get_by_id(user_id, "get_user")
        return User(**row) if row else None

    async def find_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        row = await self.fetch_one(
            "find_user",
            """
            SELECT * FROM users
            WHERE username = %s OR email = %s
            LIMIT 1
            """,
            (username, email),
        )
        return User(**row) if row else None

    async def update(self, user: User) -> User:
        row = await self.versioned_update(user, "User", "update_user")
        return User(**row)


class PostgresXPLogRepository(PostgresRepository):
    table = "xp_logs"
    columns = ("id", "user_id", "action", "points", "created_at")

    async def append(self, log: XPLog) -> XPLog:
        row = await self.insert(log, "append_xp_log")
        return XPLog(**row)

    async def list_for_user(
        self, user_id: str, since: Optional[datetime] = None, limit: int = 50
    ) -> List[XPLog]:
        rows = await self.fetch_all(
            "list_xp_logs",
            """
            SELECT * FROM xp_logs
            WHERE user_id = %s
              AND (%s::timestamptz IS NULL OR created_at >= %s::timestamptz)
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (user_id, since, since, limit),
        )
        return [XPLog(**row) for row in rows]
