"""PostgreSQL implementation of the repository interfaces"""
from pathlib import Path

from mindbloom.db.connection import Database
from mindbloom.db.postgres.achievements import (
    PostgresAchievementRepository,
    PostgresBadgeRepository,
    PostgresTemplateRepository,
)
from mindbloom.db.postgres.challenges import PostgresChallengeRepository
from mindbloom.db.postgres.journal import PostgresHabitRepository, PostgresJournalRepository
from mindbloom.db.postgres.users import PostgresUserRepository, PostgresXPLogRepository
from mindbloom.db.repositories import Repositories

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "schema.sql"


def postgres_repositories(database: Database) -> Repositories:
    return Repositories(
        users=PostgresUserRepository(database),
        xp_logs=PostgresXPLogRepository(database),
        badges=PostgresBadgeRepository(database),
        templates=PostgresTemplateRepository(database),
        achievements=PostgresAchievementRepository(database),
        challenges=PostgresChallengeRepository(database),
        journal=PostgresJournalRepository(database),
        habits=PostgresHabitRepository(database),
    )


async def apply_schema(database: Database) -> None:
    """Create tables and indexes if they do not exist"""
    async with database.connection() as conn:
        await conn.execute(SCHEMA_PATH.read_text())
        await conn.commit()


__all__ = ["postgres_repositories", "apply_schema", "SCHEMA_PATH"]
