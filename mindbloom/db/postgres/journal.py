"""Journal entry and habit persistence"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from mindbloom.db.postgres.base import PostgresRepository
from mindbloom.models.habit import Habit
from mindbloom.models.journal import JournalEntry, MoodAverage, TagCount

logger = logging.getLogger(__name__)


class PostgresJournalRepository(PostgresRepository):
    table = "journal_entries"
    columns = (
        "id", "user_id", "date", "mood", "content", "prompt", "tags", "gratitude",
        "activities", "is_private", "created_at", "updated_at",
    )

    async def create(self, entry: JournalEntry) -> JournalEntry:
        row = await self.insert(entry, "create_journal_entry")
        return JournalEntry(**row)

    async def get(self, entry_id: str) -> Optional[JournalEntry]:
        row = await self.get_by_id(entry_id, "get_journal_entry")
        return JournalEntry(**row) if row else None

    async def update(self, entry: JournalEntry) -> JournalEntry:
        row = await self.fetch_one(
            "update_journal_entry",
            """
            UPDATE journal_entries
            SET mood = %s, content = %s, prompt = %s, tags = %s, gratitude = %s,
                activities = %s, is_private = %s, updated_at = now()
            WHERE id = %s
            RETURNING *
            """,
            (
                entry.mood, entry.content, entry.prompt, entry.tags, entry.gratitude,
                entry.activities, entry.is_private, entry.id,
            ),
        )
        return JournalEntry(**row)

    async def delete(self, entry_id: str) -> bool:
        return await self.delete_by_id(entry_id, "delete_journal_entry")

    async def list_for_user(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 10,
        skip: int = 0,
    ) -> Tuple[List[JournalEntry], int]:
        window = (user_id, start, start, end, end)
        where = """
            WHERE user_id = %s
              AND (%s::timestamptz IS NULL OR date >= %s::timestamptz)
              AND (%s::timestamptz IS NULL OR date <= %s::timestamptz)
        """
        rows = await self.fetch_all(
            "list_journal_entries",
            f"SELECT * FROM journal_entries {where} ORDER BY date DESC LIMIT %s OFFSET %s",
            window + (limit, skip),
        )
        total = await self.fetch_one(
            "count_journal_entries",
            f"SELECT COUNT(*) AS count FROM journal_entries {where}",
            window,
        )
        return [JournalEntry(**row) for row in rows], total["count"]

    async def list_dates(self, user_id: str) -> List[datetime]:
        rows = await self.fetch_all(
            "list_journal_dates",
            "SELECT date FROM journal_entries WHERE user_id = %s ORDER BY date",
            (user_id,),
        )
        return [row["date"] for row in rows]

    async def count_for_user(self, user_id: str) -> int:
        row = await self.fetch_one(
            "count_journal_entries",
            "SELECT COUNT(*) AS count FROM journal_entries WHERE user_id = %s",
            (user_id,),
        )
        return row["count"]

    async def mood_averages_by_day(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[MoodAverage]:
        rows = await self.fetch_all(
            "mood_averages_by_day",
            """
            SELECT (date AT TIME ZONE 'UTC')::date AS day,
                   AVG(mood)::float AS average_mood,
                   COUNT(*) AS count
            FROM journal_entries
            WHERE user_id = %s AND date >= %s AND date <= %s
            GROUP BY day
            ORDER BY day
            """,
            (user_id, start, end),
        )
        return [MoodAverage(**row) for row in rows]

    async def most_used_tags(self, user_id: str, limit: int = 10) -> List[TagCount]:
        rows = await self.fetch_all(
            "most_used_tags",
            """
            SELECT tag, COUNT(*) AS count
            FROM journal_entries, unnest(tags) AS tag
            WHERE user_id = %s
            GROUP BY tag
            ORDER BY count DESC, tag
            LIMIT %s
            """,
            (user_id, limit),
        )
        return [TagCount(**row) for row in rows]


class PostgresHabitRepository(PostgresRepository):
    table = "habits"
    columns = (
        "id", "user_id", "name", "description", "streak", "last_completed",
        "created_at", "updated_at", "version",
    )

    async def create(self, habit: Habit) -> Habit:
        row = await self.insert(habit, "create_habit")
        return Habit(**row)

    async def get(self, habit_id: str) -> Optional[Habit]:
        row = await self.get_by_id(habit_id, "get_habit")
        return Habit(**row) if row else None

    async def list_for_user(self, user_id: str) -> List[Habit]:
        rows = await self.fetch_all(
            "list_habits",
            "SELECT * FROM habits WHERE user_id = %s ORDER BY created_at",
            (user_id,),
        )
        return [Habit(**row) for row in rows]

    async def update(self, habit: Habit) -> Habit:
        row = await self.versioned_update(habit, "Habit", "update_habit")
        return Habit(**row)

    async def delete(self, habit_id: str) -> bool:
        return await self.delete_by_id(habit_id, "delete_habit")
