"""
JournalService - Journal Entries and Mood Analytics

Stores journal entries and answers the aggregate questions the app asks
about them (daily mood averages, most used tags, journaling streak).
XP and achievement side effects of writing an entry live in
GamificationService, not here.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mindbloom.db.repositories import JournalRepository
from mindbloom.exceptions import RecordNotFoundError, ValidationError
from mindbloom.gamification.streak_system import StreakCalculator
from mindbloom.models.journal import (
    JournalEntry,
    JournalEntryInput,
    JournalEntryUpdate,
    MoodAverage,
    StreakInfo,
    TagCount,
)
from mindbloom.utils.datetime_helpers import now_utc, to_utc

logger = logging.getLogger(__name__)


class JournalPage(BaseModel):
    """One page of journal entries"""
    entries: List[JournalEntry]
    total: int
    has_more: bool


def _to_validation_error(error: PydanticValidationError, user_id: str, operation: str) -> ValidationError:
    first = error.errors()[0] if error.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationError(
        message=first.get("msg", str(error)),
        field=field,
        value=first.get("input"),
        user_id=user_id,
        operation=operation,
    )


class JournalService:
    """
    Service for journal entries.

    Responsibilities:
    - Entry CRUD scoped to the owning user
    - Mood and tag analytics
    - Journaling streak
    """

    def __init__(self, journal: JournalRepository, clock=now_utc):
        self.journal = journal
        self.clock = clock
        self.streaks = StreakCalculator(journal, clock=clock)
        logger.debug("JournalService initialized")

    def validate_input(self, user_id: str, data: Dict[str, Any]) -> JournalEntryInput:
        """Validate raw entry fields (mood 1-10, non-empty content)"""
        try:
            return JournalEntryInput(**data)
        except PydanticValidationError as e:
            raise _to_validation_error(e, user_id, "create_entry") from e

    async def create_entry(self, user_id: str, data: JournalEntryInput) -> JournalEntry:
        if isinstance(data, dict):
            data = self.validate_input(user_id, data)

        entry = JournalEntry(
            user_id=user_id,
            date=to_utc(data.date) if data.date else self.clock(),
            **data.model_dump(exclude={"date"}),
        )
        entry = await self.journal.create(entry)
        logger.info(f"User {user_id} wrote journal entry {entry.id} (mood {entry.mood})")
        return entry

    async def list_entries(
        self,
        user_id: str,
        limit: int = 10,
        skip: int = 0,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> JournalPage:
        """Newest first, paginated"""
        if limit <= 0 or skip < 0:
            raise ValidationError(
                message="limit must be positive and skip non-negative",
                field="limit" if limit <= 0 else "skip",
                value=limit if limit <= 0 else skip,
                user_id=user_id,
                operation="list_entries",
            )

        entries, total = await self.journal.list_for_user(
            user_id,
            start=to_utc(start) if start else None,
            end=to_utc(end) if end else None,
            limit=limit,
            skip=skip,
        )
        return JournalPage(entries=entries, total=total, has_more=total > skip + len(entries))

    async def get_entry(self, user_id: str, entry_id: str) -> JournalEntry:
        entry = await self.journal.get(entry_id)
        if entry is None or entry.user_id != user_id:
            raise RecordNotFoundError(
                message=f"Journal entry {entry_id} not found",
                record_type="JournalEntry",
                record_id=entry_id,
                user_id=user_id,
            )
        return entry

    async def update_entry(
        self,
        user_id: str,
        entry_id: str,
        changes: Dict[str, Any],
    ) -> JournalEntry:
        """Partial update; omitted fields are left as stored"""
        try:
            update = JournalEntryUpdate(**changes)
        except PydanticValidationError as e:
            raise _to_validation_error(e, user_id, "update_entry") from e

        entry = await self.get_entry(user_id, entry_id)
        merged = entry.model_dump()
        merged.update(update.model_dump(exclude_none=True))

        try:
            # Re-run the create-time rules (trimmed content, cleaned lists)
            checked = JournalEntryInput(**{k: merged[k] for k in JournalEntryInput.model_fields if k != "date"})
        except PydanticValidationError as e:
            raise _to_validation_error(e, user_id, "update_entry") from e

        updated = entry.model_copy(update=checked.model_dump(exclude={"date"}))
        updated = await self.journal.update(updated)
        logger.info(f"User {user_id} updated journal entry {entry_id}")
        return updated

    async def delete_entry(self, user_id: str, entry_id: str) -> None:
        await self.get_entry(user_id, entry_id)
        await self.journal.delete(entry_id)
        logger.info(f"User {user_id} deleted journal entry {entry_id}")

    async def mood_averages_by_day(
        self,
        user_id: str,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> List[MoodAverage]:
        """Average mood per calendar day in [start, end], oldest first"""
        if start is None or end is None:
            raise ValidationError(
                message="Start date and end date are required",
                field="start" if start is None else "end",
                user_id=user_id,
                operation="mood_averages_by_day",
            )
        if to_utc(end) < to_utc(start):
            raise ValidationError(
                message="End date must not be before start date",
                field="end",
                value=end.isoformat(),
                user_id=user_id,
                operation="mood_averages_by_day",
            )
        return await self.journal.mood_averages_by_day(user_id, to_utc(start), to_utc(end))

    async def most_used_tags(self, user_id: str, limit: int = 10) -> List[TagCount]:
        return await self.journal.most_used_tags(user_id, limit=limit)

    async def streak_info(self, user_id: str) -> StreakInfo:
        return await self.streaks.get_streak_info(user_id)

    async def count_entries(self, user_id: str) -> int:
        return await self.journal.count_for_user(user_id)
