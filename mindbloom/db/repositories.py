"""
Persistence interfaces

Trackers and services receive these handles explicitly (see Repositories)
instead of resolving collections by name at runtime. Two implementations
exist: mindbloom.db.memory_store (tests, local runs) and
mindbloom.db.postgres (production).

Versioning contract for mutable aggregates (User, Achievement, Challenge,
Habit): update() succeeds only when the stored version equals
entity.version, stores the entity with version + 1 and returns it;
otherwise it raises ConcurrentModificationError.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from mindbloom.models.achievement import Achievement, AchievementTemplate, Badge
from mindbloom.models.challenge import Challenge
from mindbloom.models.habit import Habit
from mindbloom.models.journal import JournalEntry, MoodAverage, TagCount
from mindbloom.models.user import User
from mindbloom.models.xp_log import XPLog


class UserRepository(Protocol):
    async def create(self, user: User) -> User: ...
    async def get(self, user_id: str) -> Optional[User]: ...
    async def find_by_username_or_email(self, username: str, email: str) -> Optional[User]: ...
    async def update(self, user: User) -> User: ...


class XPLogRepository(Protocol):
    async def append(self, log: XPLog) -> XPLog: ...
    async def list_for_user(
        self, user_id: str, since: Optional[datetime] = None, limit: int = 50
    ) -> List[XPLog]: ...


class BadgeRepository(Protocol):
    async def count(self) -> int: ...
    async def insert_many(self, badges: List[Badge]) -> List[Badge]: ...
    async def get(self, badge_id: str) -> Optional[Badge]: ...
    async def get_by_title(self, title: str) -> Optional[Badge]: ...
    async def list_all(self) -> List[Badge]: ...


class TemplateRepository(Protocol):
    async def count(self) -> int: ...
    async def insert_many(self, templates: List[AchievementTemplate]) -> List[AchievementTemplate]: ...
    async def get(self, template_id: str) -> Optional[AchievementTemplate]: ...
    async def list_all(self) -> List[AchievementTemplate]: ...
    async def update(self, template: AchievementTemplate) -> AchievementTemplate: ...
    async def delete(self, template_id: str) -> bool: ...


class AchievementRepository(Protocol):
    async def count_for_user(self, user_id: str) -> int: ...
    async def insert_many(self, achievements: List[Achievement]) -> List[Achievement]: ...
    async def get(self, achievement_id: str) -> Optional[Achievement]: ...
    async def list_for_user(
        self,
        user_id: str,
        category: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> List[Achievement]: ...
    async def update(self, achievement: Achievement) -> Achievement: ...


class ChallengeRepository(Protocol):
    async def create(self, challenge: Challenge) -> Challenge: ...
    async def get(self, challenge_id: str) -> Optional[Challenge]: ...
    async def get_by_join_code(self, join_code: str) -> Optional[Challenge]: ...
    async def update(self, challenge: Challenge) -> Challenge: ...
    async def delete(self, challenge_id: str) -> bool: ...
    async def list_public_active(
        self,
        now: datetime,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 10,
        skip: int = 0,
    ) -> Tuple[List[Challenge], int]: ...
    async def list_for_user(self, user_id: str) -> List[Challenge]: ...
    async def list_invited(self, user_id: str) -> List[Challenge]: ...


class JournalRepository(Protocol):
    async def create(self, entry: JournalEntry) -> JournalEntry: ...
    async def get(self, entry_id: str) -> Optional[JournalEntry]: ...
    async def update(self, entry: JournalEntry) -> JournalEntry: ...
    async def delete(self, entry_id: str) -> bool: ...
    async def list_for_user(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 10,
        skip: int = 0,
    ) -> Tuple[List[JournalEntry], int]: ...
    async def list_dates(self, user_id: str) -> List[datetime]: ...
    async def count_for_user(self, user_id: str) -> int: ...
    async def mood_averages_by_day(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[MoodAverage]: ...
    async def most_used_tags(self, user_id: str, limit: int = 10) -> List[TagCount]: ...


class HabitRepository(Protocol):
    async def create(self, habit: Habit) -> Habit: ...
    async def get(self, habit_id: str) -> Optional[Habit]: ...
    async def list_for_user(self, user_id: str) -> List[Habit]: ...
    async def update(self, habit: Habit) -> Habit: ...
    async def delete(self, habit_id: str) -> bool: ...


@dataclass
class Repositories:
    """Bundle of repository handles injected into trackers and services"""
    users: UserRepository
    xp_logs: XPLogRepository
    badges: BadgeRepository
    templates: TemplateRepository
    achievements: AchievementRepository
    challenges: ChallengeRepository
    journal: JournalRepository
    habits: HabitRepository
