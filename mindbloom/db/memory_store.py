"""
In-memory store

Dict-backed implementation of every repository in mindbloom.db.repositories.
Used by the test suite and by local runs with USE_IN_MEMORY_STORE=true.
Nothing is persisted across processes.

Entities are copied on the way in and on the way out, so callers only ever
change stored state through create/update/delete, exactly as with a real
database.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel

from mindbloom.db.repositories import Repositories
from mindbloom.exceptions import ConcurrentModificationError, DuplicateKeyError
from mindbloom.models.achievement import Achievement, AchievementTemplate, Badge
from mindbloom.models.challenge import Challenge
from mindbloom.models.habit import Habit
from mindbloom.models.journal import JournalEntry, MoodAverage, TagCount
from mindbloom.models.user import User
from mindbloom.models.xp_log import XPLog
from mindbloom.utils.datetime_helpers import now_utc, to_day

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _copy(model: M) -> M:
    return model.model_copy(deep=True)


def _check_and_bump(stored: Optional[M], incoming: M, record_type: str) -> M:
    """Apply the optimistic version check shared by all mutable aggregates"""
    if stored is None or stored.version != incoming.version:
        raise ConcurrentModificationError(
            message=f"{record_type} {incoming.id} was modified concurrently",
            record_type=record_type,
            record_id=incoming.id,
            expected_version=incoming.version,
        )
    updated = incoming.model_copy(deep=True, update={"version": incoming.version + 1})
    if hasattr(updated, "updated_at"):
        updated.updated_at = now_utc()
    return updated


class InMemoryUserRepository:
    def __init__(self):
        self._users: Dict[str, User] = {}

    async def create(self, user: User) -> User:
        for existing in self._users.values():
            if existing.username == user.username or existing.email == user.email:
                raise DuplicateKeyError(
                    message=f"User {user.username} already exists",
                    key="username" if existing.username == user.username else "email",
                )
        self._users[user.id] = _copy(user)
        return _copy(user)

    async def get(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return _copy(user) if user else None

    async def find_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        for user in self._users.values():
            if user.username == username or user.email == email:
                return _copy(user)
        return None

    async def update(self, user: User) -> User:
        updated = _check_and_bump(self._users.get(user.id), user, "User")
        self._users[user.id] = updated
        return _copy(updated)


class InMemoryXPLogRepository:
    def __init__(self):
        self._logs: List[XPLog] = []

    async def append(self, log: XPLog) -> XPLog:
        if any(existing.id == log.id for existing in self._logs):
            raise DuplicateKeyError(message=f"XP log entry {log.id} already exists", key="id")
        self._logs.append(_copy(log))
        return _copy(log)

    async def list_for_user(
        self, user_id: str, since: Optional[datetime] = None, limit: int = 50
    ) -> List[XPLog]:
        logs = [
            log for log in self._logs
            if log.user_id == user_id and (since is None or log.created_at >= since)
        ]
        logs.sort(key=lambda log: log.created_at, reverse=True)
        return [_copy(log) for log in logs[:limit]]


class InMemoryBadgeRepository:
    def __init__(self):
        self._badges: Dict[str, Badge] = {}

    async def count(self) -> int:
        return len(self._badges)

    async def insert_many(self, badges: List[Badge]) -> List[Badge]:
        for badge in badges:
            self._badges[badge.id] = _copy(badge)
        return [_copy(b) for b in badges]

    async def get(self, badge_id: str) -> Optional[Badge]:
        badge = self._badges.get(badge_id)
        return _copy(badge) if badge else None

    async def get_by_title(self, title: str) -> Optional[Badge]:
        for badge in self._badges.values():
            if badge.title == title:
                return _copy(badge)
        return None

    async def list_all(self) -> List[Badge]:
        return [_copy(b) for b in self._badges.values()]


class InMemoryTemplateRepository:
    def __init__(self):
        self._templates: Dict[str, AchievementTemplate] = {}

    async def count(self) -> int:
        return len(self._templates)

    async def insert_many(self, templates: List[AchievementTemplate]) -> List[AchievementTemplate]:
        for template in templates:
            self._templates[template.id] = _copy(template)
        return [_copy(t) for t in templates]

    async def get(self, template_id: str) -> Optional[AchievementTemplate]:
        template = self._templates.get(template_id)
        return _copy(template) if template else None

    async def list_all(self) -> List[AchievementTemplate]:
        return [_copy(t) for t in self._templates.values()]

    async def update(self, template: AchievementTemplate) -> AchievementTemplate:
        self._templates[template.id] = _copy(template)
        return _copy(template)

    async def delete(self, template_id: str) -> bool:
        return self._templates.pop(template_id, None) is not None


class InMemoryAchievementRepository:
    def __init__(self):
        self._achievements: Dict[str, Achievement] = {}

    async def count_for_user(self, user_id: str) -> int:
        return sum(1 for a in self._achievements.values() if a.user_id == user_id)

    async def insert_many(self, achievements: List[Achievement]) -> List[Achievement]:
        # (user_id, title) is unique; nothing is inserted when any pair clashes
        taken = {(a.user_id, a.title) for a in self._achievements.values()}
        for achievement in achievements:
            key = (achievement.user_id, achievement.title)
            if key in taken:
                raise DuplicateKeyError(
                    message=f"Achievement '{achievement.title}' already exists for user {achievement.user_id}",
                    key="user_id,title",
                )
            taken.add(key)
        for achievement in achievements:
            self._achievements[achievement.id] = _copy(achievement)
        return [_copy(a) for a in achievements]

    async def get(self, achievement_id: str) -> Optional[Achievement]:
        achievement = self._achievements.get(achievement_id)
        return _copy(achievement) if achievement else None

    async def list_for_user(
        self,
        user_id: str,
        category: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> List[Achievement]:
        return [
            _copy(a) for a in self._achievements.values()
            if a.user_id == user_id
            and (category is None or a.category == category)
            and (completed is None or a.is_completed == completed)
        ]

    async def update(self, achievement: Achievement) -> Achievement:
        updated = _check_and_bump(
            self._achievements.get(achievement.id), achievement, "Achievement"
        )
        self._achievements[achievement.id] = updated
        return _copy(updated)


class InMemoryChallengeRepository:
    def __init__(self):
        self._challenges: Dict[str, Challenge] = {}

    def _check_join_code(self, challenge: Challenge) -> None:
        if not challenge.join_code:
            return
        for existing in self._challenges.values():
            if existing.id != challenge.id and existing.join_code == challenge.join_code:
                raise DuplicateKeyError(
                    message=f"Join code {challenge.join_code} already in use",
                    key="join_code",
                )

    async def create(self, challenge: Challenge) -> Challenge:
        self._check_join_code(challenge)
        self._challenges[challenge.id] = _copy(challenge)
        return _copy(challenge)

    async def get(self, challenge_id: str) -> Optional[Challenge]:
        challenge = self._challenges.get(challenge_id)
        return _copy(challenge) if challenge else None

    async def get_by_join_code(self, join_code: str) -> Optional[Challenge]:
        for challenge in self._challenges.values():
            if challenge.join_code == join_code:
                return _copy(challenge)
        return None

    async def update(self, challenge: Challenge) -> Challenge:
        self._check_join_code(challenge)
        updated = _check_and_bump(self._challenges.get(challenge.id), challenge, "Challenge")
        self._challenges[challenge.id] = updated
        return _copy(updated)

    async def delete(self, challenge_id: str) -> bool:
        return self._challenges.pop(challenge_id, None) is not None

    async def list_public_active(
        self,
        now: datetime,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 10,
        skip: int = 0,
    ) -> Tuple[List[Challenge], int]:
        needle = search.lower() if search else None
        challenges = [
            c for c in self._challenges.values()
            if not c.is_private
            and c.is_active
            and c.end_date >= now
            and (category is None or c.category == category)
            and (needle is None or needle in c.title.lower() or needle in c.description.lower())
        ]
        challenges.sort(key=lambda c: c.start_date)
        return [_copy(c) for c in challenges[skip:skip + limit]], len(challenges)

    async def list_for_user(self, user_id: str) -> List[Challenge]:
        return [
            _copy(c) for c in self._challenges.values()
            if c.creator_id == user_id or c.get_participant(user_id) is not None
        ]

    async def list_invited(self, user_id: str) -> List[Challenge]:
        challenges = [c for c in self._challenges.values() if user_id in c.invited_user_ids]
        challenges.sort(key=lambda c: c.start_date)
        return [_copy(c) for c in challenges]


class InMemoryJournalRepository:
    def __init__(self):
        self._entries: Dict[str, JournalEntry] = {}

    async def create(self, entry: JournalEntry) -> JournalEntry:
        self._entries[entry.id] = _copy(entry)
        return _copy(entry)

    async def get(self, entry_id: str) -> Optional[JournalEntry]:
        entry = self._entries.get(entry_id)
        return _copy(entry) if entry else None

    async def update(self, entry: JournalEntry) -> JournalEntry:
        entry = entry.model_copy(deep=True, update={"updated_at": now_utc()})
        self._entries[entry.id] = entry
        return _copy(entry)

    async def delete(self, entry_id: str) -> bool:
        return self._entries.pop(entry_id, None) is not None

    def _for_user(
        self, user_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[JournalEntry]:
        return [
            e for e in self._entries.values()
            if e.user_id == user_id
            and (start is None or e.date >= start)
            and (end is None or e.date <= end)
        ]

    async def list_for_user(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 10,
        skip: int = 0,
    ) -> Tuple[List[JournalEntry], int]:
        entries = sorted(self._for_user(user_id, start, end), key=lambda e: e.date, reverse=True)
        return [_copy(e) for e in entries[skip:skip + limit]], len(entries)

    async def list_dates(self, user_id: str) -> List[datetime]:
        return sorted(e.date for e in self._for_user(user_id))

    async def count_for_user(self, user_id: str) -> int:
        return len(self._for_user(user_id))

    async def mood_averages_by_day(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[MoodAverage]:
        by_day = defaultdict(list)
        for entry in self._for_user(user_id, start, end):
            by_day[to_day(entry.date)].append(entry.mood)
        return [
            MoodAverage(day=day, average_mood=sum(moods) / len(moods), count=len(moods))
            for day, moods in sorted(by_day.items())
        ]

    async def most_used_tags(self, user_id: str, limit: int = 10) -> List[TagCount]:
        counts = Counter(tag for entry in self._for_user(user_id) for tag in entry.tags)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [TagCount(tag=tag, count=count) for tag, count in ranked[:limit]]


class InMemoryHabitRepository:
    def __init__(self):
        self._habits: Dict[str, Habit] = {}

    async def create(self, habit: Habit) -> Habit:
        self._habits[habit.id] = _copy(habit)
        return _copy(habit)

    async def get(self, habit_id: str) -> Optional[Habit]:
        habit = self._habits.get(habit_id)
        return _copy(habit) if habit else None

    async def list_for_user(self, user_id: str) -> List[Habit]:
        habits = [h for h in self._habits.values() if h.user_id == user_id]
        habits.sort(key=lambda h: h.created_at)
        return [_copy(h) for h in habits]

    async def update(self, habit: Habit) -> Habit:
        updated = _check_and_bump(self._habits.get(habit.id), habit, "Habit")
        self._habits[habit.id] = updated
        return _copy(updated)

    async def delete(self, habit_id: str) -> bool:
        return self._habits.pop(habit_id, None) is not None


class InMemoryStore:
    """In-memory backing for every repository (not persisted)"""

    def __init__(self):
        self.users = InMemoryUserRepository()
        self.xp_logs = InMemoryXPLogRepository()
        self.badges = InMemoryBadgeRepository()
        self.templates = InMemoryTemplateRepository()
        self.achievements = InMemoryAchievementRepository()
        self.challenges = InMemoryChallengeRepository()
        self.journal = InMemoryJournalRepository()
        self.habits = InMemoryHabitRepository()
        logger.warning("InMemoryStore initialized - data is NOT persisted")

    def repositories(self) -> Repositories:
        return Repositories(
            users=self.users,
            xp_logs=self.xp_logs,
            badges=self.badges,
            templates=self.templates,
            achievements=self.achievements,
            challenges=self.challenges,
            journal=self.journal,
            habits=self.habits,
        )
