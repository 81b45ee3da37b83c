"""
GamificationService - Gamification Orchestration

Sequences the XP, streak, achievement and challenge side effects of every
qualifying user action. Each step is an explicit call here; nothing happens
implicitly when an entity is saved.

Concurrency:
- All work for one user runs under that user's KeyedLock, including the
  achievement endpoints that bypass the action table
- Every read-modify-write step is retried on transient errors (connection
  loss, timeouts, optimistic version conflicts) and re-reads its state
- An XP award carries an award id chosen before the first attempt; the
  ledger recognizes it on the user record, so a retry after a partial
  write never credits the points twice
- Plain inserts (new user, new journal entry, initial achievements) are
  not retried
"""

import logging
from uuid import uuid4
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from mindbloom.config import CHECK_IN_XP, HABIT_XP, JOURNAL_XP, TASK_BONUS_XP
from mindbloom.db.repositories import UserRepository
from mindbloom.exceptions import ConflictError, DuplicateKeyError, ValidationError
from mindbloom.gamification.achievement_system import (
    CHALLENGE_ACCEPTED,
    CHALLENGE_CONQUEROR,
    CONSISTENCY_CHAMPION,
    GRATITUDE_GURU,
    HABIT_BUILDER,
    JOURNALING_NOVICE,
    AchievementStats,
    AchievementTracker,
    ProgressResult,
)
from mindbloom.gamification.challenges import ChallengeTracker
from mindbloom.gamification.habits import HabitTracker
from mindbloom.gamification.xp_system import LevelInfo, XPAwardResult, XPLedger
from mindbloom.models.achievement import Achievement
from mindbloom.models.challenge import Challenge, ChallengeTask, Participant
from mindbloom.models.habit import Habit
from mindbloom.models.journal import JournalEntry, JournalEntryInput, StreakInfo
from mindbloom.models.user import User
from mindbloom.models.xp_log import XPAction
from mindbloom.resilience.retry import retry_with_backoff
from mindbloom.services.journal_service import JournalService
from mindbloom.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "avatar")


class GamificationResult(BaseModel):
    """
    Outcome of one user action

    xp_awarded/leveled_up/new_level summarize every XP award the action
    caused (including achievement rewards); the remaining fields carry the
    action's own payload and are None when not applicable.
    """
    action: str
    xp_awarded: int = 0
    leveled_up: bool = False
    new_level: Optional[int] = None
    achievements_completed: List[Achievement] = Field(default_factory=list)

    user: Optional[User] = None
    achievements: Optional[List[Achievement]] = None
    entry: Optional[JournalEntry] = None
    streak_info: Optional[StreakInfo] = None
    streak_days: Optional[int] = None
    is_new_day: Optional[bool] = None
    challenge: Optional[Challenge] = None
    participant: Optional[Participant] = None
    completed_challenge: Optional[bool] = None
    task: Optional[ChallengeTask] = None
    all_tasks_completed: Optional[bool] = None
    habit: Optional[Habit] = None


class UserStats(BaseModel):
    """Combined level and achievement summary"""
    level: LevelInfo
    achievements: AchievementStats
    journal_entries: int
    journal_streak: StreakInfo


class _Outcome:
    """Collects XP awards and completed achievements across the steps of one action"""

    def __init__(self, action: str):
        self.action = action
        self.awards: List[XPAwardResult] = []
        self.completed: List[Achievement] = []

    def add_award(self, award: Optional[XPAwardResult]) -> None:
        if award is not None:
            self.awards.append(award)

    def add_progress(self, results: List[ProgressResult]) -> None:
        for result in results:
            if result.completed_now:
                self.completed.append(result.achievement)
            self.add_award(result.xp_result)

    def result(self, **payload: Any) -> GamificationResult:
        return GamificationResult(
            action=self.action,
            xp_awarded=sum(a.xp_awarded for a in self.awards),
            leveled_up=any(a.leveled_up for a in self.awards),
            new_level=self.awards[-1].new_level if self.awards else None,
            achievements_completed=self.completed,
            **payload,
        )


class GamificationService:
    """
    Service for gamification features.

    Responsibilities:
    - Registration (user + initial achievements)
    - XP awards for journal entries, check-ins, habits and challenges
    - Achievement progress for the same actions
    - Challenge participation
    """

    def __init__(
        self,
        users: UserRepository,
        ledger: XPLedger,
        achievements: AchievementTracker,
        challenges: ChallengeTracker,
        habits: HabitTracker,
        journal: JournalService,
    ):
        self.users = users
        self.ledger = ledger
        self.achievements = achievements
        self.challenges = challenges
        self.habits = habits
        self.journal = journal
        self.locks = KeyedLock()
        logger.debug("GamificationService initialized")

    async def _step(self, func, *args, **kwargs):
        return await retry_with_backoff(func, *args, **kwargs)

    async def _award(self, outcome: _Outcome, user_id: str, amount: int, action: XPAction) -> None:
        if amount > 0:
            award_id = str(uuid4())
            outcome.add_award(
                await self._step(self.ledger.add_xp, user_id, amount, action, award_id=award_id)
            )

    async def _advance(self, outcome: _Outcome, user_id: str, title: str, delta: int = 1) -> None:
        outcome.add_progress(await self._step(self.achievements.advance, user_id, title=title, delta=delta))

    # ==========================================
    # Users
    # ==========================================

    async def register_user(
        self,
        username: str,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> GamificationResult:
        """Create a user and their initial achievements"""
        if await self.users.find_by_username_or_email(username, email) is not None:
            raise ConflictError(
                message="User with this username or email already exists",
                conflict="user_exists",
                operation="register_user",
            )

        try:
            user = User(username=username, email=email, first_name=first_name, last_name=last_name)
        except PydanticValidationError as e:
            raise ValidationError(message=str(e), field="user", operation="register_user") from e

        try:
            user = await self.users.create(user)
        except DuplicateKeyError as e:
            raise ConflictError(
                message="User with this username or email already exists",
                conflict="user_exists",
                operation="register_user",
                cause=e,
            ) from e

        async with self.locks.hold(user.id):
            achievements = await self.achievements.initialize_achievements(user.id)

        logger.info(f"Registered user {user.username} ({user.id}) with {len(achievements)} achievements")
        return _Outcome("register_user").result(user=user, achievements=achievements)

    async def get_user(self, user_id: str) -> User:
        return await self.ledger.get_user(user_id)

    async def get_user_stats(self, user_id: str) -> UserStats:
        return UserStats(
            level=await self.ledger.get_level_info(user_id),
            achievements=await self.achievements.get_stats(user_id),
            journal_entries=await self.journal.count_entries(user_id),
            journal_streak=await self.journal.streak_info(user_id),
        )

    async def award_xp(self, user_id: str, amount: int, action: XPAction = XPAction.OTHER) -> GamificationResult:
        """Direct ledger award"""
        outcome = _Outcome("award_xp")
        async with self.locks.hold(user_id):
            outcome.add_award(await self._step(
                self.ledger.add_xp, user_id, amount, action, award_id=str(uuid4())
            ))
        return outcome.result()

    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> User:
        """
        Change first_name, last_name or avatar

        Empty values are ignored; other fields are not editable here.
        """
        editable = {
            key: value for key, value in changes.items()
            if key in PROFILE_FIELDS and value
        }

        async def apply() -> User:
            user = await self.ledger.get_user(user_id)
            try:
                updated = User(**{**user.model_dump(), **editable})
            except PydanticValidationError as e:
                raise ValidationError(
                    message=str(e), field="profile", user_id=user_id, operation="update_profile"
                ) from e
            return await self.users.update(updated)

        async with self.locks.hold(user_id):
            user = await self._step(apply)

        logger.info(f"User {user_id} updated profile fields: {sorted(editable)}")
        return user

    # ==========================================
    # Achievements
    # ==========================================

    async def initialize_achievements(self, user_id: str) -> List[Achievement]:
        """Create the user's achievements from the catalog (rejected when they already exist)"""
        async with self.locks.hold(user_id):
            await self.ledger.get_user(user_id)
            return await self.achievements.initialize_achievements(user_id)

    async def update_achievement_progress(
        self,
        user_id: str,
        achievement_id: str,
        delta: int,
    ) -> ProgressResult:
        """Manual progress on one achievement, paying its reward on completion"""
        async with self.locks.hold(user_id):
            return await self._step(self.achievements.update_progress, user_id, achievement_id, delta)

    # ==========================================
    # Journal & check-in
    # ==========================================

    async def record_journal_entry(
        self,
        user_id: str,
        data: Union[JournalEntryInput, Dict[str, Any]],
    ) -> GamificationResult:
        """
        Save a journal entry and apply its rewards

        Steps: save entry -> JOURNAL_XP -> "Journaling Novice" +1 ->
        "Gratitude Guru" + number of gratitude items -> streak info
        """
        if isinstance(data, dict):
            data = self.journal.validate_input(user_id, data)
        outcome = _Outcome("record_journal_entry")

        async with self.locks.hold(user_id):
            await self.ledger.get_user(user_id)
            entry = await self.journal.create_entry(user_id, data)

            await self._award(outcome, user_id, JOURNAL_XP, XPAction.JOURNAL)
            await self._advance(outcome, user_id, JOURNALING_NOVICE)
            if entry.gratitude:
                await self._advance(outcome, user_id, GRATITUDE_GURU, delta=len(entry.gratitude))

            streak_info = await self.journal.streak_info(user_id)

        return outcome.result(entry=entry, streak_info=streak_info)

    async def daily_check_in(self, user_id: str) -> GamificationResult:
        """Advance the daily streak; rewards only on the first check-in of a day"""
        outcome = _Outcome("daily_check_in")

        async with self.locks.hold(user_id):
            update = await self._step(self.ledger.update_streak, user_id)
            if update.is_new_day:
                await self._award(outcome, user_id, CHECK_IN_XP, XPAction.CHECK_IN)
                await self._advance(outcome, user_id, CONSISTENCY_CHAMPION)

        return outcome.result(
            user=await self.get_user(user_id),
            streak_days=update.streak_days,
            is_new_day=update.is_new_day,
        )

    # ==========================================
    # Challenges
    # ==========================================

    async def join_challenge(
        self,
        challenge_id: str,
        user_id: str,
        join_code: Optional[str] = None,
    ) -> GamificationResult:
        outcome = _Outcome("join_challenge")

        async with self.locks.hold(user_id):
            challenge = await self._step(self.challenges.add_participant, challenge_id, user_id, join_code)
            await self._advance(outcome, user_id, CHALLENGE_ACCEPTED)

        return outcome.result(challenge=challenge, participant=challenge.get_participant(user_id))

    async def join_challenge_by_code(self, join_code: str, user_id: str) -> GamificationResult:
        outcome = _Outcome("join_challenge")

        async with self.locks.hold(user_id):
            challenge = await self._step(self.challenges.join_by_code, join_code, user_id)
            await self._advance(outcome, user_id, CHALLENGE_ACCEPTED)

        return outcome.result(challenge=challenge, participant=challenge.get_participant(user_id))

    async def challenge_check_in(self, challenge_id: str, user_id: str) -> GamificationResult:
        """Daily challenge check-in; crossing the threshold pays the challenge reward"""
        outcome = _Outcome("challenge_check_in")

        async with self.locks.hold(user_id):
            result = await self._step(self.challenges.check_in, challenge_id, user_id)
            if result.completed_challenge:
                await self._award(outcome, user_id, result.challenge.xp_reward, XPAction.CHALLENGE)
                await self._advance(outcome, user_id, CHALLENGE_CONQUEROR)

        return outcome.result(
            challenge=result.challenge,
            participant=result.participant,
            completed_challenge=result.completed_challenge,
        )

    async def complete_challenge_task(
        self,
        challenge_id: str,
        user_id: str,
        task_id: str,
    ) -> GamificationResult:
        """Task points when newly completed; bonus once every task is done"""
        outcome = _Outcome("complete_challenge_task")

        async with self.locks.hold(user_id):
            result = await self._step(self.challenges.complete_task, challenge_id, user_id, task_id)
            if result.newly_completed:
                await self._award(outcome, user_id, result.points, XPAction.CHALLENGE)
                if result.all_tasks_completed:
                    await self._award(outcome, user_id, TASK_BONUS_XP, XPAction.CHALLENGE)
                    await self._advance(outcome, user_id, CHALLENGE_CONQUEROR)

        return outcome.result(
            challenge=result.challenge,
            participant=result.challenge.get_participant(user_id),
            task=result.task,
            all_tasks_completed=result.all_tasks_completed,
        )

    # ==========================================
    # Habits
    # ==========================================

    async def complete_habit(self, user_id: str, habit_id: str) -> GamificationResult:
        """HABIT_XP once per calendar day, plus "Habit Builder" progress"""
        outcome = _Outcome("complete_habit")

        async with self.locks.hold(user_id):
            completion = await self._step(self.habits.complete_today, user_id, habit_id)
            if completion.is_new_day:
                await self._award(outcome, user_id, HABIT_XP, XPAction.HABIT)
                await self._advance(outcome, user_id, HABIT_BUILDER)

        return outcome.result(
            habit=completion.habit,
            streak_days=completion.habit.streak,
            is_new_day=completion.is_new_day,
        )
