"""
Habit Tracking

Habits keep their own calendar-day streak, advanced with the same rule as
daily check-ins (see streak_system.next_streak_value).
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from mindbloom.db.repositories import HabitRepository
from mindbloom.exceptions import RecordNotFoundError, ValidationError
from mindbloom.gamification.streak_system import next_streak_value
from mindbloom.models.habit import Habit
from mindbloom.utils.datetime_helpers import now_utc, to_day

logger = logging.getLogger(__name__)


class HabitCompletion(BaseModel):
    """Outcome of marking a habit done"""
    habit: Habit
    previous_streak: int
    is_new_day: bool


class HabitTracker:
    """Per-user habits with calendar-day streaks"""

    def __init__(self, habits: HabitRepository, clock=now_utc):
        self.habits = habits
        self.clock = clock

    async def create_habit(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
    ) -> Habit:
        if not name or not name.strip():
            raise ValidationError(
                message="Habit name is required",
                field="name",
                value=name,
                user_id=user_id,
                operation="create_habit",
            )

        habit = await self.habits.create(
            Habit(user_id=user_id, name=name.strip(), description=description)
        )
        logger.info(f"User {user_id} created habit '{habit.name}'")
        return habit

    async def list_habits(self, user_id: str) -> List[Habit]:
        return await self.habits.list_for_user(user_id)

    async def get_habit(self, user_id: str, habit_id: str) -> Habit:
        habit = await self.habits.get(habit_id)
        if habit is None or habit.user_id != user_id:
            raise RecordNotFoundError(
                message=f"Habit {habit_id} not found",
                record_type="Habit",
                record_id=habit_id,
                user_id=user_id,
            )
        return habit

    async def complete_today(
        self,
        user_id: str,
        habit_id: str,
        now: Optional[datetime] = None,
    ) -> HabitCompletion:
        """
        Mark a habit done for today

        - Same day: streak unchanged, is_new_day False
        - Completed yesterday: +1
        - Otherwise: restart at 1
        """
        now = now or self.clock()
        habit = await self.get_habit(user_id, habit_id)

        previous = habit.streak
        last_day = to_day(habit.last_completed) if habit.last_completed else None
        today = to_day(now)
        is_new_day = last_day is None or last_day < today

        if not is_new_day:
            logger.debug(f"Habit {habit_id} already completed today")
            return HabitCompletion(habit=habit, previous_streak=previous, is_new_day=False)

        habit.streak = next_streak_value(previous, last_day, today)
        habit.last_completed = now
        habit = await self.habits.update(habit)

        logger.info(f"User {user_id} completed habit '{habit.name}': streak {previous} → {habit.streak}")
        return HabitCompletion(habit=habit, previous_streak=previous, is_new_day=True)

    async def delete_habit(self, user_id: str, habit_id: str) -> None:
        await self.get_habit(user_id, habit_id)
        await self.habits.delete(habit_id)
        logger.info(f"User {user_id} deleted habit {habit_id}")
