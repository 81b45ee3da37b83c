"""
Achievement System

Tracks per-user progress toward achievement targets and awards XP on
completion.

Features:
- Badge and achievement-template catalogs, seeded once when empty
- Bulk initialization of a user's achievements from the template catalog
- Progress updates that are capped at the target and become no-ops once
  the achievement is completed
- Explicit completion step: persist progress -> flip completion -> award XP
- Listing, stats and admin-only template management
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mindbloom.db.repositories import (
    AchievementRepository,
    BadgeRepository,
    TemplateRepository,
    UserRepository,
)
from mindbloom.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateKeyError,
    RecordNotFoundError,
    ValidationError,
)
from mindbloom.gamification.xp_system import XPAwardResult, XPLedger
from mindbloom.models.achievement import (
    Achievement,
    AchievementCategory,
    AchievementTemplate,
    Badge,
    BadgeRarity,
)
from mindbloom.models.xp_log import XPAction
from mindbloom.resilience.retry import retry_with_backoff
from mindbloom.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)


# ============================================
# Catalogs
# ============================================

DEFAULT_BADGES: List[Dict[str, Any]] = [
    {
        "title": "Early Bird",
        "description": "Earned for completing 5 morning check-ins before 8 AM",
        "category": AchievementCategory.HABITS,
        "rarity": BadgeRarity.COMMON,
        "xp_reward": 100,
    },
    {
        "title": "Week Warrior",
        "description": "Earned for maintaining a 7-day streak",
        "category": AchievementCategory.STREAK,
        "rarity": BadgeRarity.COMMON,
        "xp_reward": 150,
    },
    {
        "title": "Journaling Novice",
        "description": "Earned for writing 10 journal entries",
        "category": AchievementCategory.JOURNALING,
        "rarity": BadgeRarity.COMMON,
        "xp_reward": 100,
    },
    {
        "title": "Challenge Starter",
        "description": "Earned for completing your first challenge",
        "category": AchievementCategory.CHALLENGES,
        "rarity": BadgeRarity.COMMON,
        "xp_reward": 150,
    },
    {
        "title": "Mindfulness Master",
        "description": "Earned for completing 20 meditation sessions",
        "category": AchievementCategory.MINDFULNESS,
        "rarity": BadgeRarity.UNCOMMON,
        "xp_reward": 250,
    },
    {
        "title": "Gratitude Guru",
        "description": "Earned for recording 50 gratitude entries",
        "category": AchievementCategory.JOURNALING,
        "rarity": BadgeRarity.RARE,
        "xp_reward": 300,
    },
]

# Titles the orchestrator advances on user actions
CONSISTENCY_CHAMPION = "Consistency Champion"
GRATITUDE_GURU = "Gratitude Guru"
CHALLENGE_CONQUEROR = "Challenge Conqueror"
JOURNALING_NOVICE = "Journaling Novice"
CHALLENGE_ACCEPTED = "Challenge Accepted"
HABIT_BUILDER = "Habit Builder"

DEFAULT_ACHIEVEMENT_TEMPLATES: List[Dict[str, Any]] = [
    {
        "title": CONSISTENCY_CHAMPION,
        "description": "Complete daily check-ins for 30 consecutive days",
        "category": AchievementCategory.STREAK,
        "target": 30,
        "xp_reward": 500,
        "badge_title": "Week Warrior",
    },
    {
        "title": GRATITUDE_GURU,
        "description": "Record 50 gratitude entries in your journal",
        "category": AchievementCategory.JOURNALING,
        "target": 50,
        "xp_reward": 300,
        "badge_title": "Journaling Novice",
    },
    {
        "title": CHALLENGE_CONQUEROR,
        "description": "Complete 5 wellness challenges",
        "category": AchievementCategory.CHALLENGES,
        "target": 5,
        "xp_reward": 400,
        "badge_title": "Challenge Starter",
    },
    {
        "title": JOURNALING_NOVICE,
        "description": "Write 10 journal entries",
        "category": AchievementCategory.JOURNALING,
        "target": 10,
        "xp_reward": 100,
        "badge_title": "Journaling Novice",
    },
    {
        "title": CHALLENGE_ACCEPTED,
        "description": "Join your first wellness challenge",
        "category": AchievementCategory.CHALLENGES,
        "target": 1,
        "xp_reward": 100,
        "badge_title": None,
    },
    {
        "title": HABIT_BUILDER,
        "description": "Complete habits 21 times",
        "category": AchievementCategory.HABITS,
        "target": 21,
        "xp_reward": 200,
        "badge_title": None,
    },
]


class ProgressResult(BaseModel):
    """Outcome of a progress update"""
    achievement: Achievement
    completed_now: bool = False
    xp_result: Optional[XPAwardResult] = None


class CategoryStats(BaseModel):
    total: int
    completed: int
    percentage: float


class AchievementStats(BaseModel):
    """Achievement summary for a user"""
    total_achievements: int
    completed_achievements: int
    completion_percentage: float
    categories: Dict[str, CategoryStats]
    recently_completed: List[Achievement]


def _sort_for_listing(achievements: List[Achievement]) -> List[Achievement]:
    """Completed first, then by category, then oldest first"""
    return sorted(
        achievements,
        key=lambda a: (not a.is_completed, a.category.value, a.created_at),
    )


class AchievementTracker:
    """Per-user achievement progress against catalog targets"""

    def __init__(
        self,
        achievements: AchievementRepository,
        badges: BadgeRepository,
        templates: TemplateRepository,
        users: UserRepository,
        ledger: XPLedger,
        admin_user_ids: Optional[List[str]] = None,
        clock=now_utc,
    ):
        self.achievements = achievements
        self.badges = badges
        self.templates = templates
        self.users = users
        self.ledger = ledger
        self.admin_user_ids = set(admin_user_ids or [])
        self.clock = clock

    # ==========================================
    # Catalog seeding
    # ==========================================

    async def seed_default_badges(self) -> List[Badge]:
        """Insert the default badges only if the catalog is empty"""
        if await self.badges.count() > 0:
            return []

        badges = await self.badges.insert_many([Badge(**data) for data in DEFAULT_BADGES])
        logger.info(f"Seeded {len(badges)} default badges")
        return badges

    async def seed_default_templates(self) -> List[AchievementTemplate]:
        """Insert the default achievement templates only if the catalog is empty"""
        if await self.templates.count() > 0:
            return []

        templates = await self.templates.insert_many(
            [AchievementTemplate(**data) for data in DEFAULT_ACHIEVEMENT_TEMPLATES]
        )
        logger.info(f"Seeded {len(templates)} default achievement templates")
        return templates

    # ==========================================
    # Initialization
    # ==========================================

    async def initialize_achievements(self, user_id: str) -> List[Achievement]:
        """
        Create one achievement per catalog template for a user

        Raises:
            ConflictError: the user already owns achievements
        """
        if await self.achievements.count_for_user(user_id) > 0:
            raise ConflictError(
                message="User already has achievements initialized",
                conflict="achievements_initialized",
                user_id=user_id,
                operation="initialize_achievements",
            )

        await self.seed_default_templates()
        templates = await self.templates.list_all()

        created = []
        titles = set()
        for template in templates:
            if template.title in titles:
                logger.warning(f"Skipping duplicate achievement template title '{template.title}'")
                continue
            titles.add(template.title)
            badge_id = None
            if template.badge_title:
                badge = await self.badges.get_by_title(template.badge_title)
                badge_id = badge.id if badge else None

            created.append(Achievement(
                user_id=user_id,
                title=template.title,
                description=template.description,
                category=template.category,
                icon=template.icon,
                target=template.target,
                xp_reward=template.xp_reward,
                badge_id=badge_id,
            ))

        try:
            achievements = await self.achievements.insert_many(created)
        except DuplicateKeyError as e:
            raise ConflictError(
                message="User already has achievements initialized",
                conflict="achievements_initialized",
                user_id=user_id,
                operation="initialize_achievements",
                cause=e,
            ) from e
        logger.info(f"Initialized {len(achievements)} achievements for user {user_id}")
        return _sort_for_listing(achievements)

    # ==========================================
    # Progress
    # ==========================================

    async def get_achievement(self, user_id: str, achievement_id: str) -> Achievement:
        achievement = await self.achievements.get(achievement_id)
        if achievement is None or achievement.user_id != user_id:
            raise RecordNotFoundError(
                message=f"Achievement {achievement_id} not found",
                record_type="Achievement",
                record_id=achievement_id,
                user_id=user_id,
            )
        return achievement

    async def update_progress(
        self,
        user_id: str,
        achievement_id: str,
        delta: int,
    ) -> ProgressResult:
        """
        Add progress toward an achievement

        current_value never exceeds the target and never decreases. Reaching the
        target marks the achievement completed in the same write. Once completed
        and paid, further calls return it unchanged.

        Raises:
            ValidationError: delta is not a positive integer
            RecordNotFoundError: achievement missing or owned by someone else
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta <= 0:
            raise ValidationError(
                message="Progress delta must be a positive integer",
                field="delta",
                value=delta,
                user_id=user_id,
                operation="update_progress",
            )

        achievement = await self.get_achievement(user_id, achievement_id)
        if not achievement.is_completed:
            achievement.current_value = min(achievement.target, achievement.current_value + delta)
            if achievement.current_value >= achievement.target:
                achievement.is_completed = True
                achievement.completed_date = self.clock()
            achievement = await self.achievements.update(achievement)

            logger.debug(
                f"Achievement '{achievement.title}' for user {user_id}: "
                f"{achievement.current_value}/{achievement.target}"
            )

        return await self._check_completion(achievement)

    async def _check_completion(self, achievement: Achievement) -> ProgressResult:
        """
        Pay the reward of a completed achievement that has not been paid yet

        The award id is derived from the achievement, so paying again after a
        failure between the award and the reward_paid flag credits nothing
        twice. A completed, unpaid achievement is picked up again by the next
        update_progress or advance call.
        """
        if not achievement.is_completed or achievement.reward_paid:
            return ProgressResult(achievement=achievement)

        xp_result = None
        if achievement.xp_reward > 0:
            xp_result = await retry_with_backoff(
                self.ledger.add_xp,
                achievement.user_id,
                achievement.xp_reward,
                XPAction.ACHIEVEMENT,
                award_id=f"achievement:{achievement.id}",
            )

        achievement.reward_paid = True
        achievement = await self.achievements.update(achievement)

        logger.info(
            f"User {achievement.user_id} completed achievement '{achievement.title}' "
            f"+{achievement.xp_reward} XP"
        )
        return ProgressResult(achievement=achievement, completed_now=True, xp_result=xp_result)

    async def advance(
        self,
        user_id: str,
        title: Optional[str] = None,
        category: Optional[str] = None,
        delta: int = 1,
    ) -> List[ProgressResult]:
        """
        Progress every incomplete achievement of the user matching a title
        (or, with no title, a category)

        Completed achievements whose reward is still unpaid are included and
        paid without further progress.
        """
        candidates = [
            a for a in await self.achievements.list_for_user(user_id, category=category)
            if not a.is_completed or not a.reward_paid
        ]
        if title is not None:
            candidates = [a for a in candidates if a.title == title]

        results = []
        for achievement in candidates:
            results.append(await self.update_progress(user_id, achievement.id, delta))
        return results

    # ==========================================
    # Queries
    # ==========================================

    async def list_achievements(
        self,
        user_id: str,
        category: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> List[Achievement]:
        """All of a user's achievements, completed first then by category"""
        achievements = await self.achievements.list_for_user(
            user_id, category=category, completed=completed
        )
        return _sort_for_listing(achievements)

    async def get_completed(self, user_id: str, limit: Optional[int] = None) -> List[Achievement]:
        """Completed achievements, most recent completion first"""
        completed = await self.achievements.list_for_user(user_id, completed=True)
        completed.sort(key=lambda a: a.completed_date or a.updated_at, reverse=True)
        return completed[:limit] if limit is not None else completed

    async def get_in_progress(self, user_id: str) -> List[Achievement]:
        """Incomplete achievements, furthest along first"""
        in_progress = await self.achievements.list_for_user(user_id, completed=False)
        in_progress.sort(key=lambda a: a.current_value, reverse=True)
        return in_progress

    async def get_stats(self, user_id: str) -> AchievementStats:
        achievements = await self.achievements.list_for_user(user_id)
        total = len(achievements)
        completed = sum(1 for a in achievements if a.is_completed)

        grouped: Dict[str, List[Achievement]] = defaultdict(list)
        for achievement in achievements:
            grouped[achievement.category.value].append(achievement)

        categories = {}
        for category, items in sorted(grouped.items()):
            done = sum(1 for a in items if a.is_completed)
            categories[category] = CategoryStats(
                total=len(items),
                completed=done,
                percentage=done / len(items) * 100,
            )

        return AchievementStats(
            total_achievements=total,
            completed_achievements=completed,
            completion_percentage=completed / total * 100 if total else 0.0,
            categories=categories,
            recently_completed=await self.get_completed(user_id, limit=5),
        )

    # ==========================================
    # Template management (admin only)
    # ==========================================

    async def _require_admin(self, actor_id: str, operation: str) -> None:
        if actor_id in self.admin_user_ids:
            return
        actor = await self.users.get(actor_id)
        if actor is None or not actor.is_admin:
            raise AuthorizationError(
                message=f"User {actor_id} is not allowed to manage achievement templates",
                resource="achievement templates",
                user_id=actor_id,
                operation=operation,
            )

    async def list_templates(self) -> List[AchievementTemplate]:
        return await self.templates.list_all()

    async def create_template(self, actor_id: str, data: Dict[str, Any]) -> AchievementTemplate:
        await self._require_admin(actor_id, "create_template")
        try:
            template = AchievementTemplate(**data)
        except PydanticValidationError as e:
            raise ValidationError(
                message=str(e), field="template", user_id=actor_id, operation="create_template"
            ) from e

        [template] = await self.templates.insert_many([template])
        logger.info(f"Admin {actor_id} created achievement template '{template.title}'")
        return template

    async def update_template(
        self,
        actor_id: str,
        template_id: str,
        changes: Dict[str, Any],
    ) -> AchievementTemplate:
        await self._require_admin(actor_id, "update_template")
        template = await self.templates.get(template_id)
        if template is None:
            raise RecordNotFoundError(
                message=f"Achievement template {template_id} not found",
                record_type="AchievementTemplate",
                record_id=template_id,
            )

        merged = template.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None and k != "id"})
        try:
            updated = AchievementTemplate(**merged)
        except PydanticValidationError as e:
            raise ValidationError(
                message=str(e), field="template", user_id=actor_id, operation="update_template"
            ) from e

        return await self.templates.update(updated)

    async def delete_template(self, actor_id: str, template_id: str) -> None:
        await self._require_admin(actor_id, "delete_template")
        if not await self.templates.delete(template_id):
            raise RecordNotFoundError(
                message=f"Achievement template {template_id} not found",
                record_type="AchievementTemplate",
                record_id=template_id,
            )
        logger.info(f"Admin {actor_id} deleted achievement template {template_id}")
