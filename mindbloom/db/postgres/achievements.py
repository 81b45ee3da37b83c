"""Badge, achievement template and achievement persistence"""
import logging
from typing import List, Optional

from psycopg import sql

from mindbloom.db.postgres.base import PostgresRepository, to_column
from mindbloom.models.achievement import Achievement, AchievementTemplate, Badge

logger = logging.getLogger(__name__)


class PostgresBadgeRepository(PostgresRepository):
    table = "badges"
    columns = (
        "id", "title", "description", "category", "icon", "rarity",
        "xp_reward", "is_active", "created_at",
    )

    async def count(self) -> int:
        row = await self.fetch_one("count_badges", "SELECT COUNT(*) AS count FROM badges")
        return row["count"]

    async def insert_many(self, badges: List[Badge]) -> List[Badge]:
        return [Badge(**await self.insert(badge, "insert_badge")) for badge in badges]

    async def get(self, badge_id: str) -> Optional[Badge]:
        row = await self.get_by_id(badge_id, "get_badge")
        return Badge(**row) if row else None

    async def get_by_title(self, title: str) -> Optional[Badge]:
        row = await self.fetch_one("get_badge_by_title", "SELECT * FROM badges WHERE title = %s", (title,))
        return Badge(**row) if row else None

    async def list_all(self) -> List[Badge]:
        rows = await self.fetch_all("list_badges", "SELECT * FROM badges ORDER BY created_at")
        return [Badge(**row) for row in rows]


class PostgresTemplateRepository(PostgresRepository):
    table = "achievement_templates"
    columns = ("id", "title", "description", "category", "icon", "target", "xp_reward", "badge_title")

    async def count(self) -> int:
        row = await self.fetch_one(
            "count_templates", "SELECT COUNT(*) AS count FROM achievement_templates"
        )
        return row["count"]

    async def insert_many(self, templates: List[AchievementTemplate]) -> List[AchievementTemplate]:
        return [
            AchievementTemplate(**await self.insert(template, "insert_template"))
            for template in templates
        ]

    async def get(self, template_id: str) -> Optional[AchievementTemplate]:
        row = await self.get_by_id(template_id, "get_template")
        return AchievementTemplate(**row) if row else None

    async def list_all(self) -> List[AchievementTemplate]:
        rows = await self.fetch_all(
            "list_templates", "SELECT * FROM achievement_templates ORDER BY category, title"
        )
        return [AchievementTemplate(**row) for row in rows]

    async def update(self, template: AchievementTemplate) -> AchievementTemplate:
        row = await self.fetch_one(
            "update_template",
            """
            UPDATE achievement_templates
            SET title = %s, description = %s, category = %s, icon = %s,
                target = %s, xp_reward = %s, badge_title = %s
            WHERE id = %s
            RETURNING *
            """,
            (
                template.title, template.description, to_column(template.category), template.icon,
                template.target, template.xp_reward, template.badge_title, template.id,
            ),
        )
        return AchievementTemplate(**row)

    async def delete(self, template_id: str) -> bool:
        return await self.delete_by_id(template_id, "delete_template")


class PostgresAchievementRepository(PostgresRepository):
    table = "achievements"
    columns = (
        "id", "user_id", "title", "description", "category", "icon", "target",
        "current_value", "is_completed", "completed_date", "reward_paid", "badge_id", "xp_reward",
        "created_at", "updated_at", "version",
    )

    async def count_for_user(self, user_id: str) -> int:
        row = await self.fetch_one(
            "count_achievements",
            "SELECT COUNT(*) AS count FROM achievements WHERE user_id = %s",
            (user_id,),
        )
        return row["count"]

    async def insert_many(self, achievements: List[Achievement]) -> List[Achievement]:
        # UNIQUE (user_id, title) rejects the whole batch as DuplicateKeyError
        rows = await self.insert_rows(achievements, "insert_achievements")
        return [Achievement(**row) for row in rows]

    async def get(self, achievement_id: str) -> Optional[Achievement]:
        row = await self.get_by_id(achievement_id, "get_achievement")
        return Achievement(**row) if row else None

    async def list_for_user(
        self,
        user_id: str,
        category: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> List[Achievement]:
        conditions = [sql.SQL("user_id = %s")]
        params = [user_id]
        if category is not None:
            conditions.append(sql.SQL("category = %s"))
            params.append(to_column(category))
        if completed is not None:
            conditions.append(sql.SQL("is_completed = %s"))
            params.append(completed)

        query = sql.SQL("SELECT * FROM achievements WHERE {where} ORDER BY created_at").format(
            where=sql.SQL(" AND ").join(conditions)
        )
        rows = await self.fetch_all("list_achievements", query, params)
        return [Achievement(**row) for row in rows]

    async def update(self, achievement: Achievement) -> Achievement:
        row = await self.versioned_update(achievement, "Achievement", "update_achievement")
        return Achievement(**row)
