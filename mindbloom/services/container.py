"""
Service Container - Dependency Injection Container

Simple DI container for managing service instances and their dependencies.
Uses lazy loading to only instantiate services when first accessed.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional
import logging

from mindbloom.config import ADMIN_USER_IDS
from mindbloom.db.repositories import Repositories
from mindbloom.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    Repositories (in-memory or PostgreSQL) and the clock are injected.
    """

    # Infrastructure dependencies (injected)
    repositories: Repositories
    clock: Callable = now_utc
    admin_user_ids: List[str] = field(default_factory=lambda: list(ADMIN_USER_IDS))

    # Services (lazy-loaded via properties)
    _ledger: Optional[object] = field(default=None, init=False, repr=False)
    _achievement_tracker: Optional[object] = field(default=None, init=False, repr=False)
    _challenge_tracker: Optional[object] = field(default=None, init=False, repr=False)
    _habit_tracker: Optional[object] = field(default=None, init=False, repr=False)
    _journal_service: Optional[object] = field(default=None, init=False, repr=False)
    _gamification_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def ledger(self):
        """Get XPLedger instance (lazy-loaded)"""
        if self._ledger is None:
            from mindbloom.gamification.xp_system import XPLedger
            self._ledger = XPLedger(
                self.repositories.users, self.repositories.xp_logs, clock=self.clock
            )
            logger.debug("XPLedger instantiated")
        return self._ledger

    @property
    def achievement_tracker(self):
        """Get AchievementTracker instance (lazy-loaded)"""
        if self._achievement_tracker is None:
            from mindbloom.gamification.achievement_system import AchievementTracker
            self._achievement_tracker = AchievementTracker(
                achievements=self.repositories.achievements,
                badges=self.repositories.badges,
                templates=self.repositories.templates,
                users=self.repositories.users,
                ledger=self.ledger,
                admin_user_ids=self.admin_user_ids,
                clock=self.clock,
            )
            logger.debug("AchievementTracker instantiated")
        return self._achievement_tracker

    @property
    def challenge_tracker(self):
        """Get ChallengeTracker instance (lazy-loaded)"""
        if self._challenge_tracker is None:
            from mindbloom.gamification.challenges import ChallengeTracker
            self._challenge_tracker = ChallengeTracker(self.repositories.challenges, clock=self.clock)
            logger.debug("ChallengeTracker instantiated")
        return self._challenge_tracker

    @property
    def habit_tracker(self):
        """Get HabitTracker instance (lazy-loaded)"""
        if self._habit_tracker is None:
            from mindbloom.gamification.habits import HabitTracker
            self._habit_tracker = HabitTracker(self.repositories.habits, clock=self.clock)
            logger.debug("HabitTracker instantiated")
        return self._habit_tracker

    @property
    def journal_service(self):
        """Get JournalService instance (lazy-loaded)"""
        if self._journal_service is None:
            from mindbloom.services.journal_service import JournalService
            self._journal_service = JournalService(self.repositories.journal, clock=self.clock)
            logger.debug("JournalService instantiated")
        return self._journal_service

    @property
    def gamification_service(self):
        """Get GamificationService instance (lazy-loaded)"""
        if self._gamification_service is None:
            from mindbloom.services.gamification_service import GamificationService
            self._gamification_service = GamificationService(
                users=self.repositories.users,
                ledger=self.ledger,
                achievements=self.achievement_tracker,
                challenges=self.challenge_tracker,
                habits=self.habit_tracker,
                journal=self.journal_service,
            )
            logger.debug("GamificationService instantiated")
        return self._gamification_service


# Global container instance (initialized by the API lifespan)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() before using services."
        )
    return _container


def init_container(repositories: Repositories, **kwargs) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once at startup after the persistence layer is ready.
    """
    global _container

    _container = ServiceContainer(repositories=repositories, **kwargs)

    logger.info("Service container initialized")
    return _container


def set_container(container: Optional[ServiceContainer]) -> None:
    """Install (or clear) the global container, e.g. one built by a test"""
    global _container
    _container = container
