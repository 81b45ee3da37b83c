"""Global test fixtures and utilities for mindbloom tests"""
import pytest
from datetime import datetime, timedelta

from mindbloom.db.memory_store import InMemoryStore
from mindbloom.gamification.achievement_system import AchievementTracker
from mindbloom.gamification.challenges import ChallengeTracker
from mindbloom.gamification.habits import HabitTracker
from mindbloom.gamification.xp_system import XPLedger
from mindbloom.models.user import User
from mindbloom.services.container import ServiceContainer
from mindbloom.services.journal_service import JournalService
from mindbloom.utils.datetime_helpers import UTC


class FakeClock:
    """Controllable replacement for now_utc()"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, hours: int = 0) -> datetime:
        self.now = self.now + timedelta(days=days, hours=hours)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


# ============================================================================
# Clock & Store Fixtures
# ============================================================================

@pytest.fixture
def clock():
    """Clock fixed at 2024-03-10 12:00 UTC"""
    return FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def store():
    """Fresh in-memory store per test"""
    return InMemoryStore()


@pytest.fixture
def repositories(store):
    return store.repositories()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def ledger(store, clock):
    return XPLedger(store.users, store.xp_logs, clock=clock)


@pytest.fixture
def achievement_tracker(store, ledger, clock):
    return AchievementTracker(
        achievements=store.achievements,
        badges=store.badges,
        templates=store.templates,
        users=store.users,
        ledger=ledger,
        admin_user_ids=["admin-1"],
        clock=clock,
    )


@pytest.fixture
def challenge_tracker(store, clock):
    return ChallengeTracker(store.challenges, clock=clock)


@pytest.fixture
def habit_tracker(store, clock):
    return HabitTracker(store.habits, clock=clock)


@pytest.fixture
def journal_service(store, clock):
    return JournalService(store.journal, clock=clock)


@pytest.fixture
def container(repositories, clock):
    return ServiceContainer(repositories=repositories, clock=clock, admin_user_ids=["admin-1"])


@pytest.fixture
def gamification_service(container):
    return container.gamification_service


# ============================================================================
# User Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "user-1"


@pytest.fixture
async def user(store, test_user_id):
    """A stored user at level 1 with no XP"""
    return await store.users.create(User(id=test_user_id, username="alice", email="alice@example.com"))


@pytest.fixture
async def other_user(store):
    return await store.users.create(User(id="user-2", username="bobby", email="bob@example.com"))
