"""
Service Layer Package

This package contains the business logic services that sit between the HTTP
layer (mindbloom.api) and the persistence layer (mindbloom.db).

Core Services:
- GamificationService: XP, streaks, achievements and challenges per user action
- JournalService: Journal entries and mood analytics
"""

from mindbloom.services.container import ServiceContainer, get_container, init_container, set_container

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
    "set_container",
]
