"""MindBloom gamification and progress engine"""

__version__ = "1.0.0"
