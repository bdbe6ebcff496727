"""
Database package for QuestWeaver.

This package provides SQLite-based persistence for quest state snapshots.
"""

from .manager import QuestStateRepository

__all__ = ["QuestStateRepository"]
