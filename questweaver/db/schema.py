"""
Database schema definitions using SQLAlchemy.

Quest state snapshots are stored as JSON, one row per quest, in a single
SQLite database file.
"""

# mypy: ignore-errors

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()  # type: ignore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestRecord(Base):
    """
    Quest table storing the latest committed QuestState of each quest.

    Attributes:
        id: Quest identifier
        quest_type: Quest type value, for listing without decoding the state
        current_encounter: Encounter counter at the time of the save
        completed: Whether the quest was completed
        failed: Whether the quest failed
        state: Complete QuestState as JSON
        created_at: Timestamp of the first save
        updated_at: Timestamp of the latest save
    """

    __tablename__ = "quests"

    id = Column(String, primary_key=True)
    quest_type = Column(String, nullable=False)
    current_encounter = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    failed = Column(Boolean, nullable=False, default=False)
    state = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<QuestRecord(id='{self.id}', encounter={self.current_encounter})>"
