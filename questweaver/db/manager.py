"""
Quest state persistence.

The engine only ever calls ``save(state)`` and ``load()``; everything about
the storage medium stays in this module.
"""

import os
from typing import List, Optional

from sqlalchemy import create_engine, desc
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm import sessionmaker

from questweaver.db.schema import Base, QuestRecord, _utcnow
from questweaver.schemas.narrative import QuestState
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)


class QuestStateRepository:
    """
    Stores QuestState snapshots in SQLite.

    Attributes:
        db_path: Path to the SQLite database file
        engine: SQLAlchemy engine for database connections
        SessionLocal: Factory for creating database sessions
    """

    def __init__(self, db_path: str = "data/questweaver.db"):
        """
        Initialize the repository.

        Args:
            db_path: Path to SQLite database file (created if doesn't exist)
        """
        self.db_path = db_path

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

        logger.info(f"[DB] Quest store initialized at {db_path}")

    def save(self, state: QuestState):
        """Insert or replace the stored snapshot for ``state.quest_id``."""
        db: DBSession = self.SessionLocal()
        try:
            data = state.model_dump(mode="json")
            record = db.query(QuestRecord).filter(QuestRecord.id == state.quest_id).first()
            if record:
                record.quest_type = state.quest_type.value
                record.current_encounter = state.current_encounter
                record.completed = state.completed
                record.failed = state.failed
                record.state = data
                record.updated_at = _utcnow()
            else:
                db.add(
                    QuestRecord(
                        id=state.quest_id,
                        quest_type=state.quest_type.value,
                        current_encounter=state.current_encounter,
                        completed=state.completed,
                        failed=state.failed,
                        state=data,
                    )
                )
            db.commit()
            logger.debug(
                f"[DB] Saved quest {state.quest_id} at encounter {state.current_encounter}"
            )
        except Exception as e:
            db.rollback()
            logger.error(f"[DB] Failed to save quest {state.quest_id}: {e}")
            raise
        finally:
            db.close()

    def load(self, quest_id: Optional[str] = None) -> Optional[QuestState]:
        """
        Load a quest snapshot.

        Args:
            quest_id: Quest to load; the most recently saved quest when omitted

        Returns:
            The stored QuestState, or None if nothing matches
        """
        db: DBSession = self.SessionLocal()
        try:
            query = db.query(QuestRecord)
            if quest_id is not None:
                record = query.filter(QuestRecord.id == quest_id).first()
            else:
                record = query.order_by(desc(QuestRecord.updated_at)).first()
            if record is None:
                return None
            return QuestState.model_validate(record.state)
        finally:
            db.close()

    def list_quests(self) -> List[str]:
        db: DBSession = self.SessionLocal()
        try:
            records = db.query(QuestRecord).order_by(desc(QuestRecord.updated_at)).all()
            return [record.id for record in records]
        finally:
            db.close()

    def delete(self, quest_id: str) -> bool:
        db: DBSession = self.SessionLocal()
        try:
            record = db.query(QuestRecord).filter(QuestRecord.id == quest_id).first()
            if record is None:
                return False
            db.delete(record)
            db.commit()
            logger.info(f"[DB] Deleted quest {quest_id}")
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"[DB] Failed to delete quest {quest_id}: {e}")
            raise
        finally:
            db.close()
