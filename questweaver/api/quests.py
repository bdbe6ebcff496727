"""
Quest API endpoints.

Each quest gets its own TurnOrchestrator, kept in memory. Quest state is
persisted after every commit, so a quest that is not in memory (for
example after a restart) is resumed from the database on first use.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from questweaver.config import EngineConfig, settings
from questweaver.db.manager import QuestStateRepository
from questweaver.engine.errors import NoActiveQuestError, TurnInProgressError
from questweaver.engine.orchestrator import TurnOrchestrator, TurnResult
from questweaver.engine.transitions import QuestNarrativeReport, TransitionLogger
from questweaver.providers import create_provider
from questweaver.schemas.narrative import QuestState, QuestType
from questweaver.utils.logger import get_logger
from questweaver.utils.metrics import MetricsCollector

logger = get_logger(__name__)

router = APIRouter()

# Created on first use so importing the app has no side effects on disk
repository: Optional[QuestStateRepository] = None

# In-memory orchestrators, one per quest
orchestrators: Dict[str, TurnOrchestrator] = {}

metrics = MetricsCollector()


class QuestCreateRequest(BaseModel):
    """Request to start a new quest"""

    goal: str = Field(..., min_length=1, description="Quest goal in plain words")
    location: str = Field(..., min_length=1)
    total_encounters: int = Field(default=8, ge=1, le=50)
    quest_type: Optional[QuestType] = Field(
        default=None, description="Classified from the goal when omitted"
    )
    quest_id: Optional[str] = None


class TurnRequest(BaseModel):
    """The player's action for one turn"""

    action: str = ""


def get_repository() -> QuestStateRepository:
    global repository
    if repository is None:
        repository = QuestStateRepository(settings.database_path)
    return repository


def build_orchestrator() -> TurnOrchestrator:
    provider = create_provider(settings)
    return TurnOrchestrator(
        generator=provider,
        encounter_source=provider,
        config=EngineConfig.from_settings(settings),
        repository=get_repository(),
        transition_logger=TransitionLogger(settings.transition_log_dir),
        metrics=metrics,
    )


def get_orchestrator(quest_id: str) -> TurnOrchestrator:
    """Find the quest's orchestrator, resuming it from the database if needed."""
    orchestrator = orchestrators.get(quest_id)
    if orchestrator is not None:
        return orchestrator

    orchestrator = build_orchestrator()
    if orchestrator.resume(quest_id) is None:
        logger.warning(f"[API] Quest not found: {quest_id}")
        raise HTTPException(status_code=404, detail=f"Quest {quest_id} not found")

    orchestrators[quest_id] = orchestrator
    return orchestrator


@router.post("", response_model=QuestState)
async def create_quest(request: QuestCreateRequest):
    """
    Start a new quest.

    Returns:
        The initial quest state
    """
    orchestrator = build_orchestrator()
    state = orchestrator.start_quest(
        goal=request.goal,
        location=request.location,
        total_encounters=request.total_encounters,
        quest_type=request.quest_type,
        quest_id=request.quest_id,
    )
    orchestrators[state.quest_id] = orchestrator
    logger.info(f"[API] Created quest {state.quest_id}")
    return state


@router.get("/metrics")
async def get_metrics() -> Dict[str, Any]:
    """Aggregated reports of finished quests"""
    return metrics.get_summary()


@router.post("/{quest_id}/turns", response_model=TurnResult)
async def play_turn(quest_id: str, request: TurnRequest):
    """
    Play one turn.

    Raises:
        HTTPException 404: Quest not found
        HTTPException 409: A turn for this quest is still running
    """
    orchestrator = get_orchestrator(quest_id)
    try:
        return await orchestrator.play_turn(request.action)
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except NoActiveQuestError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{quest_id}", response_model=QuestState)
async def get_quest(quest_id: str):
    return get_orchestrator(quest_id).snapshot()


@router.post("/{quest_id}/complete-objective", response_model=QuestState)
async def complete_objective(quest_id: str):
    """Mark the objective of a code-controlled quest as achieved."""
    orchestrator = get_orchestrator(quest_id)
    try:
        return orchestrator.mark_objective_completed()
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{quest_id}/report", response_model=QuestNarrativeReport)
async def get_report(quest_id: str):
    """Narrative report for the quest so far"""
    orchestrator = get_orchestrator(quest_id)
    return orchestrator.transitions.build_report(orchestrator.snapshot())


@router.delete("/{quest_id}", response_model=QuestNarrativeReport)
async def end_quest(quest_id: str):
    """End the quest, returning its final report and removing the stored state."""
    orchestrator = get_orchestrator(quest_id)
    try:
        report = orchestrator.end_quest()
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    orchestrators.pop(quest_id, None)
    get_repository().delete(quest_id)
    logger.info(f"[API] Ended quest {quest_id}: {report.summary}")
    return report
