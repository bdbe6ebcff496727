"""
Core engine components for the QuestWeaver narrative engine
"""

from .analyzer import ConsistencyAnalyzer
from .context import ContextAssembler, SpecialistSessions
from .errors import (
    NarrativeEngineError,
    NoActiveQuestError,
    StateCorruptionError,
    TurnInProgressError,
)
from .orchestrator import TurnOrchestrator, TurnResult, TurnStatus
from .state import NarrativeStateStore
from .transitions import QuestNarrativeReport, StateTransition, TransitionLogger
from .validator import ConsistencyValidator

__all__ = [
    "ConsistencyAnalyzer",
    "ConsistencyValidator",
    "ContextAssembler",
    "NarrativeEngineError",
    "NarrativeStateStore",
    "NoActiveQuestError",
    "QuestNarrativeReport",
    "SpecialistSessions",
    "StateCorruptionError",
    "StateTransition",
    "TransitionLogger",
    "TurnInProgressError",
    "TurnOrchestrator",
    "TurnResult",
    "TurnStatus",
]
