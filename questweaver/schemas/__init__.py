"""
Data models for the QuestWeaver narrative engine
"""

from .consistency import (
    ConsistencyIssue,
    ConsistencyScore,
    IssueKind,
    ScoreBreakdown,
    Severity,
)
from .context import (
    AssembledContext,
    ContextTier,
    Specialist,
    StructuredContext,
    TokenBreakdown,
)
from .narrative import (
    CausalEvent,
    LocationState,
    NarrativeThread,
    NPCRelation,
    QuestStage,
    QuestState,
    QuestType,
    ThreadKind,
    stage_for_progress,
)
from .turn import (
    Difficulty,
    EncounterDetails,
    EncounterType,
    GenerationOptions,
    Monster,
    NarrationUpdate,
    NarrativeUpdates,
    NPCProfile,
    QuestProgressUpdate,
    StructuredTurn,
)
from .validation import (
    ValidationError,
    ValidationErrorKind,
    ValidationResult,
    ValidationWarning,
    ValidationWarningKind,
    parse_structured_turn,
)

__all__ = [
    # Narrative state
    "QuestState",
    "QuestType",
    "QuestStage",
    "NarrativeThread",
    "ThreadKind",
    "CausalEvent",
    "LocationState",
    "NPCRelation",
    "stage_for_progress",
    # Consistency
    "ConsistencyScore",
    "ConsistencyIssue",
    "IssueKind",
    "Severity",
    "ScoreBreakdown",
    # Context
    "AssembledContext",
    "ContextTier",
    "Specialist",
    "StructuredContext",
    "TokenBreakdown",
    # Turns
    "StructuredTurn",
    "QuestProgressUpdate",
    "NarrativeUpdates",
    "EncounterDetails",
    "EncounterType",
    "Difficulty",
    "Monster",
    "NPCProfile",
    "GenerationOptions",
    "NarrationUpdate",
    # Validation
    "ValidationResult",
    "ValidationError",
    "ValidationErrorKind",
    "ValidationWarning",
    "ValidationWarningKind",
    "parse_structured_turn",
]
