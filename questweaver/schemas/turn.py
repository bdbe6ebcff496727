"""
Turn schema definitions: what the narration generator returns and the
encounter details the orchestrator decides before asking for narration.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .narrative import CausalEvent, ThreadKind


class EncounterType(str, Enum):
    COMBAT = "combat"
    SOCIAL = "social"
    EXPLORATION = "exploration"
    PUZZLE = "puzzle"
    TRAP = "trap"
    STEALTH = "stealth"
    CHASE = "chase"
    FINAL = "final"


class Difficulty(str, Enum):
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    BOSS = "boss"


class EncounterDetails(BaseModel):
    """Encounter classification returned by the encounter source"""

    encounter_type: EncounterType = Field(..., description="Kind of story beat")
    difficulty: Difficulty = Field(default=Difficulty.NORMAL)


class Monster(BaseModel):
    name: str
    description: str = ""
    level: int = Field(default=1, ge=1)
    is_boss: bool = False


class NPCProfile(BaseModel):
    name: str
    occupation: str = ""
    description: str = ""


class QuestProgressUpdate(BaseModel):
    completed: bool = Field(default=False, description="Whether the quest goal was met")
    current_encounter: int = Field(..., description="Encounter number the generator saw")


class ThreadProposal(BaseModel):
    """A new narrative thread suggested by the generator"""

    text: str
    kind: ThreadKind = ThreadKind.CLUE
    priority: int = Field(default=5, ge=1, le=10)


class NPCUpdate(BaseModel):
    name: str
    relationship_delta: int = 0
    interaction: Optional[str] = None
    promise: Optional[str] = None
    secret: Optional[str] = None


class NarrativeUpdates(BaseModel):
    """State changes the generator claims the narration implies"""

    new_threads: List[ThreadProposal] = Field(default_factory=list)
    resolved_thread_ids: List[str] = Field(default_factory=list)
    cleared: List[str] = Field(default_factory=list)
    locked: List[str] = Field(default_factory=list)
    unlocked: List[str] = Field(default_factory=list)
    discovered: List[str] = Field(default_factory=list)
    destroyed: List[str] = Field(default_factory=list)
    new_threats: List[str] = Field(default_factory=list)
    removed_threats: List[str] = Field(default_factory=list)
    npc_updates: List[NPCUpdate] = Field(default_factory=list)
    tension_delta: Optional[int] = Field(
        None, description="Explicit tension change; omitted means follow the arc"
    )


class StructuredTurn(BaseModel):
    """One generated turn"""

    narration: str = Field(..., description="Second-person narration shown to the player")
    progress: Optional[QuestProgressUpdate] = Field(
        None, description="Quest progress as the generator understands it"
    )
    suggested_actions: List[str] = Field(
        default_factory=list, description="Short imperative action suggestions"
    )
    causal_event: Optional[CausalEvent] = Field(
        None, description="The cause -> event -> consequence link this turn adds"
    )
    narrative_updates: NarrativeUpdates = Field(default_factory=NarrativeUpdates)


class GenerationOptions(BaseModel):
    temperature: float = 0.7
    max_tokens: int = Field(default=200, description="Response token reservation")


class NarrationUpdate(BaseModel):
    """Partial narration text streamed before the final structured turn"""

    text: str
