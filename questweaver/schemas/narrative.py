"""
Narrative state schema definitions.

These models are the canonical record of one quest's story so far: the
open narrative threads, the causal chain of events, what is known about
each location and how every NPC feels about the player. The store in
``questweaver.engine.state`` is the only writer.
"""

from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field


class QuestType(str, Enum):
    COMBAT = "combat"
    RETRIEVAL = "retrieval"
    ESCORT = "escort"
    INVESTIGATION = "investigation"
    RESCUE = "rescue"
    DIPLOMATIC = "diplomatic"


class QuestStage(str, Enum):
    INTRO = "intro"
    RISING = "rising"
    CLIMAX = "climax"
    RESOLUTION = "resolution"


class ThreadKind(str, Enum):
    CLUE = "clue"
    SUBPLOT = "subplot"
    FORESHADOW = "foreshadow"
    PROMISE = "promise"
    MYSTERY = "mystery"


# Progress ratio upper bounds per stage, checked in order
STAGE_BANDS = [
    (0.3, QuestStage.INTRO),
    (0.7, QuestStage.RISING),
    (0.95, QuestStage.CLIMAX),
]

# Expected tension range per stage, inclusive
STAGE_TENSION_BANDS: Dict[QuestStage, tuple] = {
    QuestStage.INTRO: (1, 3),
    QuestStage.RISING: (4, 6),
    QuestStage.CLIMAX: (7, 9),
    QuestStage.RESOLUTION: (2, 4),
}


def stage_for_progress(current_encounter: int, total_encounters: int) -> QuestStage:
    """Map encounter progress onto the fixed stage bands."""
    if total_encounters <= 0:
        return QuestStage.RESOLUTION
    ratio = current_encounter / total_encounters
    for upper, stage in STAGE_BANDS:
        if ratio < upper:
            return stage
    return QuestStage.RESOLUTION


class NarrativeThread(BaseModel):
    """An open narrative element expected to pay off later"""

    id: str = Field(..., description="Thread identifier, unique within a quest")
    text: str = Field(..., description="What the thread is about")
    kind: ThreadKind = Field(default=ThreadKind.CLUE, description="Thread category")
    introduced_at_encounter: int = Field(
        default=0, description="Encounter number when the thread appeared"
    )
    resolved: bool = Field(default=False, description="Whether the thread paid off")
    priority: int = Field(default=5, ge=1, le=10, description="Importance (1-10)")


class CausalEvent(BaseModel):
    """One link in the cause -> event -> consequence chain"""

    event: str = Field(..., description="What happened")
    cause: Optional[str] = Field(
        None, description="Earlier event or consequence that led to this one"
    )
    consequence: Optional[str] = Field(None, description="What this event led to")
    encounter: int = Field(default=0, description="Encounter the event belongs to")


class LocationState(BaseModel):
    """Known facts about named areas of the quest location"""

    cleared: Set[str] = Field(default_factory=set)
    locked: Set[str] = Field(default_factory=set)
    discovered: Set[str] = Field(default_factory=set)
    destroyed: Set[str] = Field(default_factory=set)
    active_threats: Set[str] = Field(default_factory=set)

    def overlapping_areas(self) -> Set[str]:
        """Names present in more than one of cleared/locked/destroyed."""
        return (
            (self.cleared & self.locked)
            | (self.cleared & self.destroyed)
            | (self.locked & self.destroyed)
        )


class NPCRelation(BaseModel):
    """How one NPC relates to the player"""

    relationship: int = Field(
        default=0, description="Disposition from -10 (hostile) to 10 (devoted)"
    )
    times_met: int = Field(default=0, ge=0)
    last_interaction: str = Field(default="", description="Snippet of the last scene")
    promises: List[str] = Field(default_factory=list)
    secrets: Set[str] = Field(default_factory=set)


class QuestState(BaseModel):
    """The story so far for one active quest"""

    quest_id: str = Field(..., description="Quest identifier")
    quest_type: QuestType = Field(..., description="Quest category")
    goal: str = Field(..., description="Quest goal as given to the player")
    objective: str = Field(default="", description="Target extracted from the goal")
    location: str = Field(..., description="Quest location name")

    current_encounter: int = Field(default=0, ge=0)
    total_encounters: int = Field(..., ge=1)
    stage: QuestStage = Field(default=QuestStage.INTRO)
    # Range is enforced by the store and checked by validation, not here,
    # so a corrupted snapshot can still be loaded and reported on.
    tension: int = Field(default=2)

    threads: List[NarrativeThread] = Field(default_factory=list)
    archived_threads: List[NarrativeThread] = Field(
        default_factory=list, description="Unresolved threads pruned from play"
    )
    chain: List[CausalEvent] = Field(default_factory=list)
    location_state: LocationState = Field(default_factory=LocationState)
    npc_relations: Dict[str, NPCRelation] = Field(default_factory=dict)
    encounter_summaries: List[str] = Field(default_factory=list)

    completed: bool = Field(default=False)
    failed: bool = Field(default=False)

    @property
    def progress_ratio(self) -> float:
        return self.current_encounter / self.total_encounters

    @property
    def is_final_encounter(self) -> bool:
        """True when the encounter about to be played is the last planned one."""
        return self.current_encounter + 1 >= self.total_encounters

    @property
    def is_overdue(self) -> bool:
        return self.current_encounter > self.total_encounters

    def unresolved_threads(self) -> List[NarrativeThread]:
        return [t for t in self.threads if not t.resolved]

    def snapshot(self) -> "QuestState":
        """Deep, independent copy for readers that must not observe later writes."""
        return self.model_copy(deep=True)
