"""
Context payload schema definitions.

Each tier of the assembled context is a model with explicit fields. The
compact wire encoding used for prompts and for token estimation lives in
the ``to_wire`` methods, separate from the in-memory shape.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .narrative import QuestStage, QuestType


class ContextTier(str, Enum):
    CRITICAL = "critical"
    NARRATIVE = "narrative"
    SITUATION = "situation"
    EXTENDED = "extended"


class Specialist(BaseModel):
    """A named consumer of assembled context and the tiers it reads, in priority order"""

    name: str
    tiers: List[ContextTier] = Field(default_factory=list)


class CriticalTier(BaseModel):
    stage: QuestStage

    def to_wire(self) -> Dict[str, Any]:
        return {"stage": self.stage.value}


class ThreadDigest(BaseModel):
    id: str
    text: str
    kind: str
    priority: int


class ChainDigest(BaseModel):
    event: str
    cause: Optional[str] = None
    consequence: Optional[str] = None


class NPCDigest(BaseModel):
    relationship: int
    times_met: int
    promises: List[str] = Field(default_factory=list)


class NarrativeTier(BaseModel):
    """Compact digest of threads, causal chain, location facts and NPCs"""

    threads: List[ThreadDigest] = Field(default_factory=list)
    chain: List[ChainDigest] = Field(default_factory=list)
    cleared: List[str] = Field(default_factory=list)
    locked: List[str] = Field(default_factory=list)
    destroyed: List[str] = Field(default_factory=list)
    threats: List[str] = Field(default_factory=list)
    npcs: Dict[str, NPCDigest] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {
            "threads": [t.model_dump() for t in self.threads],
            "chain": [c.model_dump(exclude_none=True) for c in self.chain],
            "locations": {
                "cleared": self.cleared,
                "locked": self.locked,
                "destroyed": self.destroyed,
                "threats": self.threats,
            },
            "npcs": {
                name: npc.model_dump() for name, npc in sorted(self.npcs.items())
            },
        }
        return wire


class SituationTier(BaseModel):
    goal: str
    quest_type: QuestType
    location: str
    encounter: int
    total_encounters: int
    tension: int

    def to_wire(self) -> Dict[str, Any]:
        return {
            "goal": self.goal,
            "questType": self.quest_type.value,
            "location": self.location,
            "encounter": self.encounter,
            "totalEncounters": self.total_encounters,
            "tension": self.tension,
        }


class ExtendedTier(BaseModel):
    """Reserved for future content; always empty."""

    def to_wire(self) -> Dict[str, Any]:
        return {}


class TokenBreakdown(BaseModel):
    """Estimated token usage of one generation call"""

    window: int
    instructions: int = 0
    history: int = 0
    state: int = 0
    reservation: int = 0
    margin: int = 0

    @property
    def total(self) -> int:
        return (
            self.instructions + self.history + self.state + self.reservation + self.margin
        )

    @property
    def usage_ratio(self) -> float:
        return self.total / self.window if self.window > 0 else 1.0


class AssembledContext(BaseModel):
    """Token-bounded snapshot of quest state for one specialist"""

    specialist: str
    critical: Optional[CriticalTier] = None
    narrative: Optional[NarrativeTier] = None
    situation: Optional[SituationTier] = None
    extended: Optional[ExtendedTier] = None
    included_tiers: List[ContextTier] = Field(default_factory=list)
    tokens_used: int = 0
    max_tokens: int = 0

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for tier in (self.critical, self.narrative, self.situation, self.extended):
            if tier is not None:
                payload.update(tier.to_wire())
        return payload

    @property
    def is_empty(self) -> bool:
        return not self.to_wire()


class StructuredContext(BaseModel):
    """Everything the narration generator receives for one call"""

    instructions: str = Field(..., description="System instructions for the specialist")
    scene: str = Field(..., description="Free-text scene framing for this turn")
    history: List[str] = Field(
        default_factory=list, description="Earlier narrations in the specialist session"
    )
    context: AssembledContext
    tokens: TokenBreakdown
