"""
Consistency scoring schema definitions
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class IssueKind(str, Enum):
    CAUSAL_VIOLATION = "causal_violation"
    SPATIAL_VIOLATION = "spatial_violation"
    UNRESOLVED_THREAD = "unresolved_thread"
    NPC_INCONSISTENCY = "npc_inconsistency"
    TENSION_INVERSION = "tension_inversion"
    REPETITION = "repetition"
    QUEST_DRIFT = "quest_drift"
    LOGICAL_GAP = "logical_gap"


class Severity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.MINOR: 0,
    Severity.MODERATE: 1,
    Severity.MAJOR: 2,
    Severity.CRITICAL: 3,
}


class ConsistencyIssue(BaseModel):
    kind: IssueKind
    severity: Severity
    description: str
    encounter: int = 0
    context: str = Field(default="", description="Supporting text excerpt")


class ScoreBreakdown(BaseModel):
    """Per-dimension sub-scores, each in 0..1"""

    causal: float = 1.0
    spatial: float = 1.0
    thread: float = 1.0
    npc: float = 1.0
    tension: float = 1.0
    repetition: float = 1.0
    quest: float = 1.0


# Dimension weights, summing to 1.0
SCORE_WEIGHTS = {
    "causal": 0.20,
    "spatial": 0.15,
    "thread": 0.20,
    "npc": 0.10,
    "tension": 0.10,
    "repetition": 0.10,
    "quest": 0.15,
}


class ConsistencyScore(BaseModel):
    overall: float = Field(..., ge=0.0, le=1.0)
    breakdown: ScoreBreakdown
    issues: List[ConsistencyIssue] = Field(default_factory=list)

    @classmethod
    def from_breakdown(
        cls, breakdown: ScoreBreakdown, issues: List[ConsistencyIssue]
    ) -> "ConsistencyScore":
        values = breakdown.model_dump()
        overall = sum(values[name] * weight for name, weight in SCORE_WEIGHTS.items())
        ordered = sorted(issues, key=lambda issue: issue.severity.rank, reverse=True)
        return cls(
            overall=round(min(max(overall, 0.0), 1.0), 6),
            breakdown=breakdown,
            issues=ordered,
        )

    def issues_at_least(self, severity: Severity) -> List[ConsistencyIssue]:
        return [issue for issue in self.issues if issue.severity >= severity]
