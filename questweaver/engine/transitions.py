"""
Transition Logger

Append-only record of every committed turn, written one JSON object per
line, plus a per-quest summary report written next to the log when the
quest ends.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from questweaver.schemas.consistency import ConsistencyIssue, ConsistencyScore, IssueKind, Severity
from questweaver.schemas.context import ContextTier, TokenBreakdown
from questweaver.schemas.narrative import CausalEvent, QuestState
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)


class ContextSnapshot(BaseModel):
    specialist: str
    tokens: TokenBreakdown
    included_tiers: List[ContextTier] = Field(default_factory=list)
    excluded_tiers: List[ContextTier] = Field(default_factory=list)


class ResponseSnapshot(BaseModel):
    narration: str
    generation_time: float
    new_threads: List[str] = Field(default_factory=list)
    resolved_threads: List[str] = Field(default_factory=list)
    causal_event: Optional[CausalEvent] = None


class PhaseTimings(BaseModel):
    """Seconds spent in each phase of the turn"""

    assembly: float = 0.0
    generation: float = 0.0
    validation: float = 0.0
    logging: float = 0.0

    @property
    def total(self) -> float:
        return self.assembly + self.generation + self.validation + self.logging


class StateTransition(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    quest_id: str
    encounter: int
    previous_state: QuestState
    new_state: QuestState
    context: ContextSnapshot
    response: ResponseSnapshot
    consistency: ConsistencyScore
    timings: PhaseTimings


class QuestNarrativeReport(BaseModel):
    quest_id: str
    turn_count: int
    completed: bool = False
    failed: bool = False
    average_consistency: float
    consistency_by_encounter: List[float] = Field(default_factory=list)
    issue_counts: Dict[str, int] = Field(default_factory=dict)
    critical_issues: List[ConsistencyIssue] = Field(default_factory=list)
    average_tokens: float
    average_generation_time: float
    unresolved_threads: int
    causal_chain_length: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def summary(self) -> str:
        return (
            f"Quest {self.quest_id}: {self.turn_count} turns, "
            f"consistency {self.average_consistency:.2f}, "
            f"{sum(self.issue_counts.values())} issues, "
            f"{self.unresolved_threads} unresolved threads"
        )


class TransitionLogger:
    """
    Records committed turns for one quest at a time.

    With ``log_dir`` set, each transition is appended to
    ``quest_<id>_<timestamp>.jsonl`` and the final report goes to the
    matching ``.report.json``. Without it, transitions are kept in memory only.
    """

    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = Path(log_dir) if log_dir else None
        self.transitions: List[StateTransition] = []
        self.quest_id: Optional[str] = None
        self.log_file: Optional[Path] = None

    def start_quest(self, quest_id: str):
        self.transitions = []
        self.quest_id = quest_id
        self.log_file = None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
            self.log_file = self.log_dir / f"quest_{quest_id}_{stamp}.jsonl"
            logger.info(f"[TransitionLog] Logging quest {quest_id} to {self.log_file}")

    def log(self, transition: StateTransition):
        self.transitions.append(transition)
        if self.log_file is not None:
            with open(self.log_file, "a", encoding="utf-8") as handle:
                handle.write(transition.model_dump_json() + "\n")

        logger.info(
            f"[TransitionLog] Encounter {transition.encounter}: "
            f"consistency {transition.consistency.overall:.2f}, "
            f"{transition.context.tokens.total} tokens, "
            f"{transition.response.generation_time:.2f}s generation, "
            f"{len(transition.consistency.issues)} issues",
            extra={
                "component": "TransitionLog",
                "quest_id": transition.quest_id,
                "encounter": transition.encounter,
            },
        )
        for issue in transition.consistency.issues_at_least(Severity.MAJOR):
            logger.warning(
                f"[TransitionLog] {issue.severity.value} {issue.kind.value}: {issue.description}",
                extra={"component": "TransitionLog", "quest_id": transition.quest_id},
            )

    def transitions_for(self, encounter: int) -> List[StateTransition]:
        return [t for t in self.transitions if t.encounter == encounter]

    def below_consistency(self, threshold: float) -> List[StateTransition]:
        return [t for t in self.transitions if t.consistency.overall < threshold]

    def all_issues(self) -> List[ConsistencyIssue]:
        return [issue for t in self.transitions for issue in t.consistency.issues]

    def issues_of_kind(self, kind: IssueKind) -> List[ConsistencyIssue]:
        return [issue for issue in self.all_issues() if issue.kind == kind]

    def average_consistency(self) -> float:
        if not self.transitions:
            return 0.0
        return sum(t.consistency.overall for t in self.transitions) / len(self.transitions)

    def build_report(self, final_state: Optional[QuestState] = None) -> QuestNarrativeReport:
        count = len(self.transitions)
        issues = self.all_issues()
        issue_counts: Dict[str, int] = {}
        for issue in issues:
            issue_counts[issue.kind.value] = issue_counts.get(issue.kind.value, 0) + 1

        if final_state is None and self.transitions:
            final_state = self.transitions[-1].new_state

        return QuestNarrativeReport(
            quest_id=self.quest_id or (final_state.quest_id if final_state else ""),
            turn_count=count,
            completed=final_state.completed if final_state else False,
            failed=final_state.failed if final_state else False,
            average_consistency=self.average_consistency(),
            consistency_by_encounter=[t.consistency.overall for t in self.transitions],
            issue_counts=issue_counts,
            critical_issues=[i for i in issues if i.severity == Severity.CRITICAL],
            average_tokens=(
                sum(t.context.tokens.total for t in self.transitions) / count if count else 0.0
            ),
            average_generation_time=(
                sum(t.response.generation_time for t in self.transitions) / count
                if count
                else 0.0
            ),
            unresolved_threads=len(final_state.unresolved_threads()) if final_state else 0,
            causal_chain_length=len(final_state.chain) if final_state else 0,
        )

    def finalize_quest(self, final_state: Optional[QuestState] = None) -> QuestNarrativeReport:
        """Build the quest report, write it beside the log and stop logging this quest."""
        report = self.build_report(final_state)
        if self.log_file is not None:
            report_file = self.log_file.with_suffix(".report.json")
            report_file.write_text(report.model_dump_json(indent=2), encoding="utf-8")
            logger.info(f"[TransitionLog] Wrote report {report_file}")

        logger.info(f"[TransitionLog] {report.summary}")
        self.quest_id = None
        self.log_file = None
        return report
