"""
Consistency Analyzer

Scores a freshly generated narration against the quest state on seven
independent dimensions. Each dimension starts at 1.0 and loses a fixed
penalty per issue found, floored at 0.0; the overall score is the
weighted sum (see ``SCORE_WEIGHTS``).
"""

from typing import List, Optional, Sequence, Set, Tuple

from questweaver.engine import vocabulary as vocab
from questweaver.schemas.consistency import (
    ConsistencyIssue,
    ConsistencyScore,
    IssueKind,
    ScoreBreakdown,
    Severity,
)
from questweaver.schemas.narrative import (
    STAGE_TENSION_BANDS,
    CausalEvent,
    QuestStage,
    QuestState,
    ThreadKind,
)
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)

HIGH_PRIORITY = 8
MAX_THREAD_AGE = 5
MAX_ACTIVE_THREADS = 5
MAX_TENSION_SPIKE = 3
DEFAULT_REPETITION_THRESHOLD = 0.5


def _excerpt(text: str, limit: int = 100) -> str:
    return text[:limit]


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def _same_link(link: CausalEvent, event: CausalEvent) -> bool:
    """Same event text, ignoring the encounter it was stamped with on commit."""
    return (
        _normalize(link.event) == _normalize(event.event)
        and _normalize(link.cause or "") == _normalize(event.cause or "")
        and _normalize(link.consequence or "") == _normalize(event.consequence or "")
    )


def _trigrams(text: str) -> Set[Tuple[str, ...]]:
    tokens = vocab.words(text)
    if len(tokens) < 3:
        return {tuple(tokens)} if tokens else set()
    return {tuple(tokens[i : i + 3]) for i in range(len(tokens) - 2)}


def trigram_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the word trigrams of two texts."""
    a = _trigrams(first)
    b = _trigrams(second)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class ConsistencyAnalyzer:
    """Seven-dimension consistency scoring for one narration"""

    def __init__(self, repetition_threshold: float = DEFAULT_REPETITION_THRESHOLD):
        self.repetition_threshold = repetition_threshold

    def analyze(
        self,
        current_state: QuestState,
        new_narration: str,
        previous_state: Optional[QuestState] = None,
        new_causal_event: Optional[CausalEvent] = None,
        recent_narrations: Optional[Sequence[str]] = None,
    ) -> ConsistencyScore:
        """
        Score a narration against the quest state.

        Args:
            current_state: State the narration is checked against (usually the
                candidate state after applying the turn)
            new_narration: The narration text
            previous_state: State before the turn, enables tension-arc checks
            new_causal_event: The causal link the turn adds, if any
            recent_narrations: Earlier narrations, enables the repetition check

        Returns:
            ConsistencyScore with issues sorted by descending severity
        """
        issues: List[ConsistencyIssue] = []

        breakdown = ScoreBreakdown(
            causal=self.score_causal(current_state, new_causal_event, issues),
            spatial=self.score_spatial(current_state, new_narration, issues),
            thread=self.score_threads(current_state, issues),
            npc=self.score_npcs(current_state, new_narration, issues),
            tension=self.score_tension(current_state, previous_state, issues),
            repetition=self.score_repetition(
                current_state, new_narration, recent_narrations, issues
            ),
            quest=self.score_quest_alignment(current_state, new_narration, issues),
        )
        score = ConsistencyScore.from_breakdown(breakdown, issues)

        logger.debug(
            f"[Analyzer] Consistency {score.overall:.2f} with {len(issues)} issues",
            extra={
                "component": "Analyzer",
                "quest_id": current_state.quest_id,
                "encounter": current_state.current_encounter,
                "breakdown": breakdown.model_dump(),
            },
        )
        return score

    def score_causal(
        self,
        state: QuestState,
        event: Optional[CausalEvent],
        issues: List[ConsistencyIssue],
    ) -> float:
        score = 1.0
        encounter = state.current_encounter

        if event is not None and event.cause:
            prior = list(state.chain)
            if prior and _same_link(prior[-1], event):
                prior = prior[:-1]
            known = {_normalize(link.event) for link in prior}
            known |= {_normalize(link.consequence) for link in prior if link.consequence}

            if _normalize(event.cause) not in known:
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.CAUSAL_VIOLATION,
                        severity=Severity.MAJOR,
                        description=(
                            f"Event '{event.event}' claims cause '{event.cause}' "
                            "but it is not in the causal chain"
                        ),
                        encounter=encounter,
                        context=event.cause,
                    )
                )
                score -= 0.5

        if len(state.chain) >= 2:
            prev, curr = state.chain[-2], state.chain[-1]
            if (
                prev.consequence
                and curr.cause
                and _normalize(prev.consequence) != _normalize(curr.cause)
            ):
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.LOGICAL_GAP,
                        severity=Severity.MODERATE,
                        description="Gap in causal chain",
                        encounter=encounter,
                        context=f"'{prev.consequence}' -> '{curr.cause}'",
                    )
                )
                score -= 0.2

        return max(0.0, score)

    def score_spatial(
        self, state: QuestState, narration: str, issues: List[ConsistencyIssue]
    ) -> float:
        score = 1.0
        areas = state.location_state
        encounter = state.current_encounter

        danger = bool(vocab.matching_terms(narration, vocab.DANGER_WORDS))
        access = bool(vocab.matching_terms(narration, vocab.ACCESS_WORDS))
        intact = bool(vocab.matching_terms(narration, vocab.INTACT_WORDS))

        for area in sorted(areas.cleared):
            if danger and vocab.contains_word(narration, area):
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.SPATIAL_VIOLATION,
                        severity=Severity.MODERATE,
                        description=f"Danger in cleared area '{area}'",
                        encounter=encounter,
                        context=_excerpt(narration),
                    )
                )
                score -= 0.3

        for area in sorted(areas.locked):
            if access and vocab.contains_word(narration, area):
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.SPATIAL_VIOLATION,
                        severity=Severity.MAJOR,
                        description=f"Accessing locked area '{area}'",
                        encounter=encounter,
                        context=_excerpt(narration),
                    )
                )
                score -= 0.5

        for area in sorted(areas.destroyed):
            if intact and vocab.contains_word(narration, area):
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.SPATIAL_VIOLATION,
                        severity=Severity.MODERATE,
                        description=f"Destroyed '{area}' described as intact",
                        encounter=encounter,
                        context=_excerpt(narration),
                    )
                )
                score -= 0.3

        return max(0.0, score)

    def score_threads(self, state: QuestState, issues: List[ConsistencyIssue]) -> float:
        score = 1.0
        encounter = state.current_encounter
        active = state.unresolved_threads()

        for thread in active:
            age = encounter - thread.introduced_at_encounter

            if thread.priority >= HIGH_PRIORITY and age > MAX_THREAD_AGE:
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.UNRESOLVED_THREAD,
                        severity=Severity.MODERATE,
                        description=f"High priority thread unresolved for {age} encounters",
                        encounter=encounter,
                        context=f"'{thread.text}' (priority {thread.priority})",
                    )
                )
                score -= 0.15

            if thread.kind == ThreadKind.PROMISE and age > state.total_encounters // 2:
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.UNRESOLVED_THREAD,
                        severity=Severity.MAJOR,
                        description="Promise unfulfilled past midpoint",
                        encounter=encounter,
                        context=f"'{thread.text}'",
                    )
                )
                score -= 0.3

        # Only reachable before pruning has run on the state
        if len(active) > MAX_ACTIVE_THREADS:
            issues.append(
                ConsistencyIssue(
                    kind=IssueKind.UNRESOLVED_THREAD,
                    severity=Severity.MINOR,
                    description=f"{len(active)} active threads, narrative may feel scattered",
                    encounter=encounter,
                    context="; ".join(t.text for t in active),
                )
            )
            score -= 0.1

        return max(0.0, score)

    def score_npcs(
        self, state: QuestState, narration: str, issues: List[ConsistencyIssue]
    ) -> float:
        score = 1.0
        encounter = state.current_encounter

        for name, relation in sorted(state.npc_relations.items()):
            if not vocab.contains_word(narration, name):
                continue

            if relation.relationship < -5:
                friendly = vocab.matching_terms(narration, vocab.FRIENDLY_WORDS)
                if friendly:
                    issues.append(
                        ConsistencyIssue(
                            kind=IssueKind.NPC_INCONSISTENCY,
                            severity=Severity.MAJOR,
                            description=(
                                f"Hostile NPC '{name}' (rel: {relation.relationship}) acts friendly"
                            ),
                            encounter=encounter,
                            context=_excerpt(narration),
                        )
                    )
                    score -= 0.4
            elif relation.relationship > 5:
                hostile = vocab.matching_terms(narration, vocab.HOSTILE_WORDS)
                if hostile:
                    issues.append(
                        ConsistencyIssue(
                            kind=IssueKind.NPC_INCONSISTENCY,
                            severity=Severity.MAJOR,
                            description=(
                                f"Friendly NPC '{name}' (rel: {relation.relationship}) acts hostile"
                            ),
                            encounter=encounter,
                            context=_excerpt(narration),
                        )
                    )
                    score -= 0.4

            if relation.times_met == 1 and vocab.matching_terms(
                narration, vocab.REUNION_WORDS
            ):
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.NPC_INCONSISTENCY,
                        severity=Severity.MINOR,
                        description=f"First meeting with '{name}' described as reunion",
                        encounter=encounter,
                        context=f"Times met: {relation.times_met}",
                    )
                )
                score -= 0.2

        return max(0.0, score)

    def score_tension(
        self,
        state: QuestState,
        previous_state: Optional[QuestState],
        issues: List[ConsistencyIssue],
    ) -> float:
        score = 1.0
        if previous_state is None:
            return score

        encounter = state.current_encounter
        change = state.tension - previous_state.tension

        if state.stage == QuestStage.CLIMAX and change < 0:
            issues.append(
                ConsistencyIssue(
                    kind=IssueKind.TENSION_INVERSION,
                    severity=Severity.MODERATE,
                    description=(
                        f"Tension dropped during climax "
                        f"({previous_state.tension} -> {state.tension})"
                    ),
                    encounter=encounter,
                    context="Stage: climax",
                )
            )
            score -= 0.3

        if change > MAX_TENSION_SPIKE:
            issues.append(
                ConsistencyIssue(
                    kind=IssueKind.TENSION_INVERSION,
                    severity=Severity.MINOR,
                    description=f"Tension spiked too quickly (+{change})",
                    encounter=encounter,
                    context="May feel jarring",
                )
            )
            score -= 0.1

        low, high = STAGE_TENSION_BANDS[state.stage]
        if not low <= state.tension <= high:
            issues.append(
                ConsistencyIssue(
                    kind=IssueKind.TENSION_INVERSION,
                    severity=Severity.MINOR,
                    description=f"Tension {state.tension} outside expected {low}-{high}",
                    encounter=encounter,
                    context=f"Stage: {state.stage.value}",
                )
            )
            score -= 0.2

        return max(0.0, score)

    def score_repetition(
        self,
        state: QuestState,
        narration: str,
        recent_narrations: Optional[Sequence[str]],
        issues: List[ConsistencyIssue],
    ) -> float:
        """Neutral 1.0 without history; otherwise penalize near-duplicate narrations."""
        score = 1.0
        if not recent_narrations:
            return score

        for earlier in recent_narrations:
            similarity = trigram_similarity(narration, earlier)
            if similarity >= self.repetition_threshold:
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.REPETITION,
                        severity=Severity.MODERATE,
                        description=f"Narration repeats an earlier one ({similarity:.0%} overlap)",
                        encounter=state.current_encounter,
                        context=_excerpt(earlier),
                    )
                )
                score -= 0.3

        return max(0.0, score)

    def score_quest_alignment(
        self, state: QuestState, narration: str, issues: List[ConsistencyIssue]
    ) -> float:
        score = 1.0
        if state.stage != QuestStage.CLIMAX:
            return score

        goal_terms = vocab.content_words(state.goal)
        if goal_terms and not any(vocab.contains_term(narration, t) for t in goal_terms):
            issues.append(
                ConsistencyIssue(
                    kind=IssueKind.QUEST_DRIFT,
                    severity=Severity.MODERATE,
                    description="Climax does not reference the quest goal",
                    encounter=state.current_encounter,
                    context=f"Goal: {state.goal}",
                )
            )
            score -= 0.3

        return max(0.0, score)
