"""
Quest-level rules: classifying a goal, extracting its objective, deciding
who may declare the quest complete, and the deterministic completion and
failure checks the orchestrator runs.
"""

import re
from typing import Callable, List, Optional, Tuple

from questweaver.engine import vocabulary as vocab
from questweaver.schemas.narrative import QuestState, QuestType
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)

FailurePredicate = Callable[[QuestState], bool]

# Checked in order; the first category with a matching verb wins
QUEST_TYPE_KEYWORDS: List[Tuple[QuestType, frozenset]] = [
    (
        QuestType.RETRIEVAL,
        frozenset({"find", "retrieve", "recover", "locate", "discover", "stolen", "artifact"}),
    ),
    (QuestType.COMBAT, frozenset({"defeat", "kill", "destroy", "stop", "slay", "eliminate"})),
    (QuestType.ESCORT, frozenset({"escort", "protect", "guide", "caravan"})),
    (QuestType.INVESTIGATION, frozenset({"investigate", "solve", "uncover"})),
    (QuestType.RESCUE, frozenset({"rescue", "save", "free"})),
    (QuestType.DIPLOMATIC, frozenset({"negotiate", "persuade", "convince", "diplomacy"})),
]

DEFAULT_QUEST_TYPE = QuestType.INVESTIGATION


def _target(verbs: str, stops: str) -> str:
    return rf"\b(?:{verbs}) the (.+?)(?:\s+(?:{stops})\b|[.,;!]|$)"


OBJECTIVE_PATTERNS = {
    QuestType.COMBAT: [
        _target("defeat|kill|destroy|slay", "terrorizing|guarding|in|at|who|that"),
        _target("stop", "terrorizing|from|in|at|who|that"),
    ],
    QuestType.RETRIEVAL: [
        _target("retrieve|find|locate|recover|discover", "stolen|hidden|from|in|at|lost"),
    ],
    QuestType.ESCORT: [
        _target("escort|guide", "to|safely|through|across"),
        _target("protect", "during|while|through|from"),
    ],
    QuestType.RESCUE: [
        _target("rescue|save|free", "from|held|in|at"),
    ],
    QuestType.INVESTIGATION: [
        _target("investigate", "in|at"),
        _target("solve|uncover|discover", "of|in|at|behind"),
    ],
    QuestType.DIPLOMATIC: [
        r"\bnegotiate (.+?)(?:\s+(?:with|in|at)\b|[.,;!]|$)",
        _target("persuade|convince", "to|that|of"),
    ],
}


def classify_quest_goal(goal: str) -> QuestType:
    """Map goal wording onto a quest type by keyword."""
    for quest_type, keywords in QUEST_TYPE_KEYWORDS:
        if vocab.matching_words(goal, keywords):
            return quest_type
    return DEFAULT_QUEST_TYPE


def extract_objective(goal: str, quest_type: QuestType) -> Optional[str]:
    """
    Pull the concrete target out of a goal.

    "Retrieve the lost heirloom stolen from the treasury" -> "lost heirloom"
    "Escort the merchant caravan to safety" -> "merchant caravan"
    """
    text = goal.lower().strip()
    for pattern in OBJECTIVE_PATTERNS.get(quest_type, []):
        match = re.search(pattern, text)
        if match:
            extracted = match.group(1).strip()
            if extracted:
                return extracted
    return None


def mentions_objective(text: str, objective: str) -> bool:
    """True when any content word of the objective starts a word in ``text``."""
    if not objective:
        return False
    terms = vocab.content_words(objective) or vocab.words(objective)
    return any(vocab.contains_term(text, term) for term in terms)


def check_retrieval_completion(state: QuestState, player_action: str, narration: str) -> bool:
    """Player acts to acquire the objective and the objective is named."""
    if not vocab.matching_terms(player_action, vocab.ACQUISITION_WORDS):
        return False
    return mentions_objective(player_action, state.objective) or mentions_objective(
        narration, state.objective
    )


def check_escort_completion(state: QuestState, player_action: str, narration: str) -> bool:
    """The escorted party arrives, nobody dies and the objective is named."""
    combined = f"{player_action} {narration}"
    arrived = bool(vocab.matching_terms(combined, vocab.ARRIVAL_WORDS))
    casualties = bool(vocab.matching_terms(narration, vocab.CASUALTY_WORDS))
    return arrived and not casualties and mentions_objective(combined, state.objective)


def check_code_completion(state: QuestState, player_action: str, narration: str) -> bool:
    """Deterministic completion on the final encounter for code-controlled quest types."""
    if state.completed or not state.is_final_encounter:
        return False
    if state.quest_type == QuestType.RETRIEVAL:
        completed = check_retrieval_completion(state, player_action, narration)
    elif state.quest_type == QuestType.ESCORT:
        completed = check_escort_completion(state, player_action, narration)
    else:
        return False

    if completed:
        logger.info(
            f"[Quest] Auto-completing {state.quest_type.value} quest "
            f"for objective '{state.objective}'",
            extra={"component": "Quest", "quest_id": state.quest_id},
        )
    return completed


def encounter_budget_exhausted(budget: int) -> FailurePredicate:
    """Failure predicate for quests with an external encounter limit."""

    def predicate(state: QuestState) -> bool:
        return not state.completed and state.current_encounter >= budget

    return predicate


def never_fails(state: QuestState) -> bool:
    return False
