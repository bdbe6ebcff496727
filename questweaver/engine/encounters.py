"""
Encounter selection rules: conversation continuation, final-encounter
enforcement and variety enforcement, plus the tracking state they read.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from questweaver.engine import vocabulary as vocab
from questweaver.schemas.narrative import QuestState, QuestType
from questweaver.schemas.turn import (
    Difficulty,
    EncounterDetails,
    EncounterType,
    Monster,
    NPCProfile,
)
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)

MIN_ENCOUNTERS_BETWEEN_TRAPS = 3
MAX_KEYWORD_HISTORY = 10


class EncounterTracking(BaseModel):
    """Per-quest encounter bookkeeping that lives beside the QuestState"""

    encounter_counts: Dict[str, int] = Field(default_factory=dict)
    last_encounter: Optional[EncounterType] = None
    encounters_since_last_trap: int = 0
    active_npc: Optional[NPCProfile] = None
    conversation_turns: int = 0
    active_monster: Optional[Monster] = None
    keywords: List[str] = Field(default_factory=list)

    def track(self, encounter_type: EncounterType):
        key = encounter_type.value
        self.encounter_counts[key] = self.encounter_counts.get(key, 0) + 1
        self.last_encounter = encounter_type
        if encounter_type == EncounterType.TRAP:
            self.encounters_since_last_trap = 0
        else:
            self.encounters_since_last_trap += 1

    def store_keywords(self, keywords: str):
        if keywords:
            self.keywords.append(keywords)
            self.keywords = self.keywords[-MAX_KEYWORD_HISTORY:]

    def recent_keywords(self, count: int = 3) -> str:
        return ", ".join(self.keywords[-count:])

    def clear_npc(self):
        self.active_npc = None
        self.conversation_turns = 0

    def clear_encounter_actors(self):
        self.active_monster = None
        self.clear_npc()


def should_continue_conversation(
    tracking: EncounterTracking,
    player_action: Optional[str],
    max_turns: int = 2,
) -> bool:
    """
    True when the active NPC conversation carries on this turn.

    The player must still be engaging the NPC (naming them or using talk
    vocabulary) and must not be ending the conversation.
    """
    npc = tracking.active_npc
    if npc is None:
        return False
    if tracking.conversation_turns >= max_turns:
        return False

    action = player_action or ""
    if vocab.matching_terms(action, vocab.CONVERSATION_END_WORDS):
        return False

    return vocab.contains_word(action, npc.name) or bool(
        vocab.matching_terms(action, vocab.TALK_WORDS)
    )


def enforce_final_encounter(state: QuestState, details: EncounterDetails) -> EncounterDetails:
    """Force the quest-defining encounter type on the designated final encounter."""
    if not state.is_final_encounter:
        return details

    upcoming = state.current_encounter + 1
    if state.quest_type == QuestType.COMBAT:
        logger.info(
            f"[Encounter] Enforced boss combat for final encounter "
            f"{upcoming}/{state.total_encounters}"
        )
        return EncounterDetails(encounter_type=EncounterType.COMBAT, difficulty=Difficulty.BOSS)
    if state.quest_type == QuestType.RETRIEVAL:
        logger.info(
            f"[Encounter] Enforced final encounter type for retrieval "
            f"{upcoming}/{state.total_encounters}"
        )
        return EncounterDetails(encounter_type=EncounterType.FINAL, difficulty=details.difficulty)
    return details


def enforce_variety(
    details: EncounterDetails,
    tracking: EncounterTracking,
    is_final_encounter: bool,
) -> EncounterDetails:
    """
    Coerce repeated encounter types to exploration.

    A ``final`` encounter is never coerced, and nothing is coerced on the
    quest's designated final encounter.
    """
    requested = details.encounter_type
    if requested == EncounterType.FINAL or is_final_encounter:
        return details

    coerced = requested
    if requested == EncounterType.COMBAT and tracking.last_encounter == EncounterType.COMBAT:
        coerced = EncounterType.EXPLORATION
    elif requested == EncounterType.SOCIAL and tracking.last_encounter == EncounterType.SOCIAL:
        coerced = EncounterType.EXPLORATION
    elif (
        requested == EncounterType.TRAP
        and tracking.encounters_since_last_trap < MIN_ENCOUNTERS_BETWEEN_TRAPS
    ):
        coerced = EncounterType.EXPLORATION

    if coerced == requested:
        return details

    logger.debug(f"[Encounter] Variety: {requested.value} -> {coerced.value}")
    return EncounterDetails(encounter_type=coerced, difficulty=details.difficulty)
