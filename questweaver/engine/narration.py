"""
Narration helpers: cleaning generator output, building the scene framing
sent with the assembled context, summarizing encounters and applying a
generated turn's updates to a (candidate) state store.
"""

import re
from typing import List, Optional

from questweaver import prompts
from questweaver.engine import vocabulary as vocab
from questweaver.engine.encounters import EncounterTracking
from questweaver.engine.state import NarrativeStateStore
from questweaver.schemas.narrative import (
    LocationState,
    NPCRelation,
    QuestStage,
    QuestState,
)
from questweaver.schemas.turn import (
    EncounterDetails,
    EncounterType,
    Monster,
    NarrativeUpdates,
    NPCProfile,
    StructuredTurn,
)
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)

# Structured-output field names that sometimes leak into narration text
LEAKED_MARKERS = [
    "suggestedActions:",
    "suggested_actions:",
    '"suggested_actions"',
    '"narration":',
    "narration:",
    "progress:",
    "causal_event:",
    "narrative_updates:",
    "Monster:",
]
LONE_BRACKET = re.compile(r"^\s*[\[\]{}]+\s*$", re.MULTILINE)

MAX_SUMMARY_CHARS = 60
EARLY_STAGE_LIMIT = 0.4
MIDDLE_STAGE_LIMIT = 0.85

STAGE_TENSION_TARGET = {
    QuestStage.INTRO: 2,
    QuestStage.RISING: 5,
    QuestStage.CLIMAX: 8,
    QuestStage.RESOLUTION: 3,
}


def sanitize_narration(text: str) -> str:
    """Strip leaked structured-output markers; keep the original if nothing would remain."""
    cleaned = text
    for marker in LEAKED_MARKERS:
        index = cleaned.find(marker)
        if index != -1:
            cleaned = cleaned[:index]

    cleaned = LONE_BRACKET.sub("", cleaned)
    cleaned = " ".join(cleaned.split())
    cleaned = cleaned.strip().strip('"').strip()

    if not cleaned and text:
        logger.warning(
            f"[Narration] Sanitation would remove everything; keeping original "
            f"({len(text)} chars)"
        )
        return text
    return cleaned


def extract_keywords(text: str, is_player_action: bool = False) -> str:
    """First action verb, every entity and (for narration) the first outcome."""
    keywords: List[str] = []

    actions = vocab.matching_terms(text, vocab.ACTION_KEYWORDS)
    if actions:
        keywords.append(actions[0])
    keywords.extend(vocab.matching_terms(text, vocab.ENTITY_KEYWORDS))
    if not is_player_action:
        outcomes = vocab.matching_terms(text, vocab.OUTCOME_KEYWORDS)
        if outcomes:
            keywords.append(outcomes[0])

    return ", ".join(keywords)


def encounter_summary(
    narration: str,
    encounter_type: EncounterType,
    monster: Optional[Monster] = None,
    npc: Optional[NPCProfile] = None,
) -> str:
    if monster is not None:
        summary = f"fight {monster.name}"
    elif npc is not None:
        summary = f"meet {npc.name}"
    else:
        summary = extract_keywords(narration) or encounter_type.value
    return summary[:MAX_SUMMARY_CHARS]


def stage_guidance(state: QuestState) -> str:
    """Stage-specific direction appended to the scene framing."""
    if state.is_final_encounter:
        template = prompts.FINAL_ENCOUNTER_GUIDANCE[state.quest_type.value]
        return template.format(objective=state.objective or state.goal)

    upcoming = (state.current_encounter + 1) / state.total_encounters
    if upcoming <= EARLY_STAGE_LIMIT:
        return prompts.STAGE_GUIDANCE_EARLY.format(goal=state.goal)
    if upcoming <= MIDDLE_STAGE_LIMIT:
        return prompts.STAGE_GUIDANCE_MIDDLE.format(goal=state.goal)
    return ""


def build_scene(
    state: QuestState,
    state_json: str,
    details: EncounterDetails,
    tracking: EncounterTracking,
    player_action: str,
    continuing_conversation: bool = False,
) -> str:
    """Free-text framing for the narration specialist."""
    if continuing_conversation and tracking.active_npc is not None:
        actors = prompts.SCENE_CONTINUE_CONVERSATION.format(npc=tracking.active_npc.name)
    elif details.encounter_type == EncounterType.COMBAT and tracking.active_monster:
        actors = prompts.SCENE_MONSTER.format(
            monster=tracking.active_monster.name,
            description=tracking.active_monster.description,
        )
    elif details.encounter_type == EncounterType.SOCIAL and tracking.active_npc:
        actors = prompts.SCENE_NPC.format(
            npc=tracking.active_npc.name,
            occupation=tracking.active_npc.occupation or "a local",
        )
    elif details.encounter_type == EncounterType.FINAL:
        actors = prompts.SCENE_OBJECTIVE.format(objective=state.objective or state.goal)
    else:
        actors = ""

    return prompts.SCENE_USER.format(
        state=state_json,
        encounter=state.current_encounter + 1,
        total=state.total_encounters,
        encounter_type=details.encounter_type.value,
        difficulty=details.difficulty.value,
        actors=actors,
        action=player_action or "(none)",
        guidance=stage_guidance(state),
    )


def build_encounter_prompt(
    state: QuestState, state_json: str, tracking: EncounterTracking
) -> str:
    """Framing for the encounter classification specialist."""
    final_hint = ""
    if state.is_final_encounter:
        final_hint = prompts.FINAL_ENCOUNTER_HINTS[state.quest_type.value]
    return prompts.ENCOUNTER_USER.format(
        state=state_json,
        location=state.location,
        recent=tracking.recent_keywords() or "none",
        final_hint=final_hint,
    )


def next_tension_delta(state: QuestState) -> int:
    """One step toward the stage's target tension; never down during the climax."""
    target = STAGE_TENSION_TARGET[state.stage]
    if state.tension < target:
        return 1
    if state.tension > target and state.stage != QuestStage.CLIMAX:
        return -1
    return 0


def _apply_location_updates(updates: NarrativeUpdates):
    def mutate(location: LocationState):
        for area in updates.unlocked:
            location.locked.discard(area)
        for area in updates.cleared:
            location.cleared.add(area)
            location.active_threats.discard(area)
        for area in updates.locked:
            location.locked.add(area)
        for area in updates.discovered:
            location.discovered.add(area)
        for area in updates.destroyed:
            location.destroyed.add(area)
        for threat in updates.new_threats:
            location.active_threats.add(threat)
        for threat in updates.removed_threats:
            location.active_threats.discard(threat)

    return mutate


def _apply_npc_updates(
    updates: NarrativeUpdates,
    met_npc: Optional[NPCProfile],
    new_meeting: bool,
    narration: str,
):
    def mutate(relations):
        if met_npc is not None:
            relation = relations.setdefault(met_npc.name, NPCRelation())
            if new_meeting:
                relation.times_met += 1
            relation.last_interaction = narration[:80]

        for update in updates.npc_updates:
            relation = relations.setdefault(update.name, NPCRelation())
            relation.relationship += update.relationship_delta
            if update.interaction:
                relation.last_interaction = update.interaction
            if update.promise:
                relation.promises.append(update.promise)
            if update.secret:
                relation.secrets.add(update.secret)

    return mutate


def apply_turn(
    store: NarrativeStateStore,
    turn: StructuredTurn,
    narration: str,
    details: EncounterDetails,
    tracking: EncounterTracking,
    continuing_conversation: bool = False,
):
    """
    Apply one generated turn to a store, normally a forked candidate.

    Increments the encounter, then records the summary, threads, causal
    link, location and NPC changes and finally the tension update.
    """
    store.increment_encounter()
    state = store.state
    encounter = state.current_encounter
    updates = turn.narrative_updates

    store.add_encounter_summary(
        encounter_summary(
            narration,
            details.encounter_type,
            monster=tracking.active_monster,
            npc=tracking.active_npc,
        )
    )

    for thread_id in updates.resolved_thread_ids:
        store.resolve_thread(thread_id)
    for index, proposal in enumerate(updates.new_threads, start=1):
        store.add_thread(
            text=proposal.text,
            kind=proposal.kind,
            priority=proposal.priority,
            thread_id=f"e{encounter}-t{index}",
        )

    if turn.causal_event is not None:
        store.add_causal_event(turn.causal_event.model_copy(update={"encounter": encounter}))

    store.update_location_state(_apply_location_updates(updates))

    met_npc = tracking.active_npc if details.encounter_type == EncounterType.SOCIAL else None
    store.update_npc_relations(
        _apply_npc_updates(updates, met_npc, not continuing_conversation, narration)
    )

    if updates.tension_delta is not None:
        store.adjust_tension(updates.tension_delta)
    else:
        store.adjust_tension(next_tension_delta(state))
