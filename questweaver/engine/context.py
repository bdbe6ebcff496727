"""
Context Assembler

Turns quest state into a token-bounded payload for one specialist. Tiers
are considered in the specialist's declared order and are strictly
cumulative: the first tier that does not fit ends assembly, even if a
later tier would have fit.
"""

from typing import Dict, List, Optional

from questweaver.config import EngineConfig
from questweaver.schemas.context import (
    AssembledContext,
    ChainDigest,
    ContextTier,
    CriticalTier,
    ExtendedTier,
    NarrativeTier,
    NPCDigest,
    SituationTier,
    ThreadDigest,
)
from questweaver.schemas.narrative import QuestState
from questweaver.utils.logger import get_logger
from questweaver.utils.tokens import TokenEstimator

logger = get_logger(__name__)

_TIER_FIELDS = {
    ContextTier.CRITICAL: "critical",
    ContextTier.NARRATIVE: "narrative",
    ContextTier.SITUATION: "situation",
    ContextTier.EXTENDED: "extended",
}


def build_critical_tier(state: QuestState) -> CriticalTier:
    return CriticalTier(stage=state.stage)


def build_narrative_tier(state: QuestState) -> NarrativeTier:
    location = state.location_state
    return NarrativeTier(
        threads=[
            ThreadDigest(id=t.id, text=t.text, kind=t.kind.value, priority=t.priority)
            for t in state.unresolved_threads()
        ],
        chain=[
            ChainDigest(event=c.event, cause=c.cause, consequence=c.consequence)
            for c in state.chain
        ],
        cleared=sorted(location.cleared),
        locked=sorted(location.locked),
        destroyed=sorted(location.destroyed),
        threats=sorted(location.active_threats),
        npcs={
            name: NPCDigest(
                relationship=relation.relationship,
                times_met=relation.times_met,
                promises=list(relation.promises),
            )
            for name, relation in state.npc_relations.items()
        },
    )


def build_situation_tier(state: QuestState) -> SituationTier:
    return SituationTier(
        goal=state.goal,
        quest_type=state.quest_type,
        location=state.location,
        encounter=state.current_encounter,
        total_encounters=state.total_encounters,
        tension=state.tension,
    )


def build_tier(tier: ContextTier, state: QuestState):
    if tier == ContextTier.CRITICAL:
        return build_critical_tier(state)
    if tier == ContextTier.NARRATIVE:
        return build_narrative_tier(state)
    if tier == ContextTier.SITUATION:
        return build_situation_tier(state)
    return ExtendedTier()


class ContextAssembler:
    """Builds budgeted context payloads for named specialists"""

    def __init__(self, config: EngineConfig):
        self.config = config

    def available_tokens(self, instruction_tokens: int, history_tokens: int) -> int:
        """Budget left for the state payload after every other cost is reserved."""
        return TokenEstimator.max_prompt_size(
            window=self.config.context_window,
            instructions=instruction_tokens,
            history=history_tokens,
            reservation=self.config.response_reservation_tokens,
            margin=self.config.safety_margin_tokens,
        )

    def assemble(
        self, state: QuestState, specialist_name: str, max_tokens: int
    ) -> AssembledContext:
        """
        Merge the specialist's tiers into one payload without exceeding max_tokens.

        A tier's cost is the growth of the merged payload's estimate, so
        ``tokens_used`` is always the estimate of the returned payload.
        """
        specialist = self.config.specialist(specialist_name)
        result = AssembledContext(specialist=specialist.name, max_tokens=max_tokens)
        used = 0

        for tier in specialist.tiers:
            model = build_tier(tier, state)
            if not model.to_wire():
                continue

            candidate = result.model_copy(update={_TIER_FIELDS[tier]: model})
            cost = TokenEstimator.estimate_payload(candidate.to_wire()) - used

            if used + cost > max_tokens:
                logger.verbose(  # type: ignore[attr-defined]
                    f"[Assembler] Tier {tier.value} ({cost} tokens) does not fit, "
                    f"stopping at {used}/{max_tokens}",
                    extra={"component": "Assembler", "specialist": specialist.name},
                )
                break

            result = candidate
            used += cost
            result.included_tiers = result.included_tiers + [tier]

        result.tokens_used = used
        logger.verbose(  # type: ignore[attr-defined]
            f"[Assembler] {specialist.name}: "
            f"{', '.join(t.value for t in result.included_tiers) or 'no tiers'} "
            f"({used}/{max_tokens} tokens)",
            extra={"component": "Assembler", "quest_id": state.quest_id},
        )
        return result


class SpecialistSessions:
    """
    Conversation history kept per specialist.

    Each committed turn adds one exchange to the specialist's session; the
    accumulated history is charged against the context window. A session
    is cleared after ``reset_turns`` turns so history never grows without
    bound.
    """

    def __init__(self, reset_turns: int = 15):
        self.reset_turns = reset_turns
        self.histories: Dict[str, List[str]] = {}
        self.turn_counts: Dict[str, int] = {}

    def history(self, specialist: str) -> List[str]:
        return list(self.histories.get(specialist, []))

    def history_tokens(self, specialist: str) -> int:
        return sum(
            TokenEstimator.estimate_tokens(text) for text in self.histories.get(specialist, [])
        )

    def turn_count(self, specialist: str) -> int:
        return self.turn_counts.get(specialist, 0)

    def record(self, specialist: str, exchange: str):
        count = self.turn_counts.get(specialist, 0) + 1
        if count > self.reset_turns:
            self.reset(specialist)
            count = 1
        self.histories.setdefault(specialist, []).append(exchange)
        self.turn_counts[specialist] = count

    def reset(self, specialist: Optional[str] = None):
        if specialist is None:
            self.histories.clear()
            self.turn_counts.clear()
            logger.info("[Assembler] Reset all specialist sessions")
            return
        self.histories.pop(specialist, None)
        self.turn_counts.pop(specialist, None)
        logger.info(f"[Assembler] Reset {specialist} session")
