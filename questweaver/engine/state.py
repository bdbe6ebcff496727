"""
Narrative State Store

Canonical mutable record of one quest's story so far. Every write goes
through this class so the invariants hold at every observable point:
tension stays in 1..10, NPC relationships in -10..10, the stage always
matches encounter progress, and at most ``max_unresolved_threads``
threads are open at once.
"""

from typing import Callable, Dict, List, Optional

from questweaver.engine.errors import NoActiveQuestError, StateCorruptionError
from questweaver.schemas.narrative import (
    CausalEvent,
    LocationState,
    NarrativeThread,
    NPCRelation,
    QuestStage,
    QuestState,
    QuestType,
    ThreadKind,
    stage_for_progress,
)
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)

MIN_TENSION = 1
MAX_TENSION = 10
MIN_RELATIONSHIP = -10
MAX_RELATIONSHIP = 10
INITIAL_TENSION = 2


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class NarrativeStateStore:
    """Owns the QuestState of the active quest"""

    def __init__(
        self,
        max_unresolved_threads: int = 5,
        state: Optional[QuestState] = None,
    ):
        self.max_unresolved_threads = max_unresolved_threads
        self._state = state

    @property
    def has_quest(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> QuestState:
        if self._state is None:
            raise NoActiveQuestError("No active quest")
        return self._state

    def snapshot(self) -> QuestState:
        return self.state.snapshot()

    def start_quest(
        self,
        quest_id: str,
        quest_type: QuestType,
        goal: str,
        location: str,
        total_encounters: int,
        objective: str = "",
    ) -> QuestState:
        if total_encounters < 1:
            raise ValueError("total_encounters must be at least 1")

        self._state = QuestState(
            quest_id=quest_id,
            quest_type=quest_type,
            goal=goal,
            objective=objective,
            location=location,
            total_encounters=total_encounters,
            current_encounter=0,
            stage=QuestStage.INTRO,
            tension=INITIAL_TENSION,
        )
        logger.info(
            f"[Store] Started {quest_type.value} quest {quest_id} at {location}",
            extra={
                "component": "Store",
                "quest_id": quest_id,
                "total_encounters": total_encounters,
            },
        )
        return self._state

    def end_quest(self) -> Optional[QuestState]:
        """Discard the active quest, returning its final state."""
        ended = self._state
        self._state = None
        if ended is not None:
            logger.info(
                f"[Store] Ended quest {ended.quest_id}",
                extra={"component": "Store", "quest_id": ended.quest_id},
            )
        return ended

    def adopt(self, state: QuestState):
        """Replace the active quest state wholesale (commit of a forked candidate)."""
        self._state = state

    def fork(self) -> "NarrativeStateStore":
        """Independent store over a deep copy, for building a candidate turn."""
        return NarrativeStateStore(
            max_unresolved_threads=self.max_unresolved_threads,
            state=self.snapshot(),
        )

    # Encounter progress

    def increment_encounter(self) -> QuestStage:
        state = self.state
        if state.current_encounter + 1 > state.total_encounters + 1:
            raise StateCorruptionError(
                f"Encounter {state.current_encounter + 1} exceeds "
                f"{state.total_encounters} planned encounters plus one"
            )

        previous_stage = state.stage
        state.current_encounter += 1
        state.stage = stage_for_progress(state.current_encounter, state.total_encounters)

        if state.stage != previous_stage:
            logger.info(
                f"[Store] Stage {previous_stage.value} -> {state.stage.value}",
                extra={
                    "component": "Store",
                    "quest_id": state.quest_id,
                    "encounter": state.current_encounter,
                },
            )
        return state.stage

    def add_encounter_summary(self, summary: str):
        self.state.encounter_summaries.append(summary)

    def mark_completed(self):
        self.state.completed = True
        logger.info(
            f"[Store] Quest {self.state.quest_id} completed",
            extra={"component": "Store", "quest_id": self.state.quest_id},
        )

    def mark_failed(self):
        self.state.failed = True
        logger.info(
            f"[Store] Quest {self.state.quest_id} failed",
            extra={"component": "Store", "quest_id": self.state.quest_id},
        )

    # Threads

    def add_thread(
        self,
        text: str,
        kind: ThreadKind = ThreadKind.CLUE,
        priority: int = 5,
        thread_id: Optional[str] = None,
        introduced_at_encounter: Optional[int] = None,
    ) -> NarrativeThread:
        state = self.state
        if thread_id is None:
            thread_id = self._next_thread_id()
        if self._find_thread(thread_id) is not None:
            raise StateCorruptionError(f"Duplicate thread id: {thread_id}")

        thread = NarrativeThread(
            id=thread_id,
            text=text,
            kind=kind,
            priority=priority,
            introduced_at_encounter=(
                state.current_encounter
                if introduced_at_encounter is None
                else introduced_at_encounter
            ),
        )
        state.threads.append(thread)
        logger.debug(f"[Store] Added {kind.value} thread {thread_id} (p{priority})")

        self.prune_threads()
        return thread

    def prune_threads(self) -> List[NarrativeThread]:
        """
        Archive unresolved threads beyond the cap.

        Keeps the highest-priority unresolved threads; on equal priority the
        earlier-introduced thread stays. Resolved threads are never touched.
        """
        state = self.state
        open_threads = [
            (index, t) for index, t in enumerate(state.threads) if not t.resolved
        ]
        if len(open_threads) <= self.max_unresolved_threads:
            return []

        ranked = sorted(
            open_threads,
            key=lambda item: (-item[1].priority, item[1].introduced_at_encounter, item[0]),
        )
        keep = {index for index, _ in ranked[: self.max_unresolved_threads]}
        pruned = [t for index, t in open_threads if index not in keep]

        state.threads = [
            t for index, t in enumerate(state.threads) if t.resolved or index in keep
        ]
        state.archived_threads.extend(pruned)

        logger.debug(
            f"[Store] Archived {len(pruned)} low-priority threads",
            extra={"component": "Store", "archived": [t.id for t in pruned]},
        )
        return pruned

    def resolve_thread(self, thread_id: str) -> bool:
        for thread in self.state.threads:
            if thread.id == thread_id:
                if not thread.resolved:
                    thread.resolved = True
                    logger.debug(f"[Store] Resolved thread {thread_id}")
                return True
        logger.debug(f"[Store] No active thread {thread_id} to resolve")
        return False

    def _find_thread(self, thread_id: str) -> Optional[NarrativeThread]:
        for thread in self.state.threads + self.state.archived_threads:
            if thread.id == thread_id:
                return thread
        return None

    def _next_thread_id(self) -> str:
        state = self.state
        number = len(state.threads) + len(state.archived_threads) + 1
        while self._find_thread(f"thread-{number}") is not None:
            number += 1
        return f"thread-{number}"

    # Causal chain

    def add_causal_event(self, event: CausalEvent):
        self.state.chain.append(event.model_copy())

    # Location and NPC state

    def update_location_state(self, mutate: Callable[[LocationState], None]):
        """Read-modify-write: the closure edits a copy that replaces the original on success."""
        working = self.state.location_state.model_copy(deep=True)
        mutate(working)
        self.state.location_state = working

    def update_npc_relations(self, mutate: Callable[[Dict[str, NPCRelation]], None]):
        """Read-modify-write over all NPC relations; values are clamped afterwards."""
        working = {
            name: relation.model_copy(deep=True)
            for name, relation in self.state.npc_relations.items()
        }
        mutate(working)

        missing = set(self.state.npc_relations) - set(working)
        if missing:
            raise StateCorruptionError(f"NPC relations cannot be deleted: {sorted(missing)}")

        for relation in working.values():
            relation.relationship = clamp(
                relation.relationship, MIN_RELATIONSHIP, MAX_RELATIONSHIP
            )
            relation.times_met = max(0, relation.times_met)
        self.state.npc_relations = working

    def adjust_tension(self, delta: int) -> int:
        state = self.state
        state.tension = clamp(state.tension + delta, MIN_TENSION, MAX_TENSION)
        return state.tension
