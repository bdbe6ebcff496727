"""
Turn orchestrator - runs one quest turn at a time.

Each call to ``play_turn`` walks a LangGraph StateGraph:

    route -> select_encounter -> setup -> assemble -> preflight
          -> generate -> apply -> postflight -> commit

with side exits to ``already_completed``, ``overdue``, ``failed`` (quest
terminal flows) and ``abort`` (any collaborator or validation failure).
Nothing touches the committed QuestState or encounter tracking before
``commit``; an aborted turn can be retried with the same input.
"""

import uuid
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel, Field
from typing_extensions import TypedDict

from questweaver import prompts
from questweaver.config import EngineConfig
from questweaver.db.manager import QuestStateRepository
from questweaver.engine.analyzer import ConsistencyAnalyzer
from questweaver.engine.context import ContextAssembler, SpecialistSessions
from questweaver.engine.encounters import (
    EncounterTracking,
    enforce_final_encounter,
    enforce_variety,
    should_continue_conversation,
)
from questweaver.engine.errors import NarrativeEngineError, StateCorruptionError, TurnInProgressError
from questweaver.engine.narration import (
    apply_turn,
    build_encounter_prompt,
    build_scene,
    extract_keywords,
    sanitize_narration,
)
from questweaver.engine.quests import (
    FailurePredicate,
    check_code_completion,
    classify_quest_goal,
    extract_objective,
    never_fails,
)
from questweaver.engine.state import NarrativeStateStore
from questweaver.engine.transitions import (
    ContextSnapshot,
    PhaseTimings,
    QuestNarrativeReport,
    ResponseSnapshot,
    StateTransition,
    TransitionLogger,
)
from questweaver.engine.validator import ConsistencyValidator
from questweaver.providers.base import EncounterSource, NarrationGenerator
from questweaver.schemas.context import ContextTier, StructuredContext, TokenBreakdown
from questweaver.schemas.narrative import QuestState, QuestType
from questweaver.schemas.turn import (
    Difficulty,
    EncounterDetails,
    EncounterType,
    GenerationOptions,
    Monster,
    NarrationUpdate,
    StructuredTurn,
)
from questweaver.schemas.validation import (
    ValidationError,
    ValidationErrorKind,
    ValidationResult,
)
from questweaver.utils.logger import get_logger
from questweaver.utils.metrics import MetricsCollector, PhaseTimer
from questweaver.utils.tokens import TokenEstimator, UsageLevel, compact_json

logger = get_logger(__name__)

NarrationListener = Callable[[NarrationUpdate], None]


class TurnStatus(str, Enum):
    COMMITTED = "committed"
    ABORTED = "aborted"
    ALREADY_COMPLETED = "already_completed"
    QUEST_COMPLETED = "quest_completed"
    QUEST_FAILED = "quest_failed"


class TurnResult(BaseModel):
    """What the host gets back from one call to ``play_turn``"""

    status: TurnStatus
    narration: Optional[str] = None
    suggested_actions: List[str] = Field(default_factory=list)
    encounter: Optional[EncounterDetails] = None
    validation: Optional[ValidationResult] = None
    log: List[str] = Field(default_factory=list, description="Player-visible log lines")
    state: QuestState

    @property
    def aborted(self) -> bool:
        return self.status == TurnStatus.ABORTED


class TurnState(TypedDict):
    """
    Graph state for one turn.

    ``tracking`` is a private copy of the encounter tracking; it replaces
    the orchestrator's copy only on commit.
    """

    player_action: str
    route: str
    continuing: bool
    tracking: EncounterTracking
    details: Optional[EncounterDetails]
    boss: Optional[Monster]
    prompt: Optional[StructuredContext]
    preflight: Optional[ValidationResult]
    turn: Optional[StructuredTurn]
    narration: str
    candidate: Optional[NarrativeStateStore]
    postflight: Optional[ValidationResult]
    generation_time: float
    error: Optional[str]
    result: Optional[TurnResult]


class TurnOrchestrator:
    """
    Orchestrates turn-based quest play with LLM narration.

    Attributes:
        config: Explicit engine configuration
        generator: Narration generator collaborator
        encounter_source: Encounter classification and actor collaborator
        store: Narrative state store for the active quest
        tracking: Committed encounter tracking for the active quest
        sessions: Per-specialist conversation history
        transitions: Transition logger for committed turns
    """

    def __init__(
        self,
        generator: NarrationGenerator,
        encounter_source: EncounterSource,
        config: Optional[EngineConfig] = None,
        repository: Optional[QuestStateRepository] = None,
        transition_logger: Optional[TransitionLogger] = None,
        metrics: Optional[MetricsCollector] = None,
        failure_predicate: FailurePredicate = never_fails,
        on_narration: Optional[NarrationListener] = None,
    ):
        self.config = config or EngineConfig()
        self.generator = generator
        self.encounter_source = encounter_source
        self.repository = repository
        self.transitions = transition_logger or TransitionLogger()
        self.metrics = metrics
        self.failure_predicate = failure_predicate
        self.on_narration = on_narration

        self.store = NarrativeStateStore(
            max_unresolved_threads=self.config.max_unresolved_threads
        )
        self.assembler = ContextAssembler(self.config)
        self.validator = ConsistencyValidator(
            self.config,
            ConsistencyAnalyzer(repetition_threshold=self.config.repetition_threshold),
        )
        self.sessions = SpecialistSessions(reset_turns=self.config.session_reset_turns)
        self.tracking = EncounterTracking()
        self.recent_narrations: Deque[str] = deque(maxlen=self.config.narration_history_size)
        self.boss: Optional[Monster] = None
        self.timer = PhaseTimer()

        self._generating = False
        self.graph = self._build_graph()

    # Quest lifecycle

    @property
    def is_generating(self) -> bool:
        return self._generating

    def start_quest(
        self,
        goal: str,
        location: str,
        total_encounters: int,
        quest_type: Optional[QuestType] = None,
        quest_id: Optional[str] = None,
        boss: Optional[Monster] = None,
    ) -> QuestState:
        """
        Start a new quest, replacing any active one.

        The quest type is classified from the goal when not given, and the
        objective is extracted from the goal wording.
        """
        self._ensure_idle()
        quest_type = quest_type or classify_quest_goal(goal)
        objective = extract_objective(goal, quest_type) or goal
        quest_id = quest_id or str(uuid.uuid4())

        state = self.store.start_quest(
            quest_id=quest_id,
            quest_type=quest_type,
            goal=goal,
            location=location,
            total_encounters=total_encounters,
            objective=objective,
        )
        self._reset_turn_state()
        self.boss = boss
        self.transitions.start_quest(quest_id)
        logger.info(
            f"[Orchestrator] Quest {quest_id}: {quest_type.value} '{goal}' "
            f"({total_encounters} encounters, objective '{objective}')",
            extra={"component": "Orchestrator", "quest_id": quest_id},
        )
        self._save()
        return state.snapshot()

    def resume(self, quest_id: Optional[str] = None) -> Optional[QuestState]:
        """Adopt a persisted quest state; encounter tracking and sessions start fresh."""
        self._ensure_idle()
        if self.repository is None:
            return None
        state = self.repository.load(quest_id)
        if state is None:
            logger.info(f"[Orchestrator] No stored quest to resume ({quest_id or 'latest'})")
            return None

        self.store.adopt(state)
        self._reset_turn_state()
        self.transitions.start_quest(state.quest_id)
        logger.info(
            f"[Orchestrator] Resumed quest {state.quest_id} at encounter "
            f"{state.current_encounter}/{state.total_encounters}",
            extra={"component": "Orchestrator", "quest_id": state.quest_id},
        )
        return state.snapshot()

    def end_quest(self) -> QuestNarrativeReport:
        """Finish the active quest and return its narrative report."""
        self._ensure_idle()
        final_state = self.store.state
        report = self.transitions.finalize_quest(final_state.snapshot())
        if self.metrics is not None:
            self.metrics.record(report)
        self.store.end_quest()
        self._reset_turn_state()
        self.boss = None
        return report

    def snapshot(self) -> QuestState:
        return self.store.snapshot()

    def mark_objective_completed(self) -> QuestState:
        """Host-side completion for code-controlled quests (boss defeated, item taken)."""
        self._ensure_idle()
        state = self.store.state
        if not state.completed:
            self.store.mark_completed()
            self._save()
        return self.store.snapshot()

    async def play_turn(self, player_action: str = "") -> TurnResult:
        """
        Play one turn for the player's action.

        Raises:
            NoActiveQuestError: no quest has been started
            TurnInProgressError: the previous turn is still running
        """
        self._ensure_idle()
        state = self.store.state

        self._generating = True
        try:
            logger.info(
                f"[Orchestrator] Turn for encounter {state.current_encounter + 1}"
                f"/{state.total_encounters}",
                extra={"component": "Orchestrator", "quest_id": state.quest_id},
            )
            initial: TurnState = {
                "player_action": player_action or "",
                "route": "",
                "continuing": False,
                "tracking": self.tracking.model_copy(deep=True),
                "details": None,
                "boss": self.boss,
                "prompt": None,
                "preflight": None,
                "turn": None,
                "narration": "",
                "candidate": None,
                "postflight": None,
                "generation_time": 0.0,
                "error": None,
                "result": None,
            }
            self.timer = PhaseTimer()
            final = await self.graph.ainvoke(initial)
        finally:
            self._generating = False

        result = final["result"]
        if result is None:
            raise NarrativeEngineError("Turn graph finished without a result")
        return result

    # Graph

    def _build_graph(self) -> Any:
        builder = StateGraph(TurnState)

        builder.add_node("route", self._route)
        builder.add_node("already_completed", self._already_completed)
        builder.add_node("overdue", self._resolve_overdue)
        builder.add_node("failed", self._fail_quest)
        builder.add_node("select_encounter", self._select_encounter)
        builder.add_node("setup", self._setup_encounter)
        builder.add_node("assemble", self._assemble_context)
        builder.add_node("preflight", self._preflight)
        builder.add_node("generate", self._generate)
        builder.add_node("apply", self._apply)
        builder.add_node("postflight", self._postflight)
        builder.add_node("commit", self._commit)
        builder.add_node("abort", self._abort)

        builder.add_edge(START, "route")
        builder.add_conditional_edges(
            "route",
            lambda state: state["route"],
            {
                "completed": "already_completed",
                "overdue": "overdue",
                "failed": "failed",
                "play": "select_encounter",
            },
        )
        builder.add_conditional_edges(
            "select_encounter", self._next_or_abort("setup"), {"setup": "setup", "abort": "abort"}
        )
        builder.add_conditional_edges(
            "setup", self._next_or_abort("assemble"), {"assemble": "assemble", "abort": "abort"}
        )
        builder.add_edge("assemble", "preflight")
        builder.add_conditional_edges(
            "preflight",
            self._next_or_abort("generate"),
            {"generate": "generate", "abort": "abort"},
        )
        builder.add_conditional_edges(
            "generate", self._next_or_abort("apply"), {"apply": "apply", "abort": "abort"}
        )
        builder.add_conditional_edges(
            "apply",
            self._next_or_abort("postflight"),
            {"postflight": "postflight", "abort": "abort"},
        )
        builder.add_conditional_edges(
            "postflight", self._next_or_abort("commit"), {"commit": "commit", "abort": "abort"}
        )

        for terminal in ("already_completed", "overdue", "failed", "commit", "abort"):
            builder.add_edge(terminal, END)

        return builder.compile()

    @staticmethod
    def _next_or_abort(next_node: str) -> Callable[[TurnState], str]:
        def decide(state: TurnState) -> str:
            return "abort" if state["error"] else next_node

        return decide

    # Routing and quest terminal flows

    def _route(self, turn: TurnState) -> Dict[str, Any]:
        state = self.store.state
        if state.completed:
            route = "completed"
        elif state.current_encounter > state.total_encounters:
            route = "overdue"
        elif self.failure_predicate(state):
            route = "failed"
        else:
            route = "play"
        logger.debug(f"[Orchestrator] Route: {route}")
        return {"route": route}

    def _already_completed(self, turn: TurnState) -> Dict[str, Any]:
        logger.info("[Orchestrator] Quest already completed; no encounter generated")
        return {
            "result": TurnResult(
                status=TurnStatus.ALREADY_COMPLETED,
                log=[prompts.QUEST_ALREADY_COMPLETED_MESSAGE],
                state=self.store.snapshot(),
            )
        }

    def _resolve_overdue(self, turn: TurnState) -> Dict[str, Any]:
        """Past the last encounter: code-controlled quests fail, the rest complete."""
        state = self.store.state
        if self.config.is_code_controlled(state.quest_type):
            logger.warning(
                f"[Orchestrator] {state.quest_type.value} quest {state.quest_id} "
                f"overran {state.total_encounters} encounters without completion",
                extra={"component": "Orchestrator", "quest_id": state.quest_id},
            )
            return {"result": self._fail_result()}

        logger.info(
            f"[Orchestrator] Auto-completing {state.quest_type.value} quest {state.quest_id}",
            extra={"component": "Orchestrator", "quest_id": state.quest_id},
        )
        self.store.mark_completed()
        self._save()
        return {
            "result": TurnResult(
                status=TurnStatus.QUEST_COMPLETED,
                log=[prompts.QUEST_COMPLETED_MESSAGE.format(goal=state.goal)],
                state=self.store.snapshot(),
            )
        }

    def _fail_quest(self, turn: TurnState) -> Dict[str, Any]:
        state = self.store.state
        logger.info(
            f"[Orchestrator] Failure condition met for quest {state.quest_id}",
            extra={"component": "Orchestrator", "quest_id": state.quest_id},
        )
        return {"result": self._fail_result()}

    def _fail_result(self) -> TurnResult:
        state = self.store.state
        if not state.failed:
            self.store.mark_failed()
            self._save()
        return TurnResult(
            status=TurnStatus.QUEST_FAILED,
            log=[prompts.QUEST_FAILED_MESSAGE.format(goal=state.goal)],
            state=self.store.snapshot(),
        )

    # Encounter selection and setup

    async def _select_encounter(self, turn: TurnState) -> Dict[str, Any]:
        state = self.store.state
        tracking = turn["tracking"]

        if should_continue_conversation(
            tracking, turn["player_action"], self.config.max_conversation_turns
        ):
            tracking.conversation_turns += 1
            logger.info(
                f"[Orchestrator] Continuing conversation with {tracking.active_npc.name} "
                f"({tracking.conversation_turns}/{self.config.max_conversation_turns})"
            )
            return {
                "continuing": True,
                "tracking": tracking,
                "details": EncounterDetails(encounter_type=EncounterType.SOCIAL),
            }

        tracking.clear_npc()
        self.timer.start("assembly")
        specialist = self.config.classification_specialist
        max_tokens = self.assembler.available_tokens(
            TokenEstimator.estimate_tokens(prompts.ENCOUNTER_SYSTEM), 0
        )
        assembled = self.assembler.assemble(state, specialist, max_tokens)
        scene = build_encounter_prompt(state, compact_json(assembled.to_wire()), tracking)
        prompt = StructuredContext(
            instructions=prompts.ENCOUNTER_SYSTEM,
            scene=scene,
            context=assembled,
            tokens=self._token_breakdown(prompts.ENCOUNTER_SYSTEM, scene, 0, assembled.tokens_used),
        )
        self.timer.end("assembly")

        try:
            requested = await self.encounter_source.classify(
                prompt, GenerationOptions(temperature=0.7, max_tokens=50)
            )
        except Exception as e:
            logger.error(f"[Orchestrator] Encounter classification failed: {e}")
            return {"error": f"Encounter classification failed: {e}", "tracking": tracking}

        details = enforce_final_encounter(state, requested)
        details = enforce_variety(details, tracking, state.is_final_encounter)
        logger.info(
            f"[Orchestrator] Encounter {state.current_encounter + 1}: "
            f"{details.encounter_type.value} ({details.difficulty.value})"
            + (
                f", requested {requested.encounter_type.value}"
                if requested.encounter_type != details.encounter_type
                else ""
            ),
            extra={"component": "Orchestrator", "quest_id": state.quest_id},
        )
        return {"continuing": False, "tracking": tracking, "details": details}

    async def _setup_encounter(self, turn: TurnState) -> Dict[str, Any]:
        state = self.store.state
        tracking = turn["tracking"]
        details = turn["details"]
        boss = turn["boss"]
        encounter_type = details.encounter_type

        try:
            if encounter_type == EncounterType.COMBAT:
                is_boss = (
                    state.quest_type == QuestType.COMBAT and details.difficulty == Difficulty.BOSS
                )
                if is_boss:
                    if boss is None:
                        boss = await self.encounter_source.monster(
                            state, Difficulty.BOSS, is_boss=True
                        )
                    monster = boss
                else:
                    monster = await self.encounter_source.monster(
                        state, details.difficulty, is_boss=False
                    )
                tracking.clear_npc()
                tracking.active_monster = monster
                logger.info(f"[Orchestrator] Monster: {monster.name} (level {monster.level})")
            elif encounter_type == EncounterType.SOCIAL:
                tracking.active_monster = None
                if not turn["continuing"]:
                    npc = await self.encounter_source.npc(
                        state, sorted(state.npc_relations.keys())
                    )
                    tracking.active_npc = npc
                    tracking.conversation_turns = 0
                    logger.info(f"[Orchestrator] NPC: {npc.name} ({npc.occupation})")
            else:
                tracking.clear_encounter_actors()
        except Exception as e:
            logger.error(f"[Orchestrator] Encounter setup failed: {e}")
            return {"error": f"Encounter setup failed: {e}"}

        return {"tracking": tracking, "boss": boss}

    # Context, validation and generation

    def _token_breakdown(
        self, instructions: str, scene_frame: str, history_tokens: int, state_tokens: int
    ) -> TokenBreakdown:
        return TokenBreakdown(
            window=self.config.context_window,
            instructions=TokenEstimator.estimate_tokens(instructions)
            + TokenEstimator.estimate_tokens(scene_frame),
            history=history_tokens,
            state=state_tokens,
            reservation=self.config.response_reservation_tokens,
            margin=self.config.safety_margin_tokens,
        )

    def _assemble_context(self, turn: TurnState) -> Dict[str, Any]:
        state = self.store.state
        self.timer.start("assembly")
        specialist = self.config.narration_specialist

        def scene_for(state_json: str) -> str:
            return build_scene(
                state,
                state_json,
                turn["details"],
                turn["tracking"],
                turn["player_action"],
                continuing_conversation=turn["continuing"],
            )

        # Framing without the payload is charged as instructions
        frame = scene_for("")
        history = self.sessions.history(specialist)
        history_tokens = self.sessions.history_tokens(specialist)
        instruction_tokens = TokenEstimator.estimate_tokens(
            prompts.ADVENTURE_SYSTEM
        ) + TokenEstimator.estimate_tokens(frame)

        max_tokens = self.assembler.available_tokens(instruction_tokens, history_tokens)
        assembled = self.assembler.assemble(state, specialist, max_tokens)
        scene = scene_for(compact_json(assembled.to_wire()))
        tokens = self._token_breakdown(
            prompts.ADVENTURE_SYSTEM, frame, history_tokens, assembled.tokens_used
        )

        usage = TokenEstimator.analyze_usage(
            window=tokens.window,
            instructions=tokens.instructions,
            history=tokens.history,
            state=tokens.state,
            reservation=tokens.reservation,
            margin=tokens.margin,
            prompt_text=scene,
        )
        logger.verbose(  # type: ignore[attr-defined]
            f"[Orchestrator] Context {usage.total_tokens}/{usage.window} tokens "
            f"({usage.percent_used}%, {usage.level.value})",
            extra={
                "component": "Orchestrator",
                "quest_id": state.quest_id,
                "tiers": [t.value for t in assembled.included_tiers],
            },
        )
        if usage.level == UsageLevel.CRITICAL:
            for warning in usage.warnings:
                logger.warning(f"[Orchestrator] {warning}")

        prompt = StructuredContext(
            instructions=prompts.ADVENTURE_SYSTEM,
            scene=scene,
            history=history,
            context=assembled,
            tokens=tokens,
        )
        self.timer.end("assembly")
        return {"prompt": prompt}

    def _preflight(self, turn: TurnState) -> Dict[str, Any]:
        self.timer.start("validation")
        result = self.validator.validate_before_call(self.store.state, turn["prompt"])
        self.timer.end("validation")
        if not result.is_valid:
            return {
                "preflight": result,
                "error": "Pre-flight validation failed: "
                + "; ".join(e.message for e in result.errors),
            }
        return {"preflight": result}

    async def _generate(self, turn: TurnState) -> Dict[str, Any]:
        """Stream the generator; partial narration is forwarded, never committed."""
        options = GenerationOptions(max_tokens=self.config.response_reservation_tokens)
        final: Optional[StructuredTurn] = None

        self.timer.start("generation")
        try:
            async for update in self.generator.stream(turn["prompt"], options):
                if isinstance(update, NarrationUpdate):
                    if self.on_narration is not None:
                        self.on_narration(update)
                else:
                    final = update
        except Exception as e:
            elapsed = self.timer.end("generation")
            logger.error(
                f"[Orchestrator] Narration generation failed after {elapsed:.2f}s: {e}",
                extra={"component": "Orchestrator", "error_type": type(e).__name__},
            )
            return {"error": f"Narration generation failed: {e}", "generation_time": elapsed}

        elapsed = self.timer.end("generation")
        if final is None:
            logger.error("[Orchestrator] Generator finished without a structured turn")
            return {"error": "Generator returned no structured turn", "generation_time": elapsed}
        return {"turn": final, "generation_time": elapsed}

    def _apply(self, turn: TurnState) -> Dict[str, Any]:
        """Build the candidate state on a forked store."""
        structured = turn["turn"]
        narration = sanitize_narration(structured.narration)
        state = self.store.state
        candidate = self.store.fork()

        try:
            apply_turn(
                candidate,
                structured,
                narration,
                turn["details"],
                turn["tracking"],
                continuing_conversation=turn["continuing"],
            )
        except StateCorruptionError as e:
            logger.error(f"[Orchestrator] Candidate state rejected: {e}")
            return {
                "narration": narration,
                "postflight": ValidationResult(
                    errors=[
                        ValidationError(
                            kind=ValidationErrorKind.STATE_CORRUPTION, message=str(e)
                        )
                    ]
                ),
                "error": str(e),
            }

        if self.config.is_code_controlled(state.quest_type):
            if check_code_completion(state, turn["player_action"], narration):
                candidate.mark_completed()
        elif structured.progress is not None and structured.progress.completed:
            candidate.mark_completed()

        return {"narration": narration, "candidate": candidate}

    def _postflight(self, turn: TurnState) -> Dict[str, Any]:
        self.timer.start("validation")
        result = self.validator.validate_after_response(
            prev_state=self.store.state,
            new_state=turn["candidate"].state,
            narration=turn["narration"],
            structured_turn=turn["turn"],
            recent_narrations=list(self.recent_narrations),
        )
        self.timer.end("validation")
        if not result.is_valid:
            return {
                "postflight": result,
                "error": "Post-flight validation failed: "
                + "; ".join(e.message for e in result.errors),
            }
        return {"postflight": result}

    # Terminal nodes

    def _commit(self, turn: TurnState) -> Dict[str, Any]:
        previous = self.store.snapshot()
        candidate = turn["candidate"]
        details = turn["details"]
        structured = turn["turn"]
        narration = turn["narration"]
        tracking = turn["tracking"]

        tracking.track(details.encounter_type)
        tracking.store_keywords(extract_keywords(narration))

        self.store.adopt(candidate.state)
        self.tracking = tracking
        self.boss = turn["boss"]
        self.recent_narrations.append(narration)
        self.sessions.record(self.config.narration_specialist, narration)
        new_state = self.store.snapshot()

        log = [narration]
        if new_state.completed and not previous.completed:
            log.append(prompts.QUEST_COMPLETED_MESSAGE.format(goal=new_state.goal))

        self._log_transition(turn, previous, new_state)
        self._save()

        return {
            "result": TurnResult(
                status=TurnStatus.COMMITTED,
                narration=narration,
                suggested_actions=list(structured.suggested_actions),
                encounter=details,
                validation=turn["postflight"],
                log=log,
                state=new_state,
            )
        }

    def _log_transition(self, turn: TurnState, previous: QuestState, new_state: QuestState):
        self.timer.start("logging")
        prompt = turn["prompt"]
        structured = turn["turn"]
        included = prompt.context.included_tiers
        specialist = self.config.specialist(self.config.narration_specialist)
        excluded: List[ContextTier] = [t for t in specialist.tiers if t not in included]

        added = [
            t.id
            for t in new_state.threads + new_state.archived_threads
            if t.id.startswith(f"e{new_state.current_encounter}-")
        ]
        transition = StateTransition(
            quest_id=new_state.quest_id,
            encounter=new_state.current_encounter,
            previous_state=previous,
            new_state=new_state,
            context=ContextSnapshot(
                specialist=prompt.context.specialist,
                tokens=prompt.tokens,
                included_tiers=included,
                excluded_tiers=excluded,
            ),
            response=ResponseSnapshot(
                narration=turn["narration"],
                generation_time=turn["generation_time"],
                new_threads=added,
                resolved_threads=list(structured.narrative_updates.resolved_thread_ids),
                causal_event=structured.causal_event,
            ),
            consistency=turn["postflight"].consistency,
            timings=self._phase_timings(),
        )
        # The JSONL line can only carry the logging time up to its own write;
        # the in-memory record is restamped once the write has finished.
        self.transitions.log(transition)
        self.timer.end("logging")
        transition.timings = self._phase_timings()

    def _phase_timings(self) -> PhaseTimings:
        return PhaseTimings(
            assembly=self.timer.get("assembly"),
            generation=self.timer.get("generation"),
            validation=self.timer.get("validation"),
            logging=self.timer.elapsed("logging"),
        )

    def _abort(self, turn: TurnState) -> Dict[str, Any]:
        """Discard the candidate turn; nothing committed changes."""
        validation = turn["postflight"] or turn["preflight"]
        state = self.store.state
        logger.warning(
            f"[Orchestrator] Turn aborted at encounter {state.current_encounter + 1}: "
            f"{turn['error']}",
            extra={"component": "Orchestrator", "quest_id": state.quest_id},
        )

        narration = None
        if (
            self.config.show_rejected_narration
            and turn["postflight"] is not None
            and turn["postflight"].only_consistency_errors
        ):
            narration = turn["narration"]

        return {
            "result": TurnResult(
                status=TurnStatus.ABORTED,
                narration=narration,
                encounter=turn["details"],
                validation=validation,
                log=[prompts.TURN_FAILED_MESSAGE],
                state=self.store.snapshot(),
            )
        }

    # Helpers

    def _ensure_idle(self):
        if self._generating:
            raise TurnInProgressError("A turn is already in progress")

    def _reset_turn_state(self):
        self.tracking = EncounterTracking()
        self.sessions.reset()
        self.recent_narrations.clear()

    def _save(self):
        if self.repository is not None and self.store.has_quest:
            self.repository.save(self.store.state)
