"""
Tests for narration helpers and applying generated turns to a store.
"""

import pytest

from questweaver.engine.encounters import EncounterTracking
from questweaver.engine.narration import (
    MAX_SUMMARY_CHARS,
    apply_turn,
    build_encounter_prompt,
    build_scene,
    encounter_summary,
    extract_keywords,
    next_tension_delta,
    sanitize_narration,
    stage_guidance,
)
from questweaver.schemas.narrative import (
    CausalEvent,
    NPCRelation,
    QuestStage,
    QuestState,
    QuestType,
    ThreadKind,
)
from questweaver.schemas.turn import (
    Difficulty,
    EncounterDetails,
    EncounterType,
    Monster,
    NarrativeUpdates,
    NPCProfile,
    NPCUpdate,
    ThreadProposal,
)


class TestSanitize:
    """Cleaning leaked structured-output markers"""

    def test_clean_text_unchanged(self):
        assert sanitize_narration("You open the door.") == "You open the door."

    def test_strips_leaked_fields(self):
        text = 'You open the door.\nsuggested_actions: ["Enter", "Wait"]'
        assert sanitize_narration(text) == "You open the door."

    def test_strips_lone_brackets_and_quotes(self):
        text = '"You open the door.\n}\n"'
        assert sanitize_narration(text) == "You open the door."

    def test_collapses_whitespace(self):
        assert sanitize_narration("You   open\n\nthe door.") == "You open the door."

    def test_keeps_original_when_nothing_remains(self):
        text = "narration: leaked"
        assert sanitize_narration(text) == text

    def test_empty(self):
        assert sanitize_narration("") == ""


class TestKeywords:
    def test_narration_keywords(self):
        text = "You attack the goblin and it is defeated."
        assert extract_keywords(text) == "attack, goblin, defeated"

    def test_player_action_skips_outcome(self):
        text = "You attack the goblin and it is defeated."
        assert extract_keywords(text, is_player_action=True) == "attack, goblin"

    def test_no_keywords(self):
        assert extract_keywords("Silence.") == ""


class TestEncounterSummary:
    def test_monster(self):
        summary = encounter_summary("x", EncounterType.COMBAT, monster=Monster(name="Cave Troll"))
        assert summary == "fight Cave Troll"

    def test_npc(self):
        summary = encounter_summary("x", EncounterType.SOCIAL, npc=NPCProfile(name="Mira"))
        assert summary == "meet Mira"

    def test_falls_back_to_type(self):
        assert encounter_summary("Silence.", EncounterType.PUZZLE) == "puzzle"

    def test_truncated(self):
        summary = encounter_summary("x", EncounterType.COMBAT, monster=Monster(name="M" * 100))
        assert len(summary) == MAX_SUMMARY_CHARS


class TestSceneFraming:
    def test_early_guidance_mentions_goal(self, store):
        assert store.state.goal in stage_guidance(store.state)

    def test_late_non_final_has_no_guidance(self, store):
        for _ in range(6):
            store.increment_encounter()
        # Encounter 7 of 8 is past the middle band but not the final one
        assert stage_guidance(store.state) == ""

    def test_final_guidance_names_objective(self, store):
        for _ in range(7):
            store.increment_encounter()
        guidance = stage_guidance(store.state)
        assert "FINAL" in guidance
        assert "silver chalice" in guidance

    def test_scene_with_monster(self, store):
        tracking = EncounterTracking(active_monster=Monster(name="Cave Troll", description="Big."))
        details = EncounterDetails(encounter_type=EncounterType.COMBAT, difficulty=Difficulty.HARD)

        scene = build_scene(store.state, "{}", details, tracking, "Draw my sword")

        assert "Cave Troll" in scene
        assert "Encounter 1 of 8 (combat, hard)" in scene
        assert "Player action: Draw my sword" in scene

    def test_scene_continuing_conversation(self, store):
        tracking = EncounterTracking(active_npc=NPCProfile(name="Mira"))
        details = EncounterDetails(encounter_type=EncounterType.SOCIAL)
        scene = build_scene(store.state, "{}", details, tracking, "", continuing_conversation=True)
        assert "Continue the conversation with Mira" in scene
        assert "Player action: (none)" in scene

    def test_encounter_prompt_final_hint(self, store):
        for _ in range(7):
            store.increment_encounter()
        tracking = EncounterTracking(keywords=["search, door"])
        prompt = build_encounter_prompt(store.state, '{"stage":"climax"}', tracking)
        assert "FINAL encounter" in prompt
        assert "search, door" in prompt


class TestTensionArc:
    @pytest.mark.parametrize(
        "stage,tension,expected",
        [
            (QuestStage.INTRO, 2, 0),
            (QuestStage.INTRO, 1, 1),
            (QuestStage.RISING, 3, 1),
            (QuestStage.RISING, 7, -1),
            (QuestStage.CLIMAX, 9, 0),
            (QuestStage.RESOLUTION, 6, -1),
        ],
    )
    def test_steps_toward_target(self, stage, tension, expected):
        state = QuestState(
            quest_id="q",
            quest_type=QuestType.COMBAT,
            goal="g",
            location="l",
            total_encounters=8,
            stage=stage,
            tension=tension,
        )
        assert next_tension_delta(state) == expected


class TestApplyTurn:
    """Applying a generated turn to a forked candidate store"""

    def test_full_update(self, store, make_turn):
        store.update_npc_relations(lambda r: r.setdefault("Brother Aldo", NPCRelation()))
        candidate = store.fork()
        tracking = EncounterTracking(active_npc=NPCProfile(name="Mira"))
        turn = make_turn(
            updates=NarrativeUpdates(
                new_threads=[
                    ThreadProposal(text="Who paid the thieves?", kind=ThreadKind.MYSTERY),
                    ThreadProposal(text="Mira owes a debt", priority=3),
                ],
                cleared=["mill"],
                locked=["crypt"],
                npc_updates=[NPCUpdate(name="Brother Aldo", relationship_delta=-3)],
                tension_delta=2,
            ),
            causal_event=CausalEvent(
                event="Mira points north", cause="you asked about the thieves"
            ),
        )

        apply_turn(
            candidate,
            turn,
            turn.narration,
            EncounterDetails(encounter_type=EncounterType.SOCIAL),
            tracking,
        )
        state = candidate.state

        assert state.current_encounter == 1
        assert state.encounter_summaries == ["meet Mira"]
        assert [t.id for t in state.threads] == ["e1-t1", "e1-t2"]
        assert state.chain[0].encounter == 1
        assert state.location_state.cleared == {"mill"}
        assert state.location_state.locked == {"crypt"}
        assert state.npc_relations["Mira"].times_met == 1
        assert state.npc_relations["Brother Aldo"].relationship == -3
        assert state.tension == 4

        # The original store is untouched
        assert store.state.current_encounter == 0
        assert "Mira" not in store.state.npc_relations

    def test_tension_follows_arc_without_delta(self, store, make_turn):
        for _ in range(3):
            store.increment_encounter()
        apply_turn(
            store,
            make_turn(encounter=4),
            "You press on.",
            EncounterDetails(encounter_type=EncounterType.EXPLORATION),
            EncounterTracking(),
        )
        # Rising stage pulls tension up from 2 toward 5
        assert store.state.stage == QuestStage.RISING
        assert store.state.tension == 3

    def test_continuing_conversation_does_not_recount_meeting(self, store, make_turn):
        store.update_npc_relations(lambda r: r.setdefault("Mira", NPCRelation(times_met=1)))
        apply_turn(
            store,
            make_turn(),
            "Mira nods.",
            EncounterDetails(encounter_type=EncounterType.SOCIAL),
            EncounterTracking(active_npc=NPCProfile(name="Mira")),
            continuing_conversation=True,
        )
        assert store.state.npc_relations["Mira"].times_met == 1
        assert store.state.npc_relations["Mira"].last_interaction == "Mira nods."

    def test_unlock_and_threat_removal(self, store, make_turn):
        def mutate(location):
            location.locked.add("crypt")
            location.active_threats.add("wolves")

        store.update_location_state(mutate)
        apply_turn(
            store,
            make_turn(
                updates=NarrativeUpdates(unlocked=["crypt"], removed_threats=["wolves"])
            ),
            "You pry the crypt open.",
            EncounterDetails(encounter_type=EncounterType.EXPLORATION),
            EncounterTracking(),
        )
        assert store.state.location_state.locked == set()
        assert store.state.location_state.active_threats == set()
