"""
Tests for pre-flight and post-flight validation.
"""

import pytest

from questweaver.engine.context import ContextAssembler
from questweaver.engine.validator import ConsistencyValidator, count_sentences
from questweaver.schemas.context import AssembledContext, StructuredContext, TokenBreakdown
from questweaver.schemas.narrative import NarrativeThread, NPCRelation, QuestStage
from questweaver.schemas.validation import ValidationErrorKind, ValidationWarningKind
from questweaver.utils.tokens import TokenEstimator

GOOD_NARRATION = (
    "You push through the brambles and find fresh tracks in the mud. "
    "Somewhere ahead, a lantern flickers between the pines."
)


def make_context(state, config, state_tokens=None, window=4096, scene="Scene", **tokens):
    assembled = ContextAssembler(config).assemble(state, "adventure", 3000)
    breakdown = TokenBreakdown(
        window=window,
        instructions=tokens.get("instructions", 100),
        history=tokens.get("history", 0),
        state=assembled.tokens_used if state_tokens is None else state_tokens,
        reservation=config.response_reservation_tokens,
        margin=config.safety_margin_tokens,
    )
    return StructuredContext(instructions="Narrate.", scene=scene, context=assembled, tokens=breakdown)


@pytest.fixture
def validator(engine_config):
    return ConsistencyValidator(engine_config)


class TestPreflight:
    """Checks that run before the generator is called"""

    def test_valid_state_passes(self, validator, store, engine_config):
        result = validator.validate_before_call(store.state, make_context(store.state, engine_config))
        assert result.is_valid
        assert result.warnings == []

    def test_tension_out_of_range(self, validator, store, engine_config):
        state = store.snapshot()
        state.tension = 11
        result = validator.validate_before_call(state, make_context(state, engine_config))
        assert ValidationErrorKind.STATE_CORRUPTION in result.error_kinds()

    def test_relationship_out_of_range(self, validator, store, engine_config):
        state = store.snapshot()
        state.npc_relations["Mira"] = NPCRelation(relationship=-12)
        result = validator.validate_before_call(state, make_context(state, engine_config))
        assert ValidationErrorKind.STATE_CORRUPTION in result.error_kinds()

    def test_duplicate_thread_ids(self, validator, store, engine_config):
        state = store.snapshot()
        state.threads = [
            NarrativeThread(id="t1", text="a"),
            NarrativeThread(id="t1", text="b"),
        ]
        result = validator.validate_before_call(state, make_context(state, engine_config))
        assert result.error_kinds() == [ValidationErrorKind.STATE_CORRUPTION]

    def test_empty_payload(self, validator, store, engine_config):
        context = StructuredContext(
            instructions="Narrate.",
            scene="Scene",
            context=AssembledContext(specialist="adventure"),
            tokens=TokenBreakdown(window=4096),
        )
        result = validator.validate_before_call(store.state, context)
        assert result.error_kinds() == [ValidationErrorKind.MISSING_CONTEXT]

    def test_token_overflow(self, validator, store, engine_config):
        context = make_context(store.state, engine_config, instructions=3900)
        result = validator.validate_before_call(store.state, context)
        assert ValidationErrorKind.TOKEN_OVERFLOW in result.error_kinds()

    def test_high_usage_warns(self, validator, store, engine_config):
        # 3500 + state + 250 reserved lands between 90% and 100% of 4096
        context = make_context(store.state, engine_config, instructions=3500)
        result = validator.validate_before_call(store.state, context)
        assert result.is_valid
        assert ValidationWarningKind.TOKEN_BUDGET in result.warning_kinds()

    def test_stage_mismatch_warns(self, validator, store, engine_config):
        state = store.snapshot()
        state.stage = QuestStage.CLIMAX
        result = validator.validate_before_call(state, make_context(state, engine_config))
        assert result.is_valid
        assert ValidationWarningKind.STATE_INTEGRITY in result.warning_kinds()

    def test_long_scene_warns(self, validator, store, engine_config):
        context = make_context(store.state, engine_config, scene="x" * 1500)
        result = validator.validate_before_call(store.state, context)
        assert ValidationWarningKind.TOKEN_BUDGET in result.warning_kinds()

    def test_pure_function(self, validator, store, engine_config):
        """Running pre-flight twice on unchanged inputs gives identical results"""
        state = store.snapshot()
        state.tension = 0
        state.stage = QuestStage.RESOLUTION
        context = make_context(state, engine_config, instructions=3600)

        first = validator.validate_before_call(state, context)
        second = validator.validate_before_call(state, context)
        assert first == second
        assert first.model_dump() == second.model_dump()


class TestPostflight:
    """Checks that run on the generator's output"""

    def test_good_turn_passes(self, validator, store, make_turn):
        turn = make_turn()
        result = validator.validate_after_response(
            store.state, store.state, turn.narration, turn
        )
        assert result.is_valid
        assert result.warnings == []
        assert result.consistency is not None

    def test_narration_too_long(self, validator, store, make_turn):
        narration = "You walk on. " * 40
        turn = make_turn(narration=narration)
        result = validator.validate_after_response(store.state, store.state, narration, turn)
        assert ValidationErrorKind.FORMAT_VIOLATION in result.error_kinds()

    def test_empty_narration(self, validator, store, make_turn):
        turn = make_turn(narration="   ")
        result = validator.validate_after_response(store.state, store.state, "   ", turn)
        assert ValidationErrorKind.FORMAT_VIOLATION in result.error_kinds()

    def test_missing_progress(self, validator, store, make_turn):
        turn = make_turn().model_copy(update={"progress": None})
        result = validator.validate_after_response(
            store.state, store.state, turn.narration, turn
        )
        assert result.error_kinds() == [ValidationErrorKind.FORMAT_VIOLATION]

    @pytest.mark.parametrize(
        "narration",
        [
            "The hero walks into the glade. Birds scatter from the oaks.",
            "He walks into the glade. Birds scatter from the oaks above.",
            "You see the warrior. She draws her blade and waits in silence.",
        ],
    )
    def test_third_person(self, validator, store, make_turn, narration):
        turn = make_turn(narration=narration)
        result = validator.validate_after_response(store.state, store.state, narration, turn)
        assert ValidationErrorKind.FORMAT_VIOLATION in result.error_kinds()

    def test_pronoun_inside_word_allowed(self, validator, store, make_turn):
        """'the', 'there' and 'shelter' do not count as he/she"""
        narration = "You reach the shelter there at dusk. The rain hammers the roof."
        turn = make_turn(narration=narration)
        result = validator.validate_after_response(store.state, store.state, narration, turn)
        assert result.is_valid

    def test_short_narration_warns(self, validator, store, make_turn):
        narration = "You wait. Nothing."
        turn = make_turn(narration=narration)
        result = validator.validate_after_response(store.state, store.state, narration, turn)
        assert result.is_valid
        assert ValidationWarningKind.FORMAT_ISSUE in result.warning_kinds()

    def test_missing_suggested_actions_warns(self, validator, store, make_turn):
        turn = make_turn(suggested_actions=[])
        result = validator.validate_after_response(
            store.state, store.state, turn.narration, turn
        )
        assert result.is_valid
        assert ValidationWarningKind.FORMAT_ISSUE in result.warning_kinds()

    def test_suggestion_phrasing_warns(self, validator, store, make_turn):
        narration = "A door stands before you. You could open it, or what do you choose?"
        turn = make_turn(narration=narration)
        result = validator.validate_after_response(store.state, store.state, narration, turn)
        assert result.warning_kinds().count(ValidationWarningKind.NARRATIVE_QUALITY) == 2

    def test_sentence_count_warns(self, validator, store, make_turn):
        narration = "You walk along the quiet river for most of the long afternoon."
        turn = make_turn(narration=narration)
        result = validator.validate_after_response(store.state, store.state, narration, turn)
        assert ValidationWarningKind.NARRATIVE_QUALITY in result.warning_kinds()

    def test_major_consistency_issue_is_warning(self, validator, store, make_turn):
        new_state = store.snapshot()
        new_state.location_state.locked.add("vault")
        narration = "You walk into the vault and see treasure. Gold glitters everywhere."
        turn = make_turn(narration=narration)

        result = validator.validate_after_response(store.state, new_state, narration, turn)
        assert result.is_valid
        assert ValidationWarningKind.CONSISTENCY_ISSUE in result.warning_kinds()

    def test_good_narration_fixture_counts(self):
        assert count_sentences(GOOD_NARRATION) == 2
        assert 50 <= len(GOOD_NARRATION) <= 400
        assert TokenEstimator.estimate_tokens(GOOD_NARRATION) > 0
