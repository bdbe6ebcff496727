"""
Tests for the context assembler and specialist sessions.
"""

import pytest

from questweaver.config import EngineConfig
from questweaver.engine.context import (
    ContextAssembler,
    SpecialistSessions,
    build_narrative_tier,
    build_situation_tier,
)
from questweaver.schemas.context import ContextTier, Specialist
from questweaver.schemas.narrative import NPCRelation
from questweaver.utils.tokens import TokenEstimator


class TestAvailableTokens:
    """Safe prompt size arithmetic"""

    def test_formula(self, engine_config):
        assembler = ContextAssembler(engine_config)
        # 4096 - 100 - 200 - 200 (reservation) - 50 (margin)
        assert assembler.available_tokens(100, 200) == 3546

    def test_clamped_at_zero(self, engine_config):
        assembler = ContextAssembler(engine_config)
        assert assembler.available_tokens(4000, 4000) == 0


class TestAssemble:
    """Tier selection under a token budget"""

    def test_narration_specialist_gets_all_nonempty_tiers(self, engine_config, store):
        assembler = ContextAssembler(engine_config)
        result = assembler.assemble(store.state, "adventure", 3000)

        assert result.included_tiers == [
            ContextTier.CRITICAL,
            ContextTier.NARRATIVE,
            ContextTier.SITUATION,
        ]
        wire = result.to_wire()
        assert wire["stage"] == "intro"
        assert wire["goal"] == store.state.goal
        assert wire["questType"] == "retrieval"
        assert "locations" in wire
        assert result.tokens_used == TokenEstimator.estimate_payload(wire)

    def test_classification_specialist_gets_critical_only(self, engine_config, store):
        assembler = ContextAssembler(engine_config)
        result = assembler.assemble(store.state, "encounter", 3000)

        assert result.included_tiers == [ContextTier.CRITICAL]
        assert result.to_wire() == {"stage": "intro"}

    def test_unknown_specialist(self, engine_config, store):
        with pytest.raises(KeyError):
            ContextAssembler(engine_config).assemble(store.state, "bard", 100)

    def test_zero_budget_is_empty(self, engine_config, store):
        result = ContextAssembler(engine_config).assemble(store.state, "adventure", 0)
        assert result.included_tiers == []
        assert result.is_empty
        assert result.tokens_used == 0

    @pytest.mark.parametrize("max_tokens", [0, 3, 5, 10, 25, 40, 60, 80, 120, 500])
    def test_never_exceeds_budget(self, engine_config, store, max_tokens):
        """The payload's estimated cost never exceeds max_tokens"""
        store.add_thread("The abbot lied about the night of the theft", priority=8)
        store.update_npc_relations(lambda r: r.setdefault("Brother Aldo", NPCRelation()))

        result = ContextAssembler(engine_config).assemble(store.state, "adventure", max_tokens)

        assert result.tokens_used <= max_tokens
        assert TokenEstimator.estimate_payload(result.to_wire()) <= max_tokens
        assert result.tokens_used == TokenEstimator.estimate_payload(result.to_wire())

    def test_tiers_are_strictly_cumulative(self, store):
        """Once a tier is skipped, later tiers are not considered even if they fit"""
        for index in range(5):
            store.add_thread("A very long and winding rumour " * 6 + str(index), priority=5)

        config = EngineConfig()
        assembler = ContextAssembler(config)
        critical_cost = assembler.assemble(store.state, "encounter", 1000).tokens_used
        situation_cost = TokenEstimator.estimate_payload(build_situation_tier(store.state).to_wire())
        narrative_cost = TokenEstimator.estimate_payload(build_narrative_tier(store.state).to_wire())
        assert narrative_cost > situation_cost

        # Enough for critical and situation together, not for the narrative tier
        budget = critical_cost + situation_cost + 2
        assert budget < critical_cost + narrative_cost

        result = assembler.assemble(store.state, "adventure", budget)
        assert result.included_tiers == [ContextTier.CRITICAL]
        assert result.situation is None

    def test_custom_specialist_order(self, store):
        config = EngineConfig(
            specialists={
                "scout": Specialist(
                    name="scout", tiers=[ContextTier.SITUATION, ContextTier.CRITICAL]
                )
            }
        )
        result = ContextAssembler(config).assemble(store.state, "scout", 1000)
        assert result.included_tiers == [ContextTier.SITUATION, ContextTier.CRITICAL]

    def test_narrative_tier_excludes_resolved_threads(self, store):
        done = store.add_thread("Found the key", priority=4)
        store.add_thread("Who hired the thieves?", priority=7)
        store.resolve_thread(done.id)

        tier = build_narrative_tier(store.state)
        assert [t.text for t in tier.threads] == ["Who hired the thieves?"]

    def test_narrative_tier_wire_is_sorted(self, store):
        def mutate(location):
            location.cleared.update({"mill", "chapel", "bridge"})

        store.update_location_state(mutate)
        wire = build_narrative_tier(store.state).to_wire()
        assert wire["locations"]["cleared"] == ["bridge", "chapel", "mill"]


class TestSpecialistSessions:
    """Per-specialist conversation history"""

    def test_record_and_tokens(self):
        sessions = SpecialistSessions(reset_turns=3)
        sessions.record("adventure", "x" * 40)
        sessions.record("adventure", "y" * 8)

        assert sessions.history("adventure") == ["x" * 40, "y" * 8]
        assert sessions.history_tokens("adventure") == 12
        assert sessions.turn_count("adventure") == 2
        assert sessions.history_tokens("encounter") == 0

    def test_resets_after_limit(self):
        sessions = SpecialistSessions(reset_turns=2)
        for text in ["one", "two", "three"]:
            sessions.record("adventure", text)

        assert sessions.history("adventure") == ["three"]
        assert sessions.turn_count("adventure") == 1

    def test_reset_all(self):
        sessions = SpecialistSessions()
        sessions.record("adventure", "one")
        sessions.record("encounter", "two")
        sessions.reset()
        assert sessions.history("adventure") == []
        assert sessions.history("encounter") == []
