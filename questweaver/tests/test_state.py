"""
Tests for the narrative state store.
"""

import pytest

from questweaver.engine.errors import NoActiveQuestError, StateCorruptionError
from questweaver.engine.state import NarrativeStateStore
from questweaver.schemas.narrative import (
    CausalEvent,
    NPCRelation,
    QuestStage,
    QuestType,
    ThreadKind,
    stage_for_progress,
)


class TestQuestLifecycle:
    """Starting, ending and copying quests"""

    def test_start_quest_initial_state(self):
        """A fresh quest starts at the intro with tension 2 and nothing recorded"""
        store = NarrativeStateStore()
        state = store.start_quest(
            quest_id="q1",
            quest_type=QuestType.RETRIEVAL,
            goal="Find the map",
            location="Docks",
            total_encounters=8,
        )

        assert state.stage == QuestStage.INTRO
        assert state.tension == 2
        assert state.current_encounter == 0
        assert state.threads == []
        assert state.chain == []
        assert state.npc_relations == {}

    def test_increment_four_times_reaches_rising(self, store):
        """Four of eight encounters is a 0.5 ratio, the rising stage"""
        for _ in range(4):
            store.increment_encounter()

        assert store.state.current_encounter == 4
        assert store.state.stage == QuestStage.RISING

    def test_no_active_quest(self):
        """Reading state without a quest raises"""
        store = NarrativeStateStore()
        assert not store.has_quest
        with pytest.raises(NoActiveQuestError):
            store.state

    def test_end_quest_returns_final_state(self, store):
        ended = store.end_quest()
        assert ended.quest_id == "quest-1"
        assert not store.has_quest

    def test_invalid_total_encounters(self):
        with pytest.raises(ValueError):
            NarrativeStateStore().start_quest(
                quest_id="q", quest_type=QuestType.COMBAT, goal="g", location="l", total_encounters=0
            )

    def test_fork_is_independent(self, store):
        """Writes to a forked store never reach the original"""
        fork = store.fork()
        fork.increment_encounter()
        fork.add_thread("A stranger watches", priority=6)

        assert store.state.current_encounter == 0
        assert store.state.threads == []

    def test_snapshot_is_deep_copy(self, store):
        snapshot = store.snapshot()
        store.update_location_state(lambda loc: loc.cleared.add("mill"))
        assert snapshot.location_state.cleared == set()


class TestStageProgression:
    """The stage is derived from progress only"""

    @pytest.mark.parametrize(
        "current,total,expected",
        [
            (0, 10, QuestStage.INTRO),
            (2, 10, QuestStage.INTRO),
            (3, 10, QuestStage.RISING),
            (6, 10, QuestStage.RISING),
            (7, 10, QuestStage.CLIMAX),
            (9, 10, QuestStage.CLIMAX),
            (19, 20, QuestStage.RESOLUTION),
            (10, 10, QuestStage.RESOLUTION),
            (11, 10, QuestStage.RESOLUTION),
        ],
    )
    def test_stage_bands(self, current, total, expected):
        assert stage_for_progress(current, total) == expected

    def test_stage_follows_every_increment(self, store):
        """After every increment the stored stage matches the band table"""
        total = store.state.total_encounters
        for _ in range(total):
            store.increment_encounter()
            state = store.state
            assert state.stage == stage_for_progress(state.current_encounter, total)

    def test_increment_allows_one_grace_encounter(self, store):
        """The encounter counter may reach total + 1 but not beyond"""
        for _ in range(9):
            store.increment_encounter()
        assert store.state.current_encounter == 9

        with pytest.raises(StateCorruptionError):
            store.increment_encounter()
        assert store.state.current_encounter == 9


class TestThreads:
    """Thread creation, resolution and pruning"""

    def test_seven_threads_keeps_five_highest(self, store):
        """Priorities 1..7 leave 3..7 unresolved; 1 and 2 are archived"""
        for priority in range(1, 8):
            store.add_thread(f"Thread {priority}", priority=priority)

        state = store.state
        kept = sorted(t.priority for t in state.unresolved_threads())
        assert kept == [3, 4, 5, 6, 7]
        assert sorted(t.priority for t in state.archived_threads) == [1, 2]
        assert all(not t.resolved for t in state.archived_threads)

    def test_unresolved_never_exceeds_cap(self, store):
        for index in range(12):
            store.add_thread(f"Thread {index}", priority=(index % 10) + 1)
            assert len(store.state.unresolved_threads()) <= 5

    def test_priority_tie_keeps_older_thread(self, store):
        """On equal priority the earlier thread survives"""
        for index in range(5):
            store.add_thread(f"Old {index}", priority=5, introduced_at_encounter=1)
        store.add_thread("Newcomer", priority=5, introduced_at_encounter=3)

        texts = [t.text for t in store.state.unresolved_threads()]
        assert "Newcomer" not in texts
        assert store.state.archived_threads[0].text == "Newcomer"

    def test_higher_priority_newcomer_displaces(self, store):
        for index in range(5):
            store.add_thread(f"Old {index}", priority=5, introduced_at_encounter=1)
        store.add_thread("Urgent", priority=6, introduced_at_encounter=3)

        texts = [t.text for t in store.state.unresolved_threads()]
        assert "Urgent" in texts
        assert len(store.state.archived_threads) == 1

    def test_resolved_threads_are_never_pruned(self, store):
        first = store.add_thread("Solved early", priority=1)
        store.resolve_thread(first.id)
        for priority in range(2, 8):
            store.add_thread(f"Thread {priority}", priority=priority)

        resolved = [t for t in store.state.threads if t.resolved]
        assert [t.text for t in resolved] == ["Solved early"]
        assert len(store.state.unresolved_threads()) == 5

    def test_resolve_unknown_thread(self, store):
        assert store.resolve_thread("missing") is False

    def test_duplicate_thread_id_rejected(self, store):
        store.add_thread("One", thread_id="t-1")
        with pytest.raises(StateCorruptionError):
            store.add_thread("Two", thread_id="t-1")

    def test_duplicate_of_archived_id_rejected(self, store):
        """Archived threads keep their ids reserved"""
        store.add_thread("Low", priority=1, thread_id="low")
        for priority in range(2, 7):
            store.add_thread(f"Thread {priority}", priority=priority)
        assert store.state.archived_threads[0].id == "low"

        with pytest.raises(StateCorruptionError):
            store.add_thread("Again", thread_id="low")

    def test_auto_ids_are_unique(self, store):
        ids = {store.add_thread(f"T{i}", kind=ThreadKind.MYSTERY).id for i in range(8)}
        assert len(ids) == 8

    def test_thread_records_current_encounter(self, store):
        store.increment_encounter()
        store.increment_encounter()
        thread = store.add_thread("Smoke on the ridge")
        assert thread.introduced_at_encounter == 2


class TestMutations:
    """Causal chain, location, NPC and tension writes"""

    def test_add_causal_event(self, store):
        store.add_causal_event(CausalEvent(event="bridge collapsed", consequence="river crossing"))
        assert store.state.chain[0].event == "bridge collapsed"

    def test_location_update_applies(self, store):
        def mutate(location):
            location.cleared.add("mill")
            location.locked.add("vault")

        store.update_location_state(mutate)
        assert store.state.location_state.cleared == {"mill"}
        assert store.state.location_state.locked == {"vault"}

    def test_location_update_failure_leaves_state(self, store):
        """A closure that raises leaves no partial write behind"""

        def mutate(location):
            location.cleared.add("mill")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update_location_state(mutate)
        assert store.state.location_state.cleared == set()

    def test_relationship_clamped(self, store):
        def mutate(relations):
            relations["Mira"] = NPCRelation(relationship=25)
            relations["Brug"] = NPCRelation(relationship=-40)

        store.update_npc_relations(mutate)
        assert store.state.npc_relations["Mira"].relationship == 10
        assert store.state.npc_relations["Brug"].relationship == -10

    def test_npc_relations_cannot_be_deleted(self, store):
        store.update_npc_relations(lambda r: r.setdefault("Mira", NPCRelation()))
        with pytest.raises(StateCorruptionError):
            store.update_npc_relations(lambda r: r.pop("Mira"))
        assert "Mira" in store.state.npc_relations

    @pytest.mark.parametrize(
        "delta,expected",
        [(3, 5), (100, 10), (-1, 1), (-50, 1), (0, 2)],
    )
    def test_adjust_tension_clamps(self, store, delta, expected):
        assert store.adjust_tension(delta) == expected
        assert 1 <= store.state.tension <= 10
