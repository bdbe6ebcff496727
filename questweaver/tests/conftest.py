"""
Shared fixtures for the QuestWeaver test suite.
"""

from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from questweaver.config import EngineConfig
from questweaver.engine.state import NarrativeStateStore
from questweaver.schemas.narrative import QuestType
from questweaver.schemas.turn import (
    EncounterDetails,
    EncounterType,
    Monster,
    NarrativeUpdates,
    NPCProfile,
    QuestProgressUpdate,
    StructuredTurn,
)

GOOD_NARRATION = (
    "You push through the brambles and find fresh tracks in the mud. "
    "Somewhere ahead, a lantern flickers between the pines."
)


@pytest.fixture
def engine_config():
    """Default engine configuration"""
    return EngineConfig()


@pytest.fixture
def store():
    """A store with an active eight-encounter retrieval quest"""
    store = NarrativeStateStore()
    store.start_quest(
        quest_id="quest-1",
        quest_type=QuestType.RETRIEVAL,
        goal="Retrieve the silver chalice stolen from the abbey",
        location="Greywood",
        total_encounters=8,
        objective="silver chalice",
    )
    return store


@pytest.fixture
def make_turn():
    """Factory for well-formed structured turns"""

    def factory(
        narration: str = GOOD_NARRATION,
        encounter: int = 1,
        completed: bool = False,
        suggested_actions: Optional[List[str]] = None,
        updates: Optional[NarrativeUpdates] = None,
        **kwargs,
    ) -> StructuredTurn:
        return StructuredTurn(
            narration=narration,
            progress=QuestProgressUpdate(completed=completed, current_encounter=encounter),
            suggested_actions=(
                suggested_actions
                if suggested_actions is not None
                else ["Follow the tracks", "Call out"]
            ),
            narrative_updates=updates or NarrativeUpdates(),
            **kwargs,
        )

    return factory


class FakeGenerator:
    """Narration generator returning queued turns or raising queued errors"""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.prompts = []

    async def generate(self, prompt, options):
        self.prompts.append(prompt)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def stream(self, prompt, options):
        yield await self.generate(prompt, options)


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def encounter_source():
    """Encounter source mock that always proposes exploration"""
    source = AsyncMock()
    source.classify.return_value = EncounterDetails(encounter_type=EncounterType.EXPLORATION)
    source.monster.return_value = Monster(name="Cave Troll", description="Huge and angry", level=4)
    source.npc.return_value = NPCProfile(name="Mira", occupation="herbalist")
    return source
