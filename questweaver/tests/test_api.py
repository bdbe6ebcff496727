"""
API integration tests for the FastAPI app.

The chat-model provider is replaced by a scripted fake; everything else
(orchestrator, SQLite repository, transition logs) is real.
"""

import pytest
from fastapi.testclient import TestClient

from questweaver.api import quests
from questweaver.db.manager import QuestStateRepository
from questweaver.main import app
from questweaver.schemas.turn import (
    EncounterDetails,
    EncounterType,
    Monster,
    NPCProfile,
    QuestProgressUpdate,
    StructuredTurn,
)
from questweaver.utils.metrics import MetricsCollector

client = TestClient(app)

NARRATIONS = [
    "You push through the brambles and find fresh tracks in the mud. "
    "Somewhere ahead, a lantern flickers between the pines.",
    "You cross a fallen log over the stream. Crows watch from the branches above you.",
]


class ScriptedProvider:
    """Narration generator and encounter source with canned output"""

    def __init__(self):
        self.turns = 0

    async def generate(self, prompt, options):
        narration = NARRATIONS[self.turns % len(NARRATIONS)]
        self.turns += 1
        return StructuredTurn(
            narration=narration,
            progress=QuestProgressUpdate(current_encounter=self.turns),
            suggested_actions=["Follow the tracks"],
        )

    async def stream(self, prompt, options):
        yield await self.generate(prompt, options)

    async def classify(self, prompt, options):
        return EncounterDetails(encounter_type=EncounterType.EXPLORATION)

    async def monster(self, state, difficulty, is_boss):
        return Monster(name="Cave Troll", is_boss=is_boss)

    async def npc(self, state, known):
        return NPCProfile(name="Mira")


@pytest.fixture(autouse=True)
def quest_api(monkeypatch, tmp_path):
    """Fresh repository, orchestrators and metrics with the provider faked"""
    monkeypatch.setattr(quests, "repository", QuestStateRepository(str(tmp_path / "quests.db")))
    monkeypatch.setattr(quests, "orchestrators", {})
    monkeypatch.setattr(quests, "metrics", MetricsCollector())
    monkeypatch.setattr(quests, "create_provider", lambda config: ScriptedProvider())
    monkeypatch.setattr(quests.settings, "transition_log_dir", str(tmp_path / "logs"))
    yield


def create_quest(**overrides):
    body = {
        "goal": "Retrieve the silver chalice stolen from the abbey",
        "location": "Greywood",
        "total_encounters": 8,
        "quest_id": "quest-1",
    }
    body.update(overrides)
    return client.post("/quests", json=body)


class TestRootEndpoints:
    """Test basic root endpoints"""

    def test_root_endpoint(self):
        """Test the root endpoint returns correct response"""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert data["context_window"] == 4096
        assert "version" in data

    def test_health_endpoint(self):
        """Test the health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestQuestsAPI:
    """Quest lifecycle over HTTP"""

    def test_create_quest(self):
        response = create_quest()
        assert response.status_code == 200
        data = response.json()
        assert data["quest_id"] == "quest-1"
        assert data["quest_type"] == "retrieval"
        assert data["objective"] == "silver chalice"
        assert data["stage"] == "intro"

    def test_create_quest_validation(self):
        response = create_quest(total_encounters=0)
        assert response.status_code == 422

    def test_play_turn(self):
        create_quest()
        response = client.post("/quests/quest-1/turns", json={"action": "Follow the road"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "committed"
        assert data["narration"] == NARRATIONS[0]
        assert data["state"]["current_encounter"] == 1
        assert data["encounter"]["encounter_type"] == "exploration"

    def test_unknown_quest(self):
        response = client.post("/quests/missing/turns", json={"action": "Look"})
        assert response.status_code == 404

    def test_turn_in_progress(self):
        create_quest()
        quests.orchestrators["quest-1"]._generating = True

        response = client.post("/quests/quest-1/turns", json={"action": "Look"})
        assert response.status_code == 409

    def test_resume_after_restart(self):
        """A quest not held in memory is resumed from the database"""
        create_quest()
        client.post("/quests/quest-1/turns", json={"action": "Follow the road"})
        quests.orchestrators.clear()

        response = client.get("/quests/quest-1")

        assert response.status_code == 200
        assert response.json()["current_encounter"] == 1
        assert "quest-1" in quests.orchestrators

    def test_complete_objective(self):
        create_quest()
        response = client.post("/quests/quest-1/complete-objective")
        assert response.json()["completed"] is True

        turn = client.post("/quests/quest-1/turns", json={"action": "Look"})
        assert turn.json()["status"] == "already_completed"

    def test_report(self):
        create_quest()
        client.post("/quests/quest-1/turns", json={"action": "Follow the road"})

        response = client.get("/quests/quest-1/report")

        assert response.status_code == 200
        assert response.json()["turn_count"] == 1

    def test_end_quest(self):
        create_quest()
        client.post("/quests/quest-1/turns", json={"action": "Follow the road"})
        client.post("/quests/quest-1/turns", json={"action": "Cross the stream"})

        response = client.delete("/quests/quest-1")

        assert response.status_code == 200
        assert response.json()["turn_count"] == 2
        assert client.get("/quests/quest-1").status_code == 404

        metrics = client.get("/quests/metrics").json()
        assert metrics["quest_count"] == 1
        assert metrics["total_turns"] == 2
