"""
Configuration management for the QuestWeaver narrative engine
"""

from typing import Dict, FrozenSet, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from questweaver.schemas.context import ContextTier, Specialist
from questweaver.schemas.narrative import QuestType


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # LLM Provider Configuration
    model_provider: Literal["openai", "generic"] = Field(default="openai")
    openai_api_base: str = Field(default="https://api.openai.com/v1")
    openai_api_key: str = Field(default="")
    model_name: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.7)

    # Context window budget (all values in estimated tokens)
    context_window: int = Field(default=4096)
    response_reservation_tokens: int = Field(default=200)
    safety_margin_tokens: int = Field(default=50)
    token_warning_ratio: float = Field(default=0.9)

    # Narration format bounds
    max_narration_chars: int = Field(default=400)
    min_narration_chars: int = Field(default=50)

    # Turn flow
    max_conversation_turns: int = Field(default=2)
    session_reset_turns: int = Field(default=15)
    narration_history_size: int = Field(default=5)
    repetition_threshold: float = Field(default=0.5)
    max_unresolved_threads: int = Field(default=5)

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Storage
    database_path: str = Field(
        default="data/questweaver.db",
        description="SQLite database file path for storing quest state snapshots",
    )
    transition_log_dir: str = Field(
        default="data/narrative_logs",
        description="Directory for per-quest JSON Lines transition logs",
    )

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


def default_specialists() -> Dict[str, Specialist]:
    """The built-in specialist table: narration wants every tier, classification only the stage."""
    return {
        "adventure": Specialist(
            name="adventure",
            tiers=[
                ContextTier.CRITICAL,
                ContextTier.NARRATIVE,
                ContextTier.SITUATION,
                ContextTier.EXTENDED,
            ],
        ),
        "encounter": Specialist(name="encounter", tiers=[ContextTier.CRITICAL]),
    }


class EngineConfig(BaseModel):
    """
    Explicit engine configuration handed to the turn orchestrator.

    Nothing in the engine reads process-wide settings directly; hosts build
    one of these (usually through ``from_settings``) and pass it in.
    """

    context_window: int = 4096
    response_reservation_tokens: int = 200
    safety_margin_tokens: int = 50
    token_warning_ratio: float = 0.9

    max_narration_chars: int = 400
    min_narration_chars: int = 50

    max_conversation_turns: int = 2
    session_reset_turns: int = 15
    narration_history_size: int = 5
    repetition_threshold: float = 0.5
    max_unresolved_threads: int = 5

    narration_specialist: str = "adventure"
    classification_specialist: str = "encounter"
    specialists: Dict[str, Specialist] = Field(default_factory=default_specialists)

    code_controlled_quest_types: FrozenSet[QuestType] = frozenset(
        {QuestType.COMBAT, QuestType.RETRIEVAL, QuestType.ESCORT}
    )
    show_rejected_narration: bool = True

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EngineConfig":
        return cls(
            context_window=settings.context_window,
            response_reservation_tokens=settings.response_reservation_tokens,
            safety_margin_tokens=settings.safety_margin_tokens,
            token_warning_ratio=settings.token_warning_ratio,
            max_narration_chars=settings.max_narration_chars,
            min_narration_chars=settings.min_narration_chars,
            max_conversation_turns=settings.max_conversation_turns,
            session_reset_turns=settings.session_reset_turns,
            narration_history_size=settings.narration_history_size,
            repetition_threshold=settings.repetition_threshold,
            max_unresolved_threads=settings.max_unresolved_threads,
        )

    def specialist(self, name: str) -> Specialist:
        if name not in self.specialists:
            raise KeyError(f"Unknown specialist: {name}")
        return self.specialists[name]

    def is_code_controlled(self, quest_type: QuestType) -> bool:
        return quest_type in self.code_controlled_quest_types


# Global settings instance
settings = Settings()
