"""
Collaborator interfaces for narration generation and encounter content,
and the shared LangChain provider base
"""

import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from questweaver.schemas.context import StructuredContext
from questweaver.schemas.narrative import QuestState
from questweaver.schemas.turn import (
    Difficulty,
    EncounterDetails,
    GenerationOptions,
    Monster,
    NarrationUpdate,
    NPCProfile,
    StructuredTurn,
)
from questweaver.utils.logger import get_logger

logger = get_logger(__name__)


class GenerationError(Exception):
    """The generator failed or returned output of the wrong shape"""


class NarrationGenerator(ABC):
    """Turns a structured context into one structured turn"""

    @abstractmethod
    async def generate(
        self, prompt: StructuredContext, options: GenerationOptions
    ) -> StructuredTurn:
        """
        Generate one turn.

        Raises:
            GenerationError: on transport failure or malformed output
        """
        pass

    async def stream(
        self, prompt: StructuredContext, options: GenerationOptions
    ) -> AsyncIterator[Union[NarrationUpdate, StructuredTurn]]:
        """
        Yield partial narration updates, then exactly one final StructuredTurn.

        The default implementation has no partial updates.
        """
        yield await self.generate(prompt, options)


class EncounterSource(ABC):
    """Supplies encounter classification and the actors that populate encounters"""

    @abstractmethod
    async def classify(
        self, prompt: StructuredContext, options: GenerationOptions
    ) -> EncounterDetails:
        pass

    @abstractmethod
    async def monster(
        self, state: QuestState, difficulty: Difficulty, is_boss: bool
    ) -> Monster:
        pass

    @abstractmethod
    async def npc(self, state: QuestState, known: Sequence[str]) -> NPCProfile:
        pass


class BaseProvider(ABC):
    """Shared setup and call logging for LangChain chat-model providers"""

    def __init__(self, api_base: str, api_key: str, model_name: str):
        self.api_base = api_base
        self.api_key = api_key
        self.model_name = model_name
        self.llm: Any = None  # Will be set by subclasses

    def build_messages(self, prompt: StructuredContext) -> List[BaseMessage]:
        """System instructions, the session history as prior turns, then the scene."""
        messages: List[BaseMessage] = [SystemMessage(content=prompt.instructions)]
        for earlier in prompt.history:
            messages.append(AIMessage(content=earlier))
        messages.append(HumanMessage(content=prompt.scene))
        return messages

    def _log_llm_call(self, messages: List[BaseMessage], **kwargs) -> str:
        """Log LLM call details and return a call ID for correlation"""
        call_id = str(uuid.uuid4())[:8]
        message_counts: Dict[str, int] = {}
        total_chars = 0
        for msg in messages:
            msg_type = type(msg).__name__
            message_counts[msg_type] = message_counts.get(msg_type, 0) + 1
            total_chars += len(str(msg.content))

        logger.info(
            f"[LLM] Call started: {self.model_name}",
            extra={
                "component": "LLM",
                "call_id": call_id,
                "model": self.model_name,
                "provider": self.__class__.__name__,
                "message_count": len(messages),
                "message_types": message_counts,
                "total_input_chars": total_chars,
                "temperature": kwargs.get("temperature", "default"),
                "max_tokens": kwargs.get("max_tokens", "default"),
            },
        )
        return call_id

    def _log_llm_response(
        self,
        call_id: str,
        started: float,
        response: Any = None,
        error: Optional[Exception] = None,
    ):
        """Log LLM response details or the failure"""
        duration_ms = round((time.time() - started) * 1000, 1)
        if error:
            logger.error(
                f"[LLM] Call failed: {self.model_name} ({duration_ms}ms): {error}",
                extra={
                    "component": "LLM",
                    "call_id": call_id,
                    "model": self.model_name,
                    "duration_ms": duration_ms,
                    "error": str(error),
                    "error_type": type(error).__name__,
                },
            )
            return

        logger.info(
            f"[LLM] Call completed: {self.model_name} ({duration_ms}ms)",
            extra={
                "component": "LLM",
                "call_id": call_id,
                "model": self.model_name,
                "duration_ms": duration_ms,
                "response_type": type(response).__name__,
            },
        )

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the provider is healthy and accessible"""
        pass
