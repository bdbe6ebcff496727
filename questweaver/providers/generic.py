"""
Chat-model provider for OpenAI and OpenAI-compatible endpoints using LangChain
"""

import time
from typing import Any, AsyncIterator, Dict, List, Sequence, Union

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from questweaver import prompts
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
from questweaver.schemas.validation import parse_structured_turn
from questweaver.utils.logger import get_logger
from questweaver.utils.tokens import TokenEstimator

from .base import BaseProvider, EncounterSource, GenerationError, NarrationGenerator

logger = get_logger(__name__)

TURN_SCHEMA: Dict[str, Any] = StructuredTurn.model_json_schema()
ENCOUNTER_SCHEMA: Dict[str, Any] = EncounterDetails.model_json_schema()
MONSTER_SCHEMA: Dict[str, Any] = Monster.model_json_schema()
NPC_SCHEMA: Dict[str, Any] = NPCProfile.model_json_schema()


class GenericProvider(BaseProvider, NarrationGenerator, EncounterSource):
    """Narration generator and encounter source backed by one ChatOpenAI model"""

    def __init__(
        self, api_base: str, api_key: str, model_name: str, temperature: float = 0.7
    ):
        super().__init__(api_base, api_key, model_name)
        self.llm = ChatOpenAI(
            model=model_name,
            base_url=api_base,
            api_key=api_key,  # type: ignore
            temperature=temperature,
        )

    def _structured(self, schema: Dict[str, Any], options: GenerationOptions):
        llm = self.llm.bind(temperature=options.temperature, max_tokens=options.max_tokens)
        return llm.with_structured_output(schema)

    async def _invoke(self, schema: Dict[str, Any], messages, options: GenerationOptions):
        call_id = self._log_llm_call(
            messages, temperature=options.temperature, max_tokens=options.max_tokens
        )
        started = time.time()
        try:
            result = await self._structured(schema, options).ainvoke(messages)
        except Exception as e:
            self._log_llm_response(call_id, started, error=e)
            raise GenerationError(f"Chat model call failed: {e}") from e
        self._log_llm_response(call_id, started, response=result)
        return result

    async def generate(
        self, prompt: StructuredContext, options: GenerationOptions
    ) -> StructuredTurn:
        messages = self.build_messages(prompt)
        logger.debug(
            f"[LLM] Prompt ~{TokenEstimator.estimate_messages_tokens(messages)} tokens"
        )
        result = await self._invoke(TURN_SCHEMA, messages, options)
        try:
            return parse_structured_turn(result)
        except ValueError as e:
            raise GenerationError(str(e)) from e

    async def stream(
        self, prompt: StructuredContext, options: GenerationOptions
    ) -> AsyncIterator[Union[NarrationUpdate, StructuredTurn]]:
        """Stream partial narration as the structured output fills in."""
        messages = self.build_messages(prompt)
        call_id = self._log_llm_call(
            messages, temperature=options.temperature, max_tokens=options.max_tokens
        )
        started = time.time()
        latest: Any = None
        narration = ""
        try:
            async for partial in self._structured(TURN_SCHEMA, options).astream(messages):
                latest = partial
                text = partial.get("narration") if isinstance(partial, dict) else None
                if isinstance(text, str) and len(text) > len(narration):
                    narration = text
                    yield NarrationUpdate(text=narration)
        except Exception as e:
            self._log_llm_response(call_id, started, error=e)
            raise GenerationError(f"Chat model stream failed: {e}") from e

        self._log_llm_response(call_id, started, response=latest)
        if latest is None:
            raise GenerationError("Chat model stream produced no output")
        try:
            yield parse_structured_turn(latest)
        except ValueError as e:
            raise GenerationError(str(e)) from e

    async def classify(
        self, prompt: StructuredContext, options: GenerationOptions
    ) -> EncounterDetails:
        result = await self._invoke(ENCOUNTER_SCHEMA, self.build_messages(prompt), options)
        try:
            return EncounterDetails(**result)
        except (TypeError, ValueError) as e:
            raise GenerationError(f"Invalid encounter details: {e}") from e

    async def monster(
        self, state: QuestState, difficulty: Difficulty, is_boss: bool
    ) -> Monster:
        messages = [
            SystemMessage(content=prompts.MONSTER_SYSTEM),
            HumanMessage(
                content=prompts.MONSTER_USER.format(
                    location=state.location,
                    goal=state.goal,
                    difficulty=difficulty.value,
                    is_boss=is_boss,
                )
            ),
        ]
        result = await self._invoke(MONSTER_SCHEMA, messages, GenerationOptions(max_tokens=120))
        try:
            return Monster(**{**result, "is_boss": is_boss})
        except (TypeError, ValueError) as e:
            raise GenerationError(f"Invalid monster: {e}") from e

    async def npc(self, state: QuestState, known: Sequence[str]) -> NPCProfile:
        messages = [
            SystemMessage(content=prompts.NPC_SYSTEM),
            HumanMessage(
                content=prompts.NPC_USER.format(
                    location=state.location,
                    goal=state.goal,
                    known=", ".join(known) or "none",
                )
            ),
        ]
        result = await self._invoke(NPC_SCHEMA, messages, GenerationOptions(max_tokens=120))
        try:
            return NPCProfile(**result)
        except (TypeError, ValueError) as e:
            raise GenerationError(f"Invalid NPC: {e}") from e

    async def health_check(self) -> bool:
        """Check if the endpoint is accessible"""
        try:
            await self.llm.ainvoke([HumanMessage(content="Hello")])
            return True
        except Exception as e:
            logger.warning(f"[LLM] Health check failed: {e}")
            return False
