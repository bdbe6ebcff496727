"""
Token estimation and context-window arithmetic.

All counts here are estimates: roughly 4 characters of compact JSON or
English text per token. This approximates the generator's subword
tokenizer and is deliberately cheap; it is not an exact count.
"""

import json
import math
from enum import Enum
from typing import Any, List, Optional

from langchain_core.messages import BaseMessage
from pydantic import BaseModel

from questweaver.utils.logger import get_logger

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4

# Scene framing longer than this crowds out the state payload
LONG_PROMPT_CHARS = 1200


class UsageLevel(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    WARNING = "warning"
    CRITICAL = "critical"


class TokenUsageAnalysis(BaseModel):
    total_tokens: int
    window: int
    percent_used: float
    remaining: int
    level: UsageLevel
    warnings: List[str] = []


def compact_json(payload: Any) -> str:
    """Compact JSON encoding used for prompts and for cost estimates."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


class TokenEstimator:
    """
    Estimate token usage for context budgeting.

    Uses a simple character-based estimation for speed.
    """

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """
        Estimate token count for text.

        Args:
            text: Input text

        Returns:
            Estimated token count, rounded up
        """
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    @staticmethod
    def estimate_payload(payload: Any) -> int:
        """Estimate the cost of a structured payload in its compact JSON encoding."""
        if not payload:
            return 0
        return TokenEstimator.estimate_tokens(compact_json(payload))

    @staticmethod
    def estimate_messages_tokens(messages: List[BaseMessage]) -> int:
        """
        Estimate total tokens in a message list.

        Args:
            messages: List of LangChain messages

        Returns:
            Estimated total token count
        """
        total = 0
        for msg in messages:
            content = msg.content if hasattr(msg, "content") else str(msg)
            if isinstance(content, str):
                total += TokenEstimator.estimate_tokens(content)
            elif isinstance(content, list):
                for item in content:
                    if isinstance(item, str):
                        total += TokenEstimator.estimate_tokens(item)
                    elif isinstance(item, dict):
                        total += TokenEstimator.estimate_tokens(json.dumps(item))

        # Add overhead for message formatting (role, etc.)
        total += len(messages) * 4

        return total

    @staticmethod
    def max_prompt_size(
        window: int,
        instructions: int,
        history: int,
        reservation: int,
        margin: int,
    ) -> int:
        """Tokens left for the state payload once everything else is paid for."""
        return max(0, window - instructions - history - reservation - margin)

    @staticmethod
    def analyze_usage(
        window: int,
        instructions: int,
        history: int,
        state: int,
        reservation: int,
        margin: int = 0,
        prompt_text: Optional[str] = None,
    ) -> TokenUsageAnalysis:
        """
        Summarize how much of the window a call will use.

        Levels: HIGH above 75%, WARNING above 85%, CRITICAL above 95%.
        """
        total = instructions + history + state + reservation + margin
        percent = (total / window * 100) if window > 0 else 100.0

        if percent > 95:
            level = UsageLevel.CRITICAL
        elif percent > 85:
            level = UsageLevel.WARNING
        elif percent > 75:
            level = UsageLevel.HIGH
        else:
            level = UsageLevel.NORMAL

        warnings: List[str] = []
        if level != UsageLevel.NORMAL:
            warnings.append(f"Context usage at {percent:.1f}% of {window} tokens")
        if prompt_text is not None and len(prompt_text) > LONG_PROMPT_CHARS:
            warnings.append(
                f"Scene prompt is {len(prompt_text)} chars (over {LONG_PROMPT_CHARS})"
            )

        if warnings:
            logger.debug(
                f"[Tokens] Usage {percent:.1f}% ({level.value})",
                extra={"component": "Tokens", "total_tokens": total, "window": window},
            )

        return TokenUsageAnalysis(
            total_tokens=total,
            window=window,
            percent_used=round(percent, 2),
            remaining=max(0, window - total),
            level=level,
            warnings=warnings,
        )
