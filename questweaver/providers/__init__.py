"""
LLM provider implementations for the QuestWeaver narrative engine
"""

from .base import BaseProvider, EncounterSource, GenerationError, NarrationGenerator
from .factory import create_provider
from .generic import GenericProvider

__all__ = [
    "BaseProvider",
    "EncounterSource",
    "GenerationError",
    "NarrationGenerator",
    "GenericProvider",
    "create_provider",
]
