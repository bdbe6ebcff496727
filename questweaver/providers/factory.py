"""
Provider factory for creating LLM providers based on configuration
"""

from typing import Optional

from ..config import Settings, settings as default_settings
from .generic import GenericProvider

OPENAI_API_BASE = "https://api.openai.com/v1"


def create_provider(config: Optional[Settings] = None) -> GenericProvider:
    """Create a provider instance based on configuration"""
    config = config or default_settings

    if config.model_provider == "openai":
        return GenericProvider(
            api_base=config.openai_api_base or OPENAI_API_BASE,
            api_key=config.openai_api_key,
            model_name=config.model_name,
            temperature=config.temperature,
        )
    elif config.model_provider == "generic":
        return GenericProvider(
            api_base=config.openai_api_base,
            api_key=config.openai_api_key,
            model_name=config.model_name,
            temperature=config.temperature,
        )
    else:
        raise ValueError(f"Unsupported provider: {config.model_provider}")
