"""LLM client factory."""

from typing import TYPE_CHECKING, Optional
import httpx

from .base import BaseLLMClient, LLMError
from .gemini import GeminiLLMClient

if TYPE_CHECKING:
    from charx_engine.config.models import LLMConfig


def create_llm_client(
    config: "LLMConfig",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseLLMClient:
    """
    Factory function to create the LLM client for the configured provider.

    Args:
        config: LLM configuration with provider type and settings
        transport: Optional httpx transport override

    Returns:
        Provider-specific LLM client instance

    Raises:
        ValueError: If provider is unknown
        LLMError: If the provider is missing credentials
    """
    provider = config.provider.lower()

    if provider == "gemini":
        if not config.api_key:
            raise LLMError("Gemini API key not configured (set llm.api_key or GEMINI_API_KEY)")
        return GeminiLLMClient(
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.model,
            timeout=config.timeout_seconds,
            temperature=config.temperature,
            max_tokens=config.max_response_tokens,
            min_request_interval=config.min_request_interval_seconds,
            max_retries=config.max_retries,
            max_rate_limit_backoff=config.max_rate_limit_backoff_seconds,
            transport=transport,
        )

    raise ValueError(
        f"Unknown LLM provider: '{provider}'. "
        f"Supported providers: gemini"
    )
