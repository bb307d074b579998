"""
LLM integration layer.

Clients are built explicitly with ``create_llm_client`` and handed to the
code that needs them; the ``check-llm`` CLI command is one such consumer.
"""

from .base import BaseLLMClient, GenerationResult, LLMError
from .client import create_llm_client
from .gemini import GeminiLLMClient

__all__ = [
    "BaseLLMClient",
    "GenerationResult",
    "GeminiLLMClient",
    "LLMError",
    "create_llm_client",
]
