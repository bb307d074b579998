"""Base abstract class for LLM providers."""

from abc import ABC, abstractmethod
from typing import Optional
import httpx
from pydantic import BaseModel


class GenerationResult(BaseModel):
    """Outcome of a generation request: text on success, error message otherwise."""
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None


class LLMError(Exception):
    """Base exception for LLM operations."""
    pass


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM provider clients.

    Clients are constructed explicitly and passed to whichever editing
    session needs them. Each instance allows at most one in-flight request.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float,
        temperature: float,
        max_tokens: int,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize LLM client.

        Args:
            base_url: Base URL for the LLM provider
            model: Default model identifier
            timeout: Request timeout in seconds
            temperature: Default sampling temperature
            max_tokens: Default maximum tokens to generate
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the LLM provider is available and responding.

        Returns:
            True if provider is healthy, False otherwise
        """
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GenerationResult:
        """
        Generate a single completion.

        Args:
            prompt: The user prompt
            system_instruction: Optional system instruction
            max_tokens: Override default max tokens
            temperature: Override default temperature

        Returns:
            GenerationResult; failures are reported in ``error``, not raised
        """
        pass

    @abstractmethod
    async def generate_with_history(
        self,
        messages: list,
        system_instruction: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GenerationResult:
        """
        Generate a completion with conversation history.

        Args:
            messages: List of dicts with 'role' ('user' or 'model') and 'text'
            system_instruction: Optional system instruction
            max_tokens: Override default max tokens
            temperature: Override default temperature

        Returns:
            GenerationResult
        """
        pass

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
