"""Google Gemini LLM client implementation."""

import asyncio
import logging
import re
import time
from typing import Optional, Callable, Awaitable
import httpx

from .base import BaseLLMClient, GenerationResult, LLMError

logger = logging.getLogger(__name__)

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")

# Transport failures back off linearly, capped at this many seconds
TRANSIENT_BACKOFF_STEP = 5.0
TRANSIENT_BACKOFF_CAP = 30.0


class GeminiLLMClient(BaseLLMClient):
    """
    Client for the Gemini ``generateContent`` REST endpoint.

    Requests are serialized per instance and spaced by
    ``min_request_interval`` seconds. Transport errors are retried with
    linear backoff; HTTP 429 backs off up to ``max_rate_limit_backoff``.
    Other HTTP errors are returned immediately.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        model: str = "gemini-2.5-flash",
        timeout: float = 120.0,
        temperature: float = 0.7,
        max_tokens: int = 8192,
        min_request_interval: float = 30.0,
        max_retries: int = 5,
        max_rate_limit_backoff: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if not api_key:
            raise LLMError("Gemini API key is required")

        super().__init__(
            base_url=base_url,
            model=model,
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
            transport=transport,
        )
        self.api_key = api_key
        self.min_request_interval = min_request_interval
        self.max_retries = max_retries
        self.max_rate_limit_backoff = max_rate_limit_backoff
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._last_request_time: Optional[float] = None
        self._lock = asyncio.Lock()

    def _build_url(self, action: str) -> str:
        return f"{self.base_url}/{self.model}:{action}"

    async def _wait_for_rate_limit(self) -> None:
        """Keep at least ``min_request_interval`` between requests."""
        if self._last_request_time is not None:
            elapsed = self._clock() - self._last_request_time
            if elapsed < self.min_request_interval:
                wait_time = self.min_request_interval - elapsed
                logger.info(f"Rate limit: waiting {wait_time:.1f}s")
                await self._sleep(wait_time)

        self._last_request_time = self._clock()

    def _build_payload(
        self,
        contents: list,
        system_instruction: Optional[str],
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> dict:
        payload = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": max_tokens if max_tokens is not None else self.max_tokens,
                "temperature": temperature if temperature is not None else self.temperature,
            },
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_NONE"}
                for category in HARM_CATEGORIES
            ],
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GenerationResult:
        """Generate a completion for a single user prompt."""
        contents = [{"role": "user", "parts": [{"text": prompt}]}]
        payload = self._build_payload(contents, system_instruction, max_tokens, temperature)
        return await self._request(payload)

    async def generate_with_history(
        self,
        messages: list,
        system_instruction: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GenerationResult:
        """Generate a completion for a multi-turn conversation."""
        contents = [
            {"role": msg["role"], "parts": [{"text": msg["text"]}]}
            for msg in messages
        ]
        payload = self._build_payload(contents, system_instruction, max_tokens, temperature)
        return await self._request(payload)

    async def _request(self, payload: dict) -> GenerationResult:
        async with self._lock:
            await self._wait_for_rate_limit()
            return await self._send_request(self._build_url("generateContent"), payload)

    async def _send_request(self, url: str, payload: dict) -> GenerationResult:
        """POST with retries. Never raises for HTTP/transport failures."""
        attempt = 0
        last_error: Optional[str] = None
        headers = {"x-goog-api-key": self.api_key}

        logger.debug(f"Gemini request: model={self.model}, contents={len(payload['contents'])}")

        while attempt < self.max_retries:
            start = time.perf_counter()
            try:
                response = await self.client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                attempt += 1
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"Gemini request failed (attempt {attempt}/{self.max_retries}): {last_error}")
                if attempt < self.max_retries:
                    await self._sleep(min(TRANSIENT_BACKOFF_CAP, TRANSIENT_BACKOFF_STEP * attempt))
                continue

            elapsed_ms = round((time.perf_counter() - start) * 1000)
            logger.debug(f"Gemini response: status={response.status_code}, elapsed={elapsed_ms}ms")

            if response.status_code == 429:
                attempt += 1
                last_error = "rate limited (429)"
                wait_time = min(self.max_rate_limit_backoff, self.min_request_interval * attempt)
                logger.warning(f"Gemini rate limit (attempt {attempt}/{self.max_retries}), waiting {wait_time:.1f}s")
                if attempt < self.max_retries:
                    await self._sleep(wait_time)
                continue

            if response.is_error:
                message = self._error_message(response)
                logger.error(f"Gemini API error {response.status_code}: {message}")
                return GenerationResult(
                    success=False,
                    error=f"API Error ({response.status_code}): {message}",
                )

            return self._parse_response(response)

        logger.error(f"Gemini request failed after {self.max_retries} attempts")
        return GenerationResult(
            success=False,
            error=f"Request failed after {self.max_retries} retries: {last_error or 'Unknown error'}",
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
            return data.get("error", {}).get("message") or response.reason_phrase
        except ValueError:
            return response.reason_phrase

    @staticmethod
    def _parse_response(response: httpx.Response) -> GenerationResult:
        try:
            data = response.json()
        except ValueError as e:
            return GenerationResult(success=False, error=f"Invalid JSON response: {e}")

        candidates = data.get("candidates") or []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts")
            if parts:
                text = "".join(p.get("text", "") for p in parts)
                text = _BOLD_RE.sub(r"\1", text)
                logger.debug(f"Gemini success, text length: {len(text)}")
                return GenerationResult(success=True, text=text)

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            logger.error(f"Gemini prompt blocked: {block_reason}")
            return GenerationResult(success=False, error=f"Blocked: {block_reason}")

        logger.warning("Gemini returned an empty response")
        return GenerationResult(success=False, error="Empty response from API")

    async def health_check(self) -> bool:
        """Send a short prompt, bypassing request spacing."""
        self._last_request_time = None
        result = await self.generate(
            "Connection test. Reply that the connection is fine.",
            max_tokens=1024,
            temperature=0.1,
        )
        if not result.success:
            logger.warning(f"Gemini health check failed: {result.error}")
        return result.success
