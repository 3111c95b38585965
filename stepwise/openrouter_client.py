"""
OpenRouter API Client

Async client for the OpenRouter chat completions API, used as the default
generation backend for the orchestrator and every worker.

Implements the LLMClient protocol.
"""

import os
import json
import random
import asyncio
from typing import AsyncGenerator, Callable, Optional

import httpx

from .config import DEFAULT_MODEL
from .errors import StepwiseError
from .llm_client import LLMClient, Message, ChatResponse, TokenUsage

OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"


__all__ = ['OpenRouterClient', 'Message', 'ChatResponse', 'TokenUsage', 'OpenRouterError', 'DEFAULT_MODEL']


class OpenRouterError(StepwiseError):
    """Custom exception for OpenRouter API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OpenRouterClient(LLMClient):
    """
    Async client for OpenRouter API.

    Features:
    - Retry with exponential backoff for transient errors (5xx, network)
    - Retry with exponential backoff plus jitter for rate limits (429),
      honoring Retry-After when the server sends it
    - Streaming and non-streaming modes

    Usage:
        client = OpenRouterClient()
        response = await client.chat([Message("user", "Hello!")])
        print(response.content)
    """

    RETRY_DELAY_BASE = 2.0  # seconds, doubles each retry
    MAX_RETRY_DELAY = 60.0
    RATE_LIMIT_STATUS = 429
    RETRYABLE_STATUS_CODES = {500, 502, 503, 504, 520, 521, 522, 523, 524}

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 120.0,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        max_retries: int = 3,
        on_status: Optional[Callable[[str], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self.api_key:
            raise OpenRouterError(
                "OpenRouter API key not found. "
                "Set OPENROUTER_API_KEY environment variable or pass api_key parameter."
            )

        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max_retries
        self.on_status = on_status or (lambda x: None)
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> dict:
        """Get request headers."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://github.com/stepwise-cli",
            "X-Title": "Stepwise CLI",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _build_payload(
        self,
        messages: list[Message],
        stream: bool = False,
        **kwargs
    ) -> dict:
        """Build the request payload."""
        return {
            "model": kwargs.get("model", self.model),
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
            "temperature": kwargs.get("temperature", self.temperature),
            "stream": stream,
        }

    def _backoff_delay(self, attempt: int, jitter: bool = False) -> float:
        """Exponential backoff, optionally with full jitter."""
        delay = min(self.RETRY_DELAY_BASE * (2 ** attempt), self.MAX_RETRY_DELAY)
        if jitter:
            delay = random.uniform(delay / 2, delay)
        return delay

    def _rate_limit_delay(self, response: httpx.Response, attempt: int) -> float:
        """Delay for a 429, preferring the server's Retry-After header."""
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), self.MAX_RETRY_DELAY)
            except ValueError:
                pass
        return self._backoff_delay(attempt, jitter=True)

    async def chat(
        self,
        messages: list[Message],
        **kwargs
    ) -> ChatResponse:
        """
        Send a chat completion request (non-streaming).

        Args:
            messages: List of Message objects
            **kwargs: Override default parameters (model, max_tokens, temperature)

        Returns:
            ChatResponse with the completion
        """
        client = await self._get_client()
        payload = self._build_payload(messages, stream=False, **kwargs)

        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.post(OPENROUTER_API_URL, json=payload)
                response.raise_for_status()

                data = response.json()

                if "error" in data:
                    raise OpenRouterError(f"API error: {data['error']}")

                if "choices" not in data or not data["choices"]:
                    raise OpenRouterError(f"Invalid API response: no choices returned. Response: {data}")

                choice = data["choices"][0]

                if "message" not in choice or "content" not in choice["message"]:
                    raise OpenRouterError(f"Invalid choice format: {choice}")

                return ChatResponse(
                    content=choice["message"]["content"] or "",
                    model=data.get("model", self.model),
                    usage=data.get("usage", {}),
                    finish_reason=choice.get("finish_reason"),
                )

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if attempt < self.max_retries:
                    if status == self.RATE_LIMIT_STATUS:
                        delay = self._rate_limit_delay(e.response, attempt)
                        self.on_status(f"[Retry] Rate limited, waiting {delay:.1f}s... (attempt {attempt + 1}/{self.max_retries + 1})")
                        await asyncio.sleep(delay)
                        continue
                    if status in self.RETRYABLE_STATUS_CODES:
                        delay = self._backoff_delay(attempt)
                        self.on_status(f"[Retry] {status} error, waiting {delay:.1f}s... (attempt {attempt + 1}/{self.max_retries + 1})")
                        await asyncio.sleep(delay)
                        continue
                error_detail = e.response.text[:500]
                raise OpenRouterError(f"API request failed: {status} - {error_detail}", status_code=status)

            except httpx.RequestError as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = self._backoff_delay(attempt)
                    self.on_status(f"[Retry] Network error, waiting {delay:.1f}s... (attempt {attempt + 1}/{self.max_retries + 1})")
                    await asyncio.sleep(delay)
                    continue
                raise OpenRouterError(f"Network error: {e}")

        raise OpenRouterError(f"Max retries exceeded. Last error: {last_error}")

    async def chat_stream(
        self,
        messages: list[Message],
        **kwargs
    ) -> AsyncGenerator[str, None]:
        """
        Send a streaming chat completion request.

        Yields:
            Content chunks as they arrive
        """
        client = await self._get_client()
        payload = self._build_payload(messages, stream=True, **kwargs)

        try:
            async with client.stream("POST", OPENROUTER_API_URL, json=payload) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line or not line.startswith("data: "):
                        continue

                    data_str = line[6:]

                    if data_str == "[DONE]":
                        break

                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue

                    if "error" in data:
                        raise OpenRouterError(f"Stream error: {data['error']}")

                    choices = data.get("choices", [])
                    if choices:
                        content = choices[0].get("delta", {}).get("content", "")
                        if content:
                            yield content

        except httpx.HTTPStatusError as e:
            raise OpenRouterError(f"Stream request failed: {e.response.status_code}", status_code=e.response.status_code)
        except httpx.RequestError as e:
            raise OpenRouterError(f"Network error during stream: {e}")
