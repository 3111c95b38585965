"""
LLM Client Protocol

Every hosted-model call in stepwise goes through this interface, so the
orchestrator and its workers can run against OpenRouter, Azure, Bedrock,
a local Ollama server, or a scripted fake in tests.

Example:

    from stepwise.llm_client import LLMClient, Message, ChatResponse

    class MyLLM(LLMClient):
        async def chat(self, messages: list[Message], **kwargs) -> ChatResponse:
            response = await my_internal_api.complete(messages)
            return ChatResponse(
                content=response.text,
                model="internal-model",
                usage={"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
            )

        async def close(self):
            pass

    from stepwise import create_orchestrator
    orchestrator = create_orchestrator(repo_path, llm_client=MyLLM())
"""

from abc import ABC, abstractmethod
from typing import AsyncGenerator, Optional
from dataclasses import dataclass, field


@dataclass
class Message:
    """A chat message."""
    role: str  # "system", "user", or "assistant"
    content: str


@dataclass
class TokenUsage:
    """Token usage statistics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: 'TokenUsage') -> 'TokenUsage':
        """Add another TokenUsage to this one."""
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def format(self, context_limit: int = 200000) -> str:
        """Format as human-readable string with context usage."""
        def fmt_tokens(n: int) -> str:
            if n >= 1000:
                return f"{n/1000:.1f}K"
            return str(n)

        return f"{fmt_tokens(self.total_tokens)}/{fmt_tokens(context_limit)} tokens"

    @classmethod
    def from_dict(cls, data: dict) -> 'TokenUsage':
        """Create from API response usage dict."""
        prompt = data.get('prompt_tokens', 0) or 0
        completion = data.get('completion_tokens', 0) or 0
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=data.get('total_tokens') or (prompt + completion),
        )


@dataclass
class ChatResponse:
    """Response from a chat completion."""
    content: str
    model: str
    usage: dict = field(default_factory=dict)
    finish_reason: Optional[str] = None

    @property
    def token_usage(self) -> TokenUsage:
        """Get token usage as TokenUsage object."""
        return TokenUsage.from_dict(self.usage)


class LLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Required methods:
    - chat(): Send messages and get a response (non-streaming)
    - close(): Clean up resources

    Optional methods:
    - chat_stream(): Streaming responses (defaults to non-streaming fallback)

    Rate-limit retries belong to the client; the orchestrator never retries
    a transport failure itself.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        **kwargs
    ) -> ChatResponse:
        """
        Send a chat completion request (non-streaming).

        Args:
            messages: List of Message objects
            **kwargs: Additional parameters like:
                - max_tokens: Maximum tokens in response (default: 4096)
                - temperature: Sampling temperature
                - model: Model override (optional)

        Returns:
            ChatResponse with the completion content and metadata
        """
        pass

    async def chat_stream(
        self,
        messages: list[Message],
        **kwargs
    ) -> AsyncGenerator[str, None]:
        """
        Send a streaming chat completion request.

        Default implementation falls back to non-streaming.
        """
        response = await self.chat(messages, **kwargs)
        yield response.content

    @abstractmethod
    async def close(self):
        """Clean up resources (close HTTP clients, etc.)"""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class SimpleLLMClient(LLMClient):
    """
    Wraps an async callable as an LLM client.

    Useful for quick testing or simple integrations.

    Example:
        async def my_llm(messages):
            return "Response text"

        client = SimpleLLMClient(my_llm)
    """

    def __init__(self, chat_fn, model: str = "custom"):
        """
        Args:
            chat_fn: An async callable that takes list[Message] and returns
                str or ChatResponse
        """
        self.chat_fn = chat_fn
        self.model = model

    async def chat(self, messages: list[Message], **kwargs) -> ChatResponse:
        result = await self.chat_fn(messages)
        if isinstance(result, ChatResponse):
            return result
        return ChatResponse(
            content=str(result),
            model=self.model,
            usage={},
        )

    async def close(self):
        pass
