"""
Provider Adapters

LLMClient implementations for the backends selectable through
`StepwiseConfig.llm_provider`, plus the factory the CLI and
`create_orchestrator` use to pick one.

SDK imports are lazy so that only the provider in use needs its credentials
and client objects set up.
"""

import json
import asyncio
from typing import Callable, Optional

import httpx

from .config import StepwiseConfig
from .llm_client import LLMClient, Message, ChatResponse
from .openrouter_client import OpenRouterClient


# =============================================================================
# Azure OpenAI
# =============================================================================

class AzureOpenAIClient(LLMClient):
    """
    Azure OpenAI Service through the official openai SDK.

    Usage:
        client = AzureOpenAIClient(
            endpoint="https://your-resource.openai.azure.com",
            api_key="your-api-key",
            deployment="gpt-4o",
        )
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        deployment: str,
        api_version: str = "2024-02-01",
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.deployment = deployment
        self.api_version = api_version
        self._client = None

    async def chat(self, messages: list[Message], **kwargs) -> ChatResponse:
        from openai import AsyncAzureOpenAI

        if self._client is None:
            self._client = AsyncAzureOpenAI(
                azure_endpoint=self.endpoint,
                api_key=self.api_key,
                api_version=self.api_version,
            )

        response = await self._client.chat.completions.create(
            model=self.deployment,
            messages=[{"role": m.role, "content": m.content} for m in messages],
            max_tokens=kwargs.get("max_tokens", 4096),
            temperature=kwargs.get("temperature", 0.3),
        )

        return ChatResponse(
            content=response.choices[0].message.content or "",
            model=self.deployment,
            usage=response.usage.model_dump() if response.usage else {},
            finish_reason=response.choices[0].finish_reason,
        )

    async def close(self):
        if self._client is not None:
            await self._client.close()
        self._client = None


# =============================================================================
# AWS Bedrock (Anthropic models)
# =============================================================================

class AWSBedrockClient(LLMClient):
    """
    AWS Bedrock runtime with Anthropic message models.

    Requires configured AWS credentials.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        model_id: str = "anthropic.claude-3-5-sonnet-20240620-v1:0",
    ):
        self.region = region
        self.model_id = model_id
        self._client = None

    def _build_body(self, messages: list[Message], max_tokens: int) -> dict:
        """Split system messages out, Bedrock takes them as a separate field."""
        system_content = []
        conversation = []

        for msg in messages:
            if msg.role == "system":
                system_content.append(msg.content)
            else:
                conversation.append({"role": msg.role, "content": msg.content})

        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": max_tokens,
            "messages": conversation,
        }
        if system_content:
            body["system"] = "\n".join(system_content).strip()
        return body

    async def chat(self, messages: list[Message], **kwargs) -> ChatResponse:
        import boto3

        if self._client is None:
            self._client = boto3.client("bedrock-runtime", region_name=self.region)

        body = self._build_body(messages, kwargs.get("max_tokens", 4096))

        # boto3 is synchronous
        def invoke():
            response = self._client.invoke_model(
                modelId=self.model_id,
                body=json.dumps(body),
            )
            return json.loads(response["body"].read())

        result = await asyncio.to_thread(invoke)

        usage = result.get("usage", {})
        prompt = usage.get("input_tokens", 0)
        completion = usage.get("output_tokens", 0)

        return ChatResponse(
            content=result["content"][0]["text"],
            model=self.model_id,
            usage={
                "prompt_tokens": prompt,
                "completion_tokens": completion,
                "total_tokens": prompt + completion,
            },
            finish_reason=result.get("stop_reason"),
        )

    async def close(self):
        self._client = None


# =============================================================================
# Ollama (local models)
# =============================================================================

class OllamaClient(LLMClient):
    """
    Local inference through an Ollama server.

    Requires: Ollama running locally (ollama serve)
    """

    def __init__(
        self,
        model: str = "llama3.1",
        base_url: str = "http://localhost:11434",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def chat(self, messages: list[Message], **kwargs) -> ChatResponse:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=300.0, transport=self._transport)

        payload = {
            "model": kwargs.get("model", self.model),
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
        }

        response = await self._client.post(f"{self.base_url}/api/chat", json=payload)
        response.raise_for_status()
        data = response.json()

        prompt = data.get("prompt_eval_count", 0)
        completion = data.get("eval_count", 0)

        return ChatResponse(
            content=data["message"]["content"],
            model=self.model,
            usage={
                "prompt_tokens": prompt,
                "completion_tokens": completion,
                "total_tokens": prompt + completion,
            },
        )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None


def create_llm_client(
    config: StepwiseConfig,
    on_status: Optional[Callable[[str], None]] = None,
) -> LLMClient:
    """
    Build the LLM client named by `config.llm_provider`.

    Raises:
        ValueError: for an unknown provider, or "custom" (which has to be
            passed in code).
    """
    provider = config.llm_provider.lower()

    if provider == "openrouter":
        return OpenRouterClient(
            api_key=config.openrouter_api_key,
            model=config.model,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            on_status=on_status,
        )

    if provider == "azure":
        if not (config.azure_endpoint and config.azure_api_key and config.azure_deployment):
            raise ValueError(
                "Azure provider needs AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_API_KEY "
                "and AZURE_OPENAI_DEPLOYMENT"
            )
        return AzureOpenAIClient(
            endpoint=config.azure_endpoint,
            api_key=config.azure_api_key,
            deployment=config.azure_deployment,
        )

    if provider == "bedrock":
        return AWSBedrockClient(region=config.bedrock_region, model_id=config.bedrock_model_id)

    if provider == "ollama":
        return OllamaClient(model=config.ollama_model, base_url=config.ollama_url)

    raise ValueError(f"Unknown llm_provider: {config.llm_provider!r}")
