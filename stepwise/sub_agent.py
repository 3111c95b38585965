"""
Sub-Agent

Base worker: one prompt in, text out, with the request's context embedded
in SUMMARIZED form and an optional set of tools. Concrete workers only
supply a name, a system prompt and their tools (see workers.py).
"""

from typing import Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from .context_policy import ContextPolicy, Visibility
from .generation import generate, generate_object
from .llm_client import LLMClient, Message
from .state_manager import ExecutionContext
from .tools import ToolSpec


T = TypeVar("T", bound=BaseModel)


class SubAgent:
    """
    Context-aware worker on top of generate().

    Failures are recorded in the context's error log and, unless
    `raise_errors` is set, returned as "Error in <name>: <message>" instead
    of raised. execute_strict() always raises.

    Usage:
        agent = SubAgent(llm, lambda: context, name="helper", system_prompt="...")
        text = await agent.execute("Explain the build setup")
    """

    name = "SubAgent"
    system_prompt = "You are a helpful assistant working on the current project."

    def __init__(
        self,
        llm: LLMClient,
        context_provider: Callable[[], ExecutionContext],
        tools: Optional[list[ToolSpec]] = None,
        max_steps: int = 10,
        policy: Optional[ContextPolicy] = None,
        schema_retries: int = 2,
        raise_errors: bool = False,
        on_status: Optional[Callable[[str], None]] = None,
        name: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ):
        self.llm = llm
        self.context_provider = context_provider
        self.tools = tools or []
        self.max_steps = max_steps
        self.policy = policy or ContextPolicy()
        self.schema_retries = schema_retries
        self.raise_errors = raise_errors
        self.on_status = on_status or (lambda x: None)
        if name:
            self.name = name
        if system_prompt:
            self.system_prompt = system_prompt

    def _build_messages(self, prompt: str, additional_context: Optional[str], context: ExecutionContext) -> list[Message]:
        content = prompt
        if additional_context:
            content += f"\nAdditional context: {additional_context}"
        messages = [Message("user", content)]
        return self.policy.embed(messages, context, Visibility.SUMMARIZED)

    async def execute(self, prompt: str, additional_context: Optional[str] = None) -> str:
        """Run the prompt and return the model's final text."""
        return await self._run(prompt, additional_context, self.raise_errors)

    async def execute_strict(self, prompt: str, additional_context: Optional[str] = None) -> str:
        """Same as execute(), but failures are always raised."""
        return await self._run(prompt, additional_context, True)

    async def _run(self, prompt: str, additional_context: Optional[str], raise_errors: bool) -> str:
        context = self.context_provider()
        self.on_status(f"[{self.name}] Processing: {prompt[:100]}")

        try:
            messages = self._build_messages(prompt, additional_context, context)
            result = await generate(
                self.llm,
                self.system_prompt,
                messages,
                tools=self.tools,
                max_steps=self.max_steps,
                on_status=self.on_status,
            )
        except Exception as e:
            self.on_status(f"[{self.name} Error] {e}")
            context.record_error(context.current_step, str(e))
            if raise_errors:
                raise
            return f"Error in {self.name}: {e}"

        context.update_token_usage(
            self.name,
            result.usage.prompt_tokens,
            result.usage.completion_tokens,
            result.model,
        )
        self.on_status(f"[{self.name}] Response generated ({len(result.text)} chars)")
        return result.text

    async def execute_with_schema(
        self,
        prompt: str,
        schema: Type[T],
        additional_context: Optional[str] = None,
    ) -> T:
        """
        Structured variant of execute(). Always raises on failure.

        Raises:
            SchemaValidationError: output never matched `schema`
        """
        context = self.context_provider()
        self.on_status(f"[{self.name}] Processing with schema {schema.__name__}")
        messages = self._build_messages(prompt, additional_context, context)
        result = await generate_object(
            self.llm,
            self.system_prompt,
            messages,
            schema,
            retries=self.schema_retries,
            on_status=self.on_status,
        )
        context.update_token_usage(
            self.name,
            result.usage.prompt_tokens,
            result.usage.completion_tokens,
            result.model,
        )
        return result.object
