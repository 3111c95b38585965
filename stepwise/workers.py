"""
Workers

The five role workers and the factory that registers them.
"""

from pathlib import Path
from typing import Callable, Optional

from .config import StepwiseConfig
from .context_policy import ContextPolicy
from .llm_client import LLMClient
from .plan_parser import WorkerRole
from .prompts import (
    SEARCH_AGENT_SYSTEM_PROMPT,
    MEMORY_AGENT_SYSTEM_PROMPT,
    COMMAND_AGENT_SYSTEM_PROMPT,
    VERIFICATION_AGENT_SYSTEM_PROMPT,
    USER_INTENT_AGENT_SYSTEM_PROMPT,
)
from .registry import WorkerRegistry
from .state_manager import ExecutionContext
from .sub_agent import SubAgent
from .tools import Toolbox


class SearchAgent(SubAgent):
    """Finds files and code. Repeated identical queries reuse the stored answer."""

    name = "SearchAgent"
    system_prompt = SEARCH_AGENT_SYSTEM_PROMPT

    async def execute(self, prompt: str, additional_context: Optional[str] = None) -> str:
        context = self.context_provider()
        key = f"search:{prompt}"
        previous = context.get_result(key)
        if previous:
            self.on_status(f"[{self.name}] Query searched before, reusing stored result")
            return previous

        result = await super().execute(prompt, additional_context)
        if not result.startswith(f"Error in {self.name}"):
            context.store_result(key, result)
        return result


class MemoryAgent(SubAgent):
    name = "MemoryAgent"
    system_prompt = MEMORY_AGENT_SYSTEM_PROMPT


class CommandAgent(SubAgent):
    name = "CommandAgent"
    system_prompt = COMMAND_AGENT_SYSTEM_PROMPT


class VerificationAgent(SubAgent):
    name = "VerificationAgent"
    system_prompt = VERIFICATION_AGENT_SYSTEM_PROMPT


class UserIntentAgent(SubAgent):
    name = "UserIntentAgent"
    system_prompt = USER_INTENT_AGENT_SYSTEM_PROMPT


def build_default_registry(
    llm: LLMClient,
    context_provider: Callable[[], ExecutionContext],
    repo_path: Path,
    config: StepwiseConfig,
    on_status: Optional[Callable[[str], None]] = None,
) -> WorkerRegistry:
    """Register one worker per role, all sharing `llm` and the current context."""
    repo_path = Path(repo_path)
    toolbox = Toolbox(
        repo_path=repo_path,
        memory_dir=repo_path / config.memory_dir,
        context_provider=context_provider,
        command_timeout=config.command_timeout,
    )
    policy = ContextPolicy(recent=config.context_recent_entries)
    common = dict(
        max_steps=config.worker_max_steps,
        policy=policy,
        schema_retries=config.schema_retries,
        on_status=on_status,
    )

    registry = WorkerRegistry()
    registry.register(WorkerRole.SEARCH, SearchAgent(
        llm, context_provider, tools=toolbox.search_tools(), **common))
    registry.register(WorkerRole.MEMORY, MemoryAgent(
        llm, context_provider, tools=toolbox.memory_tools(), **common))
    registry.register(WorkerRole.COMMAND, CommandAgent(
        llm, context_provider, tools=toolbox.command_tools(), **common))
    registry.register(WorkerRole.VERIFICATION, VerificationAgent(
        llm, context_provider, tools=toolbox.search_tools(), **common))
    registry.register(WorkerRole.USER_INTENT, UserIntentAgent(
        llm, context_provider, **common))
    return registry
