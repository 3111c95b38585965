"""
Plan Generator

Turns a user request into a validated Plan:
1. Assemble the planner messages (memory inventory, project context, the
   request, and the full execution context embedded)
2. Generate a PlanSchema object, re-prompting on validation errors
3. Reset execution state, drop dependency ids that reference no step
4. Store the plan in the execution context
"""

from pathlib import Path
from typing import Callable, Optional

from .context_policy import ContextPolicy, Visibility
from .debug_log import DebugLogger
from .errors import PlanGenerationError
from .generation import generate_object
from .llm_client import LLMClient, Message
from .plan_parser import Plan, parse_plan, drop_unknown_dependencies
from .prompts import ORCHESTRATOR_SYSTEM_PROMPT
from .repo_scanner import get_memory_files_context, get_project_context
from .schemas import PlanSchema
from .state_manager import ExecutionContext


ORCHESTRATOR_AGENT_NAME = "orchestrator"


class PlanGenerator:
    """
    Produces plans for the orchestrator.

    Usage:
        generator = PlanGenerator(llm, lambda: context, repo_path=Path("."))
        plan = await generator.create_plan("Where is the retry logic?")
    """

    def __init__(
        self,
        llm: LLMClient,
        context_provider: Callable[[], ExecutionContext],
        repo_path: Optional[Path] = None,
        memory_dir: Optional[Path] = None,
        project_context: Optional[Message] = None,
        policy: Optional[ContextPolicy] = None,
        schema_retries: int = 2,
        on_status: Optional[Callable[[str], None]] = None,
        debug: Optional[DebugLogger] = None,
    ):
        self.llm = llm
        self.context_provider = context_provider
        self.repo_path = Path(repo_path) if repo_path else None
        self.memory_dir = Path(memory_dir) if memory_dir else None
        self.project_context = project_context
        self.policy = policy or ContextPolicy()
        self.schema_retries = schema_retries
        self.on_status = on_status or (lambda x: None)
        self.debug = debug

    def _build_messages(self, description: str, additional_context: Optional[str]) -> list[Message]:
        messages = []
        if self.memory_dir is not None:
            messages.append(get_memory_files_context(self.memory_dir))
        if self.project_context is not None:
            messages.append(self.project_context)
        elif self.repo_path is not None:
            messages.append(get_project_context(self.repo_path))

        content = description
        if additional_context:
            content += f"\nAdditional context: {additional_context}"
        messages.append(Message("user", content))
        return messages

    async def create_plan(self, description: str, additional_context: Optional[str] = None) -> Plan:
        """
        Generate and store a plan for `description`.

        Raises:
            PlanGenerationError: the model never produced a valid plan, or
                the LLM call failed. The failure is in the context's error
                log and no plan is stored.
        """
        context = self.context_provider()
        self.on_status(f"[Orchestrator] Creating plan for: {description[:100]}")

        messages = self._build_messages(description, additional_context)
        self.policy.embed(messages, context, Visibility.FULL)

        try:
            result = await generate_object(
                self.llm,
                ORCHESTRATOR_SYSTEM_PROMPT,
                messages,
                PlanSchema,
                retries=self.schema_retries,
                on_status=self.on_status,
            )
            plan = parse_plan(result.object)
        except Exception as e:
            message = f"Plan generation failed: {e}"
            context.record_error(context.current_step, message)
            self.on_status(f"[Orchestrator Error] {message}")
            if self.debug:
                self.debug.log_error(message)
            raise PlanGenerationError(message) from e

        for step_id, dep_id in drop_unknown_dependencies(plan):
            self.on_status(f"[Orchestrator] Step {step_id} depends on unknown step {dep_id}, dependency dropped")

        context.set_plan(plan)
        context.update_token_usage(
            ORCHESTRATOR_AGENT_NAME,
            result.usage.prompt_tokens,
            result.usage.completion_tokens,
            result.model,
        )

        self.on_status(f"[Orchestrator] Plan created with {len(plan.steps)} steps")
        if self.debug:
            self.debug.log_plan(plan)
        return plan
