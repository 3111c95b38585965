"""
Orchestrator

Entry point for a user request:
- Plan generation (PlanGenerator)
- Sequential execution through the worker registry (StepScheduler)
- Memory checkpoints and optional plan adaptation
- Final summary (ResultSummarizer)

Each request runs against one ExecutionContext. Call new_context() between
requests to start from a clean slate.
"""

from pathlib import Path
from typing import Callable, Optional

from .checkpoints import MemoryCheckpointTrigger
from .config import StepwiseConfig, STEPWISE_DIR, get_config
from .context_policy import ContextPolicy
from .debug_log import DebugLogger
from .errors import PlanGenerationError
from .execution_engine import StepScheduler, ExecutionReport
from .llm_client import LLMClient, Message
from .plan_adapter import PlanAdapter
from .plan_generator import PlanGenerator
from .plan_parser import Plan
from .providers import create_llm_client
from .registry import WorkerRegistry
from .state_manager import ExecutionContext
from .summarizer import ResultSummarizer
from .workers import build_default_registry


class OrchestratorAgent:
    """
    Plans a request and runs it through the registered workers.

    Usage:
        orchestrator = create_orchestrator(Path("."))
        answer = await orchestrator.run("Where do we validate API tokens?")
    """

    def __init__(
        self,
        llm_client: LLMClient,
        registry: WorkerRegistry,
        config: Optional[StepwiseConfig] = None,
        context: Optional[ExecutionContext] = None,
        project_context: Optional[Message] = None,
        on_status: Optional[Callable[[str], None]] = None,
        repo_path: Optional[Path] = None,
        debug: Optional[DebugLogger] = None,
    ):
        self.llm = llm_client
        self.registry = registry
        self.config = config or StepwiseConfig()
        self.repo_path = Path(repo_path) if repo_path else None
        self.on_status = on_status or (lambda x: None)
        self.debug = debug
        self._context = context or ExecutionContext()

        memory_dir = self.repo_path / self.config.memory_dir if self.repo_path else None
        self.plan_generator = PlanGenerator(
            llm_client,
            self._get_context,
            repo_path=self.repo_path,
            memory_dir=memory_dir,
            project_context=project_context,
            policy=ContextPolicy(recent=self.config.context_recent_entries),
            schema_retries=self.config.schema_retries,
            on_status=self.on_status,
            debug=debug,
        )
        adapter = None
        if self.config.adapt_plan:
            adapter = PlanAdapter(self._get_context, registry, on_status=self.on_status, debug=debug)
        self.scheduler = StepScheduler(
            self._get_context,
            registry,
            max_steps=self.config.max_plan_steps,
            deadlock_repair_attempts=self.config.deadlock_repair_attempts,
            checkpoints=MemoryCheckpointTrigger(self._get_context, registry, on_status=self.on_status, debug=debug),
            adapter=adapter,
            on_status=self.on_status,
            debug=debug,
        )
        self.summarizer = ResultSummarizer(registry, on_status=self.on_status)
        self.last_report: Optional[ExecutionReport] = None

    def _get_context(self) -> ExecutionContext:
        return self._context

    @property
    def context(self) -> ExecutionContext:
        return self._context

    def new_context(self) -> ExecutionContext:
        """Start a fresh request-scoped context."""
        self._context = ExecutionContext()
        self.last_report = None
        return self._context

    async def create_plan(self, description: str, additional_context: Optional[str] = None) -> Plan:
        """Raises PlanGenerationError if no valid plan could be produced."""
        if self.debug:
            self.debug.start_request(self._context.request_id, description)
        return await self.plan_generator.create_plan(description, additional_context)

    async def execute_plan(self) -> str:
        """Run the stored plan and return the user-facing answer."""
        report = await self.scheduler.execute_plan()
        self.last_report = report
        if report.message is not None:
            return report.message

        summary = await self.summarizer.summarize(report.results)
        if report.truncated and report.results[-1] not in summary:
            summary += f"\n\n{report.results[-1]}"
        if self.debug:
            self.debug.log_summary(summary, self._context.total_tokens())
        return summary

    async def run(self, description: str, additional_context: Optional[str] = None) -> str:
        """Create a plan for `description` and execute it."""
        try:
            await self.create_plan(description, additional_context)
        except PlanGenerationError as e:
            return f"I couldn't create a plan for this request. {e}"
        return await self.execute_plan()

    async def close(self):
        await self.llm.close()


def create_orchestrator(
    repo_path: str | Path,
    config: Optional[StepwiseConfig] = None,
    llm_client: Optional[LLMClient] = None,
    on_status: Optional[Callable[[str], None]] = None,
) -> OrchestratorAgent:
    """
    Build an orchestrator with the default workers for `repo_path`.

    The LLM client comes from `config.llm_provider` unless one is passed in.
    """
    repo_path = Path(repo_path).resolve()
    config = config or get_config(repo_path)
    llm = llm_client or create_llm_client(config, on_status=on_status)
    debug = DebugLogger(repo_path / STEPWISE_DIR, enabled=config.debug_logging)

    orchestrator: Optional[OrchestratorAgent] = None

    def context_provider() -> ExecutionContext:
        return orchestrator.context

    registry = build_default_registry(llm, context_provider, repo_path, config, on_status=on_status)
    orchestrator = OrchestratorAgent(
        llm,
        registry,
        config,
        on_status=on_status,
        repo_path=repo_path,
        debug=debug,
    )
    return orchestrator
