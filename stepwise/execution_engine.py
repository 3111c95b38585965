"""
Execution Engine

Sequential scheduler for a stored Plan:
1. Repair invalid worker roles
2. Break dependency deadlocks (bounded number of attempts)
3. Run the lowest-id runnable step through its worker, with the results of
   its completed dependencies as additional context
4. Complete the step, fire memory checkpoints, optionally adapt the plan
5. Repeat until nothing is runnable or the step budget is spent
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

from .checkpoints import MemoryCheckpointTrigger
from .debug_log import DebugLogger
from .plan_adapter import PlanAdapter
from .plan_parser import Plan, find_dependency_cycles, repair_agent_roles
from .registry import WorkerRegistry
from .state_manager import ExecutionContext


NO_PLAN_MESSAGE = "No plan available to execute. Please create a plan first."
EMPTY_PLAN_MESSAGE = "The plan was created with no steps. I'll need more specific information to help you."
UNRESOLVED_DEPENDENCIES_MESSAGE = "Plan has steps but none are executable due to dependency issues."


@dataclass
class ExecutionReport:
    """
    Outcome of one scheduler run.

    `message` is set when the plan could not run at all (no plan, no steps,
    unbreakable deadlock); `results` is then empty.
    """
    results: list[str] = field(default_factory=list)
    executed_steps: int = 0
    truncated: bool = False
    deadlocked: bool = False
    message: Optional[str] = None


def format_result_entry(step_id: int, agent: str, description: str, result: str) -> str:
    return f"Step {step_id} ({agent}): {description}\n\n{result}"


def describe_cycles(plan: Plan) -> str:
    cycles = find_dependency_cycles(plan)
    if not cycles:
        return UNRESOLVED_DEPENDENCIES_MESSAGE
    rendered = "; ".join(" -> ".join(str(i) for i in cycle) for cycle in cycles)
    return f"Plan has steps but they have circular dependencies that couldn't be fixed: {rendered}"


class StepScheduler:
    """
    Runs the plan held by the execution context.

    Usage:
        scheduler = StepScheduler(lambda: context, registry)
        report = await scheduler.execute_plan()
    """

    def __init__(
        self,
        context_provider: Callable[[], ExecutionContext],
        registry: WorkerRegistry,
        max_steps: int = 20,
        deadlock_repair_attempts: int = 1,
        checkpoints: Optional[MemoryCheckpointTrigger] = None,
        adapter: Optional[PlanAdapter] = None,
        on_status: Optional[Callable[[str], None]] = None,
        debug: Optional[DebugLogger] = None,
    ):
        self.context_provider = context_provider
        self.registry = registry
        self.max_steps = max_steps
        self.deadlock_repair_attempts = deadlock_repair_attempts
        self.on_status = on_status or (lambda x: None)
        self.debug = debug
        self.checkpoints = checkpoints or MemoryCheckpointTrigger(
            context_provider, registry, on_status=self.on_status, debug=debug
        )
        self.adapter = adapter

    def build_dependency_context(self, step_id: int) -> str:
        """
        Results of the step's completed direct dependencies, or "" when it
        has none.
        """
        plan = self.context_provider().plan
        if plan is None:
            return ""
        step = plan.get_step(step_id)
        if step is None:
            return ""

        completed = []
        for dep_id in step.dependencies:
            dep = plan.get_step(dep_id)
            if dep is not None and dep.completed:
                completed.append(dep)
        if not completed:
            return ""

        header = (
            "Plan Summary:\n"
            f"Task Category: {plan.task_category}\n"
            f"Current Step: {step_id} of {len(plan.steps)}\n\n"
            "\nPrevious steps results:\n\n"
        )
        return header + "".join(
            f"Step {dep.id} ({dep.agent}): {dep.description}\nResult: {dep.render_result()}\n\n"
            for dep in completed
        )

    def _repair_deadlock(self, plan: Plan) -> bool:
        """Clear the dependencies of the first pending step that has any."""
        for step in plan.steps:
            if not step.completed and step.dependencies:
                self.on_status(
                    f"[Orchestrator] Clearing dependencies {step.dependencies} of step {step.id} to break a deadlock"
                )
                step.dependencies = []
                return True
        return False

    def _unblock(self, plan: Plan, attempts_left: int) -> tuple[bool, int]:
        """
        Spend repair attempts until a step is runnable.

        Returns:
            (runnable step available, attempts left)
        """
        while not plan.runnable_steps() and plan.pending_steps():
            if attempts_left <= 0:
                return False, attempts_left
            if not self._repair_deadlock(plan):
                return False, attempts_left
            attempts_left -= 1
        return bool(plan.runnable_steps()), attempts_left

    async def _run_step(self, context: ExecutionContext, step_id: int) -> str:
        plan = context.plan
        step = plan.get_step(step_id)
        context.set_current_step(step.id)
        self.on_status(f"[Orchestrator] Executing step {step.id}: {step.description} (agent: {step.agent})")

        try:
            worker = self.registry.resolve(step.agent)
            dependency_context = self.build_dependency_context(step.id) or None
            if self.debug:
                self.debug.log_dispatch(step, worker.name, step.description, dependency_context)
            result = await worker.execute(step.description, dependency_context)
        except Exception as e:
            self.on_status(f"[Orchestrator Error] Step {step.id} failed: {e}")
            context.record_error(step.id, str(e))
            result = f"Error executing step {step.id}: {e}"

        context.complete_step(step.id, result)
        if self.debug:
            self.debug.log_result(step.id, str(result))
        return str(result)

    async def execute_plan(self) -> ExecutionReport:
        context = self.context_provider()
        plan = context.plan
        if plan is None:
            return ExecutionReport(message=NO_PLAN_MESSAGE)
        if not plan.steps:
            return ExecutionReport(message=EMPTY_PLAN_MESSAGE)

        for step_id, original, role in repair_agent_roles(plan):
            self.on_status(f"[Orchestrator] Invalid agent type '{original}' in step {step_id}, using '{role.value}'")

        attempts_left = self.deadlock_repair_attempts
        if not plan.runnable_steps():
            self.on_status("[Orchestrator] No executable steps found, checking for dependency issues")
            runnable, attempts_left = self._unblock(plan, attempts_left)
            if not runnable:
                message = describe_cycles(plan)
                self.on_status(f"[Orchestrator Error] {message}")
                context.record_error(context.current_step, message)
                if self.debug:
                    self.debug.log_error(message)
                return ExecutionReport(deadlocked=True, message=message)

        report = ExecutionReport()
        next_step = context.get_next_step()
        while next_step is not None and report.executed_steps < self.max_steps:
            result = await self._run_step(context, next_step.id)
            report.executed_steps += 1
            report.results.append(
                format_result_entry(next_step.id, next_step.agent, next_step.description, result)
            )

            await self.checkpoints.fire(next_step.id)
            if self.adapter is not None:
                await self.adapter.evaluate_and_adapt(next_step.id, result)

            next_step = context.get_next_step()
            if report.executed_steps >= self.max_steps:
                break
            if next_step is None and plan.pending_steps():
                runnable, attempts_left = self._unblock(plan, attempts_left)
                if runnable:
                    next_step = context.get_next_step()
                else:
                    report.deadlocked = True
                    blocked = ", ".join(str(s.id) for s in plan.pending_steps())
                    message = f"Steps {blocked} were not executed: {describe_cycles(plan)}"
                    self.on_status(f"[Orchestrator Error] {message}")
                    context.record_error(context.current_step, message)

        if report.executed_steps >= self.max_steps and plan.pending_steps():
            report.truncated = True
            report.results.append(f"Note: Plan execution was limited to {self.max_steps} steps for safety.")
            self.on_status(f"[Orchestrator] Reached maximum of {self.max_steps} steps, stopping execution")

        return report
