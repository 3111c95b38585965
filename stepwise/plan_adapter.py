"""
Plan Adaptation

Optional re-evaluation of the remaining plan after each step. The
verification worker returns a PlanAdaptationSchema verdict whose edits are
applied to uncompleted steps only.
"""

from typing import Callable, Optional

from .debug_log import DebugLogger
from .plan_parser import Plan, Step, WorkerRole, infer_role
from .prompts import PLAN_ADAPTATION_PROMPT
from .registry import WorkerRegistry
from .schemas import PlanAdaptationSchema, PlanModificationSchema
from .state_manager import ExecutionContext
from .checkpoints import format_step_results


def apply_modification(plan: Plan, mod: PlanModificationSchema) -> Optional[str]:
    """
    Apply one edit in place.

    Returns:
        Description of what changed, or None if the edit did not apply
        (unknown or completed step, missing newStep)
    """
    if mod.action == "remove":
        step = plan.get_step(mod.step_id)
        if step is None or step.completed:
            return None
        plan.steps.remove(step)
        for other in plan.steps:
            other.dependencies = [d for d in other.dependencies if d != mod.step_id]
        return f"Removed step {step.id}: {step.description}"

    if mod.new_step is None:
        return None

    agent = mod.new_step.agent
    if not WorkerRole.is_valid(agent):
        agent = infer_role(mod.new_step.description).value
    known = {s.id for s in plan.steps}

    if mod.action == "add":
        new_id = plan.next_id()
        new_step = Step(
            id=new_id,
            description=mod.new_step.description,
            agent=agent,
            dependencies=[d for d in mod.new_step.dependencies if d in known],
        )
        anchor = plan.get_step(mod.step_id)
        position = plan.steps.index(anchor) + 1 if anchor else len(plan.steps)
        plan.steps.insert(position, new_step)
        return f"Added new step {new_id}: {new_step.description}"

    step = plan.get_step(mod.step_id)
    if step is None or step.completed:
        return None
    old_description = step.description
    step.description = mod.new_step.description
    step.agent = agent
    step.dependencies = [d for d in mod.new_step.dependencies if d in known and d != step.id]
    return f'Modified step {step.id} from "{old_description}" to "{step.description}"'


class PlanAdapter:
    """
    Evaluates and applies plan adaptations. Failures are recorded as
    "Plan adaptation error: ..." and never interrupt execution.
    """

    def __init__(
        self,
        context_provider: Callable[[], ExecutionContext],
        registry: WorkerRegistry,
        on_status: Optional[Callable[[str], None]] = None,
        debug: Optional[DebugLogger] = None,
    ):
        self.context_provider = context_provider
        self.registry = registry
        self.on_status = on_status or (lambda x: None)
        self.debug = debug

    def _build_prompt(self, plan: Plan, step_id: int, step_result: str) -> str:
        completed = [s for s in plan.steps if s.completed and s.result is not None and not s.result.is_empty]
        remaining = [f"Step {s.id} ({s.agent}): {s.description}" for s in plan.pending_steps()]
        return PLAN_ADAPTATION_PROMPT.format(
            completed_steps=format_step_results(completed),
            step_id=step_id,
            step_result=step_result,
            remaining_steps="\n".join(remaining),
        )

    async def evaluate_and_adapt(self, step_id: int, step_result: str) -> list[str]:
        """
        Returns:
            Descriptions of the edits applied (empty when none)
        """
        context = self.context_provider()
        plan = context.plan
        if plan is None or not plan.pending_steps():
            return []

        self.on_status(f"[Orchestrator] Evaluating plan adaptation after step {step_id}")

        try:
            worker = self.registry.resolve(WorkerRole.VERIFICATION)
            execute_with_schema = getattr(worker, "execute_with_schema", None)
            if execute_with_schema is None:
                raise TypeError(f"{worker.name} does not support structured output")
            verdict: PlanAdaptationSchema = await execute_with_schema(
                self._build_prompt(plan, step_id, step_result),
                PlanAdaptationSchema,
            )
        except Exception as e:
            self.on_status(f"[Orchestrator] Error during plan adaptation: {e}")
            context.record_error(step_id, f"Plan adaptation error: {e}")
            return []

        if not verdict.adaptation_needed:
            self.on_status(f"[Orchestrator] No plan adaptation needed: {verdict.reason}")
            return []

        self.on_status(f"[Orchestrator] Plan adaptation needed: {verdict.reason}")
        applied = []
        for mod in verdict.modifications:
            change = apply_modification(plan, mod)
            if change:
                self.on_status(f"[Orchestrator] {change}")
                applied.append(change)

        if applied:
            context.set_plan(plan)
            if self.debug:
                self.debug.log_adaptation(verdict.reason, applied)
        return applied
