"""
Memory Checkpoints

After a step completes, asks the memory worker to persist what the plan
said should be remembered at that point.
"""

from typing import Callable, Optional

from .debug_log import DebugLogger
from .plan_parser import Plan, Step, WorkerRole
from .registry import WorkerRegistry
from .state_manager import ExecutionContext


def format_step_results(steps: list[Step]) -> str:
    return "\n\n".join(
        f"Step {s.id} ({s.agent}): {s.description}\nResult: {s.render_result()}"
        for s in steps
    )


class MemoryCheckpointTrigger:
    """
    Fires the plan's memory checkpoints.

    Each checkpoint fires at most once per plan, tracked by its index in
    `plan.memory_update_points`.
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
        self._plan: Optional[Plan] = None
        self._fired: set[int] = set()

    def _fired_for(self, plan: Plan) -> set[int]:
        if plan is not self._plan:
            self._plan = plan
            self._fired = set()
        return self._fired

    async def fire(self, step_id: int) -> int:
        """
        Run every unfired checkpoint with `after_step == step_id`.

        Returns:
            Number of checkpoints attempted
        """
        context = self.context_provider()
        plan = context.plan
        if plan is None:
            return 0

        fired = self._fired_for(plan)
        due = [
            (index, cp) for index, cp in enumerate(plan.memory_update_points)
            if cp.after_step == step_id and index not in fired
        ]
        if not due:
            return 0

        self.on_status(f"[Orchestrator] Found {len(due)} memory updates to perform after step {step_id}")

        step = plan.get_step(step_id)
        dep_ids = set(step.dependencies) if step else set()
        relevant = [
            s for s in plan.steps
            if s.completed and s.result is not None and not s.result.is_empty
            and (s.id == step_id or s.id in dep_ids)
        ]
        step_results = format_step_results(relevant)

        for index, cp in due:
            fired.add(index)
            self.on_status(f"[Orchestrator] Performing memory update: {cp.description} to {cp.file_path}")
            try:
                worker = self.registry.resolve(WorkerRole.MEMORY)
                await worker.execute(
                    f"Update memory at {cp.file_path}: {cp.description}",
                    f"Context from previous steps:\n\n{step_results}",
                )
            except Exception as e:
                self.on_status(f"[Orchestrator] Error performing memory update: {e}")
                context.record_error(step_id, f"Memory update error: {e}")
                if self.debug:
                    self.debug.log_checkpoint(step_id, cp.file_path, ok=False)
                continue

            self.on_status(f"[Orchestrator] Memory update completed for {cp.file_path}")
            if self.debug:
                self.debug.log_checkpoint(step_id, cp.file_path, ok=True)

        return len(due)
