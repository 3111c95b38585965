"""
Result Summarizer

Condenses the per-step results of a plan into the final user-facing answer.
"""

from typing import Callable, Optional

from .plan_parser import WorkerRole
from .prompts import SUMMARIZATION_PROMPT
from .registry import WorkerRegistry


NO_RESULTS_MESSAGE = "The plan didn't produce any results. Please try with a more specific request."


def basic_summary(results: list[str]) -> str:
    """
    First and last result, without their "Step N (...)" header where one
    is present.
    """
    summary = "Here's what I found:\n\n"
    if len(results) == 1:
        return summary + results[0]

    def body(entry: str) -> str:
        parts = entry.split("\n\n")
        return parts[1] if len(parts) > 1 and parts[1] else entry

    return summary + body(results[0]) + "\n\n" + body(results[-1])


class ResultSummarizer:
    """Asks the verification worker for a terse summary; falls back to basic_summary()."""

    def __init__(self, registry: WorkerRegistry, on_status: Optional[Callable[[str], None]] = None):
        self.registry = registry
        self.on_status = on_status or (lambda x: None)

    async def summarize(self, results: list[str]) -> str:
        """Never raises."""
        if not results:
            return NO_RESULTS_MESSAGE

        if not self.registry.has(WorkerRole.VERIFICATION):
            self.on_status("[Orchestrator] No verification agent registered. Using basic summary.")
            return basic_summary(results)

        worker = self.registry.resolve(WorkerRole.VERIFICATION)
        # SubAgent.execute() turns failures into "Error in ..." text
        run = getattr(worker, "execute_strict", worker.execute)
        try:
            self.on_status("[Orchestrator] Using verification agent to create concise summary")
            summary = await run(SUMMARIZATION_PROMPT.format(results="\n\n".join(results)))
        except Exception as e:
            self.on_status(f"[Orchestrator] Failed to summarize results: {e}. Using basic summary.")
            return basic_summary(results)

        self.on_status(f"[Orchestrator] Plan execution completed with {len(results)} steps - summarized")
        return summary
