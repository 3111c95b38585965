"""
Capability Registry

Maps each worker role to the worker instance that serves it. One registry
is built per orchestrator.
"""

from typing import Optional, Protocol, Union, runtime_checkable

from .errors import WorkerNotRegisteredError
from .plan_parser import WorkerRole


@runtime_checkable
class Worker(Protocol):
    """Anything that can execute a step prompt and return text."""

    name: str

    async def execute(self, prompt: str, additional_context: Optional[str] = None) -> str:
        ...


class WorkerRegistry:
    """
    Role -> worker mapping.

    Usage:
        registry = WorkerRegistry()
        registry.register(WorkerRole.SEARCH, SearchAgent(...))
        worker = registry.resolve("search")
    """

    def __init__(self):
        self._workers: dict[WorkerRole, Worker] = {}

    def register(self, role: Union[str, WorkerRole], worker: Worker) -> None:
        """Bind `worker` to `role`, replacing any previous binding."""
        self._workers[WorkerRole.parse(role)] = worker

    def resolve(self, role: Union[str, WorkerRole]) -> Worker:
        """
        Raises:
            UnknownWorkerRoleError: `role` is not one of the five roles
            WorkerNotRegisteredError: valid role with no worker bound
        """
        parsed = WorkerRole.parse(role)
        worker = self._workers.get(parsed)
        if worker is None:
            raise WorkerNotRegisteredError(f"No agent registered for type: {parsed.value}")
        return worker

    def has(self, role: Union[str, WorkerRole]) -> bool:
        if not WorkerRole.is_valid(role):
            return False
        return WorkerRole.parse(role) in self._workers

    def clear(self) -> None:
        self._workers.clear()

    def registered_roles(self) -> list[WorkerRole]:
        return list(self._workers)

    def __len__(self) -> int:
        return len(self._workers)
