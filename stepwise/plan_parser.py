"""
Plan Parser

Runtime plan model and the normalisation applied to raw plan objects:
- Worker roles and step/plan dataclasses
- Conversion of a validated schema object into a Plan (execution state reset)
- Heuristic repair of invalid worker-role assignments
- Dependency graph checks (unknown ids, cycles)
"""

import re
from enum import Enum
from typing import Any, Optional, Union
from dataclasses import dataclass, field

from .errors import PlanParseError, UnknownWorkerRoleError


class WorkerRole(str, Enum):
    """The five worker roles a plan step can be assigned to."""
    SEARCH = "search"
    MEMORY = "memory"
    COMMAND = "command"
    VERIFICATION = "verification"
    USER_INTENT = "userIntent"

    @classmethod
    def values(cls) -> list[str]:
        return [role.value for role in cls]

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        if isinstance(value, cls):
            return True
        return isinstance(value, str) and value in cls.values()

    @classmethod
    def parse(cls, value: Union[str, 'WorkerRole']) -> 'WorkerRole':
        """Return the role for `value` or raise UnknownWorkerRoleError."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for role in cls:
                if role.value == value:
                    return role
        raise UnknownWorkerRoleError(
            f"Unknown agent type: {value!r} (expected one of {', '.join(cls.values())})"
        )


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    NONE = "none"


class ResultKind(str, Enum):
    TEXT = "text"
    DATA = "data"
    EMPTY = "empty"


@dataclass(frozen=True)
class StepResult:
    """
    Value produced by a step: text, a JSON-like object, or nothing.

    Workers always return text today; DATA exists for structured results
    stored by plan adaptation and for results restored from serialized
    contexts.
    """
    kind: ResultKind
    value: Any = None

    @classmethod
    def text(cls, value: str) -> 'StepResult':
        return cls(ResultKind.TEXT, value)

    @classmethod
    def data(cls, value: dict) -> 'StepResult':
        return cls(ResultKind.DATA, value)

    @classmethod
    def empty(cls) -> 'StepResult':
        return cls(ResultKind.EMPTY, None)

    @classmethod
    def from_value(cls, value: Any) -> 'StepResult':
        if value is None:
            return cls.empty()
        if isinstance(value, StepResult):
            return value
        if isinstance(value, (dict, list)):
            return cls.data(value)
        return cls.text(str(value))

    @property
    def is_empty(self) -> bool:
        return self.kind == ResultKind.EMPTY or self.value in (None, "")

    def render(self) -> str:
        """Text used in dependency context, checkpoints and summaries."""
        if self.is_empty:
            return "No result"
        if self.kind == ResultKind.DATA:
            import json
            return json.dumps(self.value, indent=2, default=str)
        return str(self.value)

    def to_wire(self) -> Any:
        return None if self.kind == ResultKind.EMPTY else self.value


@dataclass
class Step:
    """One unit of plan work."""
    id: int
    description: str
    agent: str
    dependencies: list[int] = field(default_factory=list)
    completed: bool = False
    result: Optional[StepResult] = None

    @property
    def role(self) -> WorkerRole:
        return WorkerRole.parse(self.agent)

    def render_result(self) -> str:
        return self.result.render() if self.result else "No result"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "agent": self.agent,
            "dependencies": list(self.dependencies),
            "completed": self.completed,
            "result": self.result.to_wire() if self.result else None,
        }


@dataclass
class MemoryCheckpoint:
    """A point after a step where knowledge should be persisted."""
    after_step: int
    file_path: str
    description: str

    def to_dict(self) -> dict:
        return {
            "afterStep": self.after_step,
            "filePath": self.file_path,
            "description": self.description,
        }


@dataclass
class Plan:
    """Structured decomposition of a user request."""
    task_category: str
    steps: list[Step] = field(default_factory=list)
    severity: Optional[Severity] = None
    search_keywords: list[str] = field(default_factory=list)
    memory_update_points: list[MemoryCheckpoint] = field(default_factory=list)

    def get_step(self, step_id: int) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def is_runnable(self, step: Step) -> bool:
        """Not completed and every dependency refers to a completed step."""
        if step.completed:
            return False
        for dep_id in step.dependencies:
            dep = self.get_step(dep_id)
            if dep is None or not dep.completed:
                return False
        return True

    def runnable_steps(self) -> list[Step]:
        """Runnable steps, lowest id first, plan order for equal ids."""
        runnable = [s for s in self.steps if self.is_runnable(s)]
        return sorted(runnable, key=lambda s: s.id)

    def pending_steps(self) -> list[Step]:
        return [s for s in self.steps if not s.completed]

    def next_id(self) -> int:
        return max((s.id for s in self.steps), default=0) + 1

    def to_dict(self) -> dict:
        data = {
            "taskCategory": self.task_category,
            "steps": [s.to_dict() for s in self.steps],
            "searchKeywords": list(self.search_keywords),
            "memoryUpdatePoints": [m.to_dict() for m in self.memory_update_points],
        }
        if self.severity is not None:
            data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: dict, reset_state: bool = False) -> 'Plan':
        """
        Build a Plan from its wire form.

        Args:
            data: Dict using the camelCase wire names
            reset_state: Discard `completed`/`result` from the input
        """
        if not isinstance(data, dict):
            raise PlanParseError(f"Plan must be an object, got {type(data).__name__}")

        try:
            steps = []
            for raw in data.get("steps") or []:
                completed = False if reset_state else bool(raw.get("completed", False))
                result = None
                if not reset_state and raw.get("result") is not None:
                    result = StepResult.from_value(raw["result"])
                steps.append(Step(
                    id=int(raw["id"]),
                    description=str(raw.get("description", "")),
                    agent=str(raw.get("agent", "")),
                    dependencies=[int(d) for d in raw.get("dependencies") or []],
                    completed=completed,
                    result=result,
                ))

            checkpoints = [
                MemoryCheckpoint(
                    after_step=int(raw["afterStep"]),
                    file_path=str(raw["filePath"]),
                    description=str(raw.get("description", "")),
                )
                for raw in data.get("memoryUpdatePoints") or []
            ]

            severity = data.get("severity")
            return cls(
                task_category=str(data.get("taskCategory", "")),
                steps=steps,
                severity=Severity(severity) if severity else None,
                search_keywords=[str(k) for k in data.get("searchKeywords") or []],
                memory_update_points=checkpoints,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PlanParseError(f"Invalid plan object: {e}") from e

    def format_outline(self) -> str:
        """One line per step, used for status output."""
        lines = [f"Task: {self.task_category}" + (f" ({self.severity.value})" if self.severity else "")]
        for step in self.steps:
            deps = f" <- {', '.join(str(d) for d in step.dependencies)}" if step.dependencies else ""
            mark = "x" if step.completed else " "
            lines.append(f"  [{mark}] {step.id}. ({step.agent}) {step.description}{deps}")
        return "\n".join(lines)


def parse_plan(raw: Any) -> Plan:
    """
    Turn a raw plan object into a Plan with fresh execution state.

    `raw` may be a pydantic schema object or a dict. Whatever the model said
    about `completed`/`result` is discarded.
    """
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump(by_alias=True)
    plan = Plan.from_dict(raw, reset_state=True)

    seen = set()
    for step in plan.steps:
        if step.id in seen:
            raise PlanParseError(f"Duplicate step id: {step.id}")
        if step.id < 1:
            raise PlanParseError(f"Step ids must be positive integers, got {step.id}")
        seen.add(step.id)

    return plan


# Keyword vocabulary per role, in precedence order. A description matching
# several roles gets the first one listed here.
ROLE_KEYWORDS: list[tuple[WorkerRole, tuple[str, ...]]] = [
    (WorkerRole.SEARCH, ("search", "find", "locate", "look for", "grep")),
    (WorkerRole.MEMORY, ("memory", "document", "remember", "note")),
    (WorkerRole.COMMAND, ("run", "execute", "command", "shell")),
    (WorkerRole.VERIFICATION, ("verify", "validate", "check", "confirm")),
    (WorkerRole.USER_INTENT, ("intent", "clarify", "understand the user")),
]

DEFAULT_ROLE = WorkerRole.SEARCH

_ROLE_PATTERNS = [
    (role, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")", re.IGNORECASE))
    for role, keywords in ROLE_KEYWORDS
]


def infer_role(description: str) -> WorkerRole:
    """Guess a worker role from a step description (word-start match)."""
    for role, pattern in _ROLE_PATTERNS:
        if pattern.search(description or ""):
            return role
    return DEFAULT_ROLE


def repair_agent_roles(plan: Plan) -> list[tuple[int, str, WorkerRole]]:
    """
    Rewrite every invalid `agent` in place.

    Returns:
        (step id, original agent, repaired role) for each repaired step
    """
    repairs = []
    for step in plan.steps:
        if WorkerRole.is_valid(step.agent):
            continue
        role = infer_role(step.description)
        repairs.append((step.id, step.agent, role))
        step.agent = role.value
    return repairs


def drop_unknown_dependencies(plan: Plan) -> list[tuple[int, int]]:
    """Remove dependency ids that reference no step. Returns (step, dep) pairs removed."""
    known = {s.id for s in plan.steps}
    removed = []
    for step in plan.steps:
        kept = []
        for dep_id in step.dependencies:
            if dep_id in known:
                kept.append(dep_id)
            else:
                removed.append((step.id, dep_id))
        step.dependencies = kept
    return removed


def find_dependency_cycles(plan: Plan) -> list[list[int]]:
    """
    Detect dependency cycles, self-dependencies included.

    Returns:
        Each cycle as the list of step ids on it, in traversal order
    """
    graph = {s.id: [d for d in s.dependencies if plan.get_step(d) is not None] for s in plan.steps}
    WHITE, GREY, BLACK = 0, 1, 2
    color = {node: WHITE for node in graph}
    cycles = []

    def visit(node: int, path: list[int]):
        color[node] = GREY
        path.append(node)
        for dep in graph[node]:
            if color[dep] == GREY:
                cycles.append(path[path.index(dep):] + [dep])
            elif color[dep] == WHITE:
                visit(dep, path)
        path.pop()
        color[node] = BLACK

    for node in graph:
        if color[node] == WHITE:
            visit(node, [])

    return cycles
