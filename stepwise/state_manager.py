"""
State Manager

Request-scoped execution context shared by the orchestrator and every worker:
- Plan and progress counters
- Append-only resource logs (files, commands, web searches, memory files)
- Intermediate results, error log, per-agent token usage
- JSON round-trip so the context can travel inside a message
"""

import os
import json
import time
import random
import string
from datetime import datetime, timezone
from typing import Any, Optional
from dataclasses import dataclass, field, asdict

from .errors import ContextDecodeError, PlanParseError
from .plan_parser import Plan, Step, StepResult


_BASE36 = string.digits + string.ascii_lowercase


def generate_request_id() -> str:
    """`req_<epoch-ms>_<7 random base36 chars>`."""
    suffix = "".join(random.choice(_BASE36) for _ in range(7))
    return f"req_{int(time.time() * 1000)}_{suffix}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class FileReadRecord:
    """Lines read from a single file, merged across reads."""
    path: str
    line_ranges: list[list[int]] = field(default_factory=list)


@dataclass
class CommandRecord:
    command: str
    result: str
    exit_code: int


@dataclass
class WebSearchRecord:
    query: str
    result: str


@dataclass
class ErrorRecord:
    step: int
    error: str
    recovery: Optional[str] = None


@dataclass
class AgentTokenUsage:
    """Accumulated token usage for one agent name."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ExecutionContext:
    """
    All state for one user request.

    Mutate only through the record/set methods below. Resource logs and the
    error log are append-only.

    Usage:
        context = ExecutionContext()
        context.set_plan(plan)
        context.record_file_read("src/app.py", (1, 40))
        payload = context.to_json()
    """
    request_id: str = field(default_factory=generate_request_id)
    user_id: str = field(default_factory=lambda: os.getenv("USER") or "unknown")
    timestamp: str = field(default_factory=_now_iso)

    current_step: int = 0
    total_steps: int = 0
    plan: Optional[Plan] = None

    files_searched: list[str] = field(default_factory=list)
    files_read: dict[str, FileReadRecord] = field(default_factory=dict)
    commands_executed: list[CommandRecord] = field(default_factory=list)
    web_searches: list[WebSearchRecord] = field(default_factory=list)
    memory_created: list[str] = field(default_factory=list)
    memory_read: list[str] = field(default_factory=list)

    intermediate_results: dict[str, Any] = field(default_factory=dict)
    errors: list[ErrorRecord] = field(default_factory=list)
    token_usage: dict[str, AgentTokenUsage] = field(default_factory=dict)

    # -------------------------------------------------------------------------
    # Plan progress
    # -------------------------------------------------------------------------

    def set_plan(self, plan: Plan) -> None:
        self.plan = plan
        self.total_steps = len(plan.steps)

    def set_current_step(self, step_id: int) -> None:
        self.current_step = step_id

    def complete_step(self, step_id: int, result: Any) -> Optional[Step]:
        """Mark a step completed with its result. Returns the step, or None if unknown."""
        if self.plan is None:
            return None
        step = self.plan.get_step(step_id)
        if step is None:
            return None
        step.completed = True
        step.result = StepResult.from_value(result)
        return step

    def get_next_step(self) -> Optional[Step]:
        """First runnable step in ascending id order, if any."""
        if self.plan is None:
            return None
        runnable = self.plan.runnable_steps()
        return runnable[0] if runnable else None

    # -------------------------------------------------------------------------
    # Resource recorders
    # -------------------------------------------------------------------------

    def record_file_read(self, path: str, line_range: Optional[tuple[int, int]] = None) -> None:
        record = self.files_read.get(path)
        if record is None:
            record = FileReadRecord(path=path)
            self.files_read[path] = record
        if line_range is not None:
            start, end = line_range
            if [start, end] not in record.line_ranges:
                record.line_ranges.append([start, end])

    def record_file_search(self, query: str) -> None:
        self.files_searched.append(query)

    def record_command(self, command: str, result: str, exit_code: int) -> None:
        self.commands_executed.append(CommandRecord(command, result, exit_code))

    def record_web_search(self, query: str, result: str) -> None:
        self.web_searches.append(WebSearchRecord(query, result))

    def record_memory_creation(self, path: str) -> None:
        if path not in self.memory_created:
            self.memory_created.append(path)

    def record_memory_read(self, path: str) -> None:
        if path not in self.memory_read:
            self.memory_read.append(path)

    def store_result(self, key: str, value: Any) -> None:
        self.intermediate_results[key] = value

    def get_result(self, key: str, default: Any = None) -> Any:
        return self.intermediate_results.get(key, default)

    def record_error(self, step: int, error: str, recovery: Optional[str] = None) -> None:
        self.errors.append(ErrorRecord(step=step, error=error, recovery=recovery))

    def update_token_usage(
        self,
        agent: str,
        prompt_tokens: int,
        completion_tokens: int,
        model: str = "",
    ) -> None:
        usage = self.token_usage.setdefault(agent, AgentTokenUsage())
        usage.prompt_tokens += prompt_tokens or 0
        usage.completion_tokens += completion_tokens or 0
        if model:
            usage.model = model

    def total_tokens(self) -> int:
        return sum(u.total_tokens for u in self.token_usage.values())

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "userId": self.user_id,
            "timestamp": self.timestamp,
            "currentStep": self.current_step,
            "totalSteps": self.total_steps,
            "plan": self.plan.to_dict() if self.plan else None,
            "filesSearched": list(self.files_searched),
            "filesRead": {p: asdict(r) for p, r in self.files_read.items()},
            "commandsExecuted": [asdict(c) for c in self.commands_executed],
            "webSearches": [asdict(w) for w in self.web_searches],
            "memoryCreated": list(self.memory_created),
            "memoryRead": list(self.memory_read),
            "intermediateResults": dict(self.intermediate_results),
            "errors": [asdict(e) for e in self.errors],
            "tokenUsage": {a: asdict(u) for a, u in self.token_usage.items()},
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    @classmethod
    def from_dict(cls, data: dict) -> 'ExecutionContext':
        """
        Rebuild a context from `to_dict()` output.

        Raises:
            ContextDecodeError: if the data is not a valid context
        """
        if not isinstance(data, dict):
            raise ContextDecodeError(f"Context must be an object, got {type(data).__name__}")

        try:
            plan = Plan.from_dict(data["plan"]) if data.get("plan") else None
            return cls(
                request_id=data["requestId"],
                user_id=data.get("userId", "unknown"),
                timestamp=data.get("timestamp", ""),
                current_step=int(data.get("currentStep", 0)),
                total_steps=int(data.get("totalSteps", 0)),
                plan=plan,
                files_searched=list(data.get("filesSearched", [])),
                files_read={p: FileReadRecord(**r) for p, r in data.get("filesRead", {}).items()},
                commands_executed=[CommandRecord(**c) for c in data.get("commandsExecuted", [])],
                web_searches=[WebSearchRecord(**w) for w in data.get("webSearches", [])],
                memory_created=list(data.get("memoryCreated", [])),
                memory_read=list(data.get("memoryRead", [])),
                intermediate_results=dict(data.get("intermediateResults", {})),
                errors=[ErrorRecord(**e) for e in data.get("errors", [])],
                token_usage={a: AgentTokenUsage(**u) for a, u in data.get("tokenUsage", {}).items()},
            )
        except (KeyError, TypeError, ValueError, PlanParseError) as e:
            raise ContextDecodeError(f"Invalid execution context: {e}") from e

    @classmethod
    def from_json(cls, text: str) -> 'ExecutionContext':
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ContextDecodeError(f"Execution context is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def format_errors(self) -> str:
        if not self.errors:
            return "No errors recorded."
        lines = []
        for e in self.errors:
            line = f"Step {e.step}: {e.error}"
            if e.recovery:
                line += f" (recovery: {e.recovery})"
            lines.append(line)
        return "\n".join(lines)

