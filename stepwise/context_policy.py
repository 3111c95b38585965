"""
Context Propagation

Decides how much of the execution context a consumer sees and carries it
inside a message list:
- FULL: the whole serialized context (plan generation)
- SUMMARIZED: identifiers, the current step and its direct dependencies,
  their results, and the most recent resource-log entries (worker dispatch)

The payload travels as JSON between __CONTEXT_START__ and __CONTEXT_END__
markers in a single message.
"""

import json
from enum import Enum
from typing import Optional

from .errors import ContextDecodeError
from .llm_client import Message
from .state_manager import ExecutionContext


CONTEXT_START = "__CONTEXT_START__"
CONTEXT_END = "__CONTEXT_END__"


class Visibility(Enum):
    FULL = "full"
    SUMMARIZED = "summarized"


def summarize_context(context: ExecutionContext, step_id: Optional[int] = None, recent: int = 3) -> dict:
    """
    Minimal projection of the context for one step.

    Args:
        context: Source context (not modified)
        step_id: Step being dispatched, defaults to `context.current_step`
        recent: How many of the latest files/commands/web searches to keep
    """
    step_id = context.current_step if step_id is None else step_id
    tail = (lambda items: items[-recent:]) if recent > 0 else (lambda items: [])

    plan_view = None
    dependency_results = {}
    if context.plan is not None:
        step = context.plan.get_step(step_id)
        dep_ids = step.dependencies if step else []
        steps = []
        if step is not None:
            steps.append({
                "id": step.id,
                "description": step.description,
                "agent": step.agent,
                "dependencies": list(step.dependencies),
            })
        for dep_id in dep_ids:
            dep = context.plan.get_step(dep_id)
            if dep is None:
                continue
            steps.append({
                "id": dep.id,
                "description": dep.description,
                "agent": dep.agent,
                "completed": dep.completed,
                "result": dep.result.to_wire() if dep.result else None,
            })
            if dep.completed:
                dependency_results[str(dep.id)] = dep.render_result()
        plan_view = {"taskCategory": context.plan.task_category, "steps": steps}

    return {
        "visibility": Visibility.SUMMARIZED.value,
        "requestId": context.request_id,
        "userId": context.user_id,
        "timestamp": context.timestamp,
        "currentStep": step_id,
        "totalSteps": context.total_steps,
        "plan": plan_view,
        "dependencyResults": dependency_results,
        "recentFilesRead": tail(list(context.files_read)),
        "recentCommands": [
            {"command": c.command, "exitCode": c.exit_code}
            for c in tail(context.commands_executed)
        ],
        "recentWebSearches": [w.query for w in tail(context.web_searches)],
    }


def build_context_payload(
    context: ExecutionContext,
    visibility: Visibility,
    step_id: Optional[int] = None,
    recent: int = 3,
) -> dict:
    if visibility == Visibility.FULL:
        payload = context.to_dict()
        payload["visibility"] = Visibility.FULL.value
        return payload
    return summarize_context(context, step_id=step_id, recent=recent)


def _has_markers(content: str) -> bool:
    return isinstance(content, str) and CONTEXT_START in content and CONTEXT_END in content


def embed_context(messages: list[Message], payload: dict) -> list[Message]:
    """
    Put `payload` into `messages` (in place) and return the list.

    An existing marked message is replaced at its position; otherwise a
    system message is appended.
    """
    marked = Message("system", f"{CONTEXT_START}{json.dumps(payload, default=str)}{CONTEXT_END}")
    for i, msg in enumerate(messages):
        if _has_markers(msg.content):
            messages[i] = Message(msg.role, marked.content)
            return messages
    messages.append(marked)
    return messages


def extract_context(messages: list[Message]) -> Optional[dict]:
    """Payload from the first marked message, or None if absent or malformed."""
    for msg in messages:
        if not _has_markers(msg.content):
            continue
        body = msg.content.split(CONTEXT_START, 1)[1].split(CONTEXT_END, 1)[0]
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return None
        return payload if isinstance(payload, dict) else None
    return None


def restore_context(messages: list[Message]) -> Optional[ExecutionContext]:
    """
    Rebuild an ExecutionContext from an embedded payload.

    Only FULL payloads restore completely; a summarized payload gives a
    context with its plan subset and identifiers. None when nothing usable
    is embedded.
    """
    payload = extract_context(messages)
    if payload is None:
        return None
    try:
        return ExecutionContext.from_dict(payload)
    except ContextDecodeError:
        return None


class ContextPolicy:
    """
    Bundles the visibility rules with a fixed `recent` window.

    Usage:
        policy = ContextPolicy(recent=3)
        policy.embed(messages, context, Visibility.SUMMARIZED, step_id=2)
    """

    def __init__(self, recent: int = 3):
        self.recent = recent

    def payload(self, context: ExecutionContext, visibility: Visibility, step_id: Optional[int] = None) -> dict:
        return build_context_payload(context, visibility, step_id=step_id, recent=self.recent)

    def embed(
        self,
        messages: list[Message],
        context: ExecutionContext,
        visibility: Visibility,
        step_id: Optional[int] = None,
    ) -> list[Message]:
        return embed_context(messages, self.payload(context, visibility, step_id))

    def extract(self, messages: list[Message]) -> Optional[dict]:
        return extract_context(messages)

    def restore(self, messages: list[Message]) -> Optional[ExecutionContext]:
        return restore_context(messages)
