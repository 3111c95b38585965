import pytest
from typing import Optional

from stepwise.llm_client import LLMClient, ChatResponse, Message
from stepwise.plan_parser import Plan, Step, MemoryCheckpoint
from stepwise.registry import WorkerRegistry
from stepwise.state_manager import ExecutionContext


class ScriptedLLM(LLMClient):
    """Returns queued replies in order and records every conversation it saw."""

    def __init__(self, replies: list[str], model: str = "test-model", usage: Optional[dict] = None):
        self.replies = list(replies)
        self.model = model
        self.usage = usage if usage is not None else {"prompt_tokens": 10, "completion_tokens": 5}
        self.calls: list[list[Message]] = []

    async def chat(self, messages: list[Message], **kwargs) -> ChatResponse:
        self.calls.append(list(messages))
        if not self.replies:
            raise AssertionError("ScriptedLLM ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(content=reply, model=self.model, usage=dict(self.usage))

    async def close(self):
        pass


class FakeWorker:
    """Worker stand-in that records its calls."""

    def __init__(self, name: str = "FakeWorker", reply: str = "ok", error: Optional[Exception] = None):
        self.name = name
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, Optional[str]]] = []

    async def execute(self, prompt: str, additional_context: Optional[str] = None) -> str:
        self.calls.append((prompt, additional_context))
        if self.error is not None:
            raise self.error
        if callable(self.reply):
            return self.reply(prompt)
        return self.reply


def make_plan(*steps, checkpoints=(), category="investigation") -> Plan:
    """make_plan((1, "search", "find x", []), ...)"""
    return Plan(
        task_category=category,
        steps=[Step(id=i, agent=a, description=d, dependencies=list(deps)) for i, a, d, deps in steps],
        memory_update_points=[MemoryCheckpoint(*cp) for cp in checkpoints],
    )


@pytest.fixture
def context():
    return ExecutionContext(request_id="req_1_test", user_id="tester", timestamp="2024-01-01T00:00:00Z")


@pytest.fixture
def workers():
    return {
        "search": FakeWorker("SearchAgent", reply=lambda p: f"search:{p}"),
        "memory": FakeWorker("MemoryAgent", reply="memory updated"),
        "command": FakeWorker("CommandAgent", reply="command output"),
        "verification": FakeWorker("VerificationAgent", reply="Short summary."),
        "userIntent": FakeWorker("UserIntentAgent", reply="intent"),
    }


@pytest.fixture
def registry(workers):
    reg = WorkerRegistry()
    for role, worker in workers.items():
        reg.register(role, worker)
    return reg
