import json
import pytest

from stepwise.errors import ContextDecodeError, UnknownWorkerRoleError, WorkerNotRegisteredError
from stepwise.plan_parser import WorkerRole
from stepwise.registry import Worker, WorkerRegistry
from stepwise.state_manager import ExecutionContext, generate_request_id

from conftest import FakeWorker, make_plan

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_registry_resolves_registered_worker():
    registry = WorkerRegistry()
    worker = FakeWorker("SearchAgent")
    registry.register("search", worker)

    assert registry.resolve(WorkerRole.SEARCH) is worker
    assert registry.has("search")
    assert isinstance(worker, Worker)


def test_registry_unknown_role():
    with pytest.raises(UnknownWorkerRoleError):
        WorkerRegistry().resolve("planner")


def test_registry_valid_role_without_worker():
    registry = WorkerRegistry()
    with pytest.raises(WorkerNotRegisteredError, match="No agent registered for type: memory"):
        registry.resolve("memory")
    assert not registry.has("memory")
    assert not registry.has("planner")


def test_registry_register_replaces_binding():
    registry = WorkerRegistry()
    registry.register("command", FakeWorker("first"))
    second = FakeWorker("second")
    registry.register(WorkerRole.COMMAND, second)

    assert registry.resolve("command") is second
    assert len(registry) == 1

# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------

def test_generate_request_id_format():
    request_id = generate_request_id()
    prefix, millis, suffix = request_id.split("_")
    assert prefix == "req"
    assert millis.isdigit()
    assert len(suffix) == 7


def test_complete_step_and_next_step(context):
    context.set_plan(make_plan((1, "search", "a", []), (2, "memory", "b", [1])))
    assert context.total_steps == 2
    assert context.get_next_step().id == 1

    step = context.complete_step(1, "found")

    assert step.completed and step.result.render() == "found"
    assert context.get_next_step().id == 2
    assert context.complete_step(99, "x") is None


def test_recorders_dedupe_where_expected(context):
    context.record_file_read("a.py", (1, 10))
    context.record_file_read("a.py", (1, 10))
    context.record_file_read("a.py", (20, 30))
    context.record_memory_read("notes.md")
    context.record_memory_read("notes.md")
    context.record_memory_creation("new.md")
    context.record_memory_creation("new.md")
    context.record_command("git log", "abc", 0)
    context.record_command("git log", "abc", 0)

    assert context.files_read["a.py"].line_ranges == [[1, 10], [20, 30]]
    assert context.memory_read == ["notes.md"]
    assert context.memory_created == ["new.md"]
    assert len(context.commands_executed) == 2


def test_token_usage_accumulates(context):
    context.update_token_usage("SearchAgent", 100, 20, "m1")
    context.update_token_usage("SearchAgent", 50, 10, "m2")
    context.update_token_usage("orchestrator", 5, 5)

    usage = context.token_usage["SearchAgent"]
    assert (usage.prompt_tokens, usage.completion_tokens, usage.model) == (150, 30, "m2")
    assert context.total_tokens() == 190


def test_context_json_round_trip(context):
    context.set_plan(make_plan((1, "search", "a", []), checkpoints=[(1, "codebase/a.md", "notes")]))
    context.complete_step(1, "result text")
    context.record_file_read("src/app.py", (1, 40))
    context.record_web_search("httpx retry", "docs")
    context.record_error(1, "boom", recovery="retried")
    context.store_result("search:a", "cached")
    context.update_token_usage("SearchAgent", 1, 2)

    restored = ExecutionContext.from_json(context.to_json())

    assert restored.request_id == "req_1_test"
    assert restored.plan.steps[0].result.render() == "result text"
    assert restored.plan.memory_update_points[0].after_step == 1
    assert restored.files_read["src/app.py"].line_ranges == [[1, 40]]
    assert restored.errors[0].recovery == "retried"
    assert restored.get_result("search:a") == "cached"
    assert restored.token_usage["SearchAgent"].completion_tokens == 2
    assert json.loads(context.to_json())["currentStep"] == 0


def test_context_from_json_rejects_garbage():
    with pytest.raises(ContextDecodeError):
        ExecutionContext.from_json("{not json")
    with pytest.raises(ContextDecodeError):
        ExecutionContext.from_dict({"userId": "x"})
    with pytest.raises(ContextDecodeError):
        ExecutionContext.from_dict([1, 2])


def test_format_errors(context):
    assert context.format_errors() == "No errors recorded."
    context.record_error(2, "worker failed")
    assert context.format_errors() == "Step 2: worker failed"
