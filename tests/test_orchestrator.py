import asyncio
import json
import pytest

from stepwise.config import StepwiseConfig
from stepwise.context_policy import CONTEXT_START, extract_context
from stepwise.errors import PlanGenerationError
from stepwise.llm_client import Message
from stepwise.orchestrator import OrchestratorAgent, create_orchestrator
from stepwise.plan_generator import PlanGenerator, ORCHESTRATOR_AGENT_NAME
from stepwise.plan_parser import WorkerRole
from stepwise.repo_scanner import RepoScanner, get_memory_files_context, get_project_context
from stepwise.sub_agent import SubAgent
from stepwise.workers import SearchAgent, build_default_registry

from conftest import ScriptedLLM, make_plan


PLAN_JSON = json.dumps({
    "taskCategory": "investigation",
    "severity": "minor",
    "steps": [
        {"id": 1, "description": "find the retry helper", "agent": "search", "completed": True, "result": "stale"},
        {"id": 2, "description": "check how it is used", "agent": "verification", "dependencies": [1, 7]},
    ],
    "searchKeywords": ["retry"],
    "memoryUpdatePoints": [],
})

# ---------------------------------------------------------------------------
# Plan generation
# ---------------------------------------------------------------------------

def test_create_plan_stores_clean_plan(context):
    llm = ScriptedLLM([f"```json\n{PLAN_JSON}\n```"])
    generator = PlanGenerator(llm, lambda: context, project_context=Message("system", "<env>project</env>"))

    plan = asyncio.run(generator.create_plan("Where is retry handled?", "only the client"))

    assert context.plan is plan
    assert context.total_steps == 2
    assert all(not s.completed and s.result is None for s in plan.steps)
    assert plan.get_step(2).dependencies == [1]
    assert context.token_usage[ORCHESTRATOR_AGENT_NAME].prompt_tokens == 10

    sent = llm.calls[0]
    assert sent[0].role == "system"
    assert sent[1].content == "<env>project</env>"
    assert sent[2].content == "Where is retry handled?\nAdditional context: only the client"
    assert extract_context(sent)["visibility"] == "full"


def test_create_plan_failure_raises_and_stores_nothing(context):
    llm = ScriptedLLM(["nope", "still nope", "never"])
    generator = PlanGenerator(llm, lambda: context, schema_retries=2)

    with pytest.raises(PlanGenerationError, match="Plan generation failed"):
        asyncio.run(generator.create_plan("anything"))

    assert context.plan is None
    assert context.errors[-1].error.startswith("Plan generation failed")


def test_create_plan_transport_failure(context):
    generator = PlanGenerator(ScriptedLLM([ConnectionError("offline")]), lambda: context)
    with pytest.raises(PlanGenerationError, match="offline"):
        asyncio.run(generator.create_plan("anything"))

# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

def test_sub_agent_embeds_summarized_context_and_records_usage(context):
    context.set_plan(make_plan((1, "search", "a", [])))
    context.set_current_step(1)
    llm = ScriptedLLM(["answer"])
    agent = SubAgent(llm, lambda: context, name="Helper")

    assert asyncio.run(agent.execute("explain", "some deps")) == "answer"

    messages = llm.calls[0]
    assert messages[1].content == "explain\nAdditional context: some deps"
    assert CONTEXT_START in messages[2].content
    assert extract_context(messages)["visibility"] == "summarized"
    assert context.token_usage["Helper"].completion_tokens == 5


def test_sub_agent_converts_errors(context):
    agent = SubAgent(ScriptedLLM([RuntimeError("model exploded")]), lambda: context, name="Helper")
    assert asyncio.run(agent.execute("x")) == "Error in Helper: model exploded"
    assert context.errors[-1].error == "model exploded"

    strict = SubAgent(ScriptedLLM([RuntimeError("again")]), lambda: context, raise_errors=True)
    with pytest.raises(RuntimeError):
        asyncio.run(strict.execute("x"))


def test_sub_agent_execute_strict_always_raises(context):
    agent = SubAgent(ScriptedLLM([RuntimeError("upstream down")]), lambda: context, name="Helper")
    with pytest.raises(RuntimeError, match="upstream down"):
        asyncio.run(agent.execute_strict("x"))
    assert context.errors[-1].error == "upstream down"


def test_search_agent_reuses_previous_answer(context):
    llm = ScriptedLLM(["found it in client.py"])
    agent = SearchAgent(llm, lambda: context)

    first = asyncio.run(agent.execute("find retry"))
    second = asyncio.run(agent.execute("find retry"))

    assert first == second == "found it in client.py"
    assert len(llm.calls) == 1


def test_build_default_registry_covers_all_roles(tmp_path, context):
    registry = build_default_registry(ScriptedLLM([]), lambda: context, tmp_path, StepwiseConfig())

    assert set(registry.registered_roles()) == set(WorkerRole)
    assert registry.resolve("memory").name == "MemoryAgent"
    assert [t.name for t in registry.resolve("command").tools] == ["run_command"]
    assert registry.resolve("userIntent").tools == []

# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def test_orchestrator_run_end_to_end(registry, workers):
    llm = ScriptedLLM([PLAN_JSON])
    agent = OrchestratorAgent(llm, registry, StepwiseConfig(), project_context=Message("system", "<env/>"))

    answer = asyncio.run(agent.run("Where is retry handled?"))

    assert answer == "Short summary."
    assert [c[0] for c in workers["search"].calls] == ["find the retry helper"]
    assert workers["verification"].calls[0][0] == "check how it is used"
    assert agent.last_report.executed_steps == 2


def test_orchestrator_run_reports_plan_failure(registry):
    agent = OrchestratorAgent(ScriptedLLM(["x", "y", "z"]), registry, StepwiseConfig())
    answer = asyncio.run(agent.run("anything"))
    assert answer.startswith("I couldn't create a plan for this request.")


def test_orchestrator_execute_without_plan(registry):
    agent = OrchestratorAgent(ScriptedLLM([]), registry)
    assert asyncio.run(agent.execute_plan()) == "No plan available to execute. Please create a plan first."


def test_orchestrator_truncation_note_reaches_answer(registry, context):
    agent = OrchestratorAgent(ScriptedLLM([]), registry, StepwiseConfig(max_plan_steps=1), context=context)
    context.set_plan(make_plan((1, "search", "a", []), (2, "search", "b", [])))

    answer = asyncio.run(agent.execute_plan())

    assert answer.endswith("Note: Plan execution was limited to 1 steps for safety.")


def test_failed_summary_falls_back_with_default_workers(tmp_path):
    llm = ScriptedLLM(["step answer", RuntimeError("503 upstream down")])
    agent = create_orchestrator(tmp_path, config=StepwiseConfig(debug_logging=False), llm_client=llm)
    agent.context.set_plan(make_plan((1, "userIntent", "clarify the goal", [])))

    answer = asyncio.run(agent.execute_plan())

    assert answer == "Here's what I found:\n\nStep 1 (userIntent): clarify the goal\n\nstep answer"
    assert "Error in" not in answer
    assert agent.context.errors[-1].error == "503 upstream down"


def test_new_context_replaces_state(registry, context):
    agent = OrchestratorAgent(ScriptedLLM([]), registry, context=context)
    fresh = agent.new_context()
    assert agent.context is fresh
    assert fresh is not context


def test_create_orchestrator_wires_workers_to_live_context(tmp_path):
    config = StepwiseConfig(debug_logging=False)
    llm = ScriptedLLM(["memory says nothing"])
    agent = create_orchestrator(tmp_path, config=config, llm_client=llm)

    first = agent.context
    agent.new_context()
    asyncio.run(agent.registry.resolve("memory").execute("read memory"))

    assert "MemoryAgent" in agent.context.token_usage
    assert "MemoryAgent" not in first.token_usage

# ---------------------------------------------------------------------------
# Project context
# ---------------------------------------------------------------------------

def test_repo_scanner_structure(tmp_path):
    (tmp_path / "tests").mkdir()
    (tmp_path / "tests" / "test_app.py").write_text("")
    (tmp_path / "main.py").write_text("print('hi')")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG")

    structure = RepoScanner(tmp_path).scan()

    assert structure.files == ["tests/test_app.py", "main.py"]
    assert structure.entry_points == ["main.py"]
    assert structure.test_dirs == ["tests"]
    assert "Entry points: main.py" in RepoScanner(tmp_path).get_summary()


def test_get_project_context(tmp_path):
    (tmp_path / "pyproject.toml").write_text('[project]\nname = "demo"\nversion = "1.0"\n')

    message = get_project_context(tmp_path)

    assert message.role == "system"
    assert message.content.startswith("<env>\n# Project Context")
    assert "Name: demo" in message.content
    assert "- pyproject.toml" in message.content


def test_get_project_context_never_raises(tmp_path):
    message = get_project_context(tmp_path / "missing")
    assert message.content.startswith("Error getting project context:")


def test_get_memory_files_context(tmp_path):
    assert "No memory files found yet" in get_memory_files_context(tmp_path / "memory").content
    (tmp_path / "memory" / "codebase").mkdir(parents=True)
    (tmp_path / "memory" / "codebase" / "auth.md").write_text("# Auth")
    assert "- codebase/auth.md" in get_memory_files_context(tmp_path / "memory").content
