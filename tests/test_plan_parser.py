import pytest

from stepwise.errors import PlanParseError, UnknownWorkerRoleError
from stepwise.plan_parser import (
    WorkerRole,
    StepResult,
    Plan,
    parse_plan,
    infer_role,
    repair_agent_roles,
    drop_unknown_dependencies,
    find_dependency_cycles,
)
from stepwise.schemas import PlanSchema

from conftest import make_plan

# ---------------------------------------------------------------------------
# Worker roles
# ---------------------------------------------------------------------------

def test_worker_role_parse_accepts_exact_names():
    assert WorkerRole.parse("userIntent") is WorkerRole.USER_INTENT
    assert WorkerRole.parse(WorkerRole.SEARCH) is WorkerRole.SEARCH
    assert WorkerRole.is_valid("command")
    assert not WorkerRole.is_valid("Search")


def test_worker_role_parse_rejects_unknown():
    with pytest.raises(UnknownWorkerRoleError, match="Unknown agent type"):
        WorkerRole.parse("planner")

# ---------------------------------------------------------------------------
# parse_plan
# ---------------------------------------------------------------------------

def test_parse_plan_resets_execution_state():
    schema = PlanSchema.model_validate({
        "taskCategory": "bug report",
        "severity": "major",
        "steps": [
            {"id": 1, "description": "find the handler", "agent": "search", "completed": True, "result": "stale"},
            {"id": 2, "description": "check it", "agent": "verification", "dependencies": [1]},
        ],
        "searchKeywords": ["handler"],
        "memoryUpdatePoints": [{"afterStep": 2, "filePath": "codebase/handler.md", "description": "handler notes"}],
    })

    plan = parse_plan(schema)

    assert [s.completed for s in plan.steps] == [False, False]
    assert all(s.result is None for s in plan.steps)
    assert plan.severity.value == "major"
    assert plan.memory_update_points[0].file_path == "codebase/handler.md"
    assert plan.search_keywords == ["handler"]


def test_parse_plan_rejects_duplicate_ids():
    raw = {"taskCategory": "x", "steps": [
        {"id": 1, "description": "a", "agent": "search"},
        {"id": 1, "description": "b", "agent": "memory"},
    ]}
    with pytest.raises(PlanParseError, match="Duplicate step id"):
        parse_plan(raw)


def test_parse_plan_rejects_non_object():
    with pytest.raises(PlanParseError):
        parse_plan(["not", "a", "plan"])


def test_plan_round_trip_keeps_state():
    plan = make_plan((1, "search", "find", []), (2, "memory", "note", [1]))
    plan.steps[0].completed = True
    plan.steps[0].result = StepResult.text("found it")

    restored = Plan.from_dict(plan.to_dict())

    assert restored.steps[0].completed is True
    assert restored.steps[0].result.render() == "found it"
    assert restored.steps[1].dependencies == [1]

# ---------------------------------------------------------------------------
# Runnable selection
# ---------------------------------------------------------------------------

def test_runnable_steps_in_ascending_id_order():
    plan = make_plan((3, "search", "c", []), (1, "search", "a", []), (2, "search", "b", [1]))
    assert [s.id for s in plan.runnable_steps()] == [1, 3]


def test_dependency_on_missing_step_is_not_runnable():
    plan = make_plan((1, "search", "a", [9]))
    assert plan.runnable_steps() == []


def test_step_result_rendering():
    assert StepResult.empty().render() == "No result"
    assert StepResult.from_value("").is_empty
    assert '"files"' in StepResult.from_value({"files": ["a.py"]}).render()

# ---------------------------------------------------------------------------
# Role repair
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("description,expected", [
    ("Search for the retry logic", WorkerRole.SEARCH),
    ("Document the decision in memory", WorkerRole.MEMORY),
    ("Run git log on the module", WorkerRole.COMMAND),
    ("Verify the config is loaded", WorkerRole.VERIFICATION),
    ("Clarify what the user means", WorkerRole.USER_INTENT),
    ("Summarise everything", WorkerRole.SEARCH),
])
def test_infer_role(description, expected):
    assert infer_role(description) is expected


def test_infer_role_precedence_search_over_verification():
    assert infer_role("Check and find all usages") is WorkerRole.SEARCH


def test_infer_role_matches_word_starts_only():
    # "pruning" contains "run" but not at a word start
    assert infer_role("Pruning old branches") is WorkerRole.SEARCH
    assert infer_role("Rerun nothing, just notes") is WorkerRole.MEMORY


def test_repair_agent_roles_rewrites_invalid_agents():
    plan = make_plan((1, "bogus", "search for X", []), (2, "memory", "read memory", []))

    repairs = repair_agent_roles(plan)

    assert repairs == [(1, "bogus", WorkerRole.SEARCH)]
    assert plan.steps[0].agent == "search"
    assert plan.steps[1].agent == "memory"

# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------

def test_drop_unknown_dependencies():
    plan = make_plan((1, "search", "a", [7]), (2, "search", "b", [1, 8]))
    assert drop_unknown_dependencies(plan) == [(1, 7), (2, 8)]
    assert plan.steps[1].dependencies == [1]


def test_find_dependency_cycles_two_step_cycle():
    plan = make_plan((1, "search", "a", [2]), (2, "search", "b", [1]), (3, "search", "c", []))
    cycles = find_dependency_cycles(plan)
    assert len(cycles) == 1
    assert set(cycles[0]) == {1, 2}


def test_find_dependency_cycles_self_dependency():
    plan = make_plan((1, "search", "a", [1]))
    assert find_dependency_cycles(plan) == [[1, 1]]


def test_find_dependency_cycles_none_for_diamond():
    plan = make_plan(
        (1, "search", "a", []), (2, "search", "b", [1]),
        (3, "search", "c", [1]), (4, "verification", "d", [2, 3]),
    )
    assert find_dependency_cycles(plan) == []
