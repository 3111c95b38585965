import json

from stepwise.context_policy import (
    CONTEXT_START,
    CONTEXT_END,
    ContextPolicy,
    Visibility,
    build_context_payload,
    embed_context,
    extract_context,
    restore_context,
    summarize_context,
)
from stepwise.llm_client import Message

from conftest import make_plan


def _context_with_history(context):
    context.set_plan(make_plan(
        (1, "search", "find a", []),
        (2, "search", "find b", []),
        (3, "verification", "compare", [1]),
    ))
    context.complete_step(1, "a.py")
    context.complete_step(2, "b.py")
    context.set_current_step(3)
    for i in range(5):
        context.record_file_read(f"f{i}.py")
        context.record_command(f"ls {i}", "out", 0)
    return context


def test_summarized_view_keeps_step_dependencies_and_recent_entries(context):
    summary = summarize_context(_context_with_history(context), recent=3)

    assert summary["visibility"] == "summarized"
    assert summary["currentStep"] == 3
    assert [s["id"] for s in summary["plan"]["steps"]] == [3, 1]
    assert summary["dependencyResults"] == {"1": "a.py"}
    assert summary["recentFilesRead"] == ["f2.py", "f3.py", "f4.py"]
    assert [c["command"] for c in summary["recentCommands"]] == ["ls 2", "ls 3", "ls 4"]
    assert "intermediateResults" not in summary


def test_full_payload_is_whole_context(context):
    payload = build_context_payload(_context_with_history(context), Visibility.FULL)
    assert payload["visibility"] == "full"
    assert len(payload["plan"]["steps"]) == 3
    assert len(payload["filesRead"]) == 5


def test_embed_appends_system_message_then_replaces_in_place():
    messages = [Message("user", "hello")]
    embed_context(messages, {"n": 1})

    assert len(messages) == 2
    assert messages[1].role == "system"
    assert messages[1].content.startswith(CONTEXT_START)
    assert messages[1].content.endswith(CONTEXT_END)

    messages.append(Message("user", "later"))
    embed_context(messages, {"n": 2})

    assert len(messages) == 3
    assert extract_context(messages) == {"n": 2}


def test_extract_never_raises_on_malformed_payload():
    messages = [Message("system", f"{CONTEXT_START}{{broken{CONTEXT_END}")]
    assert extract_context(messages) is None
    assert extract_context([Message("user", "no markers")]) is None
    assert extract_context([Message("system", f"{CONTEXT_START}[1, 2]{CONTEXT_END}")]) is None


def test_restore_full_context(context):
    _context_with_history(context)
    policy = ContextPolicy()
    messages = policy.embed([Message("user", "q")], context, Visibility.FULL)

    restored = restore_context(messages)

    assert restored.request_id == context.request_id
    assert restored.plan.get_step(1).completed
    assert policy.restore([Message("user", "q")]) is None


def test_policy_recent_window(context):
    _context_with_history(context)
    policy = ContextPolicy(recent=1)
    payload = json.loads(
        policy.embed([], context, Visibility.SUMMARIZED)[0].content[len(CONTEXT_START):-len(CONTEXT_END)]
    )
    assert payload["recentFilesRead"] == ["f4.py"]
