import pytest
from unittest.mock import patch

from stepwise.errors import ToolError
from stepwise.state_manager import ExecutionContext
from stepwise.tools import (
    Toolbox,
    check_command_allowed,
    grep_search,
    list_files,
    read_file_safe,
    run_command,
    sanitize_memory_path,
    write_memory,
    read_memory,
    list_memory_files,
)


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("def main():\n    return retry_request()\n\n# end\n")
    (tmp_path / "src" / "util.py").write_text("def retry_request():\n    pass\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "lib.js").write_text("retry_request()\n")
    return tmp_path


@pytest.fixture
def toolbox(repo):
    context = ExecutionContext()
    box = Toolbox(repo, repo / ".stepwise" / "memory", lambda: context)
    return box, context


def _handler(specs, name):
    return next(spec.handler for spec in specs if spec.name == name)

# ---------------------------------------------------------------------------
# Repository access
# ---------------------------------------------------------------------------

def test_grep_search_skips_ignored_dirs(repo):
    matches = grep_search(repo, "retry_request")
    assert sorted(m.file for m in matches) == ["src/app.py", "src/util.py"]
    assert matches[0].line >= 1


def test_grep_search_rejects_short_patterns(repo):
    with pytest.raises(ToolError, match="too generic"):
        grep_search(repo, "ab")


def test_list_files_glob(repo):
    assert list_files(repo, "*.py") == ["src/app.py", "src/util.py"]


def test_read_file_safe_line_range_and_escape(repo):
    assert read_file_safe(repo, "src/app.py", start_line=2, end_line=2) == "    return retry_request()\n"
    assert read_file_safe(repo, "../outside.txt") is None
    assert read_file_safe(repo, "src/missing.py") is None

# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("command", [
    "rm -rf /",
    "curl http://example.com",
    "git push origin main",
    "find . -delete",
    "",
])
def test_check_command_allowed_refuses(command):
    with pytest.raises(ToolError):
        check_command_allowed(command)


def test_check_command_allowed_accepts_read_only():
    assert check_command_allowed("git log --oneline -5") == ["git", "log", "--oneline", "-5"]


def test_run_command_executes_without_shell(repo):
    result = run_command(repo, "echo hello; rm -rf /")
    assert result.success
    assert result.stdout.strip() == "hello; rm -rf /"
    assert result.format().endswith("[exit=0]")


def test_run_command_tool_records_refusals(toolbox):
    box, context = toolbox
    output = _handler(box.command_tools(), "run_command")(command="rm -rf src")

    assert "not allowed" in output
    assert context.commands_executed[0].exit_code == -1

# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

def test_sanitize_memory_path():
    assert sanitize_memory_path("/codebase//auth.md") == "codebase/auth.md"
    with pytest.raises(ToolError):
        sanitize_memory_path("../secrets.md")


def test_memory_file_helpers(tmp_path):
    memory_dir = tmp_path / "memory"
    assert list_memory_files(memory_dir) == []
    assert write_memory(memory_dir, "insights/a.md", "# A") == "insights/a.md"
    assert read_memory(memory_dir, "insights/a.md") == "# A"
    assert list_memory_files(memory_dir) == ["insights/a.md"]


def test_write_memory_requires_prior_read(toolbox):
    box, context = toolbox
    tools = box.memory_tools()
    write = _handler(tools, "write_memory")

    assert write(path="codebase/app.md", content="notes").startswith("MEMORY READ REQUIRED")
    assert context.memory_created == []

    _handler(tools, "list_memory_files")()
    assert "Successfully wrote codebase/app.md" in write(path="codebase/app.md", content="notes")
    assert context.memory_created == ["codebase/app.md"]
    assert _handler(tools, "read_memory")(path="codebase/app.md") == "notes"


def test_search_tools_record_activity(toolbox):
    box, context = toolbox
    tools = box.search_tools()

    assert "src/app.py" in _handler(tools, "grep_search")(pattern="retry_request")
    assert "Contents of src/app.py" in _handler(tools, "read_file")(path="src/app.py", start_line=1, end_line=2)
    assert _handler(tools, "read_file")(path="nope.py") == "FILE NOT FOUND: nope.py"

    assert context.files_searched == ["retry_request"]
    assert context.files_read["src/app.py"].line_ranges == [[1, 2]]
