"""
Worker Tools

Filesystem, command and memory tools the workers call during generation:
- grep_search / list_files / read_file_safe: read-only repository access
- run_command: allowlisted, non-shell command execution
- read_memory / write_memory / list_memory_files: project memory files

The module-level functions are plain operations; Toolbox wraps them as
ToolSpecs whose handlers also record what was touched into the current
ExecutionContext.
"""

import re
import shlex
import fnmatch
import subprocess
from pathlib import Path
from datetime import datetime
from typing import Any, Callable, Optional
from dataclasses import dataclass, field

from .errors import ToolError
from .state_manager import ExecutionContext


SKIP_DIRS = {
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    "env", ".tox", ".mypy_cache", ".pytest_cache", "dist", "build", ".stepwise",
}

TEXT_EXTENSIONS = {
    ".py", ".js", ".ts", ".tsx", ".jsx", ".json", ".md", ".txt", ".toml",
    ".yaml", ".yml", ".cfg", ".ini", ".go", ".rs", ".java", ".rb", ".sh",
    ".html", ".css", ".sql", ".c", ".h", ".cpp", ".hpp", ".cs", ".php",
}

# Executables run_command will start. Anything else is refused.
ALLOWED_COMMANDS = {
    "ls", "fd", "rg", "cat", "gh", "pwd", "find", "grep", "head", "tail",
    "wc", "echo", "git", "tree", "du", "stat", "file",
}

# Arguments that turn an allowed executable into a destructive one
BLOCKED_ARGUMENTS = {
    "find": {"-delete", "-exec", "-execdir", "-ok", "-okdir"},
    "git": {"push", "reset", "clean", "checkout", "rebase", "commit", "rm", "restore", "switch"},
}


@dataclass
class GrepMatch:
    file: str
    line: int
    content: str


@dataclass
class CommandResult:
    """Result of running a command."""
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float
    command: str

    def format(self) -> str:
        text = self.stdout or "Command executed successfully with no output."
        if self.stderr and self.stderr.strip():
            text = f"Command output (with warnings):\n{self.stdout}\n\nWarnings:\n{self.stderr}"
        return f"{text}\n[exit={self.exit_code}]"


@dataclass
class ToolSpec:
    """A tool offered to the model."""
    name: str
    description: str
    handler: Callable[..., Any]
    parameters: dict[str, str] = field(default_factory=dict)


# =============================================================================
# Repository access
# =============================================================================

def _iter_files(repo_path: Path):
    for path in sorted(repo_path.rglob("*")):
        if any(part in SKIP_DIRS for part in path.relative_to(repo_path).parts):
            continue
        if path.is_file():
            yield path


def _resolve_inside(root: Path, relative: str) -> Path:
    """Resolve `relative` under `root`, refusing paths that escape it."""
    root = root.resolve()
    full = (root / relative).resolve()
    if full != root and root not in full.parents:
        raise ToolError(f"Path outside of allowed directory: {relative}")
    return full


def grep_search(repo_path: Path, pattern: str, max_results: int = 50) -> list[GrepMatch]:
    """
    Case-insensitive regex search over text files in the repository.

    Raises:
        ToolError: pattern is too generic (under 3 characters) or invalid
    """
    if len(pattern.strip()) < 3:
        raise ToolError(
            f"Search term '{pattern}' is too generic. Use a more specific pattern "
            "with at least 3 characters."
        )
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error:
        regex = re.compile(re.escape(pattern), re.IGNORECASE)

    repo_path = Path(repo_path)
    matches = []
    for path in _iter_files(repo_path):
        if path.suffix.lower() not in TEXT_EXTENSIONS:
            continue
        try:
            with open(path, 'r', encoding='utf-8', errors='ignore') as f:
                for line_num, line in enumerate(f, 1):
                    if regex.search(line):
                        matches.append(GrepMatch(
                            file=str(path.relative_to(repo_path)),
                            line=line_num,
                            content=line.strip()[:200],
                        ))
                        if len(matches) >= max_results:
                            return matches
        except OSError:
            continue
    return matches


def list_files(repo_path: Path, pattern: str = "*", max_results: int = 100) -> list[str]:
    """Relative paths matching a glob pattern (matched on path or file name)."""
    repo_path = Path(repo_path)
    results = []
    for path in _iter_files(repo_path):
        rel = str(path.relative_to(repo_path))
        if fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(path.name, pattern):
            results.append(rel)
            if len(results) >= max_results:
                break
    return results


def read_file_safe(
    repo_path: Path,
    file_path: str,
    max_lines: int = 500,
    start_line: Optional[int] = None,
    end_line: Optional[int] = None,
) -> Optional[str]:
    """
    Read a repository file, optionally a 1-based inclusive line range.

    Returns None if the file doesn't exist, can't be read, or lies outside
    the repository.
    """
    try:
        full_path = _resolve_inside(Path(repo_path), file_path)
    except ToolError:
        return None

    try:
        if not full_path.is_file():
            return None
        with open(full_path, 'r', encoding='utf-8', errors='ignore') as f:
            lines = f.readlines()
    except OSError:
        return None

    if start_line is not None or end_line is not None:
        start = max(1, start_line or 1)
        end = min(len(lines), end_line or len(lines))
        lines = lines[start - 1:end]

    if len(lines) > max_lines:
        content = ''.join(lines[:max_lines])
        content += f"\n\n... (truncated, {len(lines) - max_lines} more lines)"
        return content

    return ''.join(lines)


# =============================================================================
# Commands
# =============================================================================

def check_command_allowed(command: str) -> list[str]:
    """
    Split `command` and check it against the allowlist.

    Returns:
        The argv list to execute

    Raises:
        ToolError: empty, unparsable, or not allowed
    """
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise ToolError(f"Could not parse command: {e}") from e
    if not argv:
        raise ToolError("Empty command")

    executable = argv[0]
    if executable not in ALLOWED_COMMANDS:
        raise ToolError(f"Command not allowed for security reasons: {command}")

    blocked = BLOCKED_ARGUMENTS.get(executable, set())
    for arg in argv[1:]:
        if arg in blocked:
            raise ToolError(f"Command not allowed for security reasons: {command}")

    return argv


def run_command(cwd: Path, command: str, timeout: int = 60) -> CommandResult:
    """
    Execute an allowlisted command without a shell.

    Raises:
        ToolError: the command is not allowed
    """
    argv = check_command_allowed(command)
    start_time = datetime.now()

    try:
        result = subprocess.run(
            argv,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return CommandResult(
            success=result.returncode == 0,
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_seconds=(datetime.now() - start_time).total_seconds(),
            command=command,
        )

    except subprocess.TimeoutExpired:
        return CommandResult(
            success=False,
            exit_code=-1,
            stdout="",
            stderr=f"Command timed out after {timeout} seconds",
            duration_seconds=timeout,
            command=command,
        )

    except OSError as e:
        return CommandResult(
            success=False,
            exit_code=-1,
            stdout="",
            stderr=str(e),
            duration_seconds=(datetime.now() - start_time).total_seconds(),
            command=command,
        )


# =============================================================================
# Memory files
# =============================================================================

def sanitize_memory_path(path: str) -> str:
    """Normalise a memory path to a relative path inside the memory dir."""
    cleaned = path.replace("\\", "/").strip()
    cleaned = re.sub(r'^(~/|/)+', '', cleaned)
    parts = [p for p in cleaned.split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        raise ToolError(f"Memory path may not contain '..': {path}")
    if not parts:
        raise ToolError("Empty memory path")
    return "/".join(parts)


def list_memory_files(memory_dir: Path) -> list[str]:
    memory_dir = Path(memory_dir)
    if not memory_dir.is_dir():
        return []
    return sorted(
        str(p.relative_to(memory_dir)) for p in memory_dir.rglob("*") if p.is_file()
    )


def read_memory(memory_dir: Path, path: str) -> Optional[str]:
    full_path = _resolve_inside(Path(memory_dir), sanitize_memory_path(path))
    if not full_path.is_file():
        return None
    return full_path.read_text(encoding='utf-8', errors='ignore')


def write_memory(memory_dir: Path, path: str, content: str) -> str:
    """Write a memory file, creating parent directories. Returns the sanitized path."""
    relative = sanitize_memory_path(path)
    full_path = _resolve_inside(Path(memory_dir), relative)
    full_path.parent.mkdir(parents=True, exist_ok=True)
    full_path.write_text(content, encoding='utf-8')
    return relative


# =============================================================================
# Context-recording tool specs
# =============================================================================

class Toolbox:
    """
    Builds the ToolSpecs handed to workers.

    Every handler records its activity in the context returned by
    `context_provider` at call time, so one Toolbox serves successive
    requests.
    """

    def __init__(
        self,
        repo_path: Path,
        memory_dir: Path,
        context_provider: Callable[[], ExecutionContext],
        command_timeout: int = 60,
    ):
        self.repo_path = Path(repo_path)
        self.memory_dir = Path(memory_dir)
        self.context_provider = context_provider
        self.command_timeout = command_timeout

    @property
    def context(self) -> ExecutionContext:
        return self.context_provider()

    # -- handlers ------------------------------------------------------------

    def _grep(self, pattern: str = "", **_) -> str:
        self.context.record_file_search(pattern)
        results = grep_search(self.repo_path, pattern)
        if not results:
            return f"NO MATCHES for pattern: {pattern}"
        output = [f"Found {len(results)} matches for '{pattern}':"]
        for r in results[:25]:
            output.append(f"  {r.file}:{r.line}: {r.content}")
        return "\n".join(output)

    def _list_files(self, pattern: str = "*", **_) -> str:
        self.context.record_file_search(pattern)
        matching = list_files(self.repo_path, pattern)
        if not matching:
            return f"NO FILES matching: {pattern}"
        return f"Files matching '{pattern}':\n" + "\n".join(f"  - {m}" for m in matching[:50])

    def _read_file(self, path: str = "", start_line: Optional[int] = None, end_line: Optional[int] = None, **_) -> str:
        start = int(start_line) if start_line is not None else None
        end = int(end_line) if end_line is not None else None
        content = read_file_safe(self.repo_path, path, start_line=start, end_line=end)
        if content is None:
            return f"FILE NOT FOUND: {path}"
        self.context.record_file_read(path, (start or 1, end) if start or end else None)
        return f"Contents of {path}:\n```\n{content}\n```"

    def _run_command(self, command: str = "", **_) -> str:
        try:
            result = run_command(self.repo_path, command, timeout=self.command_timeout)
        except ToolError as e:
            self.context.record_command(command, str(e), -1)
            return str(e)
        output = result.format()
        self.context.record_command(command, output, result.exit_code)
        return output

    def _list_memory(self, **_) -> str:
        files = list_memory_files(self.memory_dir)
        self.context.record_memory_read(str(self.memory_dir))
        if not files:
            return "No memory files found"
        return "\n".join(files)

    def _read_memory(self, path: str = "", **_) -> str:
        content = read_memory(self.memory_dir, path)
        if content is None:
            return f"Memory file not found: {path}"
        self.context.record_memory_read(sanitize_memory_path(path))
        return content

    def _write_memory(self, path: str = "", content: str = "", **_) -> str:
        if not self.context.memory_read:
            return (
                "MEMORY READ REQUIRED: Before writing to memory, check whether related "
                "memory already exists. Use list_memory_files or read_memory first."
            )
        relative = write_memory(self.memory_dir, path, content)
        self.context.record_memory_creation(relative)
        return f"Successfully wrote {relative} to project memory"

    # -- specs ---------------------------------------------------------------

    def search_tools(self) -> list[ToolSpec]:
        return [
            ToolSpec("grep_search", "Regex search over repository text files.", self._grep,
                     {"pattern": "regex, at least 3 characters"}),
            ToolSpec("list_files", "List repository files matching a glob.", self._list_files,
                     {"pattern": "glob such as *.py or src/**/*.ts"}),
            ToolSpec("read_file", "Read a repository file or a line range of it.", self._read_file,
                     {"path": "path relative to the repository root",
                      "start_line": "optional first line (1-based)",
                      "end_line": "optional last line"}),
        ]

    def command_tools(self) -> list[ToolSpec]:
        allowed = ", ".join(sorted(ALLOWED_COMMANDS))
        return [
            ToolSpec("run_command", f"Run a read-only command. Allowed executables: {allowed}.",
                     self._run_command, {"command": "the command line"}),
        ]

    def memory_tools(self) -> list[ToolSpec]:
        return [
            ToolSpec("list_memory_files", "List the project's memory files.", self._list_memory),
            ToolSpec("read_memory", "Read one memory file.", self._read_memory,
                     {"path": "path relative to the memory directory"}),
            ToolSpec("write_memory", "Create or overwrite a memory file (markdown).", self._write_memory,
                     {"path": "path relative to the memory directory", "content": "full file content"}),
        ]
