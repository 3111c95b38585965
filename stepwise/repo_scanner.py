"""
Repository Scanner

Structural view of the repository (file tree, entry points, test
directories) and the two environment messages given to the planner: the
project context and the inventory of memory files.
"""

import json
import tomllib
import subprocess
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

from .llm_client import Message


# Directories to exclude from scanning
EXCLUDED_DIRS = {
    'venv', 'node_modules', '.git', '__pycache__',
    'dist', 'build', '.idea', '.vscode', 'env',
    '.env', 'site-packages', '.tox', '.pytest_cache',
    '.mypy_cache', 'egg-info', '.eggs', '.stepwise',
    '.cache', 'coverage', '.next', 'target',
}

# Binary file extensions to skip
BINARY_EXTENSIONS = {
    '.pyc', '.pyo', '.so', '.dll', '.exe', '.bin',
    '.png', '.jpg', '.jpeg', '.gif', '.ico', '.svg',
    '.pdf', '.zip', '.tar', '.gz', '.7z',
    '.mp3', '.mp4', '.wav', '.mov',
    '.ttf', '.woff', '.woff2',
    '.db', '.sqlite', '.pickle', '.pkl',
    '.o', '.a', '.class', '.lock',
}

# Entry point files (in priority order)
ENTRY_POINT_FILES = [
    'main.py', 'app.py', 'run.py', '__main__.py', 'cli.py',
    'pyproject.toml', 'setup.py',
    'index.js', 'index.ts', 'main.ts', 'server.js', 'server.ts',
    'package.json',
    'Makefile', 'Dockerfile', 'Cargo.toml', 'go.mod', 'pom.xml',
]

TEST_DIR_PATTERNS = {'test', 'tests', 'spec', 'specs', '__tests__', 'testing'}

PROJECT_CONTEXT_FILE_LIMIT = 50


@dataclass
class RepoStructure:
    """Repository structure analysis."""
    root_path: Path
    total_files: int = 0
    total_dirs: int = 0
    files: list[str] = field(default_factory=list)
    entry_points: list[str] = field(default_factory=list)
    test_dirs: list[str] = field(default_factory=list)
    file_tree: str = ""


def is_test_directory(name: str) -> bool:
    name_lower = name.lower()
    return name_lower in TEST_DIR_PATTERNS or name_lower.startswith('test_') or name_lower.endswith('_test')


class RepoScanner:
    """
    Scans a repository and extracts structural information.

    Usage:
        scanner = RepoScanner("/path/to/repo")
        structure = scanner.scan()
        print(structure.file_tree)
    """

    def __init__(self, root_path: str | Path, max_depth: int = 10, max_files: int = 5000):
        self.root_path = Path(root_path).resolve()
        self.max_depth = max_depth
        self.max_files = max_files

        if not self.root_path.is_dir():
            raise ValueError(f"Path is not a directory: {self.root_path}")

    def scan(self) -> RepoStructure:
        structure = RepoStructure(root_path=self.root_path)
        tree_lines = [f"{self.root_path.name}/"]
        self._scan_directory(self.root_path, structure, tree_lines, prefix="", depth=0)
        structure.file_tree = "\n".join(tree_lines)
        structure.entry_points = self._find_entry_points(structure.files)
        return structure

    def _scan_directory(self, path: Path, structure: RepoStructure, tree_lines: list[str], prefix: str, depth: int):
        if depth > self.max_depth or structure.total_files >= self.max_files:
            return

        try:
            items = sorted(path.iterdir(), key=lambda x: (x.is_file(), x.name.lower()))
        except PermissionError:
            return

        dirs = [i for i in items if i.is_dir() and not i.name.startswith('.') and i.name not in EXCLUDED_DIRS]
        files = [
            i for i in items
            if i.is_file() and not i.name.startswith('.') and i.suffix.lower() not in BINARY_EXTENSIONS
        ]
        entries = dirs + files

        for i, item in enumerate(entries):
            is_last = i == len(entries) - 1
            connector = "└── " if is_last else "├── "
            rel_path = str(item.relative_to(self.root_path))

            if item.is_dir():
                structure.total_dirs += 1
                if is_test_directory(item.name):
                    structure.test_dirs.append(rel_path)
                tree_lines.append(f"{prefix}{connector}{item.name}/")
                extension = "    " if is_last else "│   "
                self._scan_directory(item, structure, tree_lines, prefix + extension, depth + 1)
            else:
                if structure.total_files >= self.max_files:
                    return
                structure.total_files += 1
                structure.files.append(rel_path)
                tree_lines.append(f"{prefix}{connector}{item.name}")

    def _find_entry_points(self, files: list[str]) -> list[str]:
        entry_points = []
        for ep_name in ENTRY_POINT_FILES:
            for rel_path in files:
                if (rel_path == ep_name or rel_path.endswith(f"/{ep_name}")) and rel_path not in entry_points:
                    entry_points.append(rel_path)
        return entry_points

    def get_summary(self) -> str:
        structure = self.scan()
        lines = [
            f"Repository: {structure.root_path.name}",
            f"Total files: {structure.total_files}",
            f"Total directories: {structure.total_dirs}",
        ]
        if structure.entry_points:
            lines.append("Entry points: " + ", ".join(structure.entry_points[:10]))
        if structure.test_dirs:
            lines.append("Test directories: " + ", ".join(f"{t}/" for t in structure.test_dirs[:5]))
        return "\n".join(lines)


def _git(repo_path: Path, *args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args], cwd=str(repo_path), capture_output=True, text=True, timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def _package_info(repo_path: Path) -> list[str]:
    """Name/version/description lines from pyproject.toml or package.json."""
    pyproject = repo_path / "pyproject.toml"
    if pyproject.is_file():
        try:
            project = tomllib.loads(pyproject.read_text(encoding='utf-8')).get("project", {})
        except (tomllib.TOMLDecodeError, OSError):
            project = {}
        if project:
            lines = [
                f"Name: {project.get('name', 'unknown')}",
                f"Version: {project.get('version', 'unknown')}",
                f"Description: {project.get('description', 'No description')}",
            ]
            deps = project.get("dependencies") or []
            if deps:
                lines.append(f"Dependencies: {', '.join(deps)}")
            return lines

    package_json = repo_path / "package.json"
    if package_json.is_file():
        try:
            data = json.loads(package_json.read_text(encoding='utf-8'))
        except (json.JSONDecodeError, OSError):
            return []
        lines = [
            f"Name: {data.get('name', 'unknown')}",
            f"Version: {data.get('version', 'unknown')}",
            f"Description: {data.get('description', 'No description')}",
        ]
        if data.get("dependencies"):
            lines.append(f"Dependencies: {', '.join(data['dependencies'])}")
        return lines

    return []


def get_project_context(repo_path: str | Path) -> Message:
    """
    System message describing the project: directory, git state, package
    info and the first files of the tree. Never raises.
    """
    try:
        repo_path = Path(repo_path).resolve()
        context = "<env>\n# Project Context\n\n"
        context += f"Current directory: {repo_path}\n\n"

        if _git(repo_path, "rev-parse", "--is-inside-work-tree") == "true":
            context += "This is a git repository.\n"
            remotes = _git(repo_path, "remote", "-v")
            context += f"Git remotes:\n{remotes}\n" if remotes else "No git remotes found.\n"
            branch = _git(repo_path, "branch", "--show-current")
            context += f"Current branch: {branch}\n" if branch else "Could not determine current branch.\n"
        else:
            context += "This is not a git repository.\n"

        info = _package_info(repo_path)
        if info:
            context += "\nProject Info:\n" + "\n".join(info) + "\n"

        structure = RepoScanner(repo_path).scan()
        context += f"\nFiles ({structure.total_files} total, first {PROJECT_CONTEXT_FILE_LIMIT} shown):\n"
        for rel_path in structure.files[:PROJECT_CONTEXT_FILE_LIMIT]:
            context += f"- {rel_path}\n"
        if structure.entry_points:
            context += f"\nEntry points: {', '.join(structure.entry_points[:10])}\n"

        context += "</env>"
        return Message("system", context)
    except Exception as e:
        return Message("system", f"Error getting project context: {e}")


def get_memory_files_context(memory_dir: str | Path) -> Message:
    """System message listing the project's memory files. Never raises."""
    try:
        memory_dir = Path(memory_dir)
        context = "<env>\n# Project Memory Files\n\n"
        context += f"Memory directory: {memory_dir}\n\n"

        files = []
        if memory_dir.is_dir():
            files = sorted(str(p.relative_to(memory_dir)) for p in memory_dir.rglob("*") if p.is_file())

        if not files:
            context += "No memory files found yet. Memory files will be created as the project is discussed.\n"
        else:
            context += f"Found {len(files)} memory files for this project:\n\n"
            context += "".join(f"- {f}\n" for f in files)
            context += "\nStart investigations from these memory files where they are relevant.\n"

        context += "</env>"
        return Message("system", context)
    except Exception as e:
        return Message("system", f"Error accessing memory files: {e}")
