"""
Debug Log

Human-readable trace of each request written to .stepwise/logs/debug_log.txt:
the plan, every dispatch and result, checkpoints, errors and the final
summary.
"""

from pathlib import Path
from datetime import datetime
from typing import Optional

from .plan_parser import Plan, Step


LOGS_DIR = "logs"
DEBUG_LOG_FILE = "debug_log.txt"


class DebugLogger:
    """
    Appends sections to the debug log. Does nothing when disabled.

    Usage:
        debug = DebugLogger(repo_path / ".stepwise")
        debug.start_request(context.request_id, "find the auth code")
        debug.log_plan(plan)
    """

    def __init__(self, stepwise_dir: Path, enabled: bool = True):
        self.logs_dir = Path(stepwise_dir) / LOGS_DIR
        self.log_file = self.logs_dir / DEBUG_LOG_FILE
        self.enabled = enabled

    def _timestamp(self) -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    def _write(self, content: str, mode: str = "a"):
        if not self.enabled:
            return
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, mode, encoding='utf-8') as f:
            f.write(content)

    def _section(self, title: str, body: str = ""):
        self._write(f"""
{'=' * 80}
{title}
Time: {self._timestamp()}
{'=' * 80}
{body}
""")

    def start_request(self, request_id: str, description: str):
        self._write(f"""{'#' * 80}
#  STEPWISE DEBUG LOG
#  Request: {request_id}
#  Started: {self._timestamp()}
{'#' * 80}

USER REQUEST:
{description}
""")

    def log_plan(self, plan: Plan):
        lines = [plan.format_outline()]
        if plan.search_keywords:
            lines.append(f"Search keywords: {', '.join(plan.search_keywords)}")
        for cp in plan.memory_update_points:
            lines.append(f"Memory update after step {cp.after_step}: {cp.file_path} ({cp.description})")
        self._section("PLAN CREATED", "\n".join(lines))

    def log_dispatch(self, step: Step, worker_name: str, prompt: str, additional_context: Optional[str] = None):
        body = f"Step {step.id} -> {worker_name} ({step.agent})\n\nPROMPT:\n{prompt}\n"
        if additional_context:
            body += f"\nADDITIONAL CONTEXT:\n{additional_context}\n"
        self._section(f"DISPATCH STEP {step.id}", body)

    def log_result(self, step_id: int, result: str):
        text = result if len(result) <= 5000 else result[:5000] + f"\n... [truncated, {len(result)} total chars]"
        self._section(f"STEP {step_id} RESULT", text)

    def log_checkpoint(self, step_id: int, file_path: str, ok: bool):
        status = "ok" if ok else "FAILED"
        self._section("MEMORY CHECKPOINT", f"After step {step_id}: {file_path} [{status}]")

    def log_adaptation(self, reason: str, applied: list[str]):
        body = f"Reason: {reason}\n" + "\n".join(f"  - {a}" for a in applied)
        self._section("PLAN ADAPTED", body)

    def log_error(self, error: str):
        self._section("ERROR", error)

    def log_event(self, message: str):
        self._write(f"[{self._timestamp()}] {message}\n")

    def log_summary(self, summary: str, total_tokens: int = 0):
        body = summary
        if total_tokens:
            body += f"\n\nTotal tokens: {total_tokens}"
        self._section("FINAL SUMMARY", body)
