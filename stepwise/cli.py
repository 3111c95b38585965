"""
Stepwise CLI

Command-line interface for planning and running requests against a repository.
Uses Rich for terminal output.
"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.markdown import Markdown
from rich.prompt import Prompt
from rich.theme import Theme
from rich.rule import Rule
from rich.table import Table

from .config import StepwiseConfig, get_config
from .openrouter_client import OpenRouterError
from .orchestrator import OrchestratorAgent, create_orchestrator


STEPWISE_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "red bold",
    "success": "green bold",
    "heading": "magenta bold",
    "muted": "dim white",
})

console = Console(theme=STEPWISE_THEME)


def print_banner():
    banner = """
+-----------------------------------------------------------+
|                                                           |
|     STEPWISE                                              |
|     Plan, dispatch, summarize                             |
|                                                           |
+-----------------------------------------------------------+
"""
    console.print(banner, style="cyan")


def print_help():
    help_text = """
[heading]Stepwise[/heading]

[info]Type a request about the repository, or one of:[/info]
  • [bold]/plan[/bold] - Show the plan of the last request
  • [bold]/errors[/bold] - Show errors recorded during the last request
  • [bold]/help[/bold] - Show this help
  • [bold]/quit[/bold] or [bold]/exit[/bold] - Exit
"""
    console.print(Panel(help_text, title="Help", border_style="blue"))


def status_callback(message: str):
    if "Error" in message:
        console.print(message, style="error")
    elif message.startswith("[Orchestrator]"):
        console.print(message, style="info")
    else:
        console.print(message, style="muted")


class StepwiseCLI:
    """Interactive shell around an OrchestratorAgent."""

    def __init__(self, repo_path: Path, config: StepwiseConfig):
        self.repo_path = repo_path
        self.config = config
        self.agent: OrchestratorAgent = create_orchestrator(
            repo_path, config=config, on_status=status_callback
        )

    def show_plan(self):
        plan = self.agent.context.plan
        if plan is None:
            console.print("[warning]No plan yet[/]")
            return

        table = Table(show_header=True, header_style="bold magenta", title=plan.task_category)
        table.add_column("Step")
        table.add_column("Agent")
        table.add_column("Description")
        table.add_column("Depends on")
        table.add_column("Status")
        for step in plan.steps:
            status = "[green]done[/green]" if step.completed else "[yellow]pending[/yellow]"
            deps = ", ".join(str(d) for d in step.dependencies) or "-"
            table.add_row(str(step.id), step.agent, step.description, deps, status)
        console.print(table)

    def show_errors(self):
        context = self.agent.context
        if not context.errors:
            console.print("[muted]No errors recorded[/]")
            return
        console.print(Panel(context.format_errors(), title="Errors", border_style="red"))

    async def handle_request(self, prompt: str):
        context = self.agent.new_context()
        console.print()
        console.print(Rule(f"Request {context.request_id}", style="magenta"))

        answer = await self.agent.run(prompt)

        console.print()
        console.print(Panel(Markdown(answer), title="Answer", border_style="green", padding=(1, 2)))
        console.print(f"[muted]Tokens used: {context.total_tokens():,}[/]")

    async def run(self, initial_prompt: Optional[str] = None):
        """
        Run one request when `initial_prompt` is given, otherwise loop on
        user input until /quit.
        """
        try:
            if initial_prompt:
                await self.handle_request(initial_prompt)
                return

            print_banner()
            console.print(f"[info]Repository:[/] {self.repo_path}")
            console.print("[muted]Type /help for commands.[/]")

            while True:
                try:
                    console.print()
                    prompt = Prompt.ask("[bold cyan]Request[/]").strip()
                except (KeyboardInterrupt, EOFError):
                    console.print("\n[warning]Interrupted[/]")
                    break

                if not prompt:
                    continue
                command = prompt.lower()
                if command in ("/quit", "/exit"):
                    break
                if command == "/help":
                    print_help()
                    continue
                if command == "/plan":
                    self.show_plan()
                    continue
                if command == "/errors":
                    self.show_errors()
                    continue

                await self.handle_request(prompt)
        finally:
            await self.agent.close()

        console.print("[muted]Goodbye![/]")


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Stepwise - plan a request, run it through specialised agents, summarize the findings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stepwise .                                  # Interactive session in current directory
  stepwise /path/to/repo                      # Interactive session in specified repo
  stepwise . --prompt "Where is auth handled?"
  stepwise . --model openai/gpt-4o --adapt    # Different model, adaptive plans
        """
    )
    parser.add_argument(
        "repo_path",
        type=str,
        nargs="?",
        default=".",
        help="Path to the repository (default: current directory)"
    )
    parser.add_argument(
        "--prompt", "-p",
        type=str,
        help="Run a single request and exit"
    )
    parser.add_argument(
        "--model", "-m",
        type=str,
        help="Model to use (default from config)"
    )
    parser.add_argument(
        "--api-key", "-k",
        type=str,
        help="OpenRouter API key (or set OPENROUTER_API_KEY env var)"
    )
    parser.add_argument(
        "--adapt",
        action="store_true",
        help="Re-evaluate the remaining plan after every step"
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        help="Maximum number of plan steps executed per request"
    )

    args = parser.parse_args()

    repo_path = Path(args.repo_path).resolve()
    if not repo_path.exists():
        console.print(f"[error]Error: Path does not exist: {repo_path}[/]")
        sys.exit(1)
    if not repo_path.is_dir():
        console.print(f"[error]Error: Path is not a directory: {repo_path}[/]")
        sys.exit(1)

    config = get_config(repo_path)
    if args.model:
        config.model = args.model
    if args.api_key:
        config.openrouter_api_key = args.api_key
    if args.adapt:
        config.adapt_plan = True
    if args.max_steps is not None:
        config.max_plan_steps = args.max_steps

    try:
        cli = StepwiseCLI(repo_path, config)
    except (OpenRouterError, ValueError) as e:
        console.print(f"[error]Error: {e}[/]")
        sys.exit(1)

    try:
        asyncio.run(cli.run(initial_prompt=args.prompt))
    except KeyboardInterrupt:
        console.print("\n[warning]Interrupted[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
