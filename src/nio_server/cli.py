#!/usr/bin/env python3
"""nio_server/cli.py

Interactive console for the expert orchestrator (console script ``nio-chat``).
Runs each turn through the full pipeline and renders the routing decision,
the individual expert answers and the synthesised reply with Rich.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
import sys
from typing import NoReturn

# Third-Party Libraries
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table
from rich.theme import Theme

# Local Modules
from .history import RollingHistory
from .models import OrchestrationResult
from .orchestrator import Orchestrator
from .settings import NioSettings

custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "expert": "magenta",
    }
)
console = Console(theme=custom_theme)


def display_help() -> None:
    """Display available commands and usage information."""
    help_text = """
**Available Commands:**

- `/help` - Show this help message
- `/clear` - Clear conversation history
- `/experts` - List registered experts
- `/config` - Show the model configuration summary
- `/quit` or `/exit` - Exit
- Any other text - Ask the expert panel
    """
    console.print(Panel(Markdown(help_text), title="Help", border_style="cyan"))


def display_experts(orchestrator: Orchestrator) -> None:
    """Print the expert registry as a table."""
    table = Table(title="Experts", border_style="cyan")
    table.add_column("id")
    table.add_column("name")
    table.add_column("role")
    table.add_column("built-in")
    for expert in orchestrator.registry.list():
        table.add_row(
            expert.id, expert.display_name, expert.role, "yes" if expert.is_built_in else "no"
        )
    console.print(table)


def display_config(orchestrator: Orchestrator) -> None:
    """Print the display-safe model configuration summary."""
    summary = orchestrator.config_service.summary()
    lines = "\n".join(f"- {key}: `{value}`" for key, value in summary.items())
    console.print(
        Panel(Markdown(f"**Model configuration:**\n\n{lines}"), title="Config", border_style="cyan")
    )


def display_result(result: OrchestrationResult) -> None:
    """Render the routing decision, each expert answer and the final reply."""
    if result.routing is not None:
        console.print(
            escape(
                f"🧭 [{result.routing.method}] {', '.join(result.routing.expert_ids) or '(none)'}"
                f": {result.routing.reasoning}"
            ),
            style="info",
        )
    for expert_result in result.expert_results:
        if expert_result.succeeded:
            console.print(
                Panel(
                    Markdown(expert_result.content),
                    title=f"[expert]{escape(expert_result.display_name)}[/expert]",
                    border_style="magenta",
                )
            )
        else:
            console.print(
                escape(f"⚠️  {expert_result.display_name}: {expert_result.error_message}"),
                style="warning",
            )

    if result.succeeded:
        console.print(
            Panel(
                Markdown(result.final_response),
                title="[bold green]nio[/bold green]",
                border_style="green",
            )
        )
    else:
        console.print(escape(f"❌ {result.error_message}"), style="error")
    console.print()


def main() -> NoReturn:
    """Main entry point for the nio console."""
    load_dotenv()
    settings = NioSettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    orchestrator = Orchestrator.build(settings)
    history = RollingHistory(max_messages=max(settings.history_window, 1) * 2)

    console.print("⚙️  nio expert panel", style="info")
    console.print(f"👥 Experts: {len(orchestrator.registry)}", style="info")
    if not orchestrator.config_service.current().is_complete:
        console.print(
            "Model endpoint or API key missing: set NIO_DEFAULT_BASE_URL / "
            "NIO_DEFAULT_API_KEY or edit the config file.",
            style="warning",
        )
    console.print("Type [bold]/help[/bold] for commands.\n", style="info")

    while True:
        try:
            user_input = Prompt.ask("[bold blue]You[/bold blue]").strip()

            if not user_input:
                continue

            command = user_input.lower()
            if command in ["/quit", "/exit"]:
                console.print("\n👋 Goodbye!\n", style="success")
                sys.exit(0)
            elif command == "/help":
                display_help()
                continue
            elif command == "/clear":
                history.clear()
                console.print("🗑️  Conversation history cleared.\n", style="success")
                continue
            elif command == "/experts":
                display_experts(orchestrator)
                continue
            elif command == "/config":
                display_config(orchestrator)
                continue

            console.print()
            with console.status("[bold green]Consulting experts...", spinner="dots"):
                result = asyncio.run(orchestrator.run(user_input, history.get_context()))

            display_result(result)
            if result.succeeded:
                history.record_exchange(user_input, result.final_response)

        except KeyboardInterrupt:
            console.print("\n\n👋 Interrupted. Goodbye!\n", style="warning")
            sys.exit(0)


if __name__ == "__main__":
    main()
