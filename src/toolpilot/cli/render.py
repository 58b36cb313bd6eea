"""Terminal renderer for toolpilot."""

from __future__ import annotations

import json
import threading
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from toolpilot.core.orchestrator import TurnResult
from toolpilot.llm.providers import Provider
from toolpilot.llm.types import ToolOutcome

ARGUMENT_PREVIEW_CHARS = 120


class Renderer:
    """Rich output plus prompt_toolkit input for the chat front-end."""

    def __init__(self, console: Console | None = None) -> None:
        self.console: Console = console or Console()
        self._show_debug: bool = False
        self._prompt_session: PromptSession[str] | None = None
        self._print_lock = threading.Lock()
        self._streaming = False

    def toggle_debug(self) -> None:
        """Toggle display of tool arguments and status lines."""
        self._show_debug = not self._show_debug
        state = "enabled" if self._show_debug else "disabled"
        self._print(f"[dim]Debug mode {state}[/dim]")

    @property
    def show_debug(self) -> bool:
        return self._show_debug

    def welcome(self, provider: Provider, model: str, tools: list[str]) -> None:
        self._print("[bold blue]toolpilot[/bold blue] - type [bold]quit[/bold] to exit, [bold]reset[/bold] for a new session")
        self._print(f"[bold]Provider:[/bold] [magenta]{provider.info.display_name}[/magenta]  [bold]Model:[/bold] {model}")
        if tools:
            self._print(f"[bold]Tools:[/bold] [green]{', '.join(tools)}[/green]")

    def info(self, message: str) -> None:
        self._print(message)

    def error(self, message: str) -> None:
        self._print(f"[bold red]Error:[/bold red] {escape(message)}")

    def text_delta(self, fragment: str) -> None:
        with self._print_lock:
            if not self._streaming:
                self.console.print("[bold yellow]Agent:[/bold yellow] ", end="")
                self._streaming = True
            self.console.print(fragment, end="", markup=False, highlight=False)

    def status(self, message: str) -> None:
        if self._show_debug:
            self._end_stream()
            self._print(f"[dim]{escape(message)}[/dim]")

    def tool_started(self, name: str, arguments: dict[str, Any]) -> None:
        self._end_stream()
        line = f"[cyan]>[/cyan] {escape(name)}"
        if self._show_debug and arguments:
            rendered = json.dumps(arguments, ensure_ascii=False, default=str)
            if len(rendered) > ARGUMENT_PREVIEW_CHARS:
                rendered = rendered[: ARGUMENT_PREVIEW_CHARS - 3] + "..."
            line += f" [dim]{escape(rendered)}[/dim]"
        self._print(line)

    def tool_finished(self, outcome: ToolOutcome, elapsed: float) -> None:
        mark = "[green]ok[/green]" if outcome.success else "[red]failed[/red]"
        self._print(f"  {mark} [dim]{elapsed * 1000:.0f}ms[/dim]")
        if not outcome.success and outcome.message:
            self._print(f"  [red]{escape(outcome.message.splitlines()[0])}[/red]")

    def turn_result(self, result: TurnResult) -> None:
        streamed = self._streaming
        self._end_stream()
        if not result.success:
            self._print(f"[yellow]{escape(result.text)}[/yellow]")
        elif not streamed and result.text:
            self._print(f"[bold yellow]Agent:[/bold yellow] {escape(result.text)}")

    def cancelled(self) -> None:
        self._end_stream()
        self._print("[dim]Request cancelled.[/dim]")

    def providers(self) -> None:
        table = Table(title="Providers")
        table.add_column("Name")
        table.add_column("Display name")
        table.add_column("Default model")
        table.add_column("API key")
        for provider in Provider:
            info = provider.info
            table.add_row(provider.value, info.display_name, info.default_model, info.key_hint)
        with self._print_lock:
            self.console.print(table)

    async def get_user_input(self) -> str:
        if self._prompt_session is None:
            self._prompt_session = PromptSession()
        with patch_stdout(raw=True):
            return await self._prompt_session.prompt_async("> ")

    def _end_stream(self) -> None:
        with self._print_lock:
            if self._streaming:
                self.console.print()
                self._streaming = False

    def _print(self, message: str) -> None:
        with self._print_lock:
            self.console.print(message)
